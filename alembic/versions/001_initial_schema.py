"""Initial schema: channel metadata, stream samples and iteration markers.

1. users       channel profile metadata, one row per channel login
2. streams     per-iteration sample of what each tracked channel broadcast
3. iterations  completion timestamp of each collection iteration

The ``overlap_<channel>`` tables are not part of this migration; the
tracker creates them on demand the first time a channel is flushed.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("channel_name", sa.String(26), primary_key=True),
        sa.Column("channel_id", sa.String(12), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("creation_date", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "streams",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("iteration", sa.Integer(), nullable=False),
        sa.Column("channel_name", sa.String(26), nullable=False),
        sa.Column("category_name", sa.String(200), nullable=True),
        sa.Column("category_id", sa.String(20), nullable=True),
        sa.Column("title", sa.String(170), nullable=True),
        sa.Column("viewer_count", sa.Integer(), nullable=False),
        sa.Column("language", sa.String(3), nullable=True),
    )
    op.create_index("ix_streams_iteration", "streams", ["iteration"])

    op.create_table(
        "iterations",
        sa.Column("iteration", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("iterations")
    op.drop_index("ix_streams_iteration", table_name="streams")
    op.drop_table("streams")
    op.drop_table("users")
