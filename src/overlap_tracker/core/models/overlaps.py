"""Per-channel overlap tables.

Each tracked channel gets its own table named ``overlap_<channel>`` holding
one row per (iteration, other channel).  Tables are declared lazily on
:data:`~overlap_tracker.core.models.base.overlap_metadata` because the set of
channels is only known at runtime.
"""

from __future__ import annotations

import re

import sqlalchemy as sa

from overlap_tracker.core.models.base import overlap_metadata

OVERLAP_TABLE_PREFIX = "overlap_"

_CHANNEL_LOGIN_RE = re.compile(r"^[a-z0-9_]{1,25}$")


def overlap_table_name(channel: str) -> str:
    """Return the table name for *channel*.

    Raises:
        ValueError: If *channel* is not a valid lower-cased channel login.
    """
    if not _CHANNEL_LOGIN_RE.match(channel):
        raise ValueError(f"invalid channel login for table name: {channel!r}")
    return f"{OVERLAP_TABLE_PREFIX}{channel}"


def overlap_table(channel: str) -> sa.Table:
    """Return (declaring on first use) the overlap table for *channel*."""
    name = overlap_table_name(channel)
    existing = overlap_metadata.tables.get(name)
    if existing is not None:
        return existing
    return sa.Table(
        name,
        overlap_metadata,
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("iteration", sa.Integer, nullable=False, index=True),
        sa.Column("channel_name", sa.String(26), nullable=False),
        sa.Column("overlap_count", sa.Integer, nullable=False),
        sa.Column("total_chatters", sa.Integer, nullable=False),
    )
