"""ORM models for channel metadata, stream samples and iteration markers.

These three tables are static and managed by Alembic.  Overlap rows live
in one table per tracked channel; see
:mod:`overlap_tracker.core.models.overlaps`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from overlap_tracker.core.models.base import Base


class ChannelUser(Base):
    """Profile metadata for a channel, written once when first seen.

    Attributes:
        channel_name: Lower-cased channel login (primary key).
        channel_id: Platform-native broadcaster ID.
        description: Channel profile description.
        creation_date: Account creation timestamp reported upstream.
    """

    __tablename__ = "users"

    channel_name: Mapped[str] = mapped_column(sa.String(26), primary_key=True)
    channel_id: Mapped[Optional[str]] = mapped_column(sa.String(12), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    creation_date: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=True,
    )


class StreamSample(Base):
    """What a tracked channel was broadcasting when a pass started.

    One row per channel per iteration.
    """

    __tablename__ = "streams"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    iteration: Mapped[int] = mapped_column(sa.Integer, nullable=False, index=True)
    channel_name: Mapped[str] = mapped_column(sa.String(26), nullable=False)
    category_name: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    category_id: Mapped[Optional[str]] = mapped_column(sa.String(20), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(sa.String(170), nullable=True)
    viewer_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    language: Mapped[Optional[str]] = mapped_column(sa.String(3), nullable=True)


class IterationMarker(Base):
    """Completion timestamp of a collection iteration."""

    __tablename__ = "iterations"

    iteration: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=False)
    timestamp: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
