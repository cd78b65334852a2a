"""SQLAlchemy ORM models for the overlap tracker.

All static models are imported here so that Alembic autogenerate can
discover them via ``Base.metadata``.
"""

from __future__ import annotations

from overlap_tracker.core.models.base import Base, overlap_metadata
from overlap_tracker.core.models.overlaps import overlap_table, overlap_table_name
from overlap_tracker.core.models.tracking import (
    ChannelUser,
    IterationMarker,
    StreamSample,
)

__all__ = [
    "Base",
    "overlap_metadata",
    "overlap_table",
    "overlap_table_name",
    "ChannelUser",
    "IterationMarker",
    "StreamSample",
]
