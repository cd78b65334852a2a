"""SQLAlchemy declarative base shared by all ORM models.

Provides:
- Base: the DeclarativeBase subclass the static tables inherit from
- overlap_metadata: a separate MetaData holding the per-channel overlap
  tables, which are declared at runtime and never part of migrations
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Shared declarative base for the static tracker tables."""


overlap_metadata = sa.MetaData()
