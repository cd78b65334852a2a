"""Relational persistence for overlap rows and collection metadata.

:class:`OverlapRepository` is the only component that talks to the
database.  Every write that carries an iteration number first deletes the
rows already stored for that iteration, so re-running a write after a crash
or a retry replaces instead of duplicating (at-least-once delivery with
idempotent-by-iteration writes).

Errors are translated into the tracker's hierarchy:

- connection-level failures (``OperationalError``, ``InterfaceError``,
  invalidated connections) become :class:`TransientWriteError` and may be
  retried by the caller;
- everything else becomes :class:`PersistenceError`.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from overlap_tracker.core.exceptions import PersistenceError, TransientWriteError
from overlap_tracker.core.models import (
    Base,
    ChannelUser,
    IterationMarker,
    StreamSample,
    overlap_table,
)
from overlap_tracker.tracker.base import (
    ChannelProfile,
    OverlapEntry,
    OverlapSink,
    TopChannel,
    normalize_channel,
)

logger = structlog.get_logger(__name__)


def _is_transient(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def _overlap_table(channel: str) -> sa.Table:
    try:
        return overlap_table(channel)
    except ValueError as exc:
        raise PersistenceError(str(exc), table=f"overlap_{channel}") from exc


class OverlapRepository(OverlapSink):
    """Writes tracker output through an async SQLAlchemy engine.

    Args:
        engine: Engine created by :func:`overlap_tracker.core.database.build_engine`.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._registered: set[str] = set()
        self._channel_tables: set[str] = set()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Create the static tables if needed and load the registered channels."""
        await self.ensure_schema()
        loaded = await self.load_registered_channels()
        logger.info("persistence.initialized", registered_channels=loaded)

    async def ensure_schema(self) -> None:
        """Create ``users``, ``streams`` and ``iterations`` if they do not exist.

        Production databases are migrated with Alembic; this keeps fresh
        development and test databases usable without a migration step.
        """
        async with self._write("schema") as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def load_registered_channels(self) -> int:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(sa.select(ChannelUser.channel_name))
                self._registered = {row[0] for row in result}
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"failed reading {ChannelUser.__tablename__}: {exc}",
                table=ChannelUser.__tablename__,
            ) from exc
        return len(self._registered)

    async def dispose(self) -> None:
        await self._engine.dispose()

    # ------------------------------------------------------------------
    # Channel metadata
    # ------------------------------------------------------------------

    async def unregistered_channels(self, channels: list[str]) -> list[str]:
        """Return the channels from *channels* that have no ``users`` row yet."""
        seen: set[str] = set()
        missing: list[str] = []
        for channel in channels:
            key = normalize_channel(channel)
            if key in self._registered or key in seen:
                continue
            seen.add(key)
            missing.append(key)
        return missing

    async def write_channel_metadata(self, profiles: list[ChannelProfile]) -> None:
        new_profiles = [p for p in profiles if normalize_channel(p.channel) not in self._registered]
        if not new_profiles:
            return
        rows = [
            {
                "channel_name": normalize_channel(p.channel),
                "channel_id": p.channel_id,
                "description": p.description,
                "creation_date": p.creation_date,
            }
            for p in new_profiles
        ]
        async with self._write(ChannelUser.__tablename__) as conn:
            await conn.execute(sa.insert(ChannelUser), rows)
        self._registered.update(row["channel_name"] for row in rows)
        logger.debug("persistence.channel_metadata_written", entries=len(rows))

    async def write_stream_samples(self, iteration: int, channels: list[TopChannel]) -> None:
        rows = [
            {
                "iteration": iteration,
                "channel_name": normalize_channel(c.channel),
                "category_name": c.category,
                "category_id": c.category_id,
                "title": c.title[:170],
                "viewer_count": c.viewer_count,
                "language": c.language,
            }
            for c in channels
        ]
        async with self._write(StreamSample.__tablename__) as conn:
            await conn.execute(sa.delete(StreamSample).where(StreamSample.iteration == iteration))
            if rows:
                await conn.execute(sa.insert(StreamSample), rows)
        logger.debug("persistence.stream_samples_written", entries=len(rows))

    async def write_iteration_marker(self, iteration: int, timestamp: datetime) -> None:
        async with self._write(IterationMarker.__tablename__) as conn:
            await conn.execute(sa.delete(IterationMarker).where(IterationMarker.iteration == iteration))
            await conn.execute(
                sa.insert(IterationMarker),
                [{"iteration": iteration, "timestamp": timestamp}],
            )

    # ------------------------------------------------------------------
    # Overlaps
    # ------------------------------------------------------------------

    async def ensure_channel_table(self, channel: str) -> None:
        """Create the overlap table for *channel* if it does not exist."""
        key = normalize_channel(channel)
        if key in self._channel_tables:
            return
        table = _overlap_table(key)
        async with self._write(table.name) as conn:
            await conn.run_sync(lambda sync_conn: table.create(sync_conn, checkfirst=True))
        self._channel_tables.add(key)
        logger.debug("persistence.channel_table_ensured", table=table.name)

    async def write_overlap_rows(
        self,
        channel: str,
        iteration: int,
        rows: list[OverlapEntry],
    ) -> None:
        """Replace the overlap rows of *channel* for *iteration*."""
        table = _overlap_table(normalize_channel(channel))
        values = [
            {
                "iteration": iteration,
                "channel_name": row.other_channel,
                "overlap_count": row.overlap_count,
                "total_chatters": row.total_chatters,
            }
            for row in rows
        ]
        async with self._write(table.name) as conn:
            await conn.execute(sa.delete(table).where(table.c.iteration == iteration))
            if values:
                await conn.execute(sa.insert(table), values)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _write(self, table: str) -> AsyncIterator[AsyncConnection]:
        """Run a write in its own transaction and translate database errors."""
        try:
            async with self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            if _is_transient(exc):
                raise TransientWriteError(
                    f"transient failure writing to {table}: {exc}", table=table
                ) from exc
            raise PersistenceError(f"failed writing to {table}: {exc}", table=table) from exc
