"""Unit tests for OverlapRepository against a file-backed aiosqlite database.

Tests cover:
- init() creates the static tables and loads registered channels
- ensure_channel_table() creates ``overlap_<channel>`` once
- write_overlap_rows() replaces rows of the same iteration instead of duplicating
- write_channel_metadata() only inserts channels not registered yet
- write_stream_samples() / write_iteration_marker() are idempotent per iteration
- database errors are mapped to TransientWriteError / PersistenceError
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest
import pytest_asyncio
import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, OperationalError

from overlap_tracker.core.database import build_engine
from overlap_tracker.core.exceptions import PersistenceError, TransientWriteError
from overlap_tracker.core.models import IterationMarker, StreamSample, overlap_table
from overlap_tracker.tracker.base import ChannelProfile, OverlapEntry
from overlap_tracker.tracker.persistence import OverlapRepository
from tests.fakes import make_top_channel


@pytest_asyncio.fixture
async def repository(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'tracker.db'}")
    repo = OverlapRepository(engine)
    await repo.init()
    yield repo
    await repo.dispose()


async def _table_names(repo: OverlapRepository) -> set[str]:
    async with repo._engine.connect() as conn:
        names = await conn.run_sync(lambda sync_conn: sa.inspect(sync_conn).get_table_names())
    return set(names)


async def _count(repo: OverlapRepository, table) -> int:
    async with repo._engine.connect() as conn:
        result = await conn.execute(sa.select(sa.func.count()).select_from(table))
        return result.scalar_one()


async def _overlap_rows(repo: OverlapRepository, channel: str, iteration: int) -> list[tuple]:
    """Return ``(other_channel, overlap_count, total_chatters)`` rows ordered by channel."""
    table = overlap_table(channel)
    async with repo._engine.connect() as conn:
        result = await conn.execute(
            sa.select(table.c.channel_name, table.c.overlap_count, table.c.total_chatters)
            .where(table.c.iteration == iteration)
            .order_by(table.c.channel_name)
        )
        return [tuple(row) for row in result]


def _entry(channel: str, other: str, overlap: int, total: int) -> OverlapEntry:
    return OverlapEntry(channel=channel, other_channel=other, overlap_count=overlap, total_chatters=total)


def _profile(channel: str) -> ChannelProfile:
    return ChannelProfile(
        channel=channel,
        channel_id=f"{len(channel)}42",
        description=f"{channel} streams",
        creation_date=datetime(2015, 6, 1, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
class TestSchema:
    async def test_init_creates_static_tables(self, repository: OverlapRepository) -> None:
        assert {"users", "streams", "iterations"} <= await _table_names(repository)

    async def test_channel_table_created_once(self, repository: OverlapRepository) -> None:
        await repository.ensure_channel_table("alpha")
        await repository.ensure_channel_table("ALPHA")

        names = await _table_names(repository)
        assert "overlap_alpha" in names
        assert "alpha" not in names

    async def test_channel_named_like_static_table_does_not_collide(
        self, repository: OverlapRepository
    ) -> None:
        await repository.ensure_channel_table("users")

        assert "overlap_users" in await _table_names(repository)

    async def test_invalid_channel_login_is_rejected(self, repository: OverlapRepository) -> None:
        with pytest.raises(PersistenceError):
            await repository.ensure_channel_table("drop table;")


@pytest.mark.asyncio
class TestOverlapRows:
    async def test_rows_round_trip(self, repository: OverlapRepository) -> None:
        await repository.ensure_channel_table("alpha")

        await repository.write_overlap_rows(
            "alpha", 3, [_entry("alpha", "bravo", 2, 3), _entry("alpha", "charlie", 0, 3)]
        )

        assert await _overlap_rows(repository, "alpha", 3) == [
            ("bravo", 2, 3),
            ("charlie", 0, 3),
        ]

    async def test_rewriting_an_iteration_replaces_rows(self, repository: OverlapRepository) -> None:
        await repository.ensure_channel_table("alpha")
        await repository.write_overlap_rows("alpha", 3, [_entry("alpha", "bravo", 1, 1)])

        await repository.write_overlap_rows("alpha", 3, [_entry("alpha", "bravo", 2, 4)])

        assert await _overlap_rows(repository, "alpha", 3) == [("bravo", 2, 4)]

    async def test_other_iterations_are_kept(self, repository: OverlapRepository) -> None:
        await repository.ensure_channel_table("alpha")
        await repository.write_overlap_rows("alpha", 1, [_entry("alpha", "bravo", 1, 1)])

        await repository.write_overlap_rows("alpha", 2, [_entry("alpha", "bravo", 5, 9)])

        assert len(await _overlap_rows(repository, "alpha", 1)) == 1
        assert len(await _overlap_rows(repository, "alpha", 2)) == 1


@pytest.mark.asyncio
class TestMetadata:
    async def test_unregistered_channels_shrinks_after_write(
        self, repository: OverlapRepository
    ) -> None:
        assert await repository.unregistered_channels(["Alpha", "bravo", "alpha"]) == ["alpha", "bravo"]

        await repository.write_channel_metadata([_profile("alpha")])

        assert await repository.unregistered_channels(["alpha", "bravo"]) == ["bravo"]

    async def test_registered_channels_survive_restart(self, repository: OverlapRepository) -> None:
        await repository.write_channel_metadata([_profile("alpha"), _profile("bravo")])

        restarted = OverlapRepository(repository._engine)
        loaded = await restarted.load_registered_channels()

        assert loaded == 2
        assert await restarted.unregistered_channels(["alpha", "charlie"]) == ["charlie"]

    async def test_known_profiles_are_not_inserted_twice(self, repository: OverlapRepository) -> None:
        await repository.write_channel_metadata([_profile("alpha")])

        await repository.write_channel_metadata([_profile("alpha")])

        async with repository._engine.connect() as conn:
            result = await conn.execute(sa.text("SELECT COUNT(*) FROM users"))
            assert result.scalar_one() == 1

    async def test_stream_samples_idempotent_per_iteration(
        self, repository: OverlapRepository
    ) -> None:
        channels = [make_top_channel("alpha"), make_top_channel("bravo")]

        await repository.write_stream_samples(7, channels)
        await repository.write_stream_samples(7, channels)
        await repository.write_stream_samples(8, channels[:1])

        assert await _count(repository, StreamSample.__table__) == 3

    async def test_iteration_marker_rewrite_does_not_conflict(
        self, repository: OverlapRepository
    ) -> None:
        now = datetime.now(timezone.utc)

        await repository.write_iteration_marker(4, now)
        await repository.write_iteration_marker(4, now)

        assert await _count(repository, IterationMarker.__table__) == 1


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class _FailingEngine:
    """Stand-in engine whose transactions fail with *exc* on entry."""

    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    @asynccontextmanager
    async def begin(self):
        raise self._exc
        yield  # pragma: no cover


@pytest.mark.asyncio
class TestErrorMapping:
    async def test_operational_error_is_transient(self) -> None:
        repo = OverlapRepository(
            _FailingEngine(OperationalError("INSERT", {}, Exception("connection lost")))
        )

        with pytest.raises(TransientWriteError) as exc_info:
            await repo.write_iteration_marker(1, datetime.now(timezone.utc))

        assert exc_info.value.table == "iterations"

    async def test_integrity_error_is_not_transient(self) -> None:
        repo = OverlapRepository(
            _FailingEngine(IntegrityError("INSERT", {}, Exception("constraint failed")))
        )

        with pytest.raises(PersistenceError) as exc_info:
            await repo.write_iteration_marker(1, datetime.now(timezone.utc))

        assert not isinstance(exc_info.value, TransientWriteError)
