"""Iteration/flush controller: the top-level collection state machine.

States::

    IDLE ──start()──▶ RESTARTING ──▶ COLLECTING ──pass complete──▶ DRAINING
                          ▲                                          │
                          │                   below flush threshold  │
                          ├──────────────────────────────────────────┤
                          │                   at/above threshold     ▼
                          └──────────────────────────────────── FLUSHING

DRAINING waits for the fetches still in flight, so every snapshot of the
pass is recorded before a flush can clear the store.  It then increments
``iteration`` and persists it (durability point), then counts the pass
towards the next flush.  FLUSHING marks the state file, writes the overlap
rows, clears the snapshot store and only then resets
``iterations_since_flush`` to 0.

Any error while draining or flushing, other than a transient failure of a
single write that succeeds on retry, is raised as :class:`PassIntegrityError`.
Failing to fetch the top channels raises :class:`UpstreamUnavailableError`.
Both are fatal: the caller logs them and terminates the process, and the
next process resumes from the last persisted :class:`IterationState`.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from overlap_tracker.core.exceptions import (
    OverlapTrackerError,
    PassIntegrityError,
    TransientFetchError,
    TransientWriteError,
)
from overlap_tracker.core.logging_config import bind_iteration
from overlap_tracker.tracker.base import ChannelSource, OverlapSink, normalize_channel
from overlap_tracker.tracker.overlaps import build_overlap_entries, compute_overlaps
from overlap_tracker.tracker.scheduler import RoundRobinScheduler
from overlap_tracker.tracker.snapshots import SnapshotStore
from overlap_tracker.tracker.state import IterationState, IterationStateStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ControllerState(str, Enum):
    """Phase of the collection state machine."""

    IDLE = "idle"
    COLLECTING = "collecting"
    DRAINING = "draining"
    RESTARTING = "restarting"
    FLUSHING = "flushing"
    STOPPED = "stopped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IterationController:
    """Drives passes, counts iterations and triggers overlap flushes.

    Args:
        channel_source: Supplies the top channels and their profiles.
        scheduler: Round-robin scheduler writing into *snapshots*.
        snapshots: Audience store for the current flush window.
        sink: Durable writes for metadata and overlap rows.
        state_store: File holding the :class:`IterationState`.
        flush_threshold: Completed passes between two flushes.
        write_retry_attempts: Attempts for a write failing with
            :class:`TransientWriteError`.
        retry_delay_seconds: Pause between two write attempts.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        *,
        channel_source: ChannelSource,
        scheduler: RoundRobinScheduler,
        snapshots: SnapshotStore,
        sink: OverlapSink,
        state_store: IterationStateStore,
        flush_threshold: int,
        write_retry_attempts: int = 2,
        retry_delay_seconds: float = 1.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if flush_threshold < 1:
            raise ValueError("flush_threshold must be at least 1")
        self._channel_source = channel_source
        self._scheduler = scheduler
        self._snapshots = snapshots
        self._sink = sink
        self._state_store = state_store
        self._flush_threshold = flush_threshold
        self._write_retry_attempts = max(1, write_retry_attempts)
        self._retry_delay = retry_delay_seconds
        self._clock = clock

        self._phase = ControllerState.IDLE
        self._state = IterationState()
        self._tracked: list[str] = []
        self._window_channels: set[str] = set()
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def phase(self) -> ControllerState:
        return self._phase

    @property
    def iteration_state(self) -> IterationState:
        return self._state

    @property
    def tracked_channels(self) -> list[str]:
        """Channels seeded into the current pass."""
        return list(self._tracked)

    @property
    def window_channels(self) -> list[str]:
        """Channels tracked in any pass since the last flush."""
        return sorted(self._window_channels)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Restore the durable state and begin the first pass.

        Snapshot artifacts left by the previous process are reloaded.  If
        that process died while flushing, the flush is completed before
        collection resumes.

        Raises:
            IterationStateError: If the state file exists but is unreadable.
            PassIntegrityError: If resuming an interrupted flush fails.
            UpstreamUnavailableError: If the top channels cannot be fetched.
        """
        if self._phase is not ControllerState.IDLE:
            raise RuntimeError(f"controller already started (phase={self._phase.value})")

        restored = self._state_store.read()
        if restored is None:
            logger.info("controller.fresh_state", path=str(self._state_store.path))
            restored = IterationState()
        self._state = restored
        bind_iteration(self._state.iteration)

        reloaded = self._snapshots.load_artifacts()
        self._window_channels.update(self._snapshots.channels())
        logger.info(
            "controller.state_restored",
            iterations_since_flush=self._state.iterations_since_flush,
            flush_in_progress=self._state.flush_in_progress,
            reloaded_channels=reloaded,
        )

        if self._state.flush_in_progress:
            logger.warning("controller.resuming_interrupted_flush", channels=reloaded)
            await self._guarded(self._flush())

        await self.start_pass()

    async def run(self, max_passes: Optional[int] = None) -> None:
        """Collect passes until :meth:`stop` is called or *max_passes* completed.

        Calls :meth:`start` first when the controller is still idle.
        """
        if self._phase is ControllerState.IDLE:
            await self.start()

        completed = 0
        try:
            while not self._stop_event.is_set():
                if not await self._wait_for_pass():
                    break
                await self.complete_pass()
                completed += 1
                if max_passes is not None and completed >= max_passes:
                    break
                await self.start_pass()
        finally:
            await self._scheduler.stop()
            self._phase = ControllerState.STOPPED
            logger.info("controller.stopped", passes=completed)

    def stop(self) -> None:
        """Ask :meth:`run` to return after the current phase."""
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def start_pass(self) -> None:
        """RESTARTING → COLLECTING: select channels and seed the scheduler.

        Raises:
            UpstreamUnavailableError: If the top channels cannot be fetched.
        """
        self._phase = ControllerState.RESTARTING
        top = await self._channel_source.fetch_top_channels()
        channels = list(dict.fromkeys(normalize_channel(c.channel) for c in top))

        await self._register_new_channels(channels)
        upcoming = self._state.iteration + 1
        await self._write_with_retry(
            "stream samples",
            lambda: self._sink.write_stream_samples(upcoming, top),
        )

        self._tracked = channels
        self._window_channels.update(channels)
        self._scheduler.begin(channels)
        self._phase = ControllerState.COLLECTING
        logger.info("controller.pass_started", pass_iteration=upcoming, channels=len(channels))

    async def complete_pass(self) -> bool:
        """COLLECTING → DRAINING → (RESTARTING | FLUSHING).

        Returns:
            ``True`` if the pass triggered a flush.

        Raises:
            PassIntegrityError: If any durable write fails.
        """
        return await self._guarded(self._drain())

    async def _drain(self) -> bool:
        self._phase = ControllerState.DRAINING
        await self._scheduler.drain()
        self._scheduler.raise_for_failure()

        iteration = self._state.iteration + 1
        self._persist(self._state.model_copy(update={"iteration": iteration}))
        bind_iteration(iteration)

        await self._write_with_retry(
            "iteration marker",
            lambda: self._sink.write_iteration_marker(iteration, self._clock()),
        )

        since_flush = self._state.iterations_since_flush + 1
        if since_flush < self._flush_threshold:
            self._persist(self._state.model_copy(update={"iterations_since_flush": since_flush}))
            self._phase = ControllerState.RESTARTING
            logger.info(
                "controller.pass_drained",
                iterations_since_flush=since_flush,
                flush_threshold=self._flush_threshold,
            )
            return False

        self._persist(
            self._state.model_copy(
                update={"iterations_since_flush": since_flush, "flush_in_progress": True}
            )
        )
        await self._flush()
        return True

    async def _flush(self) -> None:
        self._phase = ControllerState.FLUSHING
        iteration = self._state.iteration
        if not self._state.flush_in_progress:
            self._persist(self._state.model_copy(update={"flush_in_progress": True}))

        channels = sorted(self._window_channels | set(self._snapshots.channels()))
        overlaps = await compute_overlaps(self._snapshots.read_all(), channels)
        entries = build_overlap_entries(overlaps, self._snapshots.totals())

        # Channels never fetched in this window keep zero overlaps in the
        # other channels' rows but get no table of their own.
        written = 0
        for channel in channels:
            if channel not in self._snapshots:
                logger.info("controller.channel_without_snapshot", channel=channel)
                continue
            await self._write_with_retry(
                f"overlap table {channel}",
                lambda ch=channel: self._sink.ensure_channel_table(ch),
            )
            await self._write_with_retry(
                f"overlap rows {channel}",
                lambda ch=channel: self._sink.write_overlap_rows(ch, iteration, entries[ch]),
            )
            written += 1

        self._snapshots.clear()
        self._window_channels.clear()
        self._persist(
            self._state.model_copy(update={"iterations_since_flush": 0, "flush_in_progress": False})
        )
        self._phase = ControllerState.RESTARTING
        logger.info("controller.flushed", channels=len(channels), tables_written=written)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _wait_for_pass(self) -> bool:
        """Wait for the scheduler's pass-complete signal; ``False`` if stopped first."""
        waiter = asyncio.ensure_future(self._scheduler.wait_pass_complete())
        stopper = asyncio.ensure_future(self._stop_event.wait())
        done, pending = await asyncio.wait(
            {waiter, stopper},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        return waiter in done and not self._stop_event.is_set()

    async def _register_new_channels(self, channels: list[str]) -> None:
        new_channels = await self._sink.unregistered_channels(channels)
        if not new_channels:
            return
        try:
            profiles = await self._channel_source.fetch_profiles(new_channels)
        except TransientFetchError as exc:
            logger.warning(
                "controller.profile_fetch_failed",
                channels=len(new_channels),
                error=str(exc),
            )
            return
        await self._write_with_retry(
            "channel metadata",
            lambda: self._sink.write_channel_metadata(profiles),
        )
        logger.info("controller.channels_registered", channels=len(profiles))

    def _persist(self, state: IterationState) -> None:
        self._state = self._state_store.write(state)

    async def _write_with_retry(self, what: str, write: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await write()
            except TransientWriteError as exc:
                if attempt >= self._write_retry_attempts:
                    raise
                logger.warning(
                    "controller.write_retry",
                    target=what,
                    attempt=attempt,
                    error=str(exc),
                )
                attempt += 1
                await asyncio.sleep(self._retry_delay)

    async def _guarded(self, phase: Awaitable[T]) -> T:
        """Run a draining/flushing phase, converting failures to :class:`PassIntegrityError`."""
        try:
            return await phase
        except PassIntegrityError:
            raise
        except OverlapTrackerError as exc:
            raise PassIntegrityError(
                f"{self._phase.value} failed: {exc}",
                iteration=self._state.iteration,
            ) from exc


__all__ = ["ControllerState", "IterationController"]
