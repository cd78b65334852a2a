"""Round-robin audience collection over the tracked channels.

One pass visits every channel seeded by :meth:`RoundRobinScheduler.begin`.
Ticks fire every ``pass_budget_seconds / len(channels)`` seconds, so a pass
without failures completes within the budget however many channels are
tracked.  Each tick dequeues one channel and starts its audience fetch as a
separate task; fetches may complete in any order and after later ticks.

A failed fetch puts the channel back at the *tail* of the queue.  Each
channel has a per-pass attempt budget: ``max_fetch_attempts`` for transient
failures and the smaller ``max_not_found_attempts`` once the channel has
been reported offline or unknown.  A channel that exhausts its budget is
dropped for the remainder of the pass.

A snapshot that cannot be recorded aborts the pass: the error is kept and
raised again by :meth:`RoundRobinScheduler.raise_for_failure`.

All queue mutations happen in tick and fetch-completion code running on the
single event loop, so no locking is needed.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Optional

import structlog

from overlap_tracker.core.exceptions import (
    ChannelFetchError,
    ChannelNotLiveError,
    OverlapTrackerError,
)
from overlap_tracker.tracker.base import AudienceSource, SnapshotSink, normalize_channel

logger = structlog.get_logger(__name__)


class RoundRobinScheduler:
    """Visits each tracked channel once per pass at a fixed tick interval.

    Args:
        source: Fetches the audience of one channel.
        sink: Receives successful snapshots.
        pass_budget_seconds: Wall-clock budget for one pass.
        max_fetch_attempts: Attempts per channel and pass on transient errors.
        max_not_found_attempts: Attempts per channel and pass once it has
            been reported offline or unknown.
        on_pass_complete: Optional callback invoked once per pass when the
            queue is found empty.
    """

    def __init__(
        self,
        source: AudienceSource,
        sink: SnapshotSink,
        *,
        pass_budget_seconds: float,
        max_fetch_attempts: int = 5,
        max_not_found_attempts: int = 2,
        on_pass_complete: Optional[Callable[[], None]] = None,
    ) -> None:
        if pass_budget_seconds <= 0:
            raise ValueError("pass_budget_seconds must be positive")
        self._source = source
        self._sink = sink
        self._pass_budget = pass_budget_seconds
        self._max_fetch_attempts = max_fetch_attempts
        self._max_not_found_attempts = max_not_found_attempts
        self._on_pass_complete = on_pass_complete

        self._queue: deque[str] = deque()
        self._interval: float = 0.0
        self._attempts: dict[str, int] = {}
        self._not_found: set[str] = set()
        self._dropped: list[str] = []
        self._pass_id = 0
        self._completed = True
        self._complete_event = asyncio.Event()
        self._ticker: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._failure: OverlapTrackerError | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def interval(self) -> float:
        """Seconds between ticks for the current pass."""
        return self._interval

    @property
    def queue(self) -> tuple[str, ...]:
        return tuple(self._queue)

    @property
    def dropped(self) -> list[str]:
        """Channels abandoned in the current pass after exhausting their attempts."""
        return list(self._dropped)

    @property
    def is_running(self) -> bool:
        return not self._completed

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Pass lifecycle
    # ------------------------------------------------------------------

    def begin(self, channels: list[str], *, start_ticking: bool = True) -> None:
        """Seed the queue with *channels* and start ticking.

        Must be called from within a running event loop when
        *start_ticking* is true.

        Raises:
            RuntimeError: If the previous pass has not completed.
            ValueError: If *channels* is empty.
        """
        if self.is_running:
            raise RuntimeError("a pass is already in progress")
        seeded = list(dict.fromkeys(normalize_channel(c) for c in channels))
        if not seeded:
            raise ValueError("cannot begin a pass without channels")

        self._pass_id += 1
        self._queue = deque(seeded)
        self._attempts = {}
        self._not_found = set()
        self._dropped = []
        self._failure = None
        self._completed = False
        self._complete_event = asyncio.Event()
        self._interval = self._pass_budget / len(seeded)

        logger.info(
            "scheduler.pass_started",
            channels=len(seeded),
            budget_seconds=self._pass_budget,
            interval_seconds=round(self._interval, 4),
        )
        if start_ticking:
            self._ticker = asyncio.create_task(self._tick_loop(self._pass_id))

    async def wait_pass_complete(self) -> None:
        """Block until the current pass signals completion."""
        await self._complete_event.wait()

    async def drain(self) -> None:
        """Wait for every fetch that is still in flight.

        Completion is signalled once the queue is empty, which can be before
        the last fetches have returned.  Their snapshots are only recorded
        after this returns.
        """
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def raise_for_failure(self) -> None:
        """Re-raise the error that aborted the current pass, if any."""
        if self._failure is not None:
            raise self._failure

    async def stop(self) -> None:
        """Cancel ticking and outstanding fetches (shutdown only)."""
        tasks: list[asyncio.Task[None]] = list(self._in_flight)
        if self._ticker is not None and not self._ticker.done():
            tasks.append(self._ticker)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._ticker = None
        self._completed = True
        self._queue.clear()

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    async def _tick_loop(self, pass_id: int) -> None:
        while pass_id == self._pass_id and not self._completed:
            await asyncio.sleep(self._interval)
            self.on_tick()

    def on_tick(self) -> None:
        """Handle one tick: signal completion or start the next fetch."""
        if self._completed:
            return

        if not self._queue:
            self._completed = True
            logger.info(
                "scheduler.pass_complete",
                dropped=len(self._dropped),
                in_flight=len(self._in_flight),
            )
            self._complete_event.set()
            if self._on_pass_complete is not None:
                self._on_pass_complete()
            return

        channel = self._queue.popleft()
        self._attempts[channel] = self._attempts.get(channel, 0) + 1
        task = asyncio.create_task(
            self._fetch(channel, self._pass_id, self._sink.generation)
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _fetch(self, channel: str, pass_id: int, generation: int) -> None:
        try:
            snapshot = await self._source.fetch_audience(channel)
        except ChannelNotLiveError as exc:
            self._not_found.add(channel)
            self._handle_failure(channel, pass_id, exc)
        except ChannelFetchError as exc:
            self._handle_failure(channel, pass_id, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("scheduler.fetch_crashed", channel=channel)
            self._handle_failure(channel, pass_id, exc)
        else:
            try:
                recorded = self._sink.record(snapshot, generation)
            except OverlapTrackerError as exc:
                self._abort(channel, exc)
                return
            logger.debug(
                "scheduler.fetched",
                channel=channel,
                chatters=snapshot.total_count,
                recorded=recorded,
                remaining=len(self._queue),
            )

    def _handle_failure(self, channel: str, pass_id: int, exc: Exception) -> None:
        if pass_id != self._pass_id or self._completed:
            logger.warning(
                "scheduler.late_failure_ignored",
                channel=channel,
                error=str(exc),
            )
            return

        limit = (
            self._max_not_found_attempts
            if channel in self._not_found
            else self._max_fetch_attempts
        )
        attempts = self._attempts.get(channel, 0)
        if attempts >= limit:
            self._dropped.append(channel)
            logger.warning(
                "scheduler.channel_dropped",
                channel=channel,
                attempts=attempts,
                error=str(exc),
            )
            return

        self._queue.append(channel)
        logger.warning(
            "scheduler.fetch_failed",
            channel=channel,
            attempts=attempts,
            error=str(exc),
            queue_length=len(self._queue),
        )

    def _abort(self, channel: str, exc: OverlapTrackerError) -> None:
        logger.error("scheduler.record_failed", channel=channel, error=str(exc))
        if self._failure is None:
            self._failure = exc
        self._queue.clear()
        if not self._completed:
            self._completed = True
            self._complete_event.set()
            if self._on_pass_complete is not None:
                self._on_pass_complete()
