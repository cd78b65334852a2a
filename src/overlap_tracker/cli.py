"""Command-line entry point for the overlap tracker.

Usage:
    # Collect until interrupted (SIGINT / SIGTERM stop cleanly)
    overlap-tracker run

    # Collect three passes and exit
    overlap-tracker run --max-passes 3

    # Print the persisted iteration state
    overlap-tracker state

Environment:
    Requires DATABASE_URL, TWITCH_CLIENT_ID and TWITCH_CLIENT_SECRET.
    See :class:`overlap_tracker.config.settings.Settings` for the optional
    variables.

Exit status is 0 after a clean stop, 1 after a fatal tracker error (logged
at ``critical``) and 2 on invalid configuration.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import sys
from typing import Optional, Sequence

import structlog
from pydantic import ValidationError

from overlap_tracker.config.settings import Settings, get_settings
from overlap_tracker.core.database import build_engine
from overlap_tracker.core.exceptions import OverlapTrackerError
from overlap_tracker.core.logging_config import configure_logging
from overlap_tracker.tracker import (
    IterationController,
    IterationStateStore,
    OverlapRepository,
    RoundRobinScheduler,
    SnapshotStore,
)
from overlap_tracker.upstream.twitch import TwitchClient

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="overlap-tracker",
        description="Track audience overlap between the top live Twitch channels",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Collect audiences and flush overlaps")
    run.add_argument(
        "--max-passes",
        type=int,
        default=None,
        help="Stop after this many completed passes (default: run until interrupted)",
    )

    subparsers.add_parser("state", help="Print the persisted iteration state")
    return parser


async def run_tracker(settings: Settings, max_passes: Optional[int] = None) -> None:
    """Wire the tracker components from *settings* and run the controller.

    Raises:
        OverlapTrackerError: Any fatal error raised by the controller.
    """
    engine = build_engine(settings.database_url)
    repository = OverlapRepository(engine)
    snapshots = SnapshotStore(settings.snapshot_dir)
    state_store = IterationStateStore(settings.state_path)

    try:
        async with TwitchClient.from_settings(settings) as client:
            await repository.init()
            scheduler = RoundRobinScheduler(
                client,
                snapshots,
                pass_budget_seconds=settings.pass_budget_seconds,
                max_fetch_attempts=settings.max_fetch_attempts,
                max_not_found_attempts=settings.max_not_found_attempts,
            )
            controller = IterationController(
                channel_source=client,
                scheduler=scheduler,
                snapshots=snapshots,
                sink=repository,
                state_store=state_store,
                flush_threshold=settings.flush_threshold,
                write_retry_attempts=settings.write_retry_attempts,
            )

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                # add_signal_handler is unavailable on Windows event loops.
                with contextlib.suppress(NotImplementedError):
                    loop.add_signal_handler(sig, controller.stop)

            await controller.run(max_passes=max_passes)
    finally:
        await repository.dispose()


def show_state(settings: Settings) -> int:
    store = IterationStateStore(settings.state_path)
    try:
        state = store.read()
    except OverlapTrackerError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    if state is None:
        print(f"No iteration state at {store.path}")
        return 0
    print(state.model_dump_json(indent=2))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"ERROR: invalid configuration:\n{exc}", file=sys.stderr)
        return 2

    configure_logging(args.log_level or settings.log_level)

    if args.command == "state":
        return show_state(settings)

    try:
        asyncio.run(run_tracker(settings, max_passes=args.max_passes))
    except OverlapTrackerError as exc:
        logger.critical(
            "tracker.fatal_error",
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
