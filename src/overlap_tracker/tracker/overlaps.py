"""Pairwise audience overlap between tracked channels.

For every tracked channel ``c`` and every other tracked channel ``c'`` the
overlap is ``|members(c) ∩ members(c')|``.  The relation is symmetric in
value but returned directionally: one entry per ordered pair.

Channels that are tracked but have no recorded snapshot are treated as
having an empty audience; they get zero overlaps instead of being
excluded.  Whether zero rows are persisted is the caller's decision.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Mapping

import structlog

from overlap_tracker.tracker.base import OverlapEntry, normalize_channel

logger = structlog.get_logger(__name__)

_EMPTY: frozenset[str] = frozenset()


async def _overlaps_for_channel(
    channel: str,
    others: list[str],
    snapshots: Mapping[str, frozenset[str]],
) -> list[tuple[str, int]]:
    """Overlap of *channel* with each channel in *others* (self excluded)."""
    members = snapshots.get(channel, _EMPTY)
    result: list[tuple[str, int]] = []
    for other in others:
        if other == channel:
            continue
        if not members:
            result.append((other, 0))
            continue
        result.append((other, len(members & snapshots.get(other, _EMPTY))))
    return result


async def compute_overlaps(
    snapshots: Mapping[str, frozenset[str]],
    channels: Iterable[str] | None = None,
) -> dict[str, list[tuple[str, int]]]:
    """Compute the directional overlap relation.

    Each channel's row is computed in its own task; the tasks only read
    *snapshots*, which must not be mutated until this coroutine returns.

    Args:
        snapshots: Read-only mapping of channel to member set.
        channels: The tracked channel set.  Defaults to the channels present
            in *snapshots*.

    Returns:
        Mapping of channel to ``[(other_channel, overlap_count), ...]`` in
        the order of *channels*.
    """
    if channels is None:
        tracked = sorted(snapshots)
    else:
        tracked = list(dict.fromkeys(normalize_channel(c) for c in channels))

    rows = await asyncio.gather(
        *(_overlaps_for_channel(channel, tracked, snapshots) for channel in tracked)
    )
    overlaps = dict(zip(tracked, rows))
    logger.debug(
        "overlaps.computed",
        channels=len(tracked),
        pairs=sum(len(r) for r in rows),
    )
    return overlaps


def build_overlap_entries(
    overlaps: Mapping[str, list[tuple[str, int]]],
    totals: Mapping[str, int],
) -> dict[str, list[OverlapEntry]]:
    """Attach per-channel totals to the overlap relation.

    Args:
        overlaps: Output of :func:`compute_overlaps`.
        totals: Audience size per channel; missing channels count as 0.

    Returns:
        Mapping of channel to its :class:`OverlapEntry` rows.
    """
    entries: dict[str, list[OverlapEntry]] = {}
    for channel, pairs in overlaps.items():
        total = totals.get(channel, 0)
        entries[channel] = [
            OverlapEntry(
                channel=channel,
                other_channel=other,
                overlap_count=count,
                total_chatters=total,
            )
            for other, count in pairs
        ]
    return entries
