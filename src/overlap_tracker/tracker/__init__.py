"""Audience collection and overlap computation.

Public symbols:

- ``RoundRobinScheduler``: visits every tracked channel once per pass.
- ``SnapshotStore``: per-channel audience sets for the current flush window.
- ``compute_overlaps`` / ``build_overlap_entries``: pairwise audience overlap.
- ``IterationController``: pass/iteration/flush state machine.
- ``IterationStateStore``: durable iteration counters.
- ``OverlapRepository``: relational writes for overlap rows and metadata.
"""

from __future__ import annotations

from overlap_tracker.tracker.base import (
    AudienceSource,
    ChannelProfile,
    ChannelSource,
    ChatterSnapshot,
    OverlapEntry,
    OverlapSink,
    SnapshotSink,
    TopChannel,
    normalize_channel,
)
from overlap_tracker.tracker.controller import ControllerState, IterationController
from overlap_tracker.tracker.overlaps import build_overlap_entries, compute_overlaps
from overlap_tracker.tracker.persistence import OverlapRepository
from overlap_tracker.tracker.scheduler import RoundRobinScheduler
from overlap_tracker.tracker.snapshots import SnapshotStore
from overlap_tracker.tracker.state import IterationState, IterationStateStore

__all__ = [
    # interfaces and value types
    "AudienceSource",
    "ChannelSource",
    "SnapshotSink",
    "OverlapSink",
    "ChatterSnapshot",
    "TopChannel",
    "ChannelProfile",
    "OverlapEntry",
    "normalize_channel",
    # collection
    "RoundRobinScheduler",
    "SnapshotStore",
    # overlaps
    "compute_overlaps",
    "build_overlap_entries",
    # iteration lifecycle
    "ControllerState",
    "IterationController",
    "IterationState",
    "IterationStateStore",
    "OverlapRepository",
]
