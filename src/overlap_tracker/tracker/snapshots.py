"""Per-channel audience accumulation for the current flush window.

:class:`SnapshotStore` keeps one member set per channel.  Repeated
snapshots of the same channel are merged with set union, so a channel
visited in several passes (or fetched again after a retry) is never
double counted.

Optionally every merged snapshot is mirrored to ``<snapshot_dir>/<channel>.json``
using the layout::

    {"channel": "somechannel", "total_chatters": 3, "chatters": ["a", "b", "c"]}

These artifacts only exist between the first record of a window and the
flush that clears it.  They let an interrupted flush be re-run after a
restart (see :meth:`SnapshotStore.load_artifacts`).  Failing artifact I/O raises
:class:`~overlap_tracker.core.exceptions.PersistenceError`.

The store carries a ``generation`` counter that advances on every
:meth:`~SnapshotStore.clear`.  Fetches started before a flush carry the old
generation and are dropped if they complete afterwards.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import structlog

from overlap_tracker.core.exceptions import PersistenceError
from overlap_tracker.tracker.base import ChatterSnapshot, SnapshotSink, normalize_channel

logger = structlog.get_logger(__name__)


class SnapshotStore(SnapshotSink):
    """Accumulates audience member sets keyed by normalized channel.

    Args:
        snapshot_dir: Directory for JSON artifacts, or ``None`` to keep
            everything in memory.
    """

    def __init__(self, snapshot_dir: str | os.PathLike[str] | None = None) -> None:
        self._members: dict[str, frozenset[str]] = {}
        self._generation = 0
        self._snapshot_dir = Path(snapshot_dir) if snapshot_dir is not None else None
        if self._snapshot_dir is not None:
            try:
                self._snapshot_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise PersistenceError(
                    f"cannot create snapshot directory {self._snapshot_dir}: {exc}"
                ) from exc

    # ------------------------------------------------------------------
    # SnapshotSink
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    def record(self, snapshot: ChatterSnapshot, generation: int | None = None) -> bool:
        """Merge *snapshot* into the current window.

        The union and the total are computed before the table is touched,
        so readers never observe a half-merged entry.

        Args:
            snapshot: Freshly fetched audience.
            generation: Generation observed when the fetch was issued.
                ``None`` skips the staleness check.

        Returns:
            ``True`` if the snapshot was merged, ``False`` if it belonged to
            an already flushed window.

        Raises:
            PersistenceError: If the artifact cannot be written.  The
                in-memory entry is left unchanged in that case.
        """
        if generation is not None and generation != self._generation:
            logger.warning(
                "snapshots.stale_write_dropped",
                channel=snapshot.channel,
                snapshot_generation=generation,
                current_generation=self._generation,
            )
            return False

        channel = normalize_channel(snapshot.channel)
        existing = self._members.get(channel)
        merged = snapshot.members if existing is None else existing | snapshot.members
        self._write_artifact(channel, merged)
        self._members[channel] = merged

        if existing is not None:
            logger.debug(
                "snapshots.merged",
                channel=channel,
                previous=len(existing),
                fetched=len(snapshot.members),
                total=len(merged),
            )
        return True

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def total_for(self, channel: str) -> int:
        """Return the audience size last recorded for *channel* (0 if never recorded)."""
        return len(self._members.get(normalize_channel(channel), frozenset()))

    def totals(self) -> dict[str, int]:
        return {channel: len(members) for channel, members in self._members.items()}

    def read_all(self) -> Mapping[str, frozenset[str]]:
        """Return a read-only view of the member sets.

        The member sets are immutable; the view is a copy of the table so
        that later records do not show up in it.
        """
        return MappingProxyType(dict(self._members))

    def channels(self) -> list[str]:
        return sorted(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, channel: object) -> bool:
        return isinstance(channel, str) and normalize_channel(channel) in self._members

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Drop every entry, remove the artifacts and start a new generation."""
        dropped = len(self._members)
        self._members.clear()
        self._generation += 1
        self.purge_artifacts()
        logger.debug("snapshots.cleared", dropped=dropped, generation=self._generation)

    def purge_artifacts(self) -> None:
        """Delete all artifact files without touching the in-memory table."""
        if self._snapshot_dir is None:
            return
        try:
            for path in self._snapshot_dir.glob("*.json"):
                path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(
                f"cannot purge snapshot artifacts in {self._snapshot_dir}: {exc}"
            ) from exc

    def load_artifacts(self) -> int:
        """Merge artifacts left on disk by a previous process into the store.

        Unreadable files are skipped with a warning.

        Returns:
            Number of channels loaded.
        """
        if self._snapshot_dir is None:
            return 0
        loaded = 0
        for path in sorted(self._snapshot_dir.glob("*.json")):
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
                snapshot = ChatterSnapshot.from_members(payload["channel"], payload["chatters"])
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("snapshots.artifact_unreadable", path=str(path), error=str(exc))
                continue
            self.record(snapshot)
            loaded += 1
        return loaded

    def _write_artifact(self, channel: str, members: frozenset[str]) -> None:
        if self._snapshot_dir is None:
            return
        path = self._snapshot_dir / f"{channel}.json"
        tmp_path = path.with_suffix(".json.tmp")
        payload = {
            "channel": channel,
            "total_chatters": len(members),
            "chatters": sorted(members),
        }
        try:
            tmp_path.write_text(json.dumps(payload), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise PersistenceError(f"cannot write snapshot artifact {path}: {exc}") from exc
