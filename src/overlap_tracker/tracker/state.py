"""Durable iteration counters.

The controller persists :class:`IterationState` after every completed pass
and around every flush.  The file is replaced atomically so a crash can
only ever leave the previous or the new state on disk, never a partial
write.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from overlap_tracker.core.exceptions import IterationStateError

logger = structlog.get_logger(__name__)


class IterationState(BaseModel):
    """Progress of the collection loop.

    Attributes:
        iteration: Number of completed passes.
        iterations_since_flush: Completed passes whose snapshots have not
            been flushed yet.  Reset to 0 only after a flush completes.
        flush_in_progress: Set right before a flush starts writing and
            cleared once it finished; still set on startup means the
            previous process died mid-flush.
        updated_at: When the state was last written.
    """

    model_config = ConfigDict(extra="forbid")

    iteration: int = Field(default=0, ge=0)
    iterations_since_flush: int = Field(default=0, ge=0)
    flush_in_progress: bool = False
    updated_at: Optional[datetime] = None


class IterationStateStore:
    """JSON file holding the :class:`IterationState`.

    Args:
        path: Location of the state file.  Parent directories are created
            on first write.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> IterationState | None:
        """Load the persisted state.

        Returns:
            The state, or ``None`` if no state has ever been written.

        Raises:
            IterationStateError: If the file exists but cannot be read or
                does not contain a valid state.
        """
        if not self._path.exists():
            return None
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise IterationStateError(
                f"cannot read iteration state: {exc}", path=str(self._path)
            ) from exc
        try:
            return IterationState.model_validate_json(raw)
        except ValidationError as exc:
            raise IterationStateError(
                f"iteration state is corrupt: {exc.error_count()} validation error(s)",
                path=str(self._path),
            ) from exc

    def write(self, state: IterationState) -> IterationState:
        """Persist *state*, stamping ``updated_at``.

        Raises:
            IterationStateError: If the file cannot be written.
        """
        stamped = state.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as fh:
                fh.write(stamped.model_dump_json())
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise IterationStateError(
                f"cannot write iteration state: {exc}", path=str(self._path)
            ) from exc
        logger.debug(
            "state.written",
            iteration=stamped.iteration,
            iterations_since_flush=stamped.iterations_since_flush,
            flush_in_progress=stamped.flush_in_progress,
        )
        return stamped
