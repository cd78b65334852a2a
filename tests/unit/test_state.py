"""Unit tests for IterationStateStore."""

from __future__ import annotations

import json

import pytest

from overlap_tracker.core.exceptions import IterationStateError
from overlap_tracker.tracker.state import IterationState, IterationStateStore


class TestIterationStateStore:
    def test_missing_file_reads_as_none(self, state_store: IterationStateStore) -> None:
        assert state_store.read() is None

    def test_write_then_read(self, state_store: IterationStateStore) -> None:
        written = state_store.write(IterationState(iteration=5, iterations_since_flush=1))

        restored = state_store.read()

        assert restored is not None
        assert restored.iteration == 5
        assert restored.iterations_since_flush == 1
        assert restored.flush_in_progress is False
        assert restored.updated_at == written.updated_at

    def test_write_stamps_updated_at(self, state_store: IterationStateStore) -> None:
        written = state_store.write(IterationState())

        assert written.updated_at is not None

    def test_write_creates_parent_directories(self, tmp_path) -> None:
        store = IterationStateStore(tmp_path / "a" / "b" / "state.json")

        store.write(IterationState(iteration=1))

        assert store.path.exists()

    def test_write_leaves_no_temporary_file(self, state_store: IterationStateStore) -> None:
        state_store.write(IterationState(iteration=2))

        assert [p.name for p in state_store.path.parent.iterdir()] == [state_store.path.name]

    def test_corrupt_file_raises(self, state_store: IterationStateStore) -> None:
        state_store.path.parent.mkdir(parents=True)
        state_store.path.write_text("{corrupt", encoding="utf-8")

        with pytest.raises(IterationStateError):
            state_store.read()

    def test_invalid_values_raise(self, state_store: IterationStateStore) -> None:
        state_store.path.parent.mkdir(parents=True)
        state_store.path.write_text(
            json.dumps({"iteration": -1, "iterations_since_flush": 0}),
            encoding="utf-8",
        )

        with pytest.raises(IterationStateError):
            state_store.read()

    def test_unknown_fields_raise(self, state_store: IterationStateStore) -> None:
        state_store.path.parent.mkdir(parents=True)
        state_store.path.write_text(
            json.dumps({"iteration": 1, "iterations_since_flush": 0, "surprise": True}),
            encoding="utf-8",
        )

        with pytest.raises(IterationStateError):
            state_store.read()
