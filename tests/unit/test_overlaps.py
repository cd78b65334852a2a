"""Unit tests for compute_overlaps() and build_overlap_entries()."""

from __future__ import annotations

import pytest

from overlap_tracker.tracker.overlaps import build_overlap_entries, compute_overlaps


def _as_dict(rows: list[tuple[str, int]]) -> dict[str, int]:
    return dict(rows)


@pytest.mark.asyncio
class TestComputeOverlaps:
    async def test_pairwise_intersections(self) -> None:
        """A={u1,u2,u3}, B={u2,u3,u4}, C={u5}: A-B share 2, C shares nothing."""
        snapshots = {
            "a": frozenset({"u1", "u2", "u3"}),
            "b": frozenset({"u2", "u3", "u4"}),
            "c": frozenset({"u5"}),
        }

        overlaps = await compute_overlaps(snapshots)

        assert _as_dict(overlaps["a"]) == {"b": 2, "c": 0}
        assert _as_dict(overlaps["b"]) == {"a": 2, "c": 0}
        assert _as_dict(overlaps["c"]) == {"a": 0, "b": 0}

    async def test_relation_is_symmetric(self) -> None:
        snapshots = {
            "a": frozenset({"u1", "u2", "u9"}),
            "b": frozenset({"u2", "u9"}),
            "c": frozenset({"u9", "u1", "u3"}),
        }

        overlaps = {c: _as_dict(rows) for c, rows in (await compute_overlaps(snapshots)).items()}

        for channel, row in overlaps.items():
            for other, count in row.items():
                assert overlaps[other][channel] == count

    async def test_self_pair_is_excluded(self) -> None:
        overlaps = await compute_overlaps({"a": frozenset({"u1"}), "b": frozenset({"u1"})})

        assert [other for other, _ in overlaps["a"]] == ["b"]

    async def test_channel_without_snapshot_gets_zero_overlaps(self) -> None:
        snapshots = {"a": frozenset({"u1"}), "b": frozenset({"u1"})}

        overlaps = await compute_overlaps(snapshots, ["a", "b", "ghost"])

        assert _as_dict(overlaps["ghost"]) == {"a": 0, "b": 0}
        assert _as_dict(overlaps["a"]) == {"b": 1, "ghost": 0}

    async def test_empty_audience_gives_zero(self) -> None:
        overlaps = await compute_overlaps({"a": frozenset(), "b": frozenset({"u1"})})

        assert _as_dict(overlaps["a"]) == {"b": 0}
        assert _as_dict(overlaps["b"]) == {"a": 0}

    async def test_tracked_channels_are_normalized_and_deduplicated(self) -> None:
        snapshots = {"a": frozenset({"u1"}), "b": frozenset({"u1"})}

        overlaps = await compute_overlaps(snapshots, ["A", "b", " a "])

        assert list(overlaps) == ["a", "b"]
        assert _as_dict(overlaps["a"]) == {"b": 1}

    async def test_no_channels_gives_empty_relation(self) -> None:
        assert await compute_overlaps({}) == {}


class TestBuildOverlapEntries:
    def test_entries_carry_channel_total(self) -> None:
        overlaps = {"a": [("b", 2), ("c", 0)], "b": [("a", 2), ("c", 0)]}

        entries = build_overlap_entries(overlaps, {"a": 3, "b": 5})

        assert [(e.other_channel, e.overlap_count, e.total_chatters) for e in entries["a"]] == [
            ("b", 2, 3),
            ("c", 0, 3),
        ]
        assert all(e.channel == "b" and e.total_chatters == 5 for e in entries["b"])

    def test_missing_total_counts_as_zero(self) -> None:
        entries = build_overlap_entries({"ghost": [("a", 0)]}, {})

        assert entries["ghost"][0].total_chatters == 0
