"""Shared value types and collaborator interfaces for the tracker.

The scheduler, snapshot store and controller only depend on the abstract
classes defined here, never on the concrete Twitch client or database
repository.  Concrete implementations:

- :class:`AudienceSource` / :class:`ChannelSource`
  implemented by :class:`overlap_tracker.upstream.twitch.client.TwitchClient`
- :class:`SnapshotSink` implemented by :class:`overlap_tracker.tracker.snapshots.SnapshotStore`
- :class:`OverlapSink` implemented by :class:`overlap_tracker.tracker.persistence.OverlapRepository`
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable


def normalize_channel(channel: str) -> str:
    """Return the canonical key for a channel identifier."""
    return channel.strip().lower()


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatterSnapshot:
    """The audience of one channel as seen by one or more fetches.

    Attributes:
        channel: Normalized channel login.
        total_count: Number of distinct members.
        members: Lower-cased chatter logins.
    """

    channel: str
    total_count: int
    members: frozenset[str]

    @classmethod
    def from_members(cls, channel: str, members: Iterable[str]) -> "ChatterSnapshot":
        member_set = frozenset(m.lower() for m in members)
        return cls(
            channel=normalize_channel(channel),
            total_count=len(member_set),
            members=member_set,
        )


@dataclass(frozen=True)
class TopChannel:
    """A live channel selected for tracking at the start of a pass."""

    channel: str
    channel_id: str
    category: str | None
    category_id: str | None
    title: str
    viewer_count: int
    language: str | None


@dataclass(frozen=True)
class ChannelProfile:
    """Static profile metadata for a channel."""

    channel: str
    channel_id: str
    description: str
    creation_date: datetime | None


@dataclass(frozen=True)
class OverlapEntry:
    """Shared audience between *channel* and *other_channel* within one flush window.

    ``total_chatters`` is the audience size of *channel*, so rows can be
    read without a join.
    """

    channel: str
    other_channel: str
    overlap_count: int
    total_chatters: int


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class AudienceSource(ABC):
    """Fetches the current audience of a single channel."""

    @abstractmethod
    async def fetch_audience(self, channel: str) -> ChatterSnapshot:
        """Return the channel's current chatters.

        Raises:
            ChannelNotLiveError: The channel is offline or unknown.
            TransientFetchError: Network, rate-limit or decode failure.
        """


class ChannelSource(ABC):
    """Supplies the channel set tracked in each pass."""

    @abstractmethod
    async def fetch_top_channels(self) -> list[TopChannel]:
        """Raises :class:`UpstreamUnavailableError` when the list cannot be produced."""

    @abstractmethod
    async def fetch_profiles(self, channels: list[str]) -> list[ChannelProfile]:
        """Return profile metadata for *channels* (unknown logins are omitted)."""


class SnapshotSink(ABC):
    """Receives audience snapshots from the scheduler."""

    @property
    @abstractmethod
    def generation(self) -> int:
        """Identifier of the flush window currently being filled."""

    @abstractmethod
    def record(self, snapshot: ChatterSnapshot, generation: int | None = None) -> bool:
        """Merge *snapshot*; return ``False`` when it was dropped as stale."""


class OverlapSink(ABC):
    """Durable writes issued by the controller."""

    @abstractmethod
    async def unregistered_channels(self, channels: list[str]) -> list[str]: ...

    @abstractmethod
    async def write_channel_metadata(self, profiles: list[ChannelProfile]) -> None: ...

    @abstractmethod
    async def write_stream_samples(self, iteration: int, channels: list[TopChannel]) -> None: ...

    @abstractmethod
    async def write_iteration_marker(self, iteration: int, timestamp: datetime) -> None: ...

    @abstractmethod
    async def ensure_channel_table(self, channel: str) -> None: ...

    @abstractmethod
    async def write_overlap_rows(
        self,
        channel: str,
        iteration: int,
        rows: list[OverlapEntry],
    ) -> None: ...
