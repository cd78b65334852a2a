"""Twitch upstream client.

Implemented functionality:
    - ``fetch_top_channels``: live channels ordered by viewers via ``GET /streams``.
    - ``fetch_profiles``: channel profile metadata via ``GET /users``.
    - ``fetch_audience``: current chatter list of one channel.
"""

from __future__ import annotations

from overlap_tracker.upstream.twitch.client import TwitchClient

__all__ = ["TwitchClient"]
