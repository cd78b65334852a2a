"""API constants for the Twitch upstream client.

Endpoint base URLs are configurable through
:class:`~overlap_tracker.config.settings.Settings`; the values here are the
paths and limits that do not change between deployments.
"""

from __future__ import annotations

STREAMS_ENDPOINT: str = "/streams"
"""Helix endpoint listing live streams ordered by viewer count."""

USERS_ENDPOINT: str = "/users"
"""Helix endpoint returning user profiles by login."""

USERS_PER_REQUEST: int = 100
"""Maximum ``login`` parameters per ``GET /users`` request (Twitch maximum)."""

TOKEN_EXPIRY_MARGIN_SECONDS: float = 60.0
"""Refresh the app access token this long before it expires."""

USER_AGENT: str = "OverlapTracker/1.0 (audience-overlap research tool)"
