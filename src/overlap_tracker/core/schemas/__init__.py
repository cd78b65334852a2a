"""Pydantic schemas for validating upstream API payloads."""

from __future__ import annotations

from overlap_tracker.core.schemas.twitch import (
    ChatterGroups,
    ChattersResponse,
    HelixStream,
    HelixStreamsResponse,
    HelixUser,
    HelixUsersResponse,
)

__all__ = [
    "ChatterGroups",
    "ChattersResponse",
    "HelixStream",
    "HelixStreamsResponse",
    "HelixUser",
    "HelixUsersResponse",
]
