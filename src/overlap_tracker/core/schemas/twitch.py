"""Pydantic schemas for the upstream Twitch responses.

Every response body is validated before any field is read, so a changed or
truncated payload fails at the decode step instead of propagating missing
values into the tracker.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Lenient(BaseModel):
    """Base for upstream payloads: unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Helix GET /streams
# ---------------------------------------------------------------------------


class HelixStream(_Lenient):
    """One live stream from ``GET /streams``."""

    user_id: str
    user_login: str
    game_id: Optional[str] = None
    game_name: Optional[str] = None
    title: str = ""
    viewer_count: int = Field(ge=0)
    language: Optional[str] = None
    started_at: Optional[datetime] = None

    @field_validator("user_login")
    @classmethod
    def _lower_login(cls, value: str) -> str:
        return value.strip().lower()


class HelixStreamsResponse(_Lenient):
    data: List[HelixStream]


# ---------------------------------------------------------------------------
# Helix GET /users
# ---------------------------------------------------------------------------


class HelixUser(_Lenient):
    """One user from ``GET /users``."""

    id: str
    login: str
    description: str = ""
    created_at: Optional[datetime] = None

    @field_validator("login")
    @classmethod
    def _lower_login(cls, value: str) -> str:
        return value.strip().lower()


class HelixUsersResponse(_Lenient):
    data: List[HelixUser]


# ---------------------------------------------------------------------------
# Chatters listing
# ---------------------------------------------------------------------------


class ChatterGroups(_Lenient):
    """Chatters grouped by role, as returned by the chatters endpoint."""

    broadcaster: List[str] = Field(default_factory=list)
    vips: List[str] = Field(default_factory=list)
    moderators: List[str] = Field(default_factory=list)
    staff: List[str] = Field(default_factory=list)
    admins: List[str] = Field(default_factory=list)
    global_mods: List[str] = Field(default_factory=list)
    viewers: List[str] = Field(default_factory=list)

    def all_members(self) -> set[str]:
        """Return every chatter login across all groups, lower-cased."""
        groups = (
            self.broadcaster,
            self.vips,
            self.moderators,
            self.staff,
            self.admins,
            self.global_mods,
            self.viewers,
        )
        return {login.lower() for group in groups for login in group}


class ChattersResponse(_Lenient):
    chatter_count: int = Field(ge=0)
    chatters: ChatterGroups
