"""Twitch client for top channels, channel profiles and chatter lists.

Channel selection uses the Helix REST API with an app access token
(Client Credentials grant); chatter lists come from the chatters endpoint
configured by ``chatters_url_template``.

Every response body is validated against the schemas in
:mod:`overlap_tracker.core.schemas.twitch` before use.

Error mapping:

- ``fetch_top_channels``: any failure (network, HTTP status, invalid or
  empty body) raises :class:`UpstreamUnavailableError`; token problems raise
  its subclass :class:`UpstreamAuthError`.
- ``fetch_audience``: HTTP 404 raises :class:`ChannelNotLiveError`; HTTP 429
  raises :class:`UpstreamRateLimitError`; other failures raise
  :class:`TransientFetchError`.
- ``fetch_profiles``: failures raise :class:`TransientFetchError`.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from overlap_tracker.config.settings import Settings
from overlap_tracker.core.exceptions import (
    ChannelNotLiveError,
    TransientFetchError,
    UpstreamAuthError,
    UpstreamRateLimitError,
    UpstreamUnavailableError,
)
from overlap_tracker.core.schemas.twitch import (
    ChattersResponse,
    HelixStreamsResponse,
    HelixUsersResponse,
)
from overlap_tracker.tracker.base import (
    AudienceSource,
    ChannelProfile,
    ChannelSource,
    ChatterSnapshot,
    TopChannel,
    normalize_channel,
)
from overlap_tracker.upstream.twitch.config import (
    STREAMS_ENDPOINT,
    TOKEN_EXPIRY_MARGIN_SECONDS,
    USER_AGENT,
    USERS_ENDPOINT,
    USERS_PER_REQUEST,
)

logger = logging.getLogger(__name__)


class TwitchClient(AudienceSource, ChannelSource):
    """Async Twitch client implementing the tracker's upstream interfaces.

    Args:
        client_id: Twitch application Client ID.
        client_secret: Twitch application client secret.
        api_base: Helix base URL.
        token_url: OAuth 2.0 token endpoint.
        chatters_url_template: Chatters URL with a ``{channel}`` placeholder.
        top_channels_limit: Number of live channels returned by
            :meth:`fetch_top_channels` (1–100).
        language_filter: Optional ISO 639-1 code passed to ``GET /streams``.
        timeout: Per-request timeout in seconds.
        http_client: Optional injected :class:`httpx.AsyncClient` for testing.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        api_base: str = "https://api.twitch.tv/helix",
        token_url: str = "https://id.twitch.tv/oauth2/token",
        chatters_url_template: str = "https://tmi.twitch.tv/group/user/{channel}/chatters",
        top_channels_limit: int = 100,
        language_filter: str | None = None,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._api_base = api_base.rstrip("/")
        self._token_url = token_url
        self._chatters_url_template = chatters_url_template
        self._top_channels_limit = min(max(top_channels_limit, 1), 100)
        self._language_filter = language_filter
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._app_token: str | None = None
        self._token_expiry: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient | None = None) -> "TwitchClient":
        return cls(
            settings.twitch_client_id,
            settings.twitch_client_secret,
            api_base=settings.twitch_api_base,
            token_url=settings.twitch_token_url,
            chatters_url_template=settings.chatters_url_template,
            top_channels_limit=settings.top_channels_limit,
            language_filter=settings.language_filter,
            timeout=settings.http_timeout_seconds,
            http_client=http_client,
        )

    async def __aenter__(self) -> "TwitchClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # ChannelSource
    # ------------------------------------------------------------------

    async def fetch_top_channels(self) -> list[TopChannel]:
        """Return the live channels with the most viewers.

        Raises:
            UpstreamUnavailableError: If the list cannot be fetched, fails
                validation, or is empty.
            UpstreamAuthError: If no app access token can be obtained.
        """
        params: dict[str, Any] = {"first": self._top_channels_limit}
        if self._language_filter:
            params["language"] = self._language_filter

        try:
            response = await self._helix_get(STREAMS_ENDPOINT, params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailableError(
                f"twitch: HTTP {exc.response.status_code} on {STREAMS_ENDPOINT}"
            ) from exc
        except httpx.RequestError as exc:
            raise UpstreamUnavailableError(
                f"twitch: request error on {STREAMS_ENDPOINT}: {exc}"
            ) from exc

        try:
            decoded = HelixStreamsResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise UpstreamUnavailableError(
                f"twitch: invalid {STREAMS_ENDPOINT} response: {exc.error_count()} error(s)"
            ) from exc

        if not decoded.data:
            raise UpstreamUnavailableError(f"twitch: {STREAMS_ENDPOINT} returned no live channels")

        channels = [
            TopChannel(
                channel=stream.user_login,
                channel_id=stream.user_id,
                category=stream.game_name,
                category_id=stream.game_id,
                title=stream.title,
                viewer_count=stream.viewer_count,
                language=stream.language,
            )
            for stream in decoded.data
        ]
        logger.info("twitch: fetched %d top channels", len(channels))
        return channels

    async def fetch_profiles(self, channels: list[str]) -> list[ChannelProfile]:
        """Return profile metadata for *channels*, 100 logins per request.

        Raises:
            TransientFetchError: On any request, status, or decode failure.
        """
        logins = [normalize_channel(c) for c in channels]
        profiles: list[ChannelProfile] = []
        for i in range(0, len(logins), USERS_PER_REQUEST):
            chunk = logins[i:i + USERS_PER_REQUEST]
            params = [("login", login) for login in chunk]
            try:
                response = await self._helix_get(USERS_ENDPOINT, params)
                response.raise_for_status()
                decoded = HelixUsersResponse.model_validate_json(response.content)
            except UpstreamUnavailableError as exc:
                raise TransientFetchError(f"twitch: cannot fetch profiles: {exc}") from exc
            except httpx.HTTPStatusError as exc:
                raise TransientFetchError(
                    f"twitch: HTTP {exc.response.status_code} on {USERS_ENDPOINT}"
                ) from exc
            except httpx.RequestError as exc:
                raise TransientFetchError(
                    f"twitch: request error on {USERS_ENDPOINT}: {exc}"
                ) from exc
            except ValidationError as exc:
                raise TransientFetchError(
                    f"twitch: invalid {USERS_ENDPOINT} response: {exc.error_count()} error(s)"
                ) from exc

            profiles.extend(
                ChannelProfile(
                    channel=user.login,
                    channel_id=user.id,
                    description=user.description,
                    creation_date=user.created_at,
                )
                for user in decoded.data
            )
        return profiles

    # ------------------------------------------------------------------
    # AudienceSource
    # ------------------------------------------------------------------

    async def fetch_audience(self, channel: str) -> ChatterSnapshot:
        """Return the current chatters of *channel*.

        Raises:
            ChannelNotLiveError: On HTTP 404.
            UpstreamRateLimitError: On HTTP 429.
            TransientFetchError: On any other request, status, or decode failure.
        """
        login = normalize_channel(channel)
        url = self._chatters_url_template.format(channel=login)
        logger.debug("twitch: fetching chatters for %s", login)

        try:
            response = await self._client().get(url)
        except httpx.RequestError as exc:
            raise TransientFetchError(
                f"twitch: request error fetching chatters: {exc}", channel=login
            ) from exc

        if response.status_code == 404:
            raise ChannelNotLiveError(f"twitch: channel {login} not found", channel=login)
        if response.status_code == 429:
            retry_after_header = response.headers.get("Retry-After", "60")
            try:
                retry_after = float(retry_after_header)
            except ValueError:
                retry_after = 60.0
            raise UpstreamRateLimitError(
                f"twitch: rate limited fetching chatters; retry_after={retry_after}s",
                retry_after=retry_after,
                channel=login,
            )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransientFetchError(
                f"twitch: HTTP {exc.response.status_code} fetching chatters", channel=login
            ) from exc

        try:
            decoded = ChattersResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise TransientFetchError(
                f"twitch: invalid chatters response: {exc.error_count()} error(s)",
                channel=login,
            ) from exc

        snapshot = ChatterSnapshot.from_members(login, decoded.chatters.all_members())
        logger.debug(
            "twitch: %s has %d chatters (reported %d)",
            login,
            snapshot.total_count,
            decoded.chatter_count,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"User-Agent": USER_AGENT},
            )
        return self._http_client

    async def _get_app_token(self) -> str:
        """Return a cached app access token, requesting a new one when expired.

        Raises:
            UpstreamAuthError: If the token request fails or returns no token.
        """
        if self._app_token and time.monotonic() < self._token_expiry - TOKEN_EXPIRY_MARGIN_SECONDS:
            return self._app_token

        try:
            response = await self._client().post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamAuthError(
                f"twitch: failed to obtain app access token: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise UpstreamAuthError(
                f"twitch: connection error obtaining app access token: {exc}"
            ) from exc
        except ValueError as exc:
            raise UpstreamAuthError("twitch: token response is not JSON") from exc

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise UpstreamAuthError("twitch: token response missing 'access_token' field")

        self._app_token = str(token)
        self._token_expiry = time.monotonic() + float(data.get("expires_in", 3600))
        logger.info("twitch: obtained app access token")
        return self._app_token

    async def _helix_get(self, path: str, params: Any) -> httpx.Response:
        """GET a Helix endpoint with app-token authentication.

        A 401 response invalidates the cached token and raises
        :class:`UpstreamAuthError`.
        """
        token = await self._get_app_token()
        response = await self._client().get(
            f"{self._api_base}{path}",
            params=params,
            headers={
                "Client-Id": self._client_id,
                "Authorization": f"Bearer {token}",
            },
        )
        if response.status_code == 401:
            self._app_token = None
            raise UpstreamAuthError(f"twitch: app access token rejected on {path}")
        return response
