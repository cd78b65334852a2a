"""Application-wide exception hierarchy for the overlap tracker.

All custom exceptions subclass ``OverlapTrackerError``, enabling
consistent error handling and structured logging across the application.

Hierarchy::

    OverlapTrackerError
    ├── ChannelFetchError            (channel)
    │   ├── ChannelNotLiveError
    │   └── TransientFetchError
    │       └── UpstreamRateLimitError   (retry_after: float)
    ├── UpstreamUnavailableError
    │   └── UpstreamAuthError
    ├── PersistenceError
    │   └── TransientWriteError
    ├── IterationStateError
    └── PassIntegrityError

``ChannelFetchError`` subclasses are *transient-fetch* errors: the scheduler
recovers from them locally by requeueing the channel.  Every other class is
fatal when raised while a pass is being drained or flushed.
"""

from __future__ import annotations


class OverlapTrackerError(Exception):
    """Base class for all overlap tracker exceptions."""


# ---------------------------------------------------------------------------
# Per-channel fetch exceptions
# ---------------------------------------------------------------------------


class ChannelFetchError(OverlapTrackerError):
    """Raised when the audience of a single channel cannot be fetched.

    Args:
        message: Human-readable description of the failure.
        channel: Normalized channel login the fetch was issued for.
    """

    def __init__(self, message: str, channel: str | None = None) -> None:
        super().__init__(message)
        self.channel = channel


class ChannelNotLiveError(ChannelFetchError):
    """Raised when the channel is offline, renamed, or unknown upstream."""


class TransientFetchError(ChannelFetchError):
    """Raised on network errors, upstream 5xx responses, or undecodable bodies."""


class UpstreamRateLimitError(TransientFetchError):
    """Raised when the upstream API answers HTTP 429.

    Args:
        message: Human-readable description of the rate limit.
        retry_after: Seconds suggested by the ``Retry-After`` header.
        channel: Channel whose fetch was rate limited, if any.
    """

    def __init__(
        self,
        message: str,
        retry_after: float = 60.0,
        channel: str | None = None,
    ) -> None:
        super().__init__(message, channel=channel)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Upstream-wide exceptions
# ---------------------------------------------------------------------------


class UpstreamUnavailableError(OverlapTrackerError):
    """Raised when the top-channel list cannot be fetched or decoded.

    A pass never starts on a stale channel list, so this is fatal for the
    attempt that raised it.
    """


class UpstreamAuthError(UpstreamUnavailableError):
    """Raised when the app access token cannot be obtained or is rejected."""


# ---------------------------------------------------------------------------
# Persistence exceptions
# ---------------------------------------------------------------------------


class PersistenceError(OverlapTrackerError):
    """Raised when a write through the persistence layer fails.

    Args:
        message: Description of the failed write.
        table: Name of the table the write targeted.
    """

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class TransientWriteError(PersistenceError):
    """Raised when a single write failed on a connection-level error and may be retried."""


class IterationStateError(OverlapTrackerError):
    """Raised when the durable iteration state cannot be read or written.

    Args:
        message: Description of the failure.
        path: Location of the state file.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class PassIntegrityError(OverlapTrackerError):
    """Raised when draining or flushing a pass fails in a way that would let the
    in-memory and durable iteration counters diverge.

    Args:
        message: Description of the failure.
        iteration: Iteration being drained or flushed.
    """

    def __init__(self, message: str, iteration: int | None = None) -> None:
        super().__init__(message)
        self.iteration = iteration
