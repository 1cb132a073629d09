"""Typed exception hierarchy for ethrelay."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ethrelay.upstream.classify import ClassifiedFailure, FailureCategory


class RelayError(Exception):
    """Base class for all ethrelay errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(RelayError):
    """Raised for configuration issues (missing file, invalid JSON, missing credential)."""


class UpstreamError(RelayError):
    """Raised when a call to the upstream provider fails.

    Carries the classified failure so callers can tell a permanent rejection
    (bad credentials, unknown method) from an exhausted transient one.

    Attributes:
        failure: Category, transience and optional Retry-After of the failure.
        http_status: HTTP status from the upstream, when one was received.
        rpc_code: JSON-RPC error code from the upstream body, when present.
    """

    def __init__(
        self,
        message: str,
        failure: ClassifiedFailure,
        http_status: int | None = None,
        rpc_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.failure = failure
        self.http_status = http_status
        self.rpc_code = rpc_code

    @property
    def category(self) -> FailureCategory:
        return self.failure.category

    @property
    def transient(self) -> bool:
        return self.failure.transient

    @property
    def is_auth_failure(self) -> bool:
        from ethrelay.upstream.classify import FailureCategory

        return self.failure.category == FailureCategory.AUTH_ERROR


class CapacityExceededError(RelayError):
    """Raised when a new session is refused because the registry is full."""

    def __init__(self, max_sessions: int) -> None:
        self.max_sessions = max_sessions
        super().__init__(
            "Service temporarily unavailable: maximum sessions reached. "
            "Please try again later."
        )


class InvalidSessionError(RelayError):
    """Raised for a request whose session token is missing or unknown."""

    def __init__(self, message: str = "Invalid or missing session ID") -> None:
        super().__init__(message)
