"""Failure classification for upstream calls.

Every failure observed on the outbound path is reduced to a ClassifiedFailure.
Whether a failure is retried depends only on its category, never on the
exception type that carried it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FailureCategory(str, Enum):
    """Kinds of upstream failure."""

    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    AUTH_ERROR = "auth_error"
    NOT_FOUND = "not_found"
    CLIENT_ERROR = "client_error"
    NETWORK_ERROR = "network_error"
    PROTOCOL_ERROR = "protocol_error"


TRANSIENT_CATEGORIES = frozenset({
    FailureCategory.RATE_LIMIT,
    FailureCategory.SERVER_ERROR,
    FailureCategory.NETWORK_ERROR,
})


@dataclass(frozen=True)
class ClassifiedFailure:
    """A failure reduced to its retry-relevant facts.

    Attributes:
        category: What went wrong.
        retry_after: Server-requested wait in seconds (rate limits), if any.
    """

    category: FailureCategory
    retry_after: int | None = None

    @property
    def transient(self) -> bool:
        return self.category in TRANSIENT_CATEGORIES


def classify_http_status(status: int) -> FailureCategory:
    """Map a non-success HTTP status to a failure category.

    Total over all integers: anything not matched explicitly is a
    permanent client_error.
    """
    if status == 429:
        return FailureCategory.RATE_LIMIT
    if 500 <= status <= 599:
        return FailureCategory.SERVER_ERROR
    if status in (401, 403):
        return FailureCategory.AUTH_ERROR
    if status == 404:
        return FailureCategory.NOT_FOUND
    return FailureCategory.CLIENT_ERROR


def is_transient_status(status: int) -> bool:
    return classify_http_status(status) in TRANSIENT_CATEGORIES


def create_actionable_message(
    category: FailureCategory,
    detail: str,
    *,
    status: int | None = None,
    network: str | None = None,
) -> str:
    """Turn a failure into a message that tells the caller what to do next.

    Args:
        category: The classified category.
        detail: Raw detail from the upstream (error body message or exception text).
        status: HTTP status, if the failure came from an HTTP response.
        network: Target network, for auth hints.
    """
    match category:
        case FailureCategory.RATE_LIMIT:
            return (
                "Rate limit exceeded. Wait 60 seconds before retrying, "
                "or upgrade your Infura plan at https://infura.io/pricing"
            )
        case FailureCategory.AUTH_ERROR:
            return (
                "Authentication failed. Verify your INFURA_API_KEY is correct "
                f"and has access to {network or 'this network'}."
            )
        case FailureCategory.SERVER_ERROR:
            return (
                f"Infura service temporarily unavailable (HTTP {status}). "
                "This is a transient error - retry in a few seconds."
            )
        case FailureCategory.NETWORK_ERROR if "timed out" in detail.lower():
            return (
                "Request timed out. The network may be congested - "
                "try again or use a simpler query."
            )
        case FailureCategory.NETWORK_ERROR:
            return f"Network error contacting Infura: {detail}"
        case FailureCategory.NOT_FOUND:
            return f"Endpoint not found (HTTP 404): {detail}"
        case FailureCategory.PROTOCOL_ERROR:
            return f"Infura API error: {detail}"
        case _:
            if status is not None:
                return f"Infura API error (HTTP {status}): {detail}"
            return f"Infura API error: {detail}"
