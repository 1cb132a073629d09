"""Retry delay computation.

Delays are integers in milliseconds. There is no jitter and no ceiling: a
server-supplied Retry-After is honoured as given, and the exponential
schedule is bounded in practice by the attempt budget.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

DEFAULT_INITIAL_DELAY_MS = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackoffScheduler:
    """Computes how long to wait before the next attempt.

    Args:
        initial_delay_ms: Delay before the first retry; doubles per attempt.
        now: Wall-clock source used to resolve HTTP-date Retry-After values.
    """

    def __init__(
        self,
        initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._initial_delay_ms = initial_delay_ms
        self._now = now

    def compute_delay(self, attempt_index: int, retry_after: int | None = None) -> int:
        """Delay in milliseconds before retrying after attempt ``attempt_index``.

        Args:
            attempt_index: Zero-based index of the attempt that just failed.
            retry_after: Server-requested wait in seconds. Overrides the
                exponential schedule when present.
        """
        if retry_after is not None:
            return retry_after * 1000
        return self._initial_delay_ms * (2 ** attempt_index)

    def parse_retry_after(self, headers: Mapping[str, str]) -> int | None:
        """Read a Retry-After header as whole seconds.

        Accepts either delta-seconds ("120") or an HTTP date. Dates in the
        past clamp to 0. Returns None when the header is absent or garbled.
        """
        value = headers.get("retry-after")
        if value is None:
            value = headers.get("Retry-After")
        if value is None:
            return None

        value = value.strip()
        if value.isdigit():
            return int(value)

        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
        if when is None:
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)

        delta_ms = (when - self._now()).total_seconds() * 1000
        return max(0, math.ceil(delta_ms / 1000))
