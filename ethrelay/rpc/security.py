"""Request admission checks for networked mode.

Runs before the session gateway sees a request:
- Host header validation (DNS rebinding protection)
- Per-client rate limiting on the session endpoint
- Security and CORS response headers
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from collections.abc import Callable

from ethrelay.config.schema import SecurityConfig
from ethrelay.rpc.gateway import SESSION_HEADER, GatewayReply, _json_reply

logger = logging.getLogger(__name__)

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Cache-Control": "no-store",
}

CORS_ALLOW_METHODS = "GET, POST, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = f"Content-Type, Accept, {SESSION_HEADER}, Last-Event-ID"


def extract_hostname(host: str) -> str:
    """Hostname part of a Host header value ("[::1]:3001" -> "::1")."""
    host = host.strip()
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end != -1 else host
    return host.split(":", 1)[0]


class RateLimiter:
    """Sliding-window request counter per client key.

    Keys with no hits inside the window are dropped at most once per window,
    from ``check``, so the map only holds recently active clients.

    Args:
        max_requests: Requests allowed per window.
        window: Window length in seconds.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_prune = clock()

    def check(self, key: str) -> int | None:
        """Record a request for ``key``.

        Returns:
            None if allowed, otherwise seconds until the next request would be.
        """
        now = self._clock()
        if now - self._last_prune >= self._window:
            self.prune()
        cutoff = now - self._window
        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= self._max_requests:
            return max(1, math.ceil(hits[0] + self._window - now))
        hits.append(now)
        return None

    def prune(self) -> None:
        """Drop keys with no hits inside the window."""
        now = self._clock()
        self._last_prune = now
        cutoff = now - self._window
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]

    def __len__(self) -> int:
        return len(self._hits)


class SecurityGate:
    """Host, origin and rate checks plus response hardening headers.

    Args:
        config: Allowed hosts and origins, rate limit settings.
        clock: Time source for the rate limiter.
    """

    def __init__(
        self,
        config: SecurityConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or SecurityConfig()
        self._allowed_hosts = frozenset(self._config.allowed_hosts)
        self._allowed_origins = frozenset(self._config.allowed_origins)
        self.rate_limiter = RateLimiter(
            max_requests=self._config.rate_limit_max_requests,
            window=self._config.rate_limit_window_ms / 1000,
            clock=clock,
        )

    @property
    def max_body_size(self) -> int:
        return self._config.max_body_size

    def check_host(self, headers: dict[str, str]) -> GatewayReply | None:
        """Reject requests whose Host is missing or not allowlisted."""
        host = headers.get("host")
        if not host:
            logger.warning("Request missing Host header")
            return _json_reply(403, {"error": "Forbidden: Missing Host header"})
        if extract_hostname(host) not in self._allowed_hosts:
            logger.warning("DNS rebinding attempt blocked (Host: %s)", host)
            return _json_reply(403, {"error": "Forbidden: Invalid Host header"})
        return None

    @staticmethod
    def client_key(headers: dict[str, str], peer: str | None) -> str:
        """Rate-limit key: first X-Forwarded-For entry, else the peer address."""
        forwarded = headers.get("x-forwarded-for", "")
        first = forwarded.split(",", 1)[0].strip()
        return first or peer or "unknown"

    def check_rate_limit(self, headers: dict[str, str], peer: str | None) -> GatewayReply | None:
        key = self.client_key(headers, peer)
        retry_after = self.rate_limiter.check(key)
        if retry_after is None:
            return None
        logger.warning("Rate limit exceeded for %s", key)
        reply = _json_reply(429, {"error": "Too many requests, please try again later"})
        reply.headers["Retry-After"] = str(retry_after)
        return reply

    def response_headers(self, request_headers: dict[str, str]) -> dict[str, str]:
        """Headers added to every response: hardening plus CORS."""
        headers = dict(SECURITY_HEADERS)
        origin = request_headers.get("origin")
        if origin and origin in self._allowed_origins:
            headers["Access-Control-Allow-Origin"] = origin
            headers["Access-Control-Allow-Credentials"] = "true"
        headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
        headers["Access-Control-Expose-Headers"] = SESSION_HEADER
        headers["Vary"] = "Origin"
        return headers
