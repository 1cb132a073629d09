"""Upstream JSON-RPC client with classified retries.

Each call is one envelope sent up to ``max_attempts`` times. Every attempt
resolves to an AttemptOutcome (SUCCESS, RETRY or FAIL) and the loop in
``invoke`` only ever switches on that value, so whether a failure is retried
is decided in exactly one place (``_decide``).

Cancellation of the calling task propagates immediately, including out of a
backoff sleep, and is never turned into a retry.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import json
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from ethrelay import __version__
from ethrelay.config.schema import UpstreamConfig
from ethrelay.core.errors import ConfigError, UpstreamError
from ethrelay.core.validation import validate_network
from ethrelay.upstream.backoff import BackoffScheduler
from ethrelay.upstream.classify import (
    ClassifiedFailure,
    FailureCategory,
    classify_http_status,
    create_actionable_message,
)

logger = logging.getLogger(__name__)

USER_AGENT = f"ethrelay/{__version__}"

# Error bodies are read only up to this size
MAX_ERROR_BODY_SIZE: int = 10 * 1024  # 10 KB


@dataclass(frozen=True)
class RequestEnvelope:
    """One outbound JSON-RPC call.

    Attributes:
        method: Upstream method name (e.g. "eth_blockNumber").
        params: Positional parameters.
        network: Allowlisted network selecting the endpoint.
        id: Correlation id, unique per client instance.
    """

    method: str
    params: list[Any]
    network: str
    id: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "method": self.method,
            "params": self.params,
            "id": self.id,
        }


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FAIL = "fail"


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of a single attempt.

    Exactly one of ``result`` (SUCCESS) or ``error`` (RETRY, FAIL) is
    meaningful. ``delay_ms`` is set only for RETRY.
    """

    kind: OutcomeKind
    result: Any = None
    error: UpstreamError | None = None
    delay_ms: int = 0

    @classmethod
    def success(cls, result: Any) -> AttemptOutcome:
        return cls(OutcomeKind.SUCCESS, result=result)

    @classmethod
    def retry(cls, error: UpstreamError, delay_ms: int) -> AttemptOutcome:
        return cls(OutcomeKind.RETRY, error=error, delay_ms=delay_ms)

    @classmethod
    def fail(cls, error: UpstreamError) -> AttemptOutcome:
        return cls(OutcomeKind.FAIL, error=error)


@dataclass
class RetryState:
    """Progress through the attempt budget for one call."""

    max_attempts: int
    attempt: int = 0
    last_failure: UpstreamError | None = field(default=None, repr=False)

    @property
    def has_attempts_remaining(self) -> bool:
        return self.attempt + 1 < self.max_attempts


@dataclass(frozen=True)
class RetryNotice:
    """Passed to the ``on_retry`` observer before each backoff sleep."""

    method: str
    network: str
    attempt: int
    max_attempts: int
    delay_ms: int
    category: FailureCategory
    message: str


RetryObserver = Callable[[RetryNotice], Awaitable[None] | None]


class UpstreamClient:
    """Sends JSON-RPC calls to the upstream provider with retries.

    The underlying httpx.AsyncClient is created lazily and reused across
    calls for connection pooling. Call ``aclose()`` when done.

    Args:
        config: Upstream settings (endpoint template, timeout, attempt budget).
        scheduler: Backoff policy. Defaults to one built from ``config``.
        sleep: Coroutine used to wait between attempts.
        transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
        environ: Environment mapping the API key is read from.
    """

    def __init__(
        self,
        config: UpstreamConfig | None = None,
        *,
        scheduler: BackoffScheduler | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
        environ: dict[str, str] | None = None,
    ) -> None:
        self._config = config or UpstreamConfig()
        self._scheduler = scheduler or BackoffScheduler(self._config.initial_retry_delay_ms)
        self._sleep = sleep
        self._transport = transport
        self._environ = environ
        self._client: httpx.AsyncClient | None = None
        self._ids = itertools.count(1)

    @property
    def config(self) -> UpstreamConfig:
        return self._config

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.request_timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client. Safe to call more than once."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_api_key(self) -> str:
        env = os.environ if self._environ is None else self._environ
        api_key = env.get(self._config.api_key_env)
        if not api_key:
            raise ConfigError(f"{self._config.api_key_env} environment variable not set.")
        return api_key

    def build_url(self, network: str) -> str:
        """Endpoint URL for ``network``.

        The network is checked against the allowlist before it is
        interpolated into the URL.

        Raises:
            ValidationError: If the network is not allowlisted.
            ConfigError: If the API key is not configured.
        """
        validate_network(network)
        return self._config.url_template.format(network=network, api_key=self._get_api_key())

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def invoke(
        self,
        method: str,
        params: list[Any] | None = None,
        network: str | None = None,
        *,
        on_retry: RetryObserver | None = None,
    ) -> Any:
        """Call ``method`` on the upstream and return its ``result``.

        Args:
            method: Upstream JSON-RPC method.
            params: Positional parameters (defaults to []).
            network: Target network. Defaults to the configured default.
            on_retry: Optional observer told about each scheduled retry.

        Returns:
            The ``result`` member of the upstream response.

        Raises:
            ValidationError: Network not allowlisted (nothing is sent).
            ConfigError: API key missing (nothing is sent).
            UpstreamError: Permanent failure, or transient budget exhausted.
        """
        target = network or self._config.default_network
        url = self.build_url(target)
        envelope = RequestEnvelope(
            method=method,
            params=list(params or []),
            network=target,
            id=next(self._ids),
        )
        state = RetryState(max_attempts=self._config.max_attempts)

        while True:
            outcome = await self._attempt(url, envelope, state)

            match outcome.kind:
                case OutcomeKind.SUCCESS:
                    if state.attempt > 0:
                        logger.info(
                            "%s on %s succeeded after %d attempts",
                            method, target, state.attempt + 1,
                        )
                    return outcome.result

                case OutcomeKind.FAIL:
                    assert outcome.error is not None
                    logger.debug(
                        "%s on %s failed (%s): %s",
                        method, target, outcome.error.category.value, outcome.error.message,
                    )
                    raise outcome.error

                case OutcomeKind.RETRY:
                    assert outcome.error is not None
                    logger.warning(
                        "Transient error (%s) calling %s on %s, retrying in %dms "
                        "(attempt %d/%d)",
                        outcome.error.category.value,
                        method,
                        target,
                        outcome.delay_ms,
                        state.attempt + 1,
                        state.max_attempts,
                    )
                    if on_retry is not None:
                        await self._notify(on_retry, RetryNotice(
                            method=method,
                            network=target,
                            attempt=state.attempt + 1,
                            max_attempts=state.max_attempts,
                            delay_ms=outcome.delay_ms,
                            category=outcome.error.category,
                            message=outcome.error.message,
                        ))
                    await self._sleep(outcome.delay_ms / 1000)
                    state.attempt += 1

    async def _notify(self, observer: RetryObserver, notice: RetryNotice) -> None:
        try:
            result = observer(notice)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Retry observer failed: %s", e)

    async def _attempt(
        self,
        url: str,
        envelope: RequestEnvelope,
        state: RetryState,
    ) -> AttemptOutcome:
        """Send the envelope once and classify what came back."""
        try:
            client = await self._ensure_client()
            response = await client.post(
                url,
                headers=self._build_headers(),
                json=envelope.to_payload(),
            )
        except httpx.TimeoutException:
            return self._decide(state, self._network_failure("Request timed out", envelope))
        except httpx.TransportError as e:
            detail = str(e) or type(e).__name__
            return self._decide(state, self._network_failure(detail, envelope))

        if not response.is_success:
            return self._decide(state, self._http_failure(response, envelope))

        return self._parse_success(response)

    def _network_failure(self, detail: str, envelope: RequestEnvelope) -> UpstreamError:
        category = FailureCategory.NETWORK_ERROR
        return UpstreamError(
            create_actionable_message(category, detail, network=envelope.network),
            ClassifiedFailure(category),
        )

    def _http_failure(self, response: httpx.Response, envelope: RequestEnvelope) -> UpstreamError:
        status = response.status_code
        category = classify_http_status(status)
        retry_after = None
        if category in (FailureCategory.RATE_LIMIT, FailureCategory.SERVER_ERROR):
            retry_after = self._scheduler.parse_retry_after(response.headers)

        detail, rpc_code = _error_detail(response)
        return UpstreamError(
            create_actionable_message(category, detail, status=status, network=envelope.network),
            ClassifiedFailure(category, retry_after=retry_after),
            http_status=status,
            rpc_code=rpc_code,
        )

    def _decide(self, state: RetryState, error: UpstreamError) -> AttemptOutcome:
        """Choose RETRY or FAIL for a failed attempt."""
        state.last_failure = error
        if not error.transient:
            return AttemptOutcome.fail(error)

        if state.has_attempts_remaining:
            delay_ms = self._scheduler.compute_delay(state.attempt, error.failure.retry_after)
            return AttemptOutcome.retry(error, delay_ms)

        if state.max_attempts > 1:
            error = UpstreamError(
                f"Failed after {state.max_attempts} attempts: {error.message}",
                error.failure,
                http_status=error.http_status,
                rpc_code=error.rpc_code,
            )
        return AttemptOutcome.fail(error)

    def _parse_success(self, response: httpx.Response) -> AttemptOutcome:
        """Interpret a 2xx body. Malformed bodies are permanent protocol errors."""
        try:
            data = response.json()
        except ValueError:
            return AttemptOutcome.fail(_protocol_error("Invalid JSON in upstream response"))

        if not isinstance(data, dict):
            return AttemptOutcome.fail(_protocol_error("Upstream response is not a JSON object"))

        error = data.get("error")
        if error is not None:
            if isinstance(error, dict):
                message = str(error.get("message", "Unknown error"))
                code = error.get("code")
            else:
                message, code = str(error), None
            return AttemptOutcome.fail(
                _protocol_error(message, rpc_code=code if isinstance(code, int) else None)
            )

        if "result" not in data:
            return AttemptOutcome.fail(_protocol_error("Upstream response has no result"))

        return AttemptOutcome.success(data["result"])


def _protocol_error(detail: str, rpc_code: int | None = None) -> UpstreamError:
    category = FailureCategory.PROTOCOL_ERROR
    return UpstreamError(
        create_actionable_message(category, detail),
        ClassifiedFailure(category),
        http_status=200,
        rpc_code=rpc_code,
    )


def _error_detail(response: httpx.Response) -> tuple[str, int | None]:
    """Extract (message, rpc_code) from an error response, size-capped."""
    body = response.content[:MAX_ERROR_BODY_SIZE]
    try:
        data = json.loads(body)
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}", None

    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        err = data["error"]
        code = err.get("code")
        message = err.get("message")
        if message:
            return str(message), code if isinstance(code, int) else None
    return response.reason_phrase or f"HTTP {response.status_code}", None
