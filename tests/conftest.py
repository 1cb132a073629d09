"""Shared pytest fixtures and configuration for pytest."""

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from ethrelay.config.schema import UpstreamConfig
from ethrelay.upstream.client import UpstreamClient

TEST_API_KEY = "test-key-0123456789"

UpstreamFactory = Callable[..., UpstreamClient]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_upstream(recording_sleep: RecordingSleep) -> UpstreamFactory:
    """Build an UpstreamClient whose HTTP traffic goes to a MockTransport handler."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        environ: dict[str, str] | None = None,
        **config: Any,
    ) -> UpstreamClient:
        return UpstreamClient(
            UpstreamConfig(**config),
            sleep=recording_sleep,
            transport=httpx.MockTransport(handler),
            environ={"INFURA_API_KEY": TEST_API_KEY} if environ is None else environ,
        )

    return factory
