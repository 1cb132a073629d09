"""Tests for retry delay computation and Retry-After parsing."""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from ethrelay.upstream.backoff import BackoffScheduler

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler() -> BackoffScheduler:
    return BackoffScheduler(now=lambda: NOW)


class TestComputeDelay:
    """Exponential schedule and server override."""

    @pytest.mark.parametrize(("attempt", "expected"), [(0, 1000), (1, 2000), (2, 4000)])
    def test_exponential_schedule(
        self, scheduler: BackoffScheduler, attempt: int, expected: int
    ) -> None:
        assert scheduler.compute_delay(attempt) == expected

    def test_retry_after_overrides_schedule(self, scheduler: BackoffScheduler) -> None:
        assert scheduler.compute_delay(0, retry_after=7) == 7000
        assert scheduler.compute_delay(2, retry_after=1) == 1000

    def test_retry_after_zero_means_no_wait(self, scheduler: BackoffScheduler) -> None:
        assert scheduler.compute_delay(2, retry_after=0) == 0

    def test_no_jitter(self, scheduler: BackoffScheduler) -> None:
        """Same inputs, same delay."""
        assert {scheduler.compute_delay(1) for _ in range(20)} == {2000}

    def test_custom_initial_delay(self) -> None:
        assert BackoffScheduler(initial_delay_ms=250).compute_delay(3) == 2000


class TestParseRetryAfter:
    def test_delta_seconds(self, scheduler: BackoffScheduler) -> None:
        assert scheduler.parse_retry_after({"retry-after": "60"}) == 60

    def test_header_name_case(self, scheduler: BackoffScheduler) -> None:
        assert scheduler.parse_retry_after({"Retry-After": "5"}) == 5

    def test_http_date_in_future(self, scheduler: BackoffScheduler) -> None:
        when = format_datetime(NOW + timedelta(seconds=90), usegmt=True)
        assert scheduler.parse_retry_after({"retry-after": when}) == 90

    def test_http_date_in_past_clamps_to_zero(self, scheduler: BackoffScheduler) -> None:
        when = format_datetime(NOW - timedelta(minutes=5), usegmt=True)
        assert scheduler.parse_retry_after({"retry-after": when}) == 0

    def test_real_clock_gives_non_negative_value(self) -> None:
        when = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=30), usegmt=True)
        value = BackoffScheduler().parse_retry_after({"retry-after": when})
        assert value is not None
        assert 0 <= value <= 31

    def test_missing_header(self, scheduler: BackoffScheduler) -> None:
        assert scheduler.parse_retry_after({}) is None

    @pytest.mark.parametrize("value", ["soon", "", "-5", "1.5", "Tomorrow at noon"])
    def test_garbled_header(self, scheduler: BackoffScheduler, value: str) -> None:
        assert scheduler.parse_retry_after({"retry-after": value}) is None
