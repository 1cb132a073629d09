"""Resilient outbound path to the upstream JSON-RPC provider."""

from ethrelay.upstream.backoff import BackoffScheduler
from ethrelay.upstream.classify import (
    ClassifiedFailure,
    FailureCategory,
    classify_http_status,
)
from ethrelay.upstream.client import UpstreamClient

__all__ = [
    "BackoffScheduler",
    "ClassifiedFailure",
    "FailureCategory",
    "UpstreamClient",
    "classify_http_status",
]
