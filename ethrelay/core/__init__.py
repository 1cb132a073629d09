"""Core errors and input validation."""

from ethrelay.core.errors import (
    CapacityExceededError,
    ConfigError,
    InvalidSessionError,
    RelayError,
    UpstreamError,
)
from ethrelay.core.validation import (
    ALLOWED_NETWORKS,
    ValidationError,
    is_valid_network,
    validate_network,
    validate_tool_arguments,
)

__all__ = [
    "RelayError",
    "ConfigError",
    "UpstreamError",
    "CapacityExceededError",
    "InvalidSessionError",
    "ValidationError",
    "ALLOWED_NETWORKS",
    "is_valid_network",
    "validate_network",
    "validate_tool_arguments",
]
