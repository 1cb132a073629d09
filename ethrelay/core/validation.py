"""Input validation utilities for ethrelay.

This module provides validation for security-sensitive inputs: the upstream
network name (which selects the endpoint URL), session tokens, and tool
arguments.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from ethrelay.core.errors import RelayError

logger = logging.getLogger(__name__)

# Networks the upstream provider serves. The network name is interpolated into
# the endpoint hostname, so nothing outside this list may reach URL building.
ALLOWED_NETWORKS: tuple[str, ...] = (
    # Ethereum
    "mainnet",
    "sepolia",
    # Layer 2 and sidechains
    "arbitrum-mainnet",
    "arbitrum-sepolia",
    "optimism-mainnet",
    "optimism-sepolia",
    "polygon-mainnet",
    "polygon-amoy",
    "base-mainnet",
    "base-sepolia",
    "linea-mainnet",
    "linea-sepolia",
    "zksync-mainnet",
    "zksync-sepolia",
    "scroll-mainnet",
    "scroll-sepolia",
    "blast-mainnet",
    "blast-sepolia",
    "mantle-mainnet",
    "mantle-sepolia",
    # Other networks
    "avalanche-mainnet",
    "avalanche-fuji",
    "bsc-mainnet",
    "bsc-testnet",
    "celo-mainnet",
    "celo-alfajores",
    "palm-mainnet",
    "palm-testnet",
    "starknet-mainnet",
    "starknet-sepolia",
    "opbnb-mainnet",
    "opbnb-testnet",
    "swellchain-mainnet",
    "swellchain-testnet",
    "unichain-mainnet",
    "unichain-sepolia",
)

_ALLOWED_NETWORK_SET = frozenset(ALLOWED_NETWORKS)

# Session tokens are server-generated UUIDs, but anything echoed back from a
# client header is checked against this before it is used as a lookup key.
SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
MAX_SESSION_ID_LENGTH = 256


class ValidationError(RelayError):
    """Raised when caller-supplied input is malformed.

    Attributes:
        field: Name of the offending argument, if known.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


def is_valid_network(network: Any) -> bool:
    """Check a network name against the allowlist without raising."""
    return isinstance(network, str) and network in _ALLOWED_NETWORK_SET


def validate_network(network: Any) -> str:
    """Validate that a network name is in the allowlist.

    Args:
        network: The network name supplied by the caller.

    Returns:
        The network name, unchanged.

    Raises:
        ValidationError: If the network is not served by the upstream.
    """
    if not is_valid_network(network):
        raise ValidationError(
            f"Invalid network: {network}. See documentation for supported networks.",
            field="network",
        )
    return network


def is_valid_session_id(session_id: str | None) -> bool:
    """Check whether a client-supplied session token is well formed."""
    if not session_id or len(session_id) > MAX_SESSION_ID_LENGTH:
        return False
    return SESSION_ID_PATTERN.match(session_id) is not None


def _error_field(error: Any) -> str | None:
    """Best-effort name of the argument a jsonschema error refers to."""
    if error.absolute_path:
        return ".".join(str(part) for part in error.absolute_path)
    if error.validator == "required" and isinstance(error.instance, dict):
        for name in error.validator_value:
            if name not in error.instance:
                return str(name)
    return None


def validate_tool_arguments(
    arguments: dict[str, Any],
    schema: dict[str, Any],
) -> dict[str, Any]:
    """Validate tool arguments against a JSON schema.

    Unknown arguments are logged and dropped rather than rejected.

    Args:
        arguments: The arguments supplied by the client.
        schema: The tool's input schema.

    Returns:
        Dict containing only the arguments the schema declares.

    Raises:
        ValidationError: If a required argument is missing or a value does not
            match its declared type or pattern.
    """
    import jsonschema

    try:
        jsonschema.validate(arguments, schema)
    except jsonschema.ValidationError as e:
        raise ValidationError(e.message, field=_error_field(e)) from None

    schema_props = set(schema.get("properties", {}).keys())
    extras = set(arguments.keys()) - schema_props
    if extras:
        logger.warning("Unknown tool arguments (ignored): %s", sorted(extras))

    return {k: v for k, v in arguments.items() if k in schema_props}
