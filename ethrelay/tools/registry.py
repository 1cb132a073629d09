"""Tool lookup and execution against the upstream client."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ethrelay.core.errors import RelayError
from ethrelay.core.validation import validate_tool_arguments
from ethrelay.tools.catalog import TOOLS, ToolSpec
from ethrelay.tools.formatting import DEFAULT_CHARACTER_LIMIT, format_result
from ethrelay.upstream.client import RetryObserver, UpstreamClient

logger = logging.getLogger(__name__)


class UnknownToolError(RelayError):
    """Raised when a tools/call names a tool that is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolRegistry:
    """Registered tools, shared by every session.

    Example:
        registry = ToolRegistry(UpstreamClient())
        content = await registry.call("eth_getBlockNumber", {"network": "sepolia"})

    Attributes:
        client: The upstream client all tools call through.
    """

    def __init__(
        self,
        client: UpstreamClient,
        tools: Iterable[ToolSpec] = TOOLS,
        character_limit: int = DEFAULT_CHARACTER_LIMIT,
    ) -> None:
        self.client = client
        self._tools: dict[str, ToolSpec] = {spec.name: spec for spec in tools}
        self._character_limit = character_limit

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def list_definitions(self) -> list[dict[str, Any]]:
        return [spec.definition() for spec in self._tools.values()]

    async def call(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        on_retry: RetryObserver | None = None,
    ) -> dict[str, Any]:
        """Validate arguments, invoke the upstream method and format the result.

        Args:
            name: Tool name.
            arguments: Client-supplied arguments.
            on_retry: Forwarded to UpstreamClient.invoke.

        Returns:
            MCP tool result: ``{"content": [{"type": "text", "text": ...}]}``.

        Raises:
            UnknownToolError: No tool named ``name``.
            ValidationError: Arguments do not match the tool's schema.
            ConfigError, UpstreamError: From the upstream call.
        """
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownToolError(name)

        args = validate_tool_arguments(arguments or {}, spec.input_schema())
        network = args.get("network", self.client.config.default_network)
        response_format = args.get("response_format", "json")

        logger.debug("Executing tool %s on %s", name, network)
        result = await self.client.invoke(
            spec.method,
            spec.params_for(args),
            network,
            on_retry=on_retry,
        )
        if spec.shape_result is not None:
            result = spec.shape_result(result, args)

        text = format_result(result, name, response_format, self._character_limit)
        return {"content": [{"type": "text", "text": text}]}
