"""MCP method handlers for one session.

A SessionHandler answers the MCP lifecycle and tool methods for a single
client. In networked mode each session owns one; in direct-pipe mode the
process has exactly one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ethrelay import SERVER_NAME, __version__
from ethrelay.rpc.dispatch_core import (
    Handler,
    InvalidParamsError,
    InvalidRequestError,
    dispatch_request,
)
from ethrelay.rpc.protocol import make_notification
from ethrelay.rpc.types import Request, Response
from ethrelay.tools.registry import ToolRegistry
from ethrelay.upstream.client import RetryNotice

logger = logging.getLogger(__name__)

# Newest first
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

Publisher = Callable[[dict[str, Any]], object]


class SessionHandler:
    """Dispatches MCP requests for one session.

    Args:
        tools: Shared tool registry.
        publish: Sink for server-initiated notifications (the session's
            push channel). None when the delivery mode has no push side.
        log_context: Prefix for dispatch log lines.
    """

    def __init__(
        self,
        tools: ToolRegistry,
        publish: Publisher | None = None,
        log_context: str = "session",
    ) -> None:
        self._tools = tools
        self._publish = publish
        self.log_context = log_context
        self.protocol_version: str | None = None
        self.client_info: dict[str, Any] | None = None
        self.initialized = False
        self._closed = False
        self._handlers: dict[str, Handler] = {
            "initialize": self._handle_initialize,
            "notifications/initialized": self._handle_initialized,
            "ping": self._handle_ping,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
        }

    @property
    def closed(self) -> bool:
        return self._closed

    async def dispatch(self, request: Request) -> Response | None:
        """Handle one request. Never raises for handler-level failures."""
        return await dispatch_request(request, self._handlers, self.log_context)

    def close(self) -> None:
        """Release the handler. Further notifications are dropped."""
        self._closed = True
        self._publish = None

    async def _handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.protocol_version is not None:
            raise InvalidRequestError("Session already initialized")

        requested = params.get("protocolVersion", LATEST_PROTOCOL_VERSION)
        if not isinstance(requested, str):
            raise InvalidParamsError("protocolVersion must be a string")
        client_info = params.get("clientInfo")
        if client_info is not None and not isinstance(client_info, dict):
            raise InvalidParamsError("clientInfo must be an object")

        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            self.protocol_version = requested
        else:
            self.protocol_version = LATEST_PROTOCOL_VERSION
        self.client_info = client_info

        logger.debug(
            "%s initialized by %s (protocol %s)",
            self.log_context,
            (client_info or {}).get("name", "unknown client"),
            self.protocol_version,
        )
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": {
                "tools": {"listChanged": False},
                "logging": {},
            },
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
            "instructions": (
                "Read-only and broadcast access to Ethereum-compatible networks via Infura. "
                "Every tool accepts an optional 'network' (default 'mainnet') and "
                "'response_format' ('json' or 'markdown')."
            ),
        }

    async def _handle_initialized(self, params: dict[str, Any]) -> dict[str, Any]:
        self.initialized = True
        return {}

    async def _handle_ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _handle_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": self._tools.list_definitions()}

    async def _handle_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("Missing required parameter: name")
        arguments = params.get("arguments", {})
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidParamsError("arguments must be an object")

        logger.info("Tool call received: %s", name)
        return await self._tools.call(name, arguments, on_retry=self._on_retry)

    def _on_retry(self, notice: RetryNotice) -> None:
        """Tell the client an upstream call is being retried."""
        if self._publish is None:
            return
        self._publish(make_notification("notifications/message", {
            "level": "warning",
            "logger": "ethrelay.upstream",
            "data": {
                "message": notice.message,
                "method": notice.method,
                "network": notice.network,
                "category": notice.category.value,
                "attempt": notice.attempt,
                "maxAttempts": notice.max_attempts,
                "retryInMs": notice.delay_ms,
            },
        }))
