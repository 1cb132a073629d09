"""Shared dispatch infrastructure for session handlers.

Both delivery modes (direct pipe and networked sessions) funnel every request
through ``dispatch_request``, which owns:
- Handler lookup
- Success/error response generation
- Mapping of ethrelay exceptions to JSON-RPC error codes
- Notification handling (requests without id never get a response)

A handler failure of any kind becomes an error response; nothing raised by a
handler escapes to the transport.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from ethrelay.core.errors import ConfigError, RelayError, UpstreamError
from ethrelay.core.validation import ValidationError
from ethrelay.rpc.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    make_error_response,
    make_success_response,
)
from ethrelay.rpc.types import Request, Response
from ethrelay.tools.registry import UnknownToolError

logger = logging.getLogger(__name__)

# Type alias for handler functions
Handler = Callable[[dict[str, Any]], Coroutine[Any, Any, dict[str, Any]]]


class InvalidParamsError(RelayError):
    """Raised when method parameters are invalid."""


class InvalidRequestError(RelayError):
    """Raised when a request is well formed but not acceptable in the current state."""


def error_for_exception(exc: Exception) -> tuple[int, str, Any]:
    """Map an exception to (code, message, data) for a JSON-RPC error.

    Unexpected exceptions are not logged here; callers log them with context.
    """
    match exc:
        case ValidationError(field=str() as field):
            return INVALID_PARAMS, f"Validation error for '{field}': {exc.message}", None
        case ValidationError() | InvalidParamsError():
            return INVALID_PARAMS, exc.message, None
        case UnknownToolError():
            return METHOD_NOT_FOUND, exc.message, None
        case InvalidRequestError() | ConfigError():
            return INVALID_REQUEST, exc.message, None
        case UpstreamError():
            data = {"category": exc.category.value, "transient": exc.transient}
            if exc.http_status is not None:
                data["httpStatus"] = exc.http_status
            if exc.rpc_code is not None:
                data["rpcCode"] = exc.rpc_code
            code = INVALID_REQUEST if exc.is_auth_failure else INTERNAL_ERROR
            return code, exc.message, data
        case RelayError():
            return INTERNAL_ERROR, exc.message, None
        case _:
            return INTERNAL_ERROR, f"API error: {exc}", None


async def dispatch_request(
    request: Request,
    handlers: dict[str, Handler],
    log_context: str,
) -> Response | None:
    """Dispatch a request to the appropriate handler.

    Args:
        request: The parsed JSON-RPC request.
        handlers: Mapping of method names to handler coroutines.
        log_context: Context string for log messages (e.g. "session abc").

    Returns:
        A Response object, or None for notifications (requests without id).
    """
    handler = handlers.get(request.method)
    if handler is None:
        if request.id is None:
            return None  # Notifications don't get error responses
        return make_error_response(
            request.id,
            METHOD_NOT_FOUND,
            f"Method not found: {request.method}",
        )

    try:
        params = request.params or {}
        result = await handler(params)

        if request.id is None:
            return None
        return make_success_response(request.id, result)

    except Exception as e:
        if not isinstance(e, RelayError):
            logger.error(
                "Unexpected error dispatching %s '%s': %s",
                log_context,
                request.method,
                e,
                exc_info=True,
            )
        else:
            logger.debug("%s '%s' failed: %s", log_context, request.method, e)
        if request.id is None:
            return None
        code, message, data = error_for_exception(e)
        return make_error_response(request.id, code, message, data)
