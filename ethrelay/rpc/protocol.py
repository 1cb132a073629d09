"""JSON-RPC 2.0 protocol parsing and serialization."""

import json
from typing import Any

from ethrelay.core.errors import RelayError
from ethrelay.rpc.types import Request, Response

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000  # Server error range: -32000 to -32099


class ParseError(RelayError):
    """Raised when a message cannot be turned into a Request.

    Attributes:
        code: JSON-RPC error code for the reply.
        request_id: The message's id when it could be read, else None.
    """

    code = PARSE_ERROR

    def __init__(self, message: str, request_id: str | int | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id


class InvalidRequestShapeError(ParseError):
    """Valid JSON that is not a valid JSON-RPC 2.0 request."""

    code = INVALID_REQUEST


def _readable_id(data: dict[str, Any]) -> str | int | None:
    request_id = data.get("id")
    if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
        return None
    return request_id


def parse_request(line: str) -> Request:
    """Parse a JSON text into a JSON-RPC 2.0 Request.

    Args:
        line: A single JSON document (one line on stdio, one body over HTTP).

    Returns:
        A parsed Request object.

    Raises:
        ParseError: The text is not JSON (-32700).
        InvalidRequestShapeError: The JSON is not a valid request (-32600).
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}") from e

    if isinstance(data, list):
        raise InvalidRequestShapeError("Batch requests are not supported")
    if not isinstance(data, dict):
        raise InvalidRequestShapeError("Request must be a JSON object")

    request_id = _readable_id(data)
    if "id" in data and data["id"] is not None and request_id is None:
        raise InvalidRequestShapeError(
            f"id must be string, number, or null, got: {type(data['id']).__name__}"
        )

    def reject(message: str) -> InvalidRequestShapeError:
        return InvalidRequestShapeError(message, request_id)

    jsonrpc = data.get("jsonrpc")
    if jsonrpc != "2.0":
        raise reject(f"jsonrpc must be '2.0', got: {jsonrpc!r}")

    method = data.get("method")
    if not isinstance(method, str):
        raise reject(f"method must be a string, got: {type(method).__name__}")

    params = data.get("params")
    if isinstance(params, list):
        # MCP only uses named params
        raise reject("Positional params (array) not supported, use named params (object)")
    if params is not None and not isinstance(params, dict):
        raise reject(f"params must be object or array, got: {type(params).__name__}")

    return Request(jsonrpc=jsonrpc, method=method, params=params, id=request_id)


def make_parse_error_response(error: ParseError) -> Response:
    """Error response for a message that ``parse_request`` rejected."""
    return make_error_response(error.request_id, error.code, error.message)


def serialize_response(response: Response) -> str:
    """Serialize a Response to a single line of JSON (no trailing newline)."""
    data: dict[str, Any] = {
        "jsonrpc": response.jsonrpc,
        "id": response.id,
    }

    if response.error is not None:
        data["error"] = response.error
    else:
        data["result"] = response.result

    return json.dumps(data, separators=(",", ":"))


def make_error_response(
    request_id: str | int | None,
    code: int,
    message: str,
    data: Any = None,
) -> Response:
    """Create an error response.

    Args:
        request_id: The id from the original request.
        code: JSON-RPC error code.
        message: Human-readable error message.
        data: Optional additional error data.

    Returns:
        A Response with the error field populated.
    """
    error: dict[str, Any] = {
        "code": code,
        "message": message,
    }
    if data is not None:
        error["data"] = data

    return Response(
        jsonrpc="2.0",
        id=request_id,
        error=error,
    )


def make_success_response(request_id: str | int | None, result: Any) -> Response:
    """Create a success response."""
    return Response(
        jsonrpc="2.0",
        id=request_id,
        result=result,
    )


def make_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a server-to-client notification message."""
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    return message
