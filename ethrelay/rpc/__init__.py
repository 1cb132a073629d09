"""MCP session protocol and its two delivery modes.

Direct pipe serves one session over stdin/stdout. Streamable HTTP serves
many sessions, each identified by an ``Mcp-Session-Id`` token issued on a
successful ``initialize`` handshake.

Example usage:
    ethrelay --http  # Start HTTP server on port 3001
    curl -i -X POST http://localhost:3001/mcp \\
        -d '{"jsonrpc":"2.0","method":"initialize","params":{},"id":1}'
"""

from ethrelay.rpc.bootstrap import ServerComponents, build_components, configure_server_logging
from ethrelay.rpc.channel import SessionTransport
from ethrelay.rpc.dispatch_core import InvalidParamsError, InvalidRequestError
from ethrelay.rpc.gateway import SESSION_HEADER, GatewayReply, SessionGateway
from ethrelay.rpc.handler import SessionHandler
from ethrelay.rpc.http import (
    BIND_HOST,
    DEFAULT_PORT,
    HttpFrontend,
    HttpParseError,
    HttpRequest,
    run_http_server,
)
from ethrelay.rpc.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SERVER_ERROR,
    InvalidRequestShapeError,
    ParseError,
)
from ethrelay.rpc.security import RateLimiter, SecurityGate
from ethrelay.rpc.sessions import Session, SessionRegistry, SessionState, SweepTimer
from ethrelay.rpc.stdio import run_direct_pipe
from ethrelay.rpc.types import Request, Response

__all__ = [
    "BIND_HOST",
    "DEFAULT_PORT",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "SERVER_ERROR",
    "SESSION_HEADER",
    "GatewayReply",
    "HttpFrontend",
    "HttpParseError",
    "HttpRequest",
    "InvalidRequestShapeError",
    "InvalidParamsError",
    "InvalidRequestError",
    "ParseError",
    "RateLimiter",
    "Request",
    "Response",
    "SecurityGate",
    "ServerComponents",
    "Session",
    "SessionGateway",
    "SessionHandler",
    "SessionRegistry",
    "SessionState",
    "SessionTransport",
    "SweepTimer",
    "build_components",
    "configure_server_logging",
    "run_direct_pipe",
    "run_http_server",
]
