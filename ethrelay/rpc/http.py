"""Pure asyncio HTTP server for the streamable HTTP transport.

A minimal HTTP/1.1 server (one request per connection) in front of the
session gateway. It uses only asyncio stdlib.

Routes:
    - POST /mcp    -> JSON-RPC message (handshake or session request)
    - GET /mcp     -> SSE push stream for a session
    - DELETE /mcp  -> terminate a session
    - OPTIONS *    -> CORS preflight (200, empty)
    - GET /health  -> status, version, active sessions, uptime
    - GET /        -> server info and endpoint list

Security:
    - Binds to localhost unless remote binding is explicitly allowed.
    - Every request passes the Host allowlist (DNS rebinding protection).
    - /mcp is rate limited per client.
    - Request line, headers and body are size bounded.

Example usage:
    gateway = SessionGateway(registry, handler_factory)
    frontend = HttpFrontend(gateway, SecurityGate(config.security))
    await run_http_server(frontend, port=3001, stop_event=stop)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ethrelay import SERVER_NAME, __version__
from ethrelay.core.errors import RelayError
from ethrelay.rpc.gateway import SESSION_HEADER, GatewayReply, SessionGateway, _json_reply
from ethrelay.rpc.protocol import (
    INTERNAL_ERROR,
    PARSE_ERROR,
    make_error_response,
    serialize_response,
)
from ethrelay.rpc.security import SecurityGate

logger = logging.getLogger(__name__)

# Constants
DEFAULT_PORT = 3001
BIND_HOST = "127.0.0.1"
LOCAL_HOSTS = ("127.0.0.1", "localhost", "::1")
MCP_PATH = "/mcp"
ALLOWED_METHODS = "GET, POST, DELETE, OPTIONS"

# HTTP header limits (DoS protection)
MAX_HEADERS_COUNT = 128
MAX_HEADER_NAME_LEN = 1024
MAX_HEADER_VALUE_LEN = 8192
MAX_TOTAL_HEADERS_SIZE = 32 * 1024
MAX_REQUEST_LINE_LEN = 8192
READ_TIMEOUT = 30.0

STATUS_MESSAGES = {
    200: "OK",
    202: "Accepted",
    204: "No Content",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Payload Too Large",
    429: "Too Many Requests",
    500: "Internal Server Error",
    503: "Service Unavailable",
}

SSE_HEADERS = {
    "Content-Type": "text/event-stream; charset=utf-8",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable proxy buffering
}


@dataclass
class HttpRequest:
    """Parsed HTTP request.

    Attributes:
        method: HTTP method (GET, POST, etc.)
        path: Request path without query string (e.g., "/mcp")
        headers: Dict of lowercase header names to values
        body: Request body as string
        peer: Client address, if known
    """

    method: str
    path: str
    headers: dict[str, str]
    body: str = ""
    peer: str | None = None


class HttpParseError(RelayError):
    """Raised when HTTP request parsing fails."""


class BodyTooLargeError(HttpParseError):
    """Raised when Content-Length exceeds the body limit."""


async def _read_line(reader: asyncio.StreamReader, what: str) -> bytes:
    try:
        return await asyncio.wait_for(reader.readline(), timeout=READ_TIMEOUT)
    except TimeoutError:
        raise HttpParseError(f"{what} timeout") from None
    except ValueError:
        # StreamReader limit exceeded
        raise HttpParseError(f"{what} too long") from None


async def read_http_request_headers(
    reader: asyncio.StreamReader,
) -> tuple[str, str, dict[str, str]]:
    """Read only request line and headers (not body).

    Safe to call outside the connection semaphore since headers are bounded
    by MAX_TOTAL_HEADERS_SIZE. Lets SSE requests be detected before a slot
    is taken.

    Returns:
        Tuple of (method, path, headers).

    Raises:
        HttpParseError: If the request line or headers are malformed.
    """
    request_line = await _read_line(reader, "Request")
    if not request_line:
        raise HttpParseError("Empty request")

    if len(request_line) > MAX_REQUEST_LINE_LEN:
        raise HttpParseError(f"Request line too long: {len(request_line)} > {MAX_REQUEST_LINE_LEN}")

    # "POST /mcp HTTP/1.1\r\n"
    try:
        request_line_str = request_line.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise HttpParseError(f"Invalid request encoding: {e}") from e
    parts = request_line_str.split(" ")
    if len(parts) != 3:
        raise HttpParseError(f"Invalid request line: {request_line_str}")
    method, target, _version = parts
    path = target.split("?", 1)[0]

    headers: dict[str, str] = {}
    total_headers_size = 0

    while True:
        header_line = await _read_line(reader, "Header read")
        if not header_line or header_line in (b"\r\n", b"\n"):
            break

        total_headers_size += len(header_line)
        if total_headers_size > MAX_TOTAL_HEADERS_SIZE:
            raise HttpParseError(
                f"Total headers size exceeds limit: {total_headers_size} > {MAX_TOTAL_HEADERS_SIZE}"
            )

        try:
            header_str = header_line.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise HttpParseError(f"Invalid header encoding: {e}") from e

        if ":" not in header_str:
            continue  # Skip malformed headers

        name, value = header_str.split(":", 1)
        name = name.strip()
        value = value.strip()

        if len(name) > MAX_HEADER_NAME_LEN:
            raise HttpParseError(f"Header name too long: {len(name)} > {MAX_HEADER_NAME_LEN}")
        if len(value) > MAX_HEADER_VALUE_LEN:
            raise HttpParseError(f"Header value too long: {len(value)} > {MAX_HEADER_VALUE_LEN}")
        if len(headers) >= MAX_HEADERS_COUNT:
            raise HttpParseError(f"Too many headers: exceeds limit of {MAX_HEADERS_COUNT}")

        headers[name.lower()] = value

    return method.upper(), path, headers


async def read_http_body(
    reader: asyncio.StreamReader,
    headers: dict[str, str],
    max_body_size: int,
) -> str:
    """Read request body based on the Content-Length header.

    Raises:
        BodyTooLargeError: Declared length exceeds ``max_body_size``.
        HttpParseError: If the body is incomplete or malformed.
    """
    content_length_str = headers.get("content-length", "0")
    try:
        content_length = int(content_length_str)
    except ValueError as e:
        raise HttpParseError(f"Invalid Content-Length: {content_length_str}") from e
    if content_length < 0:
        raise HttpParseError(f"Invalid Content-Length: {content_length_str}")

    if content_length > max_body_size:
        raise BodyTooLargeError(
            f"Request body too large: {content_length} > {max_body_size}"
        )

    if content_length == 0:
        return ""
    try:
        body_bytes = await asyncio.wait_for(
            reader.readexactly(content_length),
            timeout=READ_TIMEOUT,
        )
        return body_bytes.decode("utf-8")
    except TimeoutError:
        raise HttpParseError("Body read timeout") from None
    except asyncio.IncompleteReadError as e:
        raise HttpParseError(
            f"Incomplete body: expected {content_length}, got {len(e.partial)}"
        ) from e
    except UnicodeDecodeError as e:
        raise HttpParseError(f"Invalid body encoding: {e}") from e


async def send_http_response(
    writer: asyncio.StreamWriter,
    status: int,
    body: str,
    content_type: str = "application/json",
    headers: dict[str, str] | None = None,
) -> None:
    """Send a complete HTTP response and flush it.

    Args:
        writer: The asyncio StreamWriter to write to.
        status: HTTP status code.
        body: Response body ("" sends no body).
        content_type: Content-Type header value.
        headers: Extra response headers.
    """
    body_bytes = body.encode("utf-8")
    lines = [f"HTTP/1.1 {status} {STATUS_MESSAGES.get(status, 'Unknown')}"]
    if body_bytes:
        lines.append(f"Content-Type: {content_type}; charset=utf-8")
    lines.append(f"Content-Length: {len(body_bytes)}")
    lines.extend(f"{name}: {value}" for name, value in (headers or {}).items())
    lines.extend(["Connection: close", "", ""])

    writer.write("\r\n".join(lines).encode("utf-8") + body_bytes)
    await writer.drain()


async def send_reply(
    writer: asyncio.StreamWriter,
    reply: GatewayReply,
    headers: dict[str, str] | None = None,
) -> None:
    await send_http_response(
        writer, reply.status, reply.body, headers={**(headers or {}), **reply.headers}
    )


async def send_sse_headers(writer: asyncio.StreamWriter, headers: dict[str, str]) -> None:
    merged = {**headers, **SSE_HEADERS}
    lines = ["HTTP/1.1 200 OK", *(f"{k}: {v}" for k, v in merged.items()), "", ""]
    writer.write("\r\n".join(lines).encode("utf-8"))
    await writer.drain()


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    try:
        if not writer.is_closing():
            writer.close()
        await writer.wait_closed()
    except Exception as close_err:
        logger.debug("Connection close failed (already closed?): %s", close_err)


def _peer_address(writer: asyncio.StreamWriter) -> str | None:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and peer:
        return str(peer[0])
    return None


def _is_stream_request(method: str, path: str) -> bool:
    return method == "GET" and path == MCP_PATH


async def _wait_for_hangup(reader: asyncio.StreamReader) -> None:
    """Return once the client closes its side of the connection."""
    try:
        # Stream clients send nothing after the request; discard anything they do
        while await reader.read(1024):
            pass
    except OSError:
        pass


def _parse_error_reply(e: HttpParseError) -> GatewayReply:
    if isinstance(e, BodyTooLargeError):
        return _json_reply(413, {"error": "Request entity too large"})
    return GatewayReply(400, serialize_response(make_error_response(None, PARSE_ERROR, e.message)))


class HttpFrontend:
    """Routes parsed HTTP requests to the gateway and security gate.

    Args:
        gateway: Session gateway for /mcp.
        gate: Host, rate limit and header policy.
        max_concurrent: Concurrent non-stream requests allowed.
        clock: Monotonic clock for the /health uptime.
    """

    def __init__(
        self,
        gateway: SessionGateway,
        gate: SecurityGate,
        max_concurrent: int = 32,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._gate = gate
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._clock = clock
        self._started_at = clock()

    @property
    def gateway(self) -> SessionGateway:
        return self._gateway

    async def handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """asyncio.start_server callback: one request per connection."""
        try:
            # Stage 1: request line + headers only, to spot streams before
            # taking a semaphore slot (streams are long-lived)
            try:
                method, path, headers = await read_http_request_headers(reader)
            except HttpParseError as e:
                await send_reply(writer, _parse_error_reply(e))
                return

            request = HttpRequest(method, path, headers, peer=_peer_address(writer))
            response_headers = self._gate.response_headers(headers)

            rejection = self._admit(request)
            if rejection is not None:
                await send_reply(writer, rejection, response_headers)
                return

            if _is_stream_request(method, path):
                await self._serve_stream(request, reader, writer, response_headers)
                return

            async with self._semaphore:
                try:
                    request.body = await read_http_body(reader, headers, self._gate.max_body_size)
                except HttpParseError as e:
                    await send_reply(writer, _parse_error_reply(e), response_headers)
                    return
                reply = await self.route(request)
                await send_reply(writer, reply, response_headers)
        except (ConnectionResetError, BrokenPipeError):
            logger.debug("Client disconnected before the response was sent")
        except Exception as e:
            logger.error("Unexpected error handling connection: %s", e, exc_info=True)
            try:
                error = make_error_response(None, INTERNAL_ERROR, "Internal server error")
                await send_http_response(writer, 500, serialize_response(error))
            except Exception as send_err:
                logger.debug("Failed to send error response (client disconnected?): %s", send_err)
        finally:
            await _close_writer(writer)

    def _admit(self, request: HttpRequest) -> GatewayReply | None:
        """Host check for every request; rate limit for the session endpoint."""
        rejection = self._gate.check_host(request.headers)
        if rejection is not None:
            return rejection
        if request.method == "OPTIONS":
            return GatewayReply(200)
        if request.path == MCP_PATH:
            return self._gate.check_rate_limit(request.headers, request.peer)
        return None

    async def route(self, request: HttpRequest) -> GatewayReply:
        """Map a fully read, admitted request to a reply."""
        session_id = request.headers.get(SESSION_HEADER.lower())
        match (request.method, request.path):
            case ("POST", "/mcp"):
                logger.info("POST /mcp (session %s)", session_id or "new")
                return await self._gateway.handle_post(session_id, request.body)
            case ("DELETE", "/mcp"):
                return self._gateway.terminate(session_id)
            case (_, "/mcp"):
                reply = _json_reply(405, {"error": "Method Not Allowed"})
                reply.headers["Allow"] = ALLOWED_METHODS
                return reply
            case ("GET", "/health"):
                return _json_reply(200, self.health())
            case ("GET", "/"):
                return _json_reply(200, self.info())
            case _:
                return _json_reply(404, {"error": "Not found"})

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": __version__,
            "transport": "streamable-http",
            "activeSessions": len(self._gateway.registry),
            "maxSessions": self._gateway.registry.max_sessions,
            "uptime": round(self._clock() - self._started_at, 3),
        }

    def info(self) -> dict[str, Any]:
        return {
            "name": SERVER_NAME,
            "version": __version__,
            "description": "Ethereum JSON-RPC relay over MCP, backed by Infura",
            "endpoints": {"mcp": MCP_PATH, "health": "/health"},
        }

    async def _serve_stream(
        self,
        request: HttpRequest,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        response_headers: dict[str, str],
    ) -> None:
        """Hold the connection open as the session's SSE stream.

        The stream ends when the session ends or the client hangs up,
        whichever comes first. A hangup is seen on the read side as soon as
        it happens, not at the next heartbeat write.
        """
        session_id = request.headers.get(SESSION_HEADER.lower())
        rejection = self._gateway.check_stream(session_id)
        if rejection is not None:
            await send_reply(writer, rejection, response_headers)
            return
        assert session_id is not None

        await send_sse_headers(writer, response_headers)
        logger.info("GET /mcp - stream opened for session %s", session_id)

        async def write(frame: bytes) -> None:
            writer.write(frame)
            await writer.drain()

        pump = asyncio.create_task(self._gateway.stream(session_id, write))
        hangup = asyncio.create_task(_wait_for_hangup(reader))
        try:
            await asyncio.wait({pump, hangup}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (pump, hangup):
                task.cancel()
            await asyncio.gather(pump, hangup, return_exceptions=True)

        if hangup.done() and not hangup.cancelled():
            logger.debug("Client hung up on stream for session %s", session_id)
        elif not pump.cancelled() and (error := pump.exception()) is not None:
            if isinstance(error, RelayError):
                # Session ended between the check and the stream start
                logger.debug("Stream for session %s not started: %s", session_id, error)
            elif not isinstance(error, OSError):
                raise error
        logger.info("Stream closed for session %s", session_id)


async def run_http_server(
    frontend: HttpFrontend,
    port: int = DEFAULT_PORT,
    host: str = BIND_HOST,
    allow_remote_bind: bool = False,
    started_event: asyncio.Event | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run the HTTP server until ``stop_event`` is set (or forever).

    Args:
        frontend: Request router.
        port: Port to listen on. 0 picks a free port.
        host: Host to bind to. Localhost only unless ``allow_remote_bind``.
        allow_remote_bind: Permit binding to a non-loopback address.
        started_event: Set once the server is listening.
        stop_event: Server shuts down when this is set.

    Raises:
        ValueError: Non-local host without ``allow_remote_bind``.
    """
    if host not in LOCAL_HOSTS and not allow_remote_bind:
        raise ValueError(
            f"Security: HTTP server must bind to localhost only, not {host!r} "
            "(set server.allow_remote_bind to override)"
        )

    server = await asyncio.start_server(frontend.handle_connection, host=host, port=port)

    addr = server.sockets[0].getsockname() if server.sockets else (host, port)
    logger.info("Streamable HTTP server running at http://%s:%s%s", addr[0], addr[1], MCP_PATH)

    if started_event:
        started_event.set()

    async with server:
        if stop_event is None:
            await server.serve_forever()
        else:
            await stop_event.wait()

        # Stop accepting new connections, then end every session so open
        # streams finish before the server waits on its connections
        server.close()
        logger.info("HTTP server closed, no new connections accepted")
        await frontend.gateway.aclose()
