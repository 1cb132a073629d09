"""Networked session gateway.

Transport-neutral core of the streamable HTTP mode. The HTTP server parses the
wire format and hands each /mcp request here; the gateway decides what it
means for the session lifecycle:

    no token + initialize  -> handshake, admit on success, return new token
    known token            -> touch, dispatch, structured reply
    unknown/absent token   -> InvalidSession (400)
    stream open            -> push channel with connect frame and heartbeats
    terminate              -> idempotent; unknown ids are 404

Session state runs PENDING_HANDSHAKE -> ACTIVE -> TERMINATED. Only a
successful initialize reply admits a session.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ethrelay.core.errors import CapacityExceededError, InvalidSessionError, RelayError
from ethrelay.core.validation import is_valid_session_id
from ethrelay.rpc.channel import STREAM_CLOSED, SessionTransport
from ethrelay.rpc.handler import SessionHandler
from ethrelay.rpc.protocol import (
    SERVER_ERROR,
    ParseError,
    make_error_response,
    make_parse_error_response,
    parse_request,
    serialize_response,
)
from ethrelay.rpc.sessions import Session, SessionRegistry
from ethrelay.rpc.types import Request

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
DEFAULT_HEARTBEAT_INTERVAL = 30.0

CONNECTED_FRAME = b": connected\n\n"
HEARTBEAT_FRAME = b": keep-alive\n\n"

HandlerFactory = Callable[[SessionTransport], SessionHandler]
StreamWriter = Callable[[bytes], Awaitable[None]]


@dataclass
class GatewayReply:
    """What the HTTP layer should send back.

    Attributes:
        status: HTTP status code.
        body: Response body ("" for no body).
        headers: Extra response headers (e.g. the session token).
    """

    status: int
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)


def _json_reply(status: int, payload: dict[str, Any]) -> GatewayReply:
    return GatewayReply(status, json.dumps(payload, separators=(",", ":")))


def _rpc_error_reply(status: int, code: int, message: str) -> GatewayReply:
    return GatewayReply(status, serialize_response(make_error_response(None, code, message)))


def format_sse_message(message: dict[str, Any]) -> bytes:
    """Frame a JSON-RPC message as an SSE ``message`` event."""
    return f"event: message\ndata: {json.dumps(message, separators=(',', ':'))}\n\n".encode()


class SessionGateway:
    """Routes networked requests through the session registry.

    Args:
        registry: Session registry shared with the sweep timer.
        handler_factory: Builds the handler for a new session from its transport.
        heartbeat_interval: Seconds between keep-alive frames on a stream.
        id_factory: Generates session ids. Defaults to random UUIDs.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        handler_factory: HandlerFactory,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._registry = registry
        self._handler_factory = handler_factory
        self._heartbeat_interval = heartbeat_interval
        self._id_factory = id_factory

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # === Requests ===

    async def handle_post(self, session_id: str | None, body: str) -> GatewayReply:
        """Handle a JSON-RPC message POSTed to the session endpoint.

        Args:
            session_id: Value of the session header, or None if absent.
            body: Raw request body.
        """
        try:
            return await self._handle_post(session_id, body)
        except (InvalidSessionError, CapacityExceededError) as e:
            return error_reply(e)

    async def _handle_post(self, session_id: str | None, body: str) -> GatewayReply:
        session = self._lookup(session_id) if session_id is not None else None

        try:
            request = parse_request(body)
        except ParseError as e:
            return GatewayReply(400, serialize_response(make_parse_error_response(e)))

        if session is None:
            return await self._handshake(request)

        assert session.id is not None
        self._registry.touch(session.id)
        response = await session.handler.dispatch(request)
        if response is None:
            return GatewayReply(202)
        return GatewayReply(200, serialize_response(response))

    async def _handshake(self, request: Request) -> GatewayReply:
        """Run initialize for a new client and admit it on success."""
        if request.method != "initialize" or request.id is None:
            raise InvalidSessionError()
        if self._registry.is_full:
            raise CapacityExceededError(self._registry.max_sessions)

        transport = SessionTransport()
        handler = self._handler_factory(transport)
        session = Session(transport=transport, handler=handler)

        response = await handler.dispatch(request)
        assert response is not None
        if response.error is not None:
            handler.close()
            transport.close()
            logger.debug("Handshake rejected, no session created")
            return GatewayReply(200, serialize_response(response))

        session_id = self._id_factory()
        try:
            # Re-checked here: other handshakes may have completed meanwhile
            self._registry.admit(session_id, session)
        except CapacityExceededError:
            handler.close()
            transport.close()
            raise

        transport.session_id = session_id
        handler.log_context = f"session {session_id}"
        transport.on_close(
            lambda: self._registry.terminate(session_id, reason="closed by transport")
        )
        return GatewayReply(200, serialize_response(response), {SESSION_HEADER: session_id})

    def _lookup(self, session_id: str | None) -> Session:
        """Return the live session for a token or raise InvalidSessionError."""
        if session_id is None or not is_valid_session_id(session_id):
            raise InvalidSessionError()
        session = self._registry.get(session_id)
        if session is None:
            raise InvalidSessionError()
        return session

    # === Streams ===

    def check_stream(self, session_id: str | None) -> GatewayReply | None:
        """Validate a stream-open request before any stream headers are sent.

        Returns:
            An error reply, or None if the stream may be opened.
        """
        try:
            self._lookup(session_id)
        except InvalidSessionError as e:
            return error_reply(e)
        return None

    async def stream(self, session_id: str, write: StreamWriter) -> None:
        """Pump a session's push channel into ``write`` until it ends.

        Writes the connect frame first, then pushed messages, with a
        keep-alive frame whenever the channel is quiet for
        ``heartbeat_interval`` seconds. Returns when the session ends;
        write errors (client gone) propagate to the caller.

        Raises:
            InvalidSessionError: Unknown session.
        """
        session = self._lookup(session_id)
        self._registry.touch(session_id)
        transport = session.transport
        queue = transport.open_stream()
        logger.debug("Stream opened for session %s", session_id)

        try:
            await write(CONNECTED_FRAME)
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=self._heartbeat_interval)
                except TimeoutError:
                    if transport.closed:
                        break
                    await write(HEARTBEAT_FRAME)
                    continue
                if message is STREAM_CLOSED:
                    break
                await write(format_sse_message(message))
        finally:
            transport.release_stream(queue)
            logger.debug("Stream closed for session %s", session_id)

    # === Termination ===

    def terminate(self, session_id: str | None) -> GatewayReply:
        """Explicit client termination. Unknown ids get 404."""
        if session_id is None or not self._registry.terminate(session_id, reason="terminated by client"):
            return _json_reply(404, {"error": "Session not found"})
        return _json_reply(200, {"message": "Session terminated"})

    async def aclose(self) -> None:
        """Terminate every session (server shutdown)."""
        closed = self._registry.close_all()
        if closed:
            logger.info("Closed %d session(s) on shutdown", closed)


def error_reply(exc: RelayError) -> GatewayReply:
    """Map a gateway-level error to its HTTP reply."""
    if isinstance(exc, CapacityExceededError):
        return _rpc_error_reply(503, SERVER_ERROR, exc.message)
    return _rpc_error_reply(400, SERVER_ERROR, exc.message)
