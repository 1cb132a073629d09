"""Tests for the networked session gateway: handshake, requests, streams, termination."""

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from ethrelay.rpc.channel import SessionTransport
from ethrelay.rpc.gateway import (
    CONNECTED_FRAME,
    HEARTBEAT_FRAME,
    SESSION_HEADER,
    SessionGateway,
    format_sse_message,
)
from ethrelay.rpc.handler import SessionHandler
from ethrelay.rpc.protocol import INVALID_REQUEST, PARSE_ERROR, SERVER_ERROR, make_success_response
from ethrelay.rpc.sessions import SessionRegistry

INITIALIZE = json.dumps({
    "jsonrpc": "2.0",
    "method": "initialize",
    "params": {"protocolVersion": "2025-03-26", "clientInfo": {"name": "test"}},
    "id": 1,
})
TOOLS_LIST = json.dumps({"jsonrpc": "2.0", "method": "tools/list", "params": {}, "id": 2})
INITIALIZED = json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"})


def make_tools() -> MagicMock:
    tools = MagicMock()
    tools.list_definitions.return_value = [{"name": "eth_chainId"}]
    tools.call = AsyncMock(return_value={"content": []})
    return tools


def make_gateway(
    registry: SessionRegistry | None = None,
    heartbeat_interval: float = 30.0,
) -> SessionGateway:
    tools = make_tools()

    def factory(transport: SessionTransport) -> SessionHandler:
        return SessionHandler(tools, publish=transport.publish)

    ids = iter(f"session-{n}" for n in range(1, 1000))
    return SessionGateway(
        registry if registry is not None else SessionRegistry(),
        factory,
        heartbeat_interval=heartbeat_interval,
        id_factory=lambda: next(ids),
    )


async def handshake(gateway: SessionGateway) -> str:
    reply = await gateway.handle_post(None, INITIALIZE)
    assert reply.status == 200
    return reply.headers[SESSION_HEADER]


class TestHandshake:
    @pytest.mark.asyncio
    async def test_initialize_admits_session(self, clock) -> None:
        registry = SessionRegistry(clock=clock)
        gateway = make_gateway(registry)

        reply = await gateway.handle_post(None, INITIALIZE)

        assert reply.status == 200
        session_id = reply.headers[SESSION_HEADER]
        assert session_id == "session-1"
        assert registry.ids() == [session_id]
        assert json.loads(reply.body)["result"]["protocolVersion"] == "2025-03-26"

    @pytest.mark.asyncio
    async def test_each_handshake_gets_a_fresh_id(self) -> None:
        gateway = make_gateway()
        assert await handshake(gateway) != await handshake(gateway)
        assert len(gateway.registry) == 2

    @pytest.mark.asyncio
    async def test_non_initialize_without_session_is_rejected(self) -> None:
        gateway = make_gateway()
        reply = await gateway.handle_post(None, TOOLS_LIST)

        assert reply.status == 400
        assert json.loads(reply.body)["error"]["message"] == "Invalid or missing session ID"
        assert len(gateway.registry) == 0

    @pytest.mark.asyncio
    async def test_initialize_notification_is_rejected(self) -> None:
        gateway = make_gateway()
        body = json.dumps({"jsonrpc": "2.0", "method": "initialize", "params": {}})
        assert (await gateway.handle_post(None, body)).status == 400

    @pytest.mark.asyncio
    async def test_failed_initialize_creates_no_session(self) -> None:
        gateway = make_gateway()
        body = json.dumps({
            "jsonrpc": "2.0", "method": "initialize", "params": {"protocolVersion": 5}, "id": 1,
        })

        reply = await gateway.handle_post(None, body)

        assert reply.status == 200
        assert "error" in json.loads(reply.body)
        assert SESSION_HEADER not in reply.headers
        assert len(gateway.registry) == 0

    @pytest.mark.asyncio
    async def test_capacity_returns_503_and_keeps_existing(self) -> None:
        gateway = make_gateway(SessionRegistry(max_sessions=1))
        existing = await handshake(gateway)

        reply = await gateway.handle_post(None, INITIALIZE)

        assert reply.status == 503
        error = json.loads(reply.body)["error"]
        assert error["code"] == SERVER_ERROR
        assert "maximum sessions reached" in error["message"]
        assert gateway.registry.ids() == [existing]

    @pytest.mark.asyncio
    async def test_concurrent_handshakes_admit_only_up_to_capacity(self) -> None:
        registry = SessionRegistry(max_sessions=1)
        release = asyncio.Event()
        transports: list[SessionTransport] = []
        handlers: list[MagicMock] = []

        async def slow_initialize(request: Any) -> Any:
            await release.wait()
            return make_success_response(request.id, {"protocolVersion": "2025-03-26"})

        def factory(transport: SessionTransport) -> MagicMock:
            handler = MagicMock()
            handler.dispatch = AsyncMock(side_effect=slow_initialize)
            transports.append(transport)
            handlers.append(handler)
            return handler

        ids = iter(["session-a", "session-b"])
        gateway = SessionGateway(registry, factory, id_factory=lambda: next(ids))

        # Both pass the early capacity check before either is admitted
        pending = asyncio.gather(
            gateway.handle_post(None, INITIALIZE),
            gateway.handle_post(None, INITIALIZE),
        )
        for _ in range(3):
            await asyncio.sleep(0)
        assert len(handlers) == 2
        release.set()
        first, second = await pending

        assert first.status == 200
        assert first.headers[SESSION_HEADER] == "session-a"
        assert second.status == 503
        assert SESSION_HEADER not in second.headers
        assert json.loads(second.body)["error"]["code"] == SERVER_ERROR
        assert len(registry) == 1
        assert registry.ids() == ["session-a"]

        handlers[1].close.assert_called_once()
        assert transports[1].closed
        handlers[0].close.assert_not_called()
        assert not transports[0].closed

    @pytest.mark.asyncio
    async def test_parse_error(self) -> None:
        reply = await make_gateway().handle_post(None, "{oops")
        assert reply.status == 400
        assert json.loads(reply.body)["error"]["code"] == PARSE_ERROR

    @pytest.mark.asyncio
    async def test_invalid_request_shape(self) -> None:
        gateway = make_gateway()
        body = json.dumps({"jsonrpc": "2.0", "method": 7, "id": 4})

        reply = await gateway.handle_post(None, body)

        assert reply.status == 400
        payload = json.loads(reply.body)
        assert payload["id"] == 4
        assert payload["error"]["code"] == INVALID_REQUEST
        assert len(gateway.registry) == 0


class TestSessionRequests:
    @pytest.mark.asyncio
    async def test_follow_up_request_touches_session(self, clock) -> None:
        registry = SessionRegistry(clock=clock)
        gateway = make_gateway(registry)
        session_id = await handshake(gateway)
        clock.advance(5)

        reply = await gateway.handle_post(session_id, TOOLS_LIST)

        assert reply.status == 200
        assert json.loads(reply.body)["result"]["tools"] == [{"name": "eth_chainId"}]
        assert registry.get(session_id).last_activity_at == clock.now

    @pytest.mark.asyncio
    async def test_notification_gets_202(self) -> None:
        gateway = make_gateway()
        session_id = await handshake(gateway)
        reply = await gateway.handle_post(session_id, INITIALIZED)
        assert reply.status == 202
        assert reply.body == ""

    @pytest.mark.asyncio
    async def test_unknown_session_is_400_even_for_initialize(self) -> None:
        gateway = make_gateway()
        reply = await gateway.handle_post("no-such-session", INITIALIZE)
        assert reply.status == 400
        assert len(gateway.registry) == 0

    @pytest.mark.asyncio
    async def test_malformed_session_token(self) -> None:
        gateway = make_gateway()
        reply = await gateway.handle_post("../../etc/passwd", TOOLS_LIST)
        assert reply.status == 400

    @pytest.mark.asyncio
    async def test_repeat_initialize_on_session(self) -> None:
        gateway = make_gateway()
        session_id = await handshake(gateway)
        reply = await gateway.handle_post(session_id, INITIALIZE)
        assert reply.status == 200
        assert "already initialized" in json.loads(reply.body)["error"]["message"]


class TestTerminate:
    @pytest.mark.asyncio
    async def test_terminate_is_idempotent(self) -> None:
        gateway = make_gateway()
        session_id = await handshake(gateway)

        first = gateway.terminate(session_id)
        second = gateway.terminate(session_id)

        assert first.status == 200
        assert json.loads(first.body) == {"message": "Session terminated"}
        assert second.status == 404
        assert json.loads(second.body) == {"error": "Session not found"}
        assert len(gateway.registry) == 0

    @pytest.mark.asyncio
    async def test_terminated_session_rejects_requests(self) -> None:
        gateway = make_gateway()
        session_id = await handshake(gateway)
        gateway.terminate(session_id)
        assert (await gateway.handle_post(session_id, TOOLS_LIST)).status == 400

    def test_terminate_without_header(self) -> None:
        assert make_gateway().terminate(None).status == 404

    @pytest.mark.asyncio
    async def test_transport_close_removes_session(self) -> None:
        gateway = make_gateway()
        session_id = await handshake(gateway)
        gateway.registry.get(session_id).transport.close()
        assert session_id not in gateway.registry

    @pytest.mark.asyncio
    async def test_aclose_ends_every_session(self) -> None:
        gateway = make_gateway()
        await handshake(gateway)
        await handshake(gateway)
        await gateway.aclose()
        assert len(gateway.registry) == 0


class TestStream:
    @pytest.mark.asyncio
    async def test_check_stream_unknown_session(self) -> None:
        reply = make_gateway().check_stream("missing")
        assert reply is not None and reply.status == 400
        assert make_gateway().check_stream(None).status == 400

    @pytest.mark.asyncio
    async def test_stream_delivers_connect_messages_and_ends_on_terminate(self) -> None:
        gateway = make_gateway()
        session_id = await handshake(gateway)
        assert gateway.check_stream(session_id) is None
        frames: list[bytes] = []
        got_frame = asyncio.Event()

        async def write(frame: bytes) -> None:
            frames.append(frame)
            got_frame.set()

        task = asyncio.create_task(gateway.stream(session_id, write))
        await got_frame.wait()
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": "notifications/message"}
        gateway.registry.get(session_id).transport.publish(message)
        await asyncio.sleep(0.01)
        gateway.terminate(session_id)
        await asyncio.wait_for(task, timeout=1.0)

        assert frames[0] == CONNECTED_FRAME
        assert frames[1] == format_sse_message(message)
        assert len(frames) == 2

    @pytest.mark.asyncio
    async def test_heartbeat_on_quiet_stream(self) -> None:
        gateway = make_gateway(heartbeat_interval=0.01)
        session_id = await handshake(gateway)
        frames: list[bytes] = []

        async def write(frame: bytes) -> None:
            frames.append(frame)

        task = asyncio.create_task(gateway.stream(session_id, write))
        await asyncio.sleep(0.05)
        gateway.terminate(session_id)
        await asyncio.wait_for(task, timeout=1.0)

        assert frames[0] == CONNECTED_FRAME
        assert HEARTBEAT_FRAME in frames[1:]

    @pytest.mark.asyncio
    async def test_stream_releases_queue_when_client_goes_away(self) -> None:
        gateway = make_gateway()
        session_id = await handshake(gateway)
        transport = gateway.registry.get(session_id).transport

        async def write(frame: bytes) -> None:
            raise ConnectionResetError()

        with pytest.raises(ConnectionResetError):
            await gateway.stream(session_id, write)
        assert transport.stream_count == 0
        assert session_id in gateway.registry

    def test_sse_message_frame(self) -> None:
        frame = format_sse_message({"a": 1})
        assert frame == b'event: message\ndata: {"a":1}\n\n'
