"""Tests for direct-pipe (stdin/stdout) mode."""

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from ethrelay.rpc.protocol import INVALID_REQUEST, PARSE_ERROR
from ethrelay.rpc.stdio import run_direct_pipe


class FakePipe:
    """Feeds scripted input lines and collects output lines."""

    def __init__(self, *lines: str) -> None:
        self._lines = list(lines)
        self.output: list[str] = []

    async def read_line(self) -> str:
        await asyncio.sleep(0)
        if not self._lines:
            return ""
        return self._lines.pop(0) + "\n"

    def write_line(self, line: str) -> None:
        self.output.append(line)

    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.output]


def make_tools() -> MagicMock:
    tools = MagicMock()
    tools.list_definitions.return_value = [{"name": "eth_blockNumber"}]
    tools.call = AsyncMock(return_value={"content": [{"type": "text", "text": '"0x10"'}]})
    return tools


def rpc(method: str, request_id: int | None = None, **params: Any) -> str:
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method, "params": params}
    if request_id is not None:
        message["id"] = request_id
    return json.dumps(message)


class TestDirectPipe:
    @pytest.mark.asyncio
    async def test_session_lifecycle(self) -> None:
        pipe = FakePipe(
            rpc("initialize", 1, protocolVersion="2025-03-26"),
            rpc("notifications/initialized"),
            rpc("tools/list", 2),
            rpc("tools/call", 3, name="eth_blockNumber", arguments={}),
        )
        tools = make_tools()

        await run_direct_pipe(tools, pipe.read_line, pipe.write_line)

        by_id = {m["id"]: m for m in pipe.messages()}
        # Notification produces no output
        assert sorted(by_id) == [1, 2, 3]
        assert by_id[1]["result"]["protocolVersion"] == "2025-03-26"
        assert by_id[2]["result"]["tools"] == [{"name": "eth_blockNumber"}]
        assert by_id[3]["result"]["content"][0]["text"] == '"0x10"'
        tools.call.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_parse_error_keeps_session_alive(self) -> None:
        pipe = FakePipe("{not json", rpc("ping", 7))

        await run_direct_pipe(make_tools(), pipe.read_line, pipe.write_line)

        messages = pipe.messages()
        assert messages[0]["id"] is None
        assert messages[0]["error"]["code"] == PARSE_ERROR
        assert messages[1] == {"jsonrpc": "2.0", "id": 7, "result": {}}

    @pytest.mark.asyncio
    async def test_invalid_request_line_gets_invalid_request(self) -> None:
        pipe = FakePipe('{"jsonrpc":"1.0","method":"ping","id":3}', rpc("ping", 4))

        await run_direct_pipe(make_tools(), pipe.read_line, pipe.write_line)

        messages = pipe.messages()
        assert messages[0]["id"] == 3
        assert messages[0]["error"]["code"] == INVALID_REQUEST
        assert messages[1]["id"] == 4

    @pytest.mark.asyncio
    async def test_blank_lines_are_skipped(self) -> None:
        # "" would read as EOF, so blank lines here are whitespace only
        pipe = FakePipe("   ", "\t", rpc("ping", 1))

        await run_direct_pipe(make_tools(), pipe.read_line, pipe.write_line)

        assert len(pipe.output) == 1

    @pytest.mark.asyncio
    async def test_eof_waits_for_in_flight_requests(self) -> None:
        release = asyncio.Event()
        tools = make_tools()

        async def slow_call(*args: Any, **kwargs: Any) -> dict[str, Any]:
            await release.wait()
            return {"content": []}

        tools.call = AsyncMock(side_effect=slow_call)
        pipe = FakePipe(rpc("tools/call", 1, name="eth_blockNumber"))

        task = asyncio.create_task(run_direct_pipe(tools, pipe.read_line, pipe.write_line))
        await asyncio.sleep(0.01)
        assert not task.done()
        assert pipe.output == []

        release.set()
        await asyncio.wait_for(task, timeout=1.0)
        assert pipe.messages()[0]["result"] == {"content": []}

    @pytest.mark.asyncio
    async def test_retry_notifications_go_to_output(self) -> None:
        tools = make_tools()

        async def call_with_retry(name: str, arguments: dict[str, Any], *, on_retry) -> dict[str, Any]:
            from ethrelay.upstream.classify import FailureCategory
            from ethrelay.upstream.client import RetryNotice

            on_retry(RetryNotice(
                method="eth_blockNumber",
                network="mainnet",
                attempt=1,
                max_attempts=3,
                delay_ms=1000,
                category=FailureCategory.SERVER_ERROR,
                message="HTTP 503",
            ))
            return {"content": []}

        tools.call = AsyncMock(side_effect=call_with_retry)
        pipe = FakePipe(rpc("tools/call", 1, name="eth_blockNumber"))

        await run_direct_pipe(tools, pipe.read_line, pipe.write_line)

        messages = pipe.messages()
        assert messages[0]["method"] == "notifications/message"
        assert messages[-1]["id"] == 1
