"""Tests for the tool catalog and ToolRegistry dispatch."""

import json
from typing import Any

import httpx
import pytest

from ethrelay.core.validation import ValidationError
from ethrelay.tools.catalog import TOOLS, paginate_logs
from ethrelay.tools.registry import ToolRegistry, UnknownToolError

ADDRESS = "0x" + "ab" * 20
BLOCK_HASH = "0x" + "cd" * 32


def recording_handler(result: Any, sent: list[dict[str, Any]]):
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        sent.append({"host": request.url.host, **payload})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    return handler


class TestCatalog:
    def test_tool_names_are_unique(self) -> None:
        names = [spec.name for spec in TOOLS]
        assert len(names) == len(set(names))

    def test_every_tool_accepts_network_and_format(self) -> None:
        for spec in TOOLS:
            props = spec.input_schema()["properties"]
            assert "network" in props, spec.name
            assert props["response_format"]["enum"] == ["json", "markdown"]

    def test_required_arguments_are_declared(self) -> None:
        for spec in TOOLS:
            assert set(spec.required) <= set(spec.properties), spec.name

    def test_renamed_methods(self) -> None:
        methods = {spec.name: spec.method for spec in TOOLS}
        assert methods["eth_getBlockNumber"] == "eth_blockNumber"
        assert methods["eth_getGasPrice"] == "eth_gasPrice"
        assert methods["net_isListening"] == "net_listening"
        assert methods["web3_getClientVersion"] == "web3_clientVersion"

    def test_definition_shape(self) -> None:
        definition = TOOLS[0].definition()
        assert set(definition) == {"name", "description", "inputSchema"}
        assert definition["inputSchema"]["type"] == "object"


class TestPaginateLogs:
    def test_first_page(self) -> None:
        page = paginate_logs(list(range(25)), {"limit": 10})
        assert page["logs"] == list(range(10))
        assert page["pagination"] == {
            "total": 25,
            "count": 10,
            "offset": 0,
            "limit": 10,
            "has_more": True,
            "next_offset": 10,
        }

    def test_last_page(self) -> None:
        page = paginate_logs(list(range(25)), {"limit": 10, "offset": 20})
        assert page["logs"] == [20, 21, 22, 23, 24]
        assert page["pagination"]["has_more"] is False
        assert page["pagination"]["next_offset"] is None

    def test_limit_is_clamped(self) -> None:
        page = paginate_logs([], {"limit": 50_000})
        assert page["pagination"]["limit"] == 10_000

    def test_non_list_result(self) -> None:
        assert paginate_logs(None, {})["pagination"]["total"] == 0


class TestToolRegistry:
    """Validation, parameter building and formatting around the upstream call."""

    @pytest.mark.asyncio
    async def test_call_builds_params_and_formats_json(self, make_upstream) -> None:
        sent: list[dict[str, Any]] = []
        registry = ToolRegistry(make_upstream(recording_handler("0xde0b6b3a7640000", sent)))

        result = await registry.call("eth_getBalance", {"address": ADDRESS, "network": "sepolia"})

        assert sent[0]["method"] == "eth_getBalance"
        assert sent[0]["params"] == [ADDRESS, "latest"]
        assert sent[0]["host"] == "sepolia.infura.io"
        assert result == {"content": [{"type": "text", "text": '"0xde0b6b3a7640000"'}]}

    @pytest.mark.asyncio
    async def test_markdown_format(self, make_upstream) -> None:
        sent: list[dict[str, Any]] = []
        registry = ToolRegistry(make_upstream(recording_handler("0x10", sent)))

        result = await registry.call("eth_getBlockNumber", {"response_format": "markdown"})

        text = result["content"][0]["text"]
        assert "Latest Block Number" in text
        assert "16" in text

    @pytest.mark.asyncio
    async def test_custom_builder(self, make_upstream) -> None:
        sent: list[dict[str, Any]] = []
        registry = ToolRegistry(make_upstream(recording_handler("0x", sent)))

        await registry.call("eth_call", {"to": ADDRESS, "data": "0x70a08231"})

        assert sent[0]["params"] == [{"to": ADDRESS, "data": "0x70a08231"}, "latest"]

    @pytest.mark.asyncio
    async def test_logs_are_paginated(self, make_upstream) -> None:
        sent: list[dict[str, Any]] = []
        logs = [{"logIndex": hex(i)} for i in range(5)]
        registry = ToolRegistry(make_upstream(recording_handler(logs, sent)))

        result = await registry.call(
            "eth_getLogs", {"fromBlock": "0x1", "toBlock": "latest", "limit": 2}
        )

        body = json.loads(result["content"][0]["text"])
        assert body["pagination"]["total"] == 5
        assert len(body["logs"]) == 2
        # Pagination arguments never reach the upstream
        assert sent[0]["params"] == [{"fromBlock": "0x1", "toBlock": "latest", "topics": []}]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, make_upstream) -> None:
        registry = ToolRegistry(make_upstream(lambda request: httpx.Response(500)))
        with pytest.raises(UnknownToolError, match="Unknown tool: eth_sendTransaction"):
            await registry.call("eth_sendTransaction", {})

    @pytest.mark.asyncio
    async def test_invalid_argument_sends_nothing(self, make_upstream) -> None:
        sent: list[dict[str, Any]] = []
        registry = ToolRegistry(make_upstream(recording_handler("0x0", sent)))

        with pytest.raises(ValidationError) as exc_info:
            await registry.call("eth_getBalance", {"address": "not-an-address"})

        assert exc_info.value.field == "address"
        assert sent == []

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, make_upstream) -> None:
        registry = ToolRegistry(make_upstream(lambda request: httpx.Response(500)))
        with pytest.raises(ValidationError) as exc_info:
            await registry.call("eth_getCode", {})
        assert exc_info.value.field == "contractAddress"

    @pytest.mark.asyncio
    async def test_network_outside_allowlist(self, make_upstream) -> None:
        sent: list[dict[str, Any]] = []
        registry = ToolRegistry(make_upstream(recording_handler("0x1", sent)))

        with pytest.raises(ValidationError):
            await registry.call("eth_chainId", {"network": "attacker.example"})
        assert sent == []

    @pytest.mark.asyncio
    async def test_unknown_arguments_are_dropped(self, make_upstream) -> None:
        sent: list[dict[str, Any]] = []
        registry = ToolRegistry(make_upstream(recording_handler("0x1", sent)))

        await registry.call("eth_chainId", {"extra": "ignored"})
        assert sent[0]["params"] == []

    def test_list_definitions(self, make_upstream) -> None:
        registry = ToolRegistry(make_upstream(lambda request: httpx.Response(500)))
        definitions = registry.list_definitions()
        assert len(definitions) == len(TOOLS) == len(registry)
        assert "eth_getLogs" in registry
