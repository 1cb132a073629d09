"""Declarative catalog of relayed tools.

Each ToolSpec maps a client-facing tool name to one upstream JSON-RPC method,
declares its arguments as JSON schema, and says how validated arguments become
the positional ``params`` list. Every tool also accepts ``network`` and
``response_format``; those are added by ``ToolSpec.input_schema`` and never
reach the upstream params.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ethrelay.core.validation import ALLOWED_NETWORKS

# Argument schemas
ADDRESS = {
    "type": "string",
    "pattern": "^0x[a-fA-F0-9]{40}$",
    "description": "20-byte address, 0x followed by 40 hex characters",
}
HASH = {
    "type": "string",
    "pattern": "^0x[a-fA-F0-9]{64}$",
    "description": "32-byte hash, 0x followed by 64 hex characters",
}
BLOCK_TAG = {
    "type": "string",
    "pattern": "^(latest|earliest|pending|safe|finalized|0x[a-fA-F0-9]+)$",
    "description": "'latest', 'earliest', 'pending', 'safe', 'finalized', or hex block number",
}
HEX_DATA = {
    "type": "string",
    "pattern": "^0x[a-fA-F0-9]*$",
    "description": "Hex string starting with 0x",
}
HEX_QUANTITY = {
    "type": "string",
    "pattern": "^0x(0|[1-9a-fA-F][a-fA-F0-9]*)$",
    "description": "Hex quantity without leading zeros (e.g. '0x1', '0xa')",
}
HEX_INDEX = {
    "type": "string",
    "pattern": "^0x[a-fA-F0-9]+$",
    "description": "Hex index (e.g. '0x0')",
}
TOPICS = {
    "type": "array",
    "items": {"type": ["string", "array", "null"]},
    "description": "Log topic filters",
}

NETWORK_ARG = {
    "type": "string",
    "enum": list(ALLOWED_NETWORKS),
    "default": "mainnet",
    "description": "Network to query. Defaults to 'mainnet'.",
}
RESPONSE_FORMAT_ARG = {
    "type": "string",
    "enum": ["json", "markdown"],
    "default": "json",
    "description": "Output format: 'json' (default) or 'markdown'.",
}

ParamBuilder = Callable[[dict[str, Any]], list[Any]]
ResultShaper = Callable[[Any, dict[str, Any]], Any]


def _with_default(schema: dict[str, Any], default: Any) -> dict[str, Any]:
    return {**schema, "default": default}


@dataclass(frozen=True)
class ToolSpec:
    """One relayed tool.

    Attributes:
        name: Tool name exposed to clients.
        method: Upstream JSON-RPC method.
        description: Human-readable summary for tools/list.
        properties: Tool-specific argument schemas, in positional order.
        required: Names of required arguments.
        build_params: Custom params builder. Defaults to the property values
            in declaration order, falling back to each schema's default.
        shape_result: Optional post-processing of the upstream result.
    """

    name: str
    method: str
    description: str
    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    build_params: ParamBuilder | None = None
    shape_result: ResultShaper | None = None

    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                **self.properties,
                "network": NETWORK_ARG,
                "response_format": RESPONSE_FORMAT_ARG,
            },
            "required": list(self.required),
        }

    def params_for(self, arguments: dict[str, Any]) -> list[Any]:
        if self.build_params is not None:
            return self.build_params(arguments)
        return [
            arguments.get(name, schema.get("default"))
            for name, schema in self.properties.items()
        ]

    def definition(self) -> dict[str, Any]:
        """Entry for an MCP tools/list response."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }


# === Custom builders ===


def _call_params(args: dict[str, Any]) -> list[Any]:
    return [{"to": args["to"], "data": args["data"]}, "latest"]


def _estimate_gas_params(args: dict[str, Any]) -> list[Any]:
    tx = {k: args[k] for k in ("from", "to", "value") if args.get(k) is not None}
    return [tx, "latest"]


def _filter_params(args: dict[str, Any]) -> list[Any]:
    return [{
        "fromBlock": args.get("fromBlock", "earliest"),
        "toBlock": args.get("toBlock", "latest"),
        "topics": args.get("topics", []),
    }]


def _logs_params(args: dict[str, Any]) -> list[Any]:
    log_filter: dict[str, Any] = {
        "fromBlock": args["fromBlock"],
        "toBlock": args["toBlock"],
    }
    if args.get("address"):
        log_filter["address"] = args["address"]
    log_filter["topics"] = args.get("topics", [])
    return [log_filter]


def _at_latest(*names: str) -> ParamBuilder:
    def build(args: dict[str, Any]) -> list[Any]:
        return [args[name] for name in names] + ["latest"]

    return build


def paginate_logs(result: Any, args: dict[str, Any]) -> dict[str, Any]:
    """Slice an eth_getLogs result and attach pagination metadata.

    The upstream has no native pagination, so the full result is fetched
    and windowed here.
    """
    logs = result if isinstance(result, list) else []
    limit = max(1, min(10_000, int(args.get("limit", 1000))))
    offset = max(0, int(args.get("offset", 0)))

    page = logs[offset:offset + limit]
    has_more = offset + len(page) < len(logs)
    return {
        "logs": page,
        "pagination": {
            "total": len(logs),
            "count": len(page),
            "offset": offset,
            "limit": limit,
            "has_more": has_more,
            "next_offset": offset + len(page) if has_more else None,
        },
    }


# === Catalog ===

TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        "eth_getBlockNumber", "eth_blockNumber",
        "Get the number of the most recent block.",
    ),
    ToolSpec(
        "eth_call", "eth_call",
        "Execute a read-only contract call at the latest block.",
        {"to": ADDRESS, "data": HEX_DATA},
        required=("to", "data"),
        build_params=_call_params,
    ),
    ToolSpec("eth_chainId", "eth_chainId", "Get the chain ID of the network."),
    ToolSpec(
        "eth_estimateGas", "eth_estimateGas",
        "Estimate the gas a transaction would use.",
        {"from": ADDRESS, "to": ADDRESS, "value": HEX_QUANTITY},
        required=("to",),
        build_params=_estimate_gas_params,
    ),
    ToolSpec(
        "eth_getFeeHistory", "eth_feeHistory",
        "Get base fee and reward history for a range of blocks.",
        {
            "blockCount": HEX_QUANTITY,
            "newestBlock": BLOCK_TAG,
            "rewardPercentiles": {
                "type": "array",
                "items": {"type": "number", "minimum": 0, "maximum": 100},
            },
        },
        required=("blockCount", "newestBlock", "rewardPercentiles"),
    ),
    ToolSpec("eth_getGasPrice", "eth_gasPrice", "Get the current gas price in wei."),
    ToolSpec(
        "eth_getBalance", "eth_getBalance",
        "Get the balance of an address in wei.",
        {"address": ADDRESS, "tag": _with_default(BLOCK_TAG, "latest")},
        required=("address",),
    ),
    ToolSpec(
        "eth_getBlockByHash", "eth_getBlockByHash",
        "Get a block by its hash.",
        {"blockHash": HASH, "fullTransactions": {"type": "boolean", "default": False}},
        required=("blockHash",),
    ),
    ToolSpec(
        "eth_getBlockByNumber", "eth_getBlockByNumber",
        "Get a block by number or tag.",
        {"blockNumber": BLOCK_TAG, "fullTransactions": {"type": "boolean", "default": False}},
        required=("blockNumber",),
    ),
    ToolSpec(
        "eth_getBlockTransactionCountByHash", "eth_getBlockTransactionCountByHash",
        "Get the number of transactions in a block, by block hash.",
        {"blockHash": HASH},
        required=("blockHash",),
    ),
    ToolSpec(
        "eth_getBlockTransactionCountByNumber", "eth_getBlockTransactionCountByNumber",
        "Get the number of transactions in a block, by block number.",
        {"blockNumber": BLOCK_TAG},
        required=("blockNumber",),
    ),
    ToolSpec(
        "eth_getCode", "eth_getCode",
        "Get the deployed bytecode at an address.",
        {"contractAddress": ADDRESS},
        required=("contractAddress",),
        build_params=_at_latest("contractAddress"),
    ),
    ToolSpec(
        "eth_getFilterChanges", "eth_getFilterChanges",
        "Poll a filter for changes since the last poll.",
        {"filterId": HEX_DATA},
        required=("filterId",),
    ),
    ToolSpec(
        "eth_getFilterLogs", "eth_getFilterLogs",
        "Get all logs matching a filter.",
        {"filterId": HEX_DATA},
        required=("filterId",),
    ),
    ToolSpec(
        "eth_getLogs", "eth_getLogs",
        "Get event logs for a block range, with offset/limit pagination.",
        {
            "fromBlock": BLOCK_TAG,
            "toBlock": BLOCK_TAG,
            "address": ADDRESS,
            "topics": TOPICS,
            "limit": {"type": "integer", "minimum": 1, "maximum": 10000, "default": 1000},
            "offset": {"type": "integer", "minimum": 0, "default": 0},
        },
        required=("fromBlock", "toBlock"),
        build_params=_logs_params,
        shape_result=paginate_logs,
    ),
    ToolSpec(
        "eth_getStorageAt", "eth_getStorageAt",
        "Read a storage slot of a contract at the latest block.",
        {"address": ADDRESS, "position": HEX_DATA},
        required=("address", "position"),
        build_params=_at_latest("address", "position"),
    ),
    ToolSpec(
        "eth_getTransactionByBlockHashAndIndex", "eth_getTransactionByBlockHashAndIndex",
        "Get a transaction by block hash and index.",
        {"blockHash": HASH, "index": HEX_INDEX},
        required=("blockHash", "index"),
    ),
    ToolSpec(
        "eth_getTransactionByBlockNumberAndIndex", "eth_getTransactionByBlockNumberAndIndex",
        "Get a transaction by block number and index.",
        {"blockNumber": BLOCK_TAG, "transactionIndex": HEX_INDEX},
        required=("blockNumber", "transactionIndex"),
    ),
    ToolSpec(
        "eth_getTransactionByHash", "eth_getTransactionByHash",
        "Get a transaction by its hash.",
        {"transactionHash": HASH},
        required=("transactionHash",),
    ),
    ToolSpec(
        "eth_getTransactionCount", "eth_getTransactionCount",
        "Get the number of transactions sent from an address (its nonce).",
        {"address": ADDRESS, "tag": _with_default(BLOCK_TAG, "latest")},
        required=("address",),
    ),
    ToolSpec(
        "eth_getTransactionReceipt", "eth_getTransactionReceipt",
        "Get the receipt of a mined transaction.",
        {"transactionHash": HASH},
        required=("transactionHash",),
    ),
    ToolSpec(
        "eth_getUncleByBlockHashAndIndex", "eth_getUncleByBlockHashAndIndex",
        "Get an uncle block by block hash and index.",
        {"blockHash": HASH, "index": HEX_INDEX},
        required=("blockHash", "index"),
    ),
    ToolSpec(
        "eth_getUncleByBlockNumberAndIndex", "eth_getUncleByBlockNumberAndIndex",
        "Get an uncle block by block number and index.",
        {"blockNumber": BLOCK_TAG, "index": HEX_INDEX},
        required=("blockNumber", "index"),
    ),
    ToolSpec(
        "eth_getUncleCountByBlockHash", "eth_getUncleCountByBlockHash",
        "Get the number of uncles in a block, by block hash.",
        {"blockHash": HASH},
        required=("blockHash",),
    ),
    ToolSpec(
        "eth_getUncleCountByBlockNumber", "eth_getUncleCountByBlockNumber",
        "Get the number of uncles in a block, by block number.",
        {"blockNumber": _with_default(BLOCK_TAG, "latest")},
    ),
    ToolSpec("eth_getWork", "eth_getWork", "Get the current proof-of-work package."),
    ToolSpec("eth_getHashrate", "eth_hashrate", "Get the node's hashes per second."),
    ToolSpec("eth_isMining", "eth_mining", "Check whether the node is mining."),
    ToolSpec(
        "eth_newBlockFilter", "eth_newBlockFilter",
        "Create a filter that reports new blocks.",
    ),
    ToolSpec(
        "eth_newFilter", "eth_newFilter",
        "Create a log filter.",
        {
            "fromBlock": _with_default(BLOCK_TAG, "earliest"),
            "toBlock": _with_default(BLOCK_TAG, "latest"),
            "topics": TOPICS,
        },
        build_params=_filter_params,
    ),
    ToolSpec(
        "eth_getProtocolVersion", "eth_protocolVersion",
        "Get the Ethereum protocol version.",
    ),
    ToolSpec(
        "eth_sendRawTransaction", "eth_sendRawTransaction",
        "Broadcast a signed raw transaction.",
        {"signedTransaction": HEX_DATA},
        required=("signedTransaction",),
    ),
    ToolSpec(
        "eth_submitWork", "eth_submitWork",
        "Submit a proof-of-work solution.",
        {"nonce": HEX_DATA, "powHash": HASH, "mixDigest": HASH},
        required=("nonce", "powHash", "mixDigest"),
    ),
    ToolSpec("eth_isSyncing", "eth_syncing", "Get the node's sync status."),
    ToolSpec(
        "eth_uninstallFilter", "eth_uninstallFilter",
        "Remove a filter.",
        {"filterId": HEX_DATA},
        required=("filterId",),
    ),
    ToolSpec("net_isListening", "net_listening", "Check whether the node accepts peers."),
    ToolSpec("net_getPeerCount", "net_peerCount", "Get the number of connected peers."),
    ToolSpec("net_getVersion", "net_version", "Get the network ID."),
    ToolSpec(
        "parity_getNextNonce", "parity_nextNonce",
        "Get the next available nonce for an address, including pending transactions.",
        {"address": ADDRESS},
        required=("address",),
    ),
    ToolSpec(
        "web3_getClientVersion", "web3_clientVersion",
        "Get the client software version.",
    ),
)
