"""Render tool results as JSON or markdown, bounded in size."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

DEFAULT_CHARACTER_LIMIT = 100_000


def truncation_notice(item_count: int, limit: int) -> str:
    return (
        f"\n\n[Response truncated: {item_count} items found, showing first {limit}. "
        "Use pagination parameters for more results.]"
    )


def hex_to_int(value: Any) -> int | None:
    if not isinstance(value, str) or not value.startswith("0x"):
        return None
    if value == "0x":
        return 0
    try:
        return int(value, 16)
    except ValueError:
        return None


def _dec(value: Any) -> str:
    n = hex_to_int(value)
    return "N/A" if n is None else str(n)


def _wei(value: Any) -> str:
    n = hex_to_int(value)
    return "N/A" if n is None else f"{n} wei"


def _eth(value: Any) -> str:
    n = hex_to_int(value)
    if n is None:
        return "N/A"
    if n < 10**14:
        return f"{n} wei"
    return f"{n / 10**18:.6f} ETH"


def _timestamp(value: Any) -> str:
    n = hex_to_int(value)
    if n is None:
        return "N/A"
    return datetime.fromtimestamp(n, tz=timezone.utc).isoformat()


def _short(value: Any, chars: int = 8) -> str:
    if not isinstance(value, str) or len(value) <= chars * 2 + 2:
        return str(value) if value else "N/A"
    return f"{value[:chars + 2]}...{value[-chars:]}"


def _table(title: str, rows: list[tuple[str, str]]) -> str:
    lines = [f"# {title}", "", "| Property | Value |", "|----------|-------|"]
    lines.extend(f"| {name} | {value} |" for name, value in rows)
    return "\n".join(lines) + "\n"


def _block(block: dict[str, Any]) -> str:
    return _table(f"Block {_dec(block.get('number'))}", [
        ("Hash", f"`{block.get('hash')}`"),
        ("Parent Hash", f"`{_short(block.get('parentHash'))}`"),
        ("Timestamp", _timestamp(block.get("timestamp"))),
        ("Miner", f"`{block.get('miner')}`"),
        ("Gas Used", _dec(block.get("gasUsed"))),
        ("Gas Limit", _dec(block.get("gasLimit"))),
        ("Base Fee", _wei(block.get("baseFeePerGas"))),
        ("Transactions", str(len(block.get("transactions") or []))),
        ("Uncles", str(len(block.get("uncles") or []))),
    ])


def _transaction(tx: dict[str, Any]) -> str:
    pending = tx.get("blockNumber") is None
    return _table("Transaction", [
        ("Hash", f"`{tx.get('hash')}`"),
        ("Status", "Pending" if pending else "Confirmed"),
        ("Block", "Pending" if pending else _dec(tx.get("blockNumber"))),
        ("From", f"`{tx.get('from')}`"),
        ("To", f"`{tx.get('to') or 'Contract Creation'}`"),
        ("Value", _eth(tx.get("value"))),
        ("Gas", _dec(tx.get("gas"))),
        ("Gas Price", _wei(tx.get("gasPrice"))),
        ("Nonce", _dec(tx.get("nonce"))),
    ])


def _receipt(receipt: dict[str, Any]) -> str:
    status = "Success" if receipt.get("status") == "0x1" else "Failed"
    contract = receipt.get("contractAddress")
    return _table("Transaction Receipt", [
        ("Status", f"**{status}**"),
        ("Transaction Hash", f"`{receipt.get('transactionHash')}`"),
        ("Block", _dec(receipt.get("blockNumber"))),
        ("From", f"`{receipt.get('from')}`"),
        ("To", f"`{receipt.get('to') or 'Contract Created'}`"),
        ("Contract Address", f"`{contract}`" if contract else "N/A"),
        ("Gas Used", _dec(receipt.get("gasUsed"))),
        ("Effective Gas Price", _wei(receipt.get("effectiveGasPrice"))),
        ("Logs", f"{len(receipt.get('logs') or [])} events"),
    ])


def _logs(result: dict[str, Any]) -> str:
    logs = result.get("logs") or []
    if not logs:
        return "No logs found.\n"
    parts = [f"# Event Logs\n\nFound **{len(logs)}** log entries.\n"]
    for i, entry in enumerate(logs[:10], start=1):
        parts.append(_table(f"Log {i}", [
            ("Address", f"`{entry.get('address')}`"),
            ("Block", _dec(entry.get("blockNumber"))),
            ("Transaction", f"`{_short(entry.get('transactionHash'))}`"),
            ("Topics", str(len(entry.get("topics") or []))),
        ]).replace("# Log", "## Log", 1))
    if len(logs) > 10:
        parts.append(f"*...and {len(logs) - 10} more logs (showing first 10)*\n")
    pagination = result.get("pagination")
    if isinstance(pagination, dict) and pagination.get("has_more"):
        parts.append(f"More results available from offset {pagination.get('next_offset')}.\n")
    return "\n".join(parts)


def _hex_value(label: str, value: Any) -> str:
    return f"# {label}\n\n**Value:** {_dec(value)}\n\nRaw hex: `{value}`\n"


_HEX_LABELS = {
    "eth_getBlockNumber": "Latest Block Number",
    "eth_chainId": "Chain ID",
    "eth_getTransactionCount": "Transaction Count (Nonce)",
    "eth_getBlockTransactionCountByHash": "Block Transaction Count",
    "eth_getBlockTransactionCountByNumber": "Block Transaction Count",
    "eth_getUncleCountByBlockHash": "Uncle Count",
    "eth_getUncleCountByBlockNumber": "Uncle Count",
    "eth_estimateGas": "Estimated Gas",
    "eth_getStorageAt": "Storage Value",
    "net_getPeerCount": "Peer Count",
    "eth_getHashrate": "Hashrate",
    "parity_getNextNonce": "Next Nonce",
}


def format_markdown(result: Any, tool_name: str) -> str:
    """Human-oriented rendering, specialised for common result shapes."""
    if result is None:
        return "No data returned."

    if tool_name in _HEX_LABELS and isinstance(result, str):
        return _hex_value(_HEX_LABELS[tool_name], result)

    match tool_name:
        case "eth_getBlockByHash" | "eth_getBlockByNumber" if isinstance(result, dict):
            return _block(result)
        case (
            "eth_getTransactionByHash"
            | "eth_getTransactionByBlockHashAndIndex"
            | "eth_getTransactionByBlockNumberAndIndex"
        ) if isinstance(result, dict):
            return _transaction(result)
        case "eth_getTransactionReceipt" if isinstance(result, dict):
            return _receipt(result)
        case "eth_getLogs" if isinstance(result, dict):
            return _logs(result)
        case "eth_getBalance":
            return f"# Account Balance\n\n**Balance:** {_eth(result)}\n\nRaw value: `{result}`\n"
        case "eth_getGasPrice":
            n = hex_to_int(result)
            gwei = "N/A" if n is None else f"{n / 10**9:.2f} Gwei"
            return f"# Current Gas Price\n\n**Price:** {gwei}\n\nRaw value: `{result}`\n"
        case "eth_isSyncing":
            if result is False:
                return "# Sync Status\n\n**Status:** Fully synced\n"
            if isinstance(result, dict):
                return _table("Sync Status", [
                    ("Starting Block", _dec(result.get("startingBlock"))),
                    ("Current Block", _dec(result.get("currentBlock"))),
                    ("Highest Block", _dec(result.get("highestBlock"))),
                ])
        case "net_isListening" | "eth_isMining":
            return f"# Result\n\n**{'Yes' if result else 'No'}**\n"
        case "net_getVersion":
            return f"# Network Version\n\n**Network ID:** {result}\n"
        case "web3_getClientVersion" | "eth_getProtocolVersion":
            return f"# Client Version\n\n**Version:** {result}\n"
        case "eth_call":
            return f"# Contract Call Result\n\n**Return Data:**\n```\n{result}\n```\n"
        case "eth_getCode":
            if not result or result == "0x":
                return "# Contract Code\n\n**No code at this address** (externally owned account)\n"
            suffix = "..." if len(result) > 200 else ""
            return f"# Contract Code\n\n**Size:** {(len(result) - 2) // 2} bytes\n\n```\n{result[:200]}{suffix}\n```\n"

    if isinstance(result, str):
        return f"# Result\n\n`{result}`\n"
    return f"# Result\n\n```json\n{json.dumps(result, indent=2)}\n```\n"


def _item_count(result: Any) -> int:
    if isinstance(result, dict) and isinstance(result.get("logs"), list):
        return len(result["logs"])
    if isinstance(result, list):
        return len(result)
    return 1


def format_result(
    result: Any,
    tool_name: str,
    response_format: str = "json",
    character_limit: int = DEFAULT_CHARACTER_LIMIT,
) -> str:
    """Render a tool result as text, cut to ``character_limit`` characters.

    Args:
        result: Upstream result (after any tool-specific shaping).
        tool_name: Tool that produced it, for markdown specialisation.
        response_format: "json" or "markdown".
        character_limit: Maximum length before the truncation notice.

    Returns:
        The rendered text, with a truncation notice appended when cut.
    """
    if response_format == "markdown":
        text = format_markdown(result, tool_name)
    else:
        text = json.dumps(result, indent=2)

    if len(text) > character_limit:
        text = text[:character_limit] + truncation_notice(_item_count(result), character_limit)
    return text
