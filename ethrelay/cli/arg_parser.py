"""Argument parsing for the ethrelay CLI."""

import argparse
from pathlib import Path

from ethrelay import __version__


def add_config_arg(parser: argparse.ArgumentParser) -> None:
    """Add --config argument to a parser."""
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a JSON config file (default: ./ethrelay.json if present)",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="ethrelay",
        description="Session-aware MCP relay for Ethereum JSON-RPC via Infura",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command")

    # tools - print the tool catalog and exit
    tools_parser = subparsers.add_parser(
        "tools",
        help="List available tools",
    )
    tools_parser.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Print tool definitions as JSON",
    )

    # Serve options (no subcommand)
    parser.add_argument(
        "--http",
        action="store_true",
        help="Serve streamable HTTP instead of stdin/stdout",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="HTTP port (default: config server.port, 3001)",
    )
    add_config_arg(parser)
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="DEBUG output to stderr",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Also write logs to <dir>/server.log (rotated)",
    )

    return parser.parse_args(argv)
