"""Serve entry points for ethrelay.

Two delivery modes share one component graph:

    ethrelay                 # direct pipe: JSON-RPC lines on stdin/stdout
    ethrelay --http -p 3001  # streamable HTTP on http://127.0.0.1:3001/mcp

Example (HTTP):
    curl -i -X POST http://localhost:3001/mcp \\
        -H "Content-Type: application/json" \\
        -d '{"jsonrpc":"2.0","method":"initialize","params":{},"id":1}'

    # Follow-up requests carry the returned Mcp-Session-Id header
"""

import asyncio
import json
import logging
import signal
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from ethrelay import SERVER_NAME, __version__
from ethrelay.config.loader import load_config
from ethrelay.config.schema import Config
from ethrelay.core.errors import RelayError
from ethrelay.rpc.bootstrap import (
    build_components,
    configure_server_logging,
    console_level_from_env,
)
from ethrelay.rpc.http import MCP_PATH, run_http_server
from ethrelay.rpc.stdio import run_direct_pipe
from ethrelay.tools.catalog import TOOLS

logger = logging.getLogger(__name__)

# Load .env file if present
load_dotenv()

# stdout belongs to the protocol in direct-pipe mode
err_console = Console(stderr=True)


def _load(config_path: Path | None) -> Config | None:
    try:
        return load_config(config_path)
    except RelayError as e:
        err_console.print(f"[bold red]Configuration error:[/bold red] {e.message}")
        return None


async def run_stdio(
    config_path: Path | None = None,
    verbose: bool = False,
    log_dir: Path | None = None,
) -> int:
    """Serve a single session over stdin/stdout until EOF.

    Returns:
        Process exit code.
    """
    configure_server_logging(log_dir, console_level=console_level_from_env(verbose))
    config = _load(config_path)
    if config is None:
        return 1

    components = build_components(config)
    logger.info("%s v%s serving on stdio", SERVER_NAME, __version__)
    try:
        await run_direct_pipe(components.tools)
    finally:
        await components.client.aclose()
    return 0


async def run_http(
    port: int | None = None,
    config_path: Path | None = None,
    verbose: bool = False,
    log_dir: Path | None = None,
) -> int:
    """Serve streamable HTTP until SIGINT/SIGTERM.

    Shutdown stops accepting connections first, then ends every session,
    then closes the upstream client.

    Returns:
        Process exit code.
    """
    server_log_file = configure_server_logging(
        log_dir,
        level=logging.INFO,
        console_level=console_level_from_env(verbose),
    )
    config = _load(config_path)
    if config is None:
        return 1

    effective_port = port if port is not None else config.server.port
    components = build_components(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    started_event = asyncio.Event()
    server_task = asyncio.create_task(
        run_http_server(
            components.frontend,
            port=effective_port,
            host=config.server.host,
            allow_remote_bind=config.server.allow_remote_bind,
            started_event=started_event,
            stop_event=stop_event,
        )
    )

    try:
        # Wait for bind success, or for the server task to fail first
        started = asyncio.create_task(started_event.wait())
        await asyncio.wait({server_task, started}, timeout=5.0, return_when=asyncio.FIRST_COMPLETED)
        started.cancel()
        if server_task.done():
            server_task.result()  # Raises the bind error, if any
        if not started_event.is_set():
            err_console.print("[bold red]Error:[/bold red] Server failed to start (bind timeout)")
            stop_event.set()
            await server_task
            return 1

        components.sweep_timer.start()

        err_console.print(f"\n[bold]{SERVER_NAME}[/bold] v{__version__}")
        err_console.print(f"   Streamable HTTP: http://localhost:{effective_port}{MCP_PATH}")
        err_console.print(f"   Health:          http://localhost:{effective_port}/health")
        if server_log_file is not None:
            err_console.print(f"   Server log:      {server_log_file}")
        err_console.print("[dim]Press Ctrl+C to stop[/dim]\n")

        await server_task
        logger.info("Shutting down gracefully...")
        return 0
    except OSError as e:
        err_console.print(f"[bold red]Error:[/bold red] Could not bind port {effective_port}: {e}")
        return 1
    except ValueError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        return 1
    finally:
        if not server_task.done():
            stop_event.set()
            await server_task
        await components.aclose()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass


def list_tools(as_json: bool = False) -> int:
    """Print the tool catalog (rich table, or JSON definitions)."""
    console = Console()
    if as_json:
        console.print_json(json.dumps([spec.definition() for spec in TOOLS]))
        return 0

    table = Table(title=f"{SERVER_NAME} tools ({len(TOOLS)})")
    table.add_column("Tool", style="cyan", no_wrap=True)
    table.add_column("Upstream method", style="magenta", no_wrap=True)
    table.add_column("Required")
    table.add_column("Description")
    for spec in TOOLS:
        table.add_row(
            spec.name,
            spec.method,
            ", ".join(spec.required) or "-",
            spec.description,
        )
    console.print(table)
    return 0
