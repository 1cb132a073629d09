"""Object graph bootstrap for ethrelay server components.

Single place where configuration turns into wired components, so the CLI
and the integration tests build the same graph.

Usage:
    configure_server_logging(log_dir=Path("logs"))
    components = build_components(load_config())
    await run_direct_pipe(components.tools)
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path

import httpx

from ethrelay.config.schema import Config
from ethrelay.rpc.channel import SessionTransport
from ethrelay.rpc.gateway import SessionGateway
from ethrelay.rpc.handler import SessionHandler
from ethrelay.rpc.http import HttpFrontend
from ethrelay.rpc.security import SecurityGate
from ethrelay.rpc.sessions import SessionRegistry, SweepTimer
from ethrelay.tools.registry import ToolRegistry
from ethrelay.upstream.client import UpstreamClient

logger = logging.getLogger(__name__)

LOGGER_NAMESPACE = "ethrelay"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_server_logging(
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console_level: int = logging.WARNING,
) -> Path | None:
    """Configure logging for the ethrelay namespace.

    Console output always goes to stderr (stdout carries protocol traffic
    in direct-pipe mode). With ``log_dir``, a rotating ``server.log``
    (max 5MB per file, 3 backups) is added as well.

    Args:
        log_dir: Directory for server.log. Created if missing. None disables
            file logging.
        level: Logging level for file output.
        console_level: Logging level for console output.

    Returns:
        Path to the server.log file, or None without ``log_dir``.
    """
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))

    relay_logger = logging.getLogger(LOGGER_NAMESPACE)
    # Remove any existing handlers to avoid duplicates on reconfigure
    relay_logger.handlers.clear()
    relay_logger.addHandler(console_handler)
    relay_logger.propagate = False

    log_file = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "server.log"
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        relay_logger.addHandler(file_handler)
        relay_logger.setLevel(min(level, console_level))
    else:
        relay_logger.setLevel(console_level)

    logger.info("Server logging configured: %s", log_file or "console only")
    return log_file


def console_level_from_env(verbose: bool = False, environ: Mapping[str, str] | None = None) -> int:
    """DEBUG when ``verbose`` or the DEBUG env var is set, else WARNING."""
    env = os.environ if environ is None else environ
    if verbose or env.get("DEBUG", "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    return logging.WARNING


@dataclass
class ServerComponents:
    """Everything a running relay needs, wired together.

    Attributes:
        client: Upstream JSON-RPC client (one connection pool per process).
        tools: Tool registry shared by every session.
        registry: Session registry (networked mode).
        sweep_timer: Periodic idle-session sweep (networked mode).
        gateway: Session gateway (networked mode).
        gate: Host, CORS and rate limit policy (networked mode).
        frontend: HTTP request router (networked mode).
    """

    client: UpstreamClient
    tools: ToolRegistry
    registry: SessionRegistry
    sweep_timer: SweepTimer
    gateway: SessionGateway
    gate: SecurityGate
    frontend: HttpFrontend

    async def aclose(self) -> None:
        """Stop sweeping, end every session, close the upstream client."""
        await self.sweep_timer.stop()
        await self.gateway.aclose()
        await self.client.aclose()


def build_components(
    config: Config,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    environ: dict[str, str] | None = None,
) -> ServerComponents:
    """Build the component graph from configuration.

    Args:
        config: Loaded configuration.
        transport: Optional httpx transport for the upstream client (tests).
        environ: Environment used to resolve the API key. Defaults to os.environ.
    """
    client = UpstreamClient(config.upstream, transport=transport, environ=environ)
    tools = ToolRegistry(client, character_limit=config.output.character_limit)

    session_config = config.sessions
    registry = SessionRegistry(
        max_sessions=session_config.max_sessions,
        timeout=session_config.timeout_ms / 1000,
        max_lifetime=(
            session_config.max_lifetime_ms / 1000
            if session_config.max_lifetime_ms is not None
            else None
        ),
    )
    sweep_timer = SweepTimer(registry, interval=session_config.sweep_interval_ms / 1000)

    def handler_factory(session_transport: SessionTransport) -> SessionHandler:
        return SessionHandler(tools, publish=session_transport.publish)

    gateway = SessionGateway(
        registry,
        handler_factory,
        heartbeat_interval=session_config.heartbeat_interval_ms / 1000,
    )
    gate = SecurityGate(config.security)
    frontend = HttpFrontend(gateway, gate, max_concurrent=config.server.max_concurrent)

    logger.debug(
        "Components built (max_sessions=%d, timeout=%.0fs)",
        registry.max_sessions, registry.timeout,
    )
    return ServerComponents(
        client=client,
        tools=tools,
        registry=registry,
        sweep_timer=sweep_timer,
        gateway=gateway,
        gate=gate,
        frontend=frontend,
    )
