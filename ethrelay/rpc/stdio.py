"""Direct-pipe mode: newline-delimited JSON-RPC over stdin/stdout.

One implicit session for the life of the process. No session registry,
no tokens and no sweeping. Requests are handled concurrently; responses are
written as soon as each finishes, so their order may differ from the input.
Server-initiated notifications (retry notices) go to the same output.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from ethrelay.rpc.handler import SessionHandler
from ethrelay.rpc.protocol import (
    ParseError,
    make_parse_error_response,
    parse_request,
    serialize_response,
)
from ethrelay.rpc.types import Request
from ethrelay.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

LineReader = Callable[[], Awaitable[str]]
LineWriter = Callable[[str], None]


async def _read_stdin_line() -> str:
    return await asyncio.to_thread(sys.stdin.readline)


def _write_stdout_line(line: str) -> None:
    print(line, flush=True)


async def run_direct_pipe(
    tools: ToolRegistry,
    read_line: LineReader = _read_stdin_line,
    write_line: LineWriter = _write_stdout_line,
) -> None:
    """Serve one session over a line-oriented pipe until EOF.

    Args:
        tools: Tool registry for the session.
        read_line: Returns the next input line, "" at EOF.
        write_line: Writes one output line.
    """

    def publish(message: dict[str, Any]) -> None:
        write_line(json.dumps(message, separators=(",", ":")))

    handler = SessionHandler(tools, publish=publish, log_context="stdio")
    pending: set[asyncio.Task[None]] = set()

    async def handle(request: Request) -> None:
        response = await handler.dispatch(request)
        if response is not None:
            write_line(serialize_response(response))

    logger.info("Direct-pipe session started")
    try:
        while True:
            line = await read_line()
            if not line:
                break
            if not line.strip():
                continue

            try:
                request = parse_request(line)
            except ParseError as e:
                write_line(serialize_response(make_parse_error_response(e)))
                continue

            task = asyncio.create_task(handle(request))
            pending.add(task)
            task.add_done_callback(pending.discard)

        # EOF: let in-flight requests finish
        if pending:
            await asyncio.gather(*pending)
    finally:
        handler.close()
        logger.info("Direct-pipe session ended")
