"""Per-session push channel.

A SessionTransport is the server-to-client side of one networked session. It
fans published messages out to every open event stream of that session and
tells its owner when it is closed, whichever side closes it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# Per-stream backlog. A stream that falls this far behind loses messages.
MAX_STREAM_BACKLOG = 256

# Put on every stream queue when the transport closes
STREAM_CLOSED: Any = object()


class TransportClosedError(Exception):
    """Raised when opening a stream on a closed transport."""


class SessionTransport:
    """Push channels for a single session.

    Example:
        transport = SessionTransport()
        queue = transport.open_stream()
        transport.publish({"jsonrpc": "2.0", "method": "notifications/message"})
        message = await queue.get()

    Attributes:
        session_id: Set once the session is admitted.
    """

    def __init__(self, max_backlog: int = MAX_STREAM_BACKLOG) -> None:
        self.session_id: str | None = None
        self._max_backlog = max_backlog
        self._streams: list[asyncio.Queue[Any]] = []
        self._close_callbacks: list[Callable[[], object]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    def open_stream(self) -> asyncio.Queue[Any]:
        """Register a new event stream and return its queue."""
        if self._closed:
            raise TransportClosedError("Session transport is closed")
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=self._max_backlog)
        self._streams.append(queue)
        return queue

    def release_stream(self, queue: asyncio.Queue[Any]) -> None:
        """Forget a stream whose client went away. Unknown queues are ignored."""
        try:
            self._streams.remove(queue)
        except ValueError:
            pass

    def publish(self, message: dict[str, Any]) -> int:
        """Queue a message on every open stream.

        Returns:
            Number of streams the message was queued on.
        """
        if self._closed:
            return 0
        delivered = 0
        for queue in self._streams:
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping message for slow stream on session %s", self.session_id
                )
        return delivered

    def on_close(self, callback: Callable[[], object]) -> None:
        """Run ``callback`` once when the transport closes."""
        if self._closed:
            callback()
            return
        self._close_callbacks.append(callback)

    def close(self) -> None:
        """Close every stream and fire close callbacks. Idempotent."""
        if self._closed:
            return
        self._closed = True

        streams, self._streams = self._streams, []
        for queue in streams:
            # A full queue still gets the sentinel: drop its oldest message
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(STREAM_CLOSED)

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error("Transport close callback failed: %s", e, exc_info=True)
