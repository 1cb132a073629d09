"""Session registry for networked mode.

The registry owns every admitted session and is the only place sessions are
created or destroyed. None of its methods await, so each one runs to
completion without interleaving with other tasks on the event loop.

Sessions expire on idleness: a session whose last activity is older than the
timeout is evicted by the next sweep. Admission beyond ``max_sessions`` is
refused rather than evicting an existing session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from ethrelay.core.errors import CapacityExceededError

if TYPE_CHECKING:
    from ethrelay.rpc.channel import SessionTransport
    from ethrelay.rpc.handler import SessionHandler

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class SessionState(str, Enum):
    PENDING_HANDSHAKE = "pending_handshake"
    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass
class Session:
    """One client session.

    Attributes:
        transport: Push channel, owned exclusively by this session.
        handler: Protocol handler, owned exclusively by this session.
        id: Assigned on admission; None while the handshake is pending.
        created_at: Clock reading at admission.
        last_activity_at: Clock reading of the latest session-scoped interaction.
        state: Lifecycle state.
    """

    transport: SessionTransport
    handler: SessionHandler
    id: str | None = None
    created_at: float = 0.0
    last_activity_at: float = 0.0
    state: SessionState = SessionState.PENDING_HANDSHAKE


class SessionRegistry:
    """Bounded map of session id to Session.

    Example:
        registry = SessionRegistry(max_sessions=1000, timeout=1800.0)
        registry.admit(session_id, Session(transport, handler))
        registry.touch(session_id)
        registry.terminate(session_id)

    Args:
        max_sessions: Admission limit.
        timeout: Idle seconds after which ``sweep`` evicts a session.
        max_lifetime: Optional hard limit in seconds from admission, applied
            by ``sweep`` regardless of activity. None disables it.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        max_sessions: int = 1000,
        timeout: float = 1800.0,
        max_lifetime: float | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._max_sessions = max_sessions
        self._timeout = timeout
        self._max_lifetime = max_lifetime
        self._clock = clock
        self._sessions: dict[str, Session] = {}

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def is_full(self) -> bool:
        return len(self._sessions) >= self._max_sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def ids(self) -> list[str]:
        return list(self._sessions)

    def admit(self, session_id: str, session: Session) -> Session:
        """Insert a session whose handshake has completed.

        Raises:
            CapacityExceededError: The registry already holds max_sessions.
            ValueError: ``session_id`` is already registered.
        """
        if len(self._sessions) >= self._max_sessions:
            logger.warning(
                "Max sessions reached (%d), rejecting new session", self._max_sessions
            )
            raise CapacityExceededError(self._max_sessions)
        if session_id in self._sessions:
            raise ValueError(f"Session already registered: {session_id}")

        now = self._clock()
        session.id = session_id
        session.created_at = now
        session.last_activity_at = now
        session.state = SessionState.ACTIVE
        self._sessions[session_id] = session

        logger.info("Session %s admitted (%d active)", session_id, len(self._sessions))
        return session

    def touch(self, session_id: str) -> bool:
        """Record activity on a session. Unknown ids are ignored.

        Returns:
            True if the session exists.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.last_activity_at = max(session.last_activity_at, self._clock())
        return True

    def terminate(self, session_id: str, reason: str = "terminated") -> bool:
        """Remove a session and release its transport and handler.

        Release failures are logged; the session is gone either way.

        Returns:
            False if no such session exists.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.state = SessionState.TERMINATED

        for name, resource in (("transport", session.transport), ("handler", session.handler)):
            try:
                resource.close()
            except Exception as e:
                logger.error(
                    "Failed to release %s for session %s: %s",
                    name, session_id, e,
                    exc_info=True,
                )

        logger.info("Session %s %s (%d active)", session_id, reason, len(self._sessions))
        return True

    def sweep(self) -> list[str]:
        """Evict sessions idle for longer than the timeout (or past max_lifetime).

        Works on a snapshot, so sessions admitted or removed while the
        sweep runs are handled consistently.

        Returns:
            Ids of the evicted sessions.
        """
        now = self._clock()
        expired = [
            session_id
            for session_id, session in list(self._sessions.items())
            if self._is_expired(session, now)
        ]
        evicted = [sid for sid in expired if self.terminate(sid, reason="expired")]
        if evicted:
            logger.info("Swept %d expired session(s)", len(evicted))
        return evicted

    def _is_expired(self, session: Session, now: float) -> bool:
        if now - session.last_activity_at > self._timeout:
            return True
        return self._max_lifetime is not None and now - session.created_at > self._max_lifetime

    def close_all(self) -> int:
        """Terminate every session (shutdown). Returns the count closed."""
        closed = 0
        for session_id in self.ids():
            if self.terminate(session_id, reason="closed on shutdown"):
                closed += 1
        return closed

    def stats(self) -> dict[str, Any]:
        return {
            "activeSessions": len(self._sessions),
            "maxSessions": self._max_sessions,
        }


class SweepTimer:
    """Runs ``registry.sweep()`` every ``interval`` seconds.

    The timer is a task on the running loop and holds no other resources, so
    it never keeps the process alive on its own; loop shutdown cancels it.

    Args:
        registry: Registry to sweep.
        interval: Seconds between sweeps.
    """

    def __init__(self, registry: SessionRegistry, interval: float = 300.0) -> None:
        self._registry = registry
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start sweeping. A second call while running is a no-op."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="session-sweep"
        )

    async def stop(self) -> None:
        """Stop sweeping and wait for the task to finish. Idempotent."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self._registry.sweep()
            except Exception as e:
                logger.error("Session sweep failed: %s", e, exc_info=True)
