"""Client session tracking with idle expiry.

Sessions are created when a transport connection is accepted, touched on
every request and removed either explicitly or by a periodic idle sweep.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import suppress
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from ..core.errors import CapacityExceededError
from .events import EventEmitter, SessionEvent
from .types import utc_now

logger = structlog.get_logger(__name__)

# Sessions touched within this window count as active in stats.
ACTIVE_WINDOW_SECONDS = 60


class SessionState(str, Enum):
    CONNECTED = "connected"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    EXPIRED = "expired"


class TransportKind(str, Enum):
    STDIO = "stdio"
    HTTP = "http"
    WEBSOCKET = "websocket"


@dataclass
class SessionConfig:
    """Configuration for the session manager.

    Attributes:
        max_connections: Upper bound on concurrently tracked sessions
        session_timeout_ms: Idle time after which a session expires
        cleanup_interval_ms: Time between idle sweeps
    """

    max_connections: int = 100
    session_timeout_ms: int = 3_600_000
    cleanup_interval_ms: int = 300_000


@dataclass
class SessionInfo:
    """State of one client session."""

    id: str
    connected_at: datetime
    last_activity: datetime
    request_count: int = 0
    transport: TransportKind = TransportKind.STDIO
    state: SessionState = SessionState.CONNECTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "connected_at": self.connected_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "request_count": self.request_count,
            "transport": self.transport.value,
            "state": self.state.value,
        }


@dataclass(frozen=True)
class SessionStats:
    total_sessions: int
    active_sessions: int
    total_requests: int
    average_requests_per_session: float
    oldest_session: Optional[SessionInfo]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "active_sessions": self.active_sessions,
            "total_requests": self.total_requests,
            "average_requests_per_session": self.average_requests_per_session,
            "oldest_session": self.oldest_session.to_dict() if self.oldest_session else None,
        }


def generate_session_id() -> str:
    return f"conn_{uuid.uuid4().hex}"


class SessionManager:
    """Tracks client sessions and expires idle ones.

    Emits ``connect(SessionInfo)``, ``disconnect(session_id)``,
    ``error(session_id, error)`` and ``activity(session_id)``.
    Readers always receive copies of session state.
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config or SessionConfig()
        self._clock = clock
        self._sessions: dict[str, SessionInfo] = {}
        self._events: EventEmitter[SessionEvent] = EventEmitter("sessions")
        self._cleanup_task: Optional[asyncio.Task[None]] = None
        self._closed = False

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def is_closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._sessions)

    def on(self, event: SessionEvent, callback: Callable[..., Any]) -> Callable[[], None]:
        """Subscribe to a session notification; returns an unsubscribe callable."""
        return self._events.subscribe(SessionEvent(event), callback)

    def register_connection(self, transport: TransportKind | str = TransportKind.STDIO) -> str:
        """Open a new session.

        Args:
            transport: Transport the client connected over

        Returns:
            The new session id

        Raises:
            CapacityExceededError: If the manager is full or shut down
        """
        limit = self._config.max_connections
        if self._closed:
            raise CapacityExceededError(
                "Session manager is shut down", resource="sessions", limit=limit
            )
        if len(self._sessions) >= limit:
            raise CapacityExceededError(
                f"Maximum connections ({limit}) reached",
                resource="sessions",
                limit=limit,
            )

        session_id = generate_session_id()
        now = self._clock()
        info = SessionInfo(
            id=session_id,
            connected_at=now,
            last_activity=now,
            transport=TransportKind(transport),
        )
        self._sessions[session_id] = info

        logger.info(
            "session_registered",
            session_id=session_id,
            transport=info.transport.value,
            total_sessions=len(self._sessions),
        )
        self._events.emit(SessionEvent.CONNECT, replace(info))
        return session_id

    def unregister_connection(
        self,
        session_id: str,
        *,
        reason: SessionState = SessionState.DISCONNECTED,
    ) -> bool:
        """Close a session.

        Returns:
            True if the session existed
        """
        info = self._sessions.pop(session_id, None)
        if info is None:
            logger.warning("session_unregister_unknown", session_id=session_id)
            return False

        info.state = reason
        duration_ms = int((self._clock() - info.connected_at).total_seconds() * 1000)
        logger.info(
            "session_unregistered",
            session_id=session_id,
            reason=reason.value,
            duration_ms=duration_ms,
            requests=info.request_count,
            total_sessions=len(self._sessions),
        )
        self._events.emit(SessionEvent.DISCONNECT, session_id)
        return True

    def update_activity(self, session_id: str) -> bool:
        """Record a request on a session.

        Unknown ids are logged and ignored.

        Returns:
            True if the session exists
        """
        info = self._sessions.get(session_id)
        if info is None:
            logger.warning("session_activity_unknown", session_id=session_id)
            return False

        now = self._clock()
        if now > info.last_activity:
            info.last_activity = now
        info.request_count += 1
        info.state = SessionState.ACTIVE
        self._events.emit(SessionEvent.ACTIVITY, session_id)
        return True

    def report_error(self, session_id: str, error: BaseException) -> None:
        self._events.emit(SessionEvent.ERROR, session_id, error)

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_session(self, session_id: str) -> Optional[SessionInfo]:
        info = self._sessions.get(session_id)
        return replace(info) if info is not None else None

    def get_all_sessions(self) -> list[SessionInfo]:
        return [replace(info) for info in self._sessions.values()]

    def get_stats(self) -> SessionStats:
        sessions = list(self._sessions.values())
        now = self._clock()
        total_requests = sum(info.request_count for info in sessions)
        active = sum(
            1
            for info in sessions
            if (now - info.last_activity).total_seconds() < ACTIVE_WINDOW_SECONDS
        )
        oldest = min(sessions, key=lambda info: info.connected_at, default=None)
        return SessionStats(
            total_sessions=len(sessions),
            active_sessions=active,
            total_requests=total_requests,
            average_requests_per_session=(
                total_requests / len(sessions) if sessions else 0.0
            ),
            oldest_session=replace(oldest) if oldest is not None else None,
        )

    def cleanup_inactive_sessions(self) -> list[str]:
        """Expire sessions idle longer than the configured timeout.

        Returns:
            Ids of the expired sessions
        """
        now = self._clock()
        timeout_ms = self._config.session_timeout_ms
        expired: list[str] = []

        # Snapshot ids; unregistering mutates the mapping.
        for session_id in list(self._sessions):
            info = self._sessions.get(session_id)
            if info is None:
                continue
            idle_ms = (now - info.last_activity).total_seconds() * 1000
            if idle_ms > timeout_ms:
                logger.info(
                    "session_expired",
                    session_id=session_id,
                    idle_ms=int(idle_ms),
                    timeout_ms=timeout_ms,
                )
                self.unregister_connection(session_id, reason=SessionState.EXPIRED)
                expired.append(session_id)
        return expired

    async def _periodic_cleanup_task(self) -> None:
        """Background task for periodic idle sweeps."""
        interval = self._config.cleanup_interval_ms / 1000
        try:
            while True:
                await asyncio.sleep(interval)
                try:
                    self.cleanup_inactive_sessions()
                except Exception:
                    logger.exception("session_cleanup_failed")
        except asyncio.CancelledError:
            return

    def start(self) -> None:
        """Start the idle sweep. Requires a running event loop."""
        if self._closed:
            return
        if self._cleanup_task and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._periodic_cleanup_task())
        logger.info(
            "session_cleanup_started",
            interval_ms=self._config.cleanup_interval_ms,
            timeout_ms=self._config.session_timeout_ms,
        )

    async def _stop_cleanup_task(self) -> None:
        if not self._cleanup_task:
            return
        self._cleanup_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._cleanup_task
        self._cleanup_task = None
        logger.info("session_cleanup_stopped")

    async def shutdown(self) -> None:
        """Stop the sweep, close every session and drop all subscribers.

        Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        logger.info("session_manager_shutting_down", total_sessions=len(self._sessions))

        await self._stop_cleanup_task()
        for session_id in list(self._sessions):
            self.unregister_connection(session_id)
        self._events.clear()

        logger.info("session_manager_shutdown_complete")
