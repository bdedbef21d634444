"""Tests for the session manager."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from stampchain_mcp.core.errors import CapacityExceededError
from stampchain_mcp.mcp_server.events import SessionEvent
from stampchain_mcp.mcp_server.sessions import (
    SessionConfig,
    SessionManager,
    SessionState,
    TransportKind,
)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


class TestSessionManager:
    """Tests for SessionManager."""

    def test_register_connection(self, clock):
        """Test opening a session."""
        manager = SessionManager(clock=clock)
        connected = []
        manager.on(SessionEvent.CONNECT, connected.append)

        session_id = manager.register_connection(TransportKind.HTTP)

        assert session_id.startswith("conn_")
        info = manager.get_session(session_id)
        assert info.transport == TransportKind.HTTP
        assert info.state == SessionState.CONNECTED
        assert info.request_count == 0
        assert [c.id for c in connected] == [session_id]

    def test_max_connections(self):
        """Test that the connection bound is enforced."""
        manager = SessionManager(SessionConfig(max_connections=2))
        manager.register_connection()
        manager.register_connection()
        with pytest.raises(CapacityExceededError, match="2"):
            manager.register_connection()
        assert len(manager) == 2

    def test_unique_ids(self):
        """Test that session ids do not collide."""
        manager = SessionManager(SessionConfig(max_connections=10_000))
        ids = {manager.register_connection() for _ in range(10_000)}
        assert len(ids) == 10_000

    def test_unregister_connection(self):
        """Test closing a session emits exactly one disconnect."""
        manager = SessionManager()
        disconnected = []
        manager.on(SessionEvent.DISCONNECT, disconnected.append)
        session_id = manager.register_connection()

        assert manager.unregister_connection(session_id) is True
        assert manager.unregister_connection(session_id) is False
        assert disconnected == [session_id]
        assert manager.has_session(session_id) is False

    def test_update_activity(self, clock):
        """Test that activity bumps the counter and timestamp."""
        manager = SessionManager(clock=clock)
        activity = []
        manager.on(SessionEvent.ACTIVITY, activity.append)
        session_id = manager.register_connection()

        clock.advance(seconds=5)
        assert manager.update_activity(session_id) is True
        info = manager.get_session(session_id)
        assert info.request_count == 1
        assert info.last_activity == clock.now
        assert info.state == SessionState.ACTIVE
        assert activity == [session_id]

    def test_update_activity_unknown_is_noop(self):
        """Test that unknown ids are ignored."""
        manager = SessionManager()
        activity = []
        manager.on(SessionEvent.ACTIVITY, activity.append)
        assert manager.update_activity("conn_missing") is False
        assert activity == []
        assert len(manager) == 0

    def test_last_activity_never_goes_backwards(self, clock):
        """Test that a clock step backwards does not rewind activity."""
        manager = SessionManager(clock=clock)
        session_id = manager.register_connection()
        clock.advance(seconds=10)
        manager.update_activity(session_id)
        clock.advance(seconds=-5)
        manager.update_activity(session_id)
        info = manager.get_session(session_id)
        assert info.last_activity == datetime(2024, 1, 1, 0, 0, 10, tzinfo=timezone.utc)

    def test_readers_get_copies(self):
        """Test that returned session info cannot mutate internal state."""
        manager = SessionManager()
        session_id = manager.register_connection()
        info = manager.get_session(session_id)
        info.request_count = 99
        assert manager.get_session(session_id).request_count == 0
        assert manager.get_session("conn_missing") is None

    def test_report_error(self):
        """Test the error notification."""
        manager = SessionManager()
        errors = []
        manager.on(SessionEvent.ERROR, lambda sid, err: errors.append((sid, str(err))))
        session_id = manager.register_connection()
        manager.report_error(session_id, ValueError("bad"))
        assert errors == [(session_id, "bad")]

    def test_stats(self, clock):
        """Test session statistics."""
        manager = SessionManager(clock=clock)
        first = manager.register_connection()
        clock.advance(seconds=1)
        second = manager.register_connection()
        manager.update_activity(first)
        manager.update_activity(first)
        manager.update_activity(second)

        clock.advance(seconds=120)
        manager.update_activity(second)

        stats = manager.get_stats()
        assert stats.total_sessions == 2
        assert stats.active_sessions == 1
        assert stats.total_requests == 4
        assert stats.average_requests_per_session == 2.0
        assert stats.oldest_session.id == first

    def test_stats_empty(self):
        """Test statistics with no sessions."""
        stats = SessionManager().get_stats()
        assert stats.total_sessions == 0
        assert stats.average_requests_per_session == 0.0
        assert stats.oldest_session is None
        assert stats.to_dict()["oldest_session"] is None


class TestSessionCleanup:
    """Tests for idle expiry."""

    def test_cleanup_expires_idle_sessions(self, clock):
        """Test that a session idle past the timeout is expired once."""
        manager = SessionManager(SessionConfig(session_timeout_ms=100), clock=clock)
        disconnected = []
        manager.on(SessionEvent.DISCONNECT, disconnected.append)
        idle = manager.register_connection()
        clock.advance(milliseconds=80)
        busy = manager.register_connection()

        clock.advance(milliseconds=50)
        assert manager.cleanup_inactive_sessions() == [idle]
        assert manager.cleanup_inactive_sessions() == []

        assert disconnected == [idle]
        assert manager.has_session(busy)

    def test_cleanup_boundary(self, clock):
        """Test that exactly reaching the timeout does not expire."""
        manager = SessionManager(SessionConfig(session_timeout_ms=100), clock=clock)
        session_id = manager.register_connection()
        clock.advance(milliseconds=100)
        assert manager.cleanup_inactive_sessions() == []
        clock.advance(milliseconds=1)
        assert manager.cleanup_inactive_sessions() == [session_id]

    @pytest.mark.asyncio
    async def test_periodic_sweep(self):
        """Test that the background sweep expires idle sessions."""
        manager = SessionManager(
            SessionConfig(session_timeout_ms=20, cleanup_interval_ms=10)
        )
        disconnected = []
        manager.on(SessionEvent.DISCONNECT, disconnected.append)
        session_id = manager.register_connection()

        manager.start()
        try:
            for _ in range(50):
                await asyncio.sleep(0.01)
                if disconnected:
                    break
        finally:
            await manager.shutdown()

        assert disconnected == [session_id]

    @pytest.mark.asyncio
    async def test_shutdown(self):
        """Test that shutdown closes sessions and is idempotent."""
        manager = SessionManager()
        disconnected = []
        manager.on(SessionEvent.DISCONNECT, disconnected.append)
        ids = [manager.register_connection() for _ in range(3)]
        manager.start()

        await manager.shutdown()
        await manager.shutdown()

        assert sorted(disconnected) == sorted(ids)
        assert len(manager) == 0
        assert manager.is_closed
        with pytest.raises(CapacityExceededError, match="shut down"):
            manager.register_connection()
