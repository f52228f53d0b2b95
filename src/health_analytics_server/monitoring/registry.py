"""Bounded registry of live monitoring sessions."""

import asyncio
from collections import OrderedDict
from datetime import datetime

import structlog

from health_analytics_server.core.exceptions import NotFoundError, UnavailableError
from health_analytics_server.models.base import as_utc
from health_analytics_server.monitoring.session import MonitoringSession

logger = structlog.get_logger()


class SessionRegistry:
    """Table of monitoring sessions keyed by stable session id.

    Holds at most max_sessions entries. When full, the oldest finished
    (completed or failed) session is evicted; if every slot holds a live
    session the add is refused.
    """

    def __init__(self, max_sessions: int = 500) -> None:
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, MonitoringSession] = OrderedDict()
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="session_registry")

    async def add(self, session: MonitoringSession) -> None:
        """Register a new session.

        Raises:
            UnavailableError: If the registry is full of live sessions
        """
        async with self._lock:
            if len(self._sessions) >= self.max_sessions:
                evict_id = next(
                    (sid for sid, s in self._sessions.items() if s.is_terminal), None
                )
                if evict_id is None:
                    self.logger.warning(
                        "Session registry full", max_sessions=self.max_sessions
                    )
                    raise UnavailableError(
                        "Too many live monitoring sessions",
                        details={"max_sessions": self.max_sessions},
                    )
                del self._sessions[evict_id]
                self.logger.info("Evicted finished session", session_id=evict_id)

            self._sessions[session.id] = session

    def get(self, session_id: str, user_id: str | None = None) -> MonitoringSession:
        """Look up a session.

        Raises:
            NotFoundError: If unknown (or owned by another user)
        """
        session = self._sessions.get(session_id)
        if session is None or (user_id is not None and session.user_id != user_id):
            raise NotFoundError(
                f"Monitoring session '{session_id}' not found",
                details={"session_id": session_id},
            )
        return session

    def for_user(self, user_id: str) -> list[MonitoringSession]:
        """All sessions for a user, oldest first."""
        return [s for s in self._sessions.values() if s.user_id == user_id]

    def all(self) -> list[MonitoringSession]:
        """Every registered session, oldest first."""
        return list(self._sessions.values())

    def live(self) -> list[MonitoringSession]:
        """Sessions that are active or paused."""
        return [s for s in self._sessions.values() if not s.is_terminal]

    async def remove_finished_before(self, cutoff: datetime) -> int:
        """Drop finished sessions that ended before cutoff.

        Returns:
            Number of sessions removed
        """
        async with self._lock:
            stale = [
                sid
                for sid, s in self._sessions.items()
                if s.is_terminal and s.end_time is not None and as_utc(s.end_time) < cutoff
            ]
            for sid in stale:
                del self._sessions[sid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
