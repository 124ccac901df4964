"""Correlation-id lifecycle for a logical unit of work.

Sessions are process-global for the pipeline that owns the manager: every
thread sees the same active session. Starting a session while another is
active replaces it.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from auditlog.models import machine_name, new_correlation_id, user_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    id: str
    name: str | None
    start_time_utc: datetime
    machine: str
    user: str

    def describe(self) -> dict:
        return {
            "sessionId": self.id,
            "sessionName": self.name,
            "startTimeUtc": self.start_time_utc.isoformat(),
            "machine": self.machine,
            "user": self.user,
        }


class SessionManager:
    def __init__(self, time_func=None):
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._active: Session | None = None

    @property
    def active(self) -> Session | None:
        with self._lock:
            return self._active

    @property
    def correlation_id(self) -> str | None:
        with self._lock:
            return self._active.id if self._active else None

    def start(self, name: str | None = None) -> Session:
        session = Session(
            id=new_correlation_id(),
            name=name,
            start_time_utc=self._time_func(),
            machine=machine_name(),
            user=user_identity(),
        )
        with self._lock:
            previous, self._active = self._active, session
        if previous is not None:
            logger.warning(
                "Session %s (%s) replaced by new session %s",
                previous.id, previous.name, session.id,
            )
        return session

    def stop(self) -> Session | None:
        """Clear and return the active session, or None if there was none."""
        with self._lock:
            session, self._active = self._active, None
        return session

    def elapsed_seconds(self, session: Session) -> float:
        return (self._time_func() - session.start_time_utc).total_seconds()
