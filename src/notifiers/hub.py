"""
In-process live session hub.
"""

import logging
import threading
from typing import Any, Callable, Optional

from .base import Transport, TransportError, group_name

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any]], None]


class SessionHub(Transport):
    """Pushes messages to registered sessions, grouped per user."""

    channel = "HUB"

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, Handler] = {}
        self._groups: dict[str, set[str]] = {}

    @property
    def connected_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def connect(
        self, session_id: str, handler: Handler, user_id: Optional[int] = None
    ) -> None:
        """Register a session; sessions with a user join that user's group."""
        with self._lock:
            self._sessions[session_id] = handler
            if user_id is not None:
                self._groups.setdefault(group_name(user_id), set()).add(session_id)
        logger.debug(f"Session {session_id} connected (user {user_id})")

    def disconnect(self, session_id: str) -> None:
        """Remove a session from the hub and its groups."""
        with self._lock:
            self._sessions.pop(session_id, None)
            for members in self._groups.values():
                members.discard(session_id)

    def broadcast_to_all(self, method: str, payload: dict[str, Any]) -> None:
        with self._lock:
            handlers = list(self._sessions.items())
        self._deliver(handlers, method, payload)

    def broadcast_to_group(
        self, user_id: int, method: str, payload: dict[str, Any]
    ) -> None:
        with self._lock:
            members = self._groups.get(group_name(user_id), set())
            handlers = [(sid, self._sessions[sid]) for sid in members if sid in self._sessions]
        self._deliver(handlers, method, payload)

    def _deliver(self, handlers, method: str, payload: dict[str, Any]) -> None:
        failures = []
        for session_id, handler in handlers:
            try:
                handler(method, payload)
            except Exception as e:
                failures.append(f"{session_id}: {e}")
        if failures:
            raise TransportError(f"Delivery failed for {len(failures)} sessions: {'; '.join(failures)}")
