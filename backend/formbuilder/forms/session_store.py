"""
In-process registry of editing sessions.
Sessions are not shared across worker processes. A session untouched for
longer than the idle TTL is dropped the next time a session is opened.
"""
import time
from typing import Dict, Optional

from formbuilder.core.logging import get_logger
from formbuilder.forms.schemas import FormState
from formbuilder.forms.session import EditingSession, SessionNotFoundError

logger = get_logger(__name__)


class SessionStore:
    def __init__(self, ttl_seconds: float = 3600.0):
        self._sessions: Dict[str, EditingSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._ttl_seconds = ttl_seconds

    def create(self, form_id: str, baseline: FormState) -> EditingSession:
        self.prune_idle()
        session = EditingSession(form_id, baseline)
        self._sessions[session.id] = session
        self._last_seen[session.id] = time.monotonic()
        logger.info(
            "Editing session opened",
            extra={"event": "session_opened", "session_id": session.id, "form_id": form_id},
        )
        return session

    def get(self, session_id: str) -> EditingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Editing session '{session_id}' not found")
        self._last_seen[session_id] = time.monotonic()
        return session

    def discard(self, session_id: str) -> Optional[EditingSession]:
        session = self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        if session is not None:
            logger.info(
                "Editing session closed",
                extra={"event": "session_closed", "session_id": session_id, "form_id": session.form_id},
            )
        return session

    def discard_form(self, form_id: str) -> int:
        """Drop every session editing a deleted form."""
        stale = [sid for sid, s in self._sessions.items() if s.form_id == form_id]
        for sid in stale:
            self.discard(sid)
        return len(stale)

    def prune_idle(self) -> int:
        """Drop sessions idle past the TTL. Sessions with an AI turn in flight are kept."""
        if self._ttl_seconds <= 0:
            return 0
        cutoff = time.monotonic() - self._ttl_seconds
        idle = [
            sid for sid, seen in self._last_seen.items()
            if seen < cutoff and not self._sessions[sid].ai_turn_in_flight
        ]
        for sid in idle:
            session = self._sessions.pop(sid)
            del self._last_seen[sid]
            logger.info(
                "Idle editing session expired",
                extra={"event": "session_expired", "session_id": sid, "form_id": session.form_id},
            )
        return len(idle)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
