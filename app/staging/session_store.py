from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from app.schemas.staging import FileRole, SessionBundle

logger = logging.getLogger(__name__)


class SessionMetadataStore:
    """Per-session bundle metadata kept in process memory only.

    Entries are held as JSON text and decoded on every read. A session that
    has not been touched for ``ttl_seconds`` is dropped by ``purge_expired``.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, dict[str, str]] = {}
        self._last_seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def _touch(self, session_id: str) -> None:
        self._last_seen[session_id] = self._clock()

    def set_bundle(self, session_id: str, role: FileRole, bundle: SessionBundle) -> None:
        encoded = bundle.model_dump_json(by_alias=True)
        with self._lock:
            self._sessions.setdefault(session_id, {})[role] = encoded
            self._touch(session_id)

    def get_bundle(self, session_id: str, role: FileRole) -> SessionBundle | None:
        with self._lock:
            encoded = self._sessions.get(session_id, {}).get(role)
            if session_id in self._sessions:
                self._touch(session_id)
        if encoded is None:
            return None
        return SessionBundle.model_validate_json(encoded)

    def clear(self, session_id: str, role: FileRole) -> None:
        with self._lock:
            self._sessions.get(session_id, {}).pop(role, None)

    def clear_all(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
            self._last_seen.pop(session_id, None)

    def open(self, session_id: str) -> None:
        with self._lock:
            self._sessions[session_id] = {}
            self._touch(session_id)

    def exists(self, session_id: str) -> bool:
        with self._lock:
            if session_id not in self._sessions:
                return False
            self._touch(session_id)
            return True

    def purge_expired(self) -> list[str]:
        cutoff = self._clock() - self._ttl_seconds
        with self._lock:
            expired = [sid for sid, seen in self._last_seen.items() if seen < cutoff]
            for session_id in expired:
                self._sessions.pop(session_id, None)
                self._last_seen.pop(session_id, None)
        if expired:
            logger.info("session_metadata_purged count=%s", len(expired))
        return expired
