from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass

DISPLAY_PREFIX = "/v1/display/"


@dataclass(frozen=True)
class DisplayEntry:
    content: bytes
    media_type: str
    filename: str


class DisplayUrlRegistry:
    """Short-lived URLs for staged blobs, revoked explicitly by their owner."""

    def __init__(self) -> None:
        self._entries: dict[str, DisplayEntry] = {}
        self._lock = threading.Lock()

    def create(self, content: bytes, media_type: str, filename: str) -> str:
        token = secrets.token_urlsafe(18)
        with self._lock:
            self._entries[token] = DisplayEntry(content=content, media_type=media_type, filename=filename)
        return f"{DISPLAY_PREFIX}{token}"

    def revoke(self, url: str | None) -> None:
        if not url or not url.startswith(DISPLAY_PREFIX):
            return
        with self._lock:
            self._entries.pop(url[len(DISPLAY_PREFIX):], None)

    def get(self, token: str) -> DisplayEntry | None:
        with self._lock:
            return self._entries.get(token)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
