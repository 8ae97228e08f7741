from __future__ import annotations

import re
from dataclasses import dataclass

from app.schemas.staging import FileRole

_ROLE_PREFIXES: dict[FileRole, str] = {
    "document": "uploadedDocument",
    "audio": "uploadedAudio",
}
_INDEXED_KEY_RE = re.compile(r"^(uploadedDocument|uploadedAudio)_(\d+)$")


@dataclass(frozen=True)
class StoreKeyRef:
    """A blob key plus the legacy key consulted when it is missing."""

    primary: str
    legacy: str | None = None

    def candidates(self) -> tuple[str, ...]:
        if self.legacy and self.legacy != self.primary:
            return (self.primary, self.legacy)
        return (self.primary,)


def legacy_key(role: FileRole) -> str:
    return _ROLE_PREFIXES[role]


def member_key(role: FileRole, index: int) -> str:
    if index < 0:
        raise ValueError("member index must be non-negative")
    return f"{_ROLE_PREFIXES[role]}_{index}"


def role_sweep_keys(role: FileRole, upper_bound: int) -> list[str]:
    """Every key a previous batch of ``role`` may have written."""
    return [legacy_key(role)] + [member_key(role, index) for index in range(max(0, upper_bound))]


def key_ref(key: str) -> StoreKeyRef:
    match = _INDEXED_KEY_RE.match(key)
    if not match:
        return StoreKeyRef(primary=key)
    return StoreKeyRef(primary=key, legacy=match.group(1))
