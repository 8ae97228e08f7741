from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    raw = _get_env(name, None)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_list(name: str, default: list[str]) -> tuple[str, ...]:
    raw = _get_env(name, None)
    if raw is None:
        return tuple(default)
    values = [item.strip() for item in raw.split(",")]
    clean = [item for item in values if item]
    return tuple(clean) if clean else tuple(default)


@dataclass(frozen=True)
class Settings:
    api_key: str | None
    rate_limit: str
    rate_limit_enabled: bool
    log_level: str
    sentry_dsn: str | None
    cors_allowed_origins: tuple[str, ...]
    cors_allow_origin_regex: str | None
    cors_allow_credentials: bool
    blob_store_backend: str
    blob_store_db_path: str
    session_ttl_minutes: int
    session_purge_interval_s: int
    max_upload_mb: int
    max_batch_files: int

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


settings = Settings(
    api_key=_get_env("API_KEY"),
    rate_limit=_get_env("RATE_LIMIT", "60/minute") or "60/minute",
    rate_limit_enabled=_get_env_bool("RATE_LIMIT_ENABLED", True),
    log_level=_get_env("LOG_LEVEL", "INFO") or "INFO",
    sentry_dsn=_get_env("SENTRY_DSN"),
    cors_allowed_origins=_get_env_list(
        "CORS_ALLOWED_ORIGINS",
        [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://[::1]:3000",
        ],
    ),
    cors_allow_origin_regex=_get_env("CORS_ALLOW_ORIGIN_REGEX"),
    cors_allow_credentials=_get_env_bool("CORS_ALLOW_CREDENTIALS", False),
    blob_store_backend=(_get_env("BLOB_STORE_BACKEND", "sqlite") or "sqlite").strip().lower(),
    blob_store_db_path=_get_env("BLOB_STORE_DB_PATH", "data/blob_store.db") or "data/blob_store.db",
    session_ttl_minutes=_get_env_int("SESSION_TTL_MINUTES", 120),
    session_purge_interval_s=_get_env_int("SESSION_PURGE_INTERVAL_S", 300),
    max_upload_mb=_get_env_int("MAX_UPLOAD_MB", 25),
    max_batch_files=_get_env_int("MAX_BATCH_FILES", 10),
)

if settings.blob_store_backend not in {"sqlite", "memory"}:
    raise RuntimeError("BLOB_STORE_BACKEND must be either 'sqlite' or 'memory'.")

if settings.max_batch_files < 1:
    raise RuntimeError("MAX_BATCH_FILES must be at least 1.")
