from __future__ import annotations

"""
ucdp/config.py

Environment-driven settings. Every knob is a UCDP_* variable; nothing is read
from disk. Malformed numbers fall back to the default instead of failing boot.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or default).strip()


def _int_env(name: str, default: int) -> int:
    try:
        raw = (os.getenv(name) or "").strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


def _float_env(name: str, default: float) -> float:
    try:
        raw = (os.getenv(name) or "").strip()
        return float(raw) if raw else float(default)
    except ValueError:
        return float(default)


def _csv_env(name: str, default: str) -> Tuple[str, ...]:
    raw = _env(name, default)
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    bind: str = "0.0.0.0:8080"

    # Registry storage: "memory" or "sqlite"
    registry_connector: str = "memory"
    db_path: str = "/app/data/ucdp_registry.db"
    lock_shards: int = 64
    audit_max_entries: int = 1000

    # Gateway
    partners_cache_ttl_seconds: float = 30.0
    events_max_batch: int = 100

    # Event stream: "log", "memory" or "http"
    stream_connector: str = "log"
    stream_http_url: str = ""
    stream_timeout_seconds: float = 10.0

    api_key: Optional[str] = None
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @property
    def host(self) -> str:
        host, _, _ = self.bind.rpartition(":")
        return host or "0.0.0.0"

    @property
    def port(self) -> int:
        _, _, port = self.bind.rpartition(":")
        try:
            return int(port)
        except ValueError:
            return 8080


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        bind=_env("UCDP_BIND", "0.0.0.0:8080"),
        registry_connector=_env("UCDP_REGISTRY_CONNECTOR", "memory").lower(),
        db_path=_env("UCDP_DB_PATH", "/app/data/ucdp_registry.db"),
        lock_shards=max(1, _int_env("UCDP_LOCK_SHARDS", 64)),
        audit_max_entries=max(1, _int_env("UCDP_AUDIT_MAX_ENTRIES", 1000)),
        partners_cache_ttl_seconds=max(0.0, _float_env("UCDP_PARTNERS_CACHE_TTL_SECONDS", 30.0)),
        events_max_batch=max(1, _int_env("UCDP_EVENTS_MAX_BATCH", 100)),
        stream_connector=_env("UCDP_STREAM_CONNECTOR", "log").lower(),
        stream_http_url=_env("UCDP_STREAM_HTTP_URL").rstrip("/"),
        stream_timeout_seconds=_float_env("UCDP_STREAM_TIMEOUT_SECONDS", 10.0),
        api_key=_env("UCDP_API_KEY") or None,
        cors_origins=_csv_env("UCDP_CORS_ORIGINS", "*"),
        log_level=_env("UCDP_LOG_LEVEL", "INFO").upper(),
    )
