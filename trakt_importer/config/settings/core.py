from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from trakt_importer.backend.common.logging import get_logger

from .paths import get_host_settings_path

log = get_logger(__name__)

_SETTINGS_LOCK = threading.Lock()
_SETTINGS_SINGLETON: Optional["Settings"] = None

HISTORY_STRATEGIES = ("page_count", "short_page")


@dataclass
class Settings:
    app_name: str
    env: str
    log_level: str
    http_timeout: float
    history_strategy: str
    max_poll_attempts: int
    host_settings_path: os.PathLike[str]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "app_name": self.app_name,
            "env": self.env,
            "log_level": self.log_level,
            "http_timeout": self.http_timeout,
            "history_strategy": self.history_strategy,
            "max_poll_attempts": self.max_poll_attempts,
            "host_settings_path": str(self.host_settings_path),
        }


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return max(1.0, float(raw))
    except (TypeError, ValueError):
        log.warning("Ignoring invalid %s=%r", key, raw)
        return default


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        log.warning("Ignoring invalid %s=%r", key, raw)
        return default


def _build_settings() -> Settings:
    history_strategy = os.getenv("TRAKT_IMPORT_HISTORY_STRATEGY", "short_page").strip().lower()
    if history_strategy not in HISTORY_STRATEGIES:
        log.warning("Unknown history strategy %r; falling back to short_page", history_strategy)
        history_strategy = "short_page"

    return Settings(
        app_name=os.getenv("TRAKT_IMPORT_APP_NAME", "Trakt Importer"),
        env=os.getenv("TRAKT_IMPORT_ENV", "production"),
        log_level=os.getenv("TRAKT_IMPORT_LOG_LEVEL", "INFO").upper(),
        http_timeout=_env_float("TRAKT_IMPORT_HTTP_TIMEOUT", 20.0),
        history_strategy=history_strategy,
        max_poll_attempts=_env_int("TRAKT_IMPORT_MAX_POLL_ATTEMPTS", 120),
        host_settings_path=get_host_settings_path(),
    )


def get_settings(*, reload: bool = False) -> Settings:
    global _SETTINGS_SINGLETON
    with _SETTINGS_LOCK:
        if _SETTINGS_SINGLETON is None or reload:
            _SETTINGS_SINGLETON = _build_settings()

        return _SETTINGS_SINGLETON


__all__ = [
    "HISTORY_STRATEGIES",
    "Settings",
    "get_settings",
]
