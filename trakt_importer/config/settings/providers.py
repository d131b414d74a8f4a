from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from trakt_importer.backend.common.logging import get_logger

from .paths import expand_env, get_information_provider_settings_path, read_json

log = get_logger(__name__)


def load_information_provider_settings() -> Dict[str, Any]:
    data = read_json(get_information_provider_settings_path())

    return expand_env(data)


try:  # pragma: no cover - guard against missing files at import time
    INFORMATION_PROVIDER_SETTINGS: Dict[str, Any] = load_information_provider_settings()
except (OSError, ValueError) as exc:
    log.warning("Could not load provider settings: %s", exc)
    INFORMATION_PROVIDER_SETTINGS = {}


def _provider_settings() -> Dict[str, Any]:
    return INFORMATION_PROVIDER_SETTINGS.get("providers", {}) if INFORMATION_PROVIDER_SETTINGS else {}


def list_provider_configs() -> Dict[str, Dict[str, Any]]:
    providers = _provider_settings()
    result: Dict[str, Dict[str, Any]] = {}
    for name, cfg in providers.items():
        if isinstance(cfg, Mapping):
            result[name] = dict(cfg)
        else:
            result[name] = {}

    return result


def get_service_config(service: str) -> Optional[Dict[str, Any]]:
    providers = _provider_settings()
    if not providers:
        return None

    return providers.get(service)


def get_rate_limits(service: str) -> Dict[str, Any]:
    cfg = get_service_config(service) or {}

    return dict(cfg.get("rate_limits") or {})


def get_default_headers(service: str) -> Dict[str, str]:
    cfg = get_service_config(service) or {}
    headers = cfg.get("default_headers", {}) or {}

    return {k: expand_env(v) for k, v in headers.items()} if headers else {}


def get_base_url(service: str) -> Optional[str]:
    cfg = get_service_config(service)
    if not cfg:
        return None

    return cfg.get("base_url")


def get_provider_endpoints(service: str) -> Mapping[str, Any]:
    cfg = get_service_config(service) or {}

    return cfg.get("endpoints", {}) or {}


__all__ = [
    "INFORMATION_PROVIDER_SETTINGS",
    "get_base_url",
    "get_default_headers",
    "get_provider_endpoints",
    "get_rate_limits",
    "get_service_config",
    "list_provider_configs",
    "load_information_provider_settings",
]
