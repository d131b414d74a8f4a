from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode, urljoin

from trakt_importer.config.settings import (
    get_default_headers,
    list_provider_configs,
)



# ----------------------------
# Data views (read-only access)
# ----------------------------

@dataclass(frozen=True)
class ServiceView:
    name: str
    base_url: str
    default_headers: Dict[str, str]
    rate_limits: Dict[str, Any]
    endpoints: Dict[str, Any]


# ----------------------------
# URL Manager
# ----------------------------

class URLManager:
    """
    Builds service URLs and injects per-service default headers, without doing
    any network I/O. Pure config-driven.

    ``service_overrides`` are merged over the shipped configuration, which is
    how ``TraktSyncClient`` injects its per-instance ``trakt-api-key`` header.
    """

    def __init__(self, service_overrides: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self._services_raw: Dict[str, Dict[str, Any]] = {}
        self._header_overrides: Dict[str, Dict[str, str]] = {}
        overrides = {svc: dict(cfg or {}) for svc, cfg in (service_overrides or {}).items()}
        for svc, cfg in overrides.items():
            headers = cfg.pop("default_headers", None) or {}
            self._header_overrides[svc] = {k: str(v) for k, v in headers.items()}

        for svc, cfg in list_provider_configs().items():
            merged = dict(cfg)
            merged.update(overrides.pop(svc, {}))
            self._services_raw[svc] = merged
        # services known only through overrides
        for svc, cfg in overrides.items():
            self._services_raw[svc] = cfg

        # cached views
        self._views: Dict[str, ServiceView] = {}
        for name in self._services_raw.keys():
            self._views[name] = self._build_view(name)

    # -------- Public API --------

    def build(self, service: str, path: str, params: Optional[Mapping[str, Any]] = None
              ) -> Tuple[str, Dict[str, str]]:
        """
        Build a full URL for an absolute/relative path for a given service.
        Returns (url, headers).
        """
        view = self._require_view(service)
        headers = dict(view.default_headers or {})

        base = _ensure_trailing_slash(view.base_url)
        url = urljoin(base, path.lstrip("/"))

        query = {k: v for k, v in (params or {}).items() if v is not None}
        if query:
            url = f"{url}?{urlencode(query, doseq=True)}"

        return url, headers

    def endpoint(self, service: str, group: str, key: str) -> str:
        view = self._require_view(service)
        section = view.endpoints.get(group) or {}
        path = section.get(key) if isinstance(section, Mapping) else None
        if not path:
            raise ValueError(f"Unknown endpoint '{group}.{key}' for service '{service}'")

        return str(path)

    def rate_limits(self, service: str) -> Dict[str, Any]:
        view = self._require_view(service)

        return dict(view.rate_limits or {})

    def should_respect_retry_after(self, service: str) -> bool:
        rl = self.rate_limits(service)
        val = rl.get("respect_retry_after")

        return True if val is None else bool(val)

    def service_headers(self, service: str) -> Dict[str, str]:
        """Return the default headers for a service (already env-expanded)."""
        view = self._require_view(service)

        return dict(view.default_headers or {})

    # -------- Internals --------

    def _require_view(self, service: str) -> ServiceView:
        if service not in self._views:
            raise ValueError(f"Unknown service '{service}'. Known: {list(self._views.keys())}")

        return self._views[service]

    def _build_view(self, service: str) -> ServiceView:
        raw = dict(self._services_raw.get(service) or {})
        base_url = raw.get("base_url") or ""
        default_headers = get_default_headers(service)  # env-expanded
        default_headers.update(self._header_overrides.get(service, {}))
        rate_limits = dict(raw.get("rate_limits") or {})
        endpoints = dict(raw.get("endpoints") or {})

        return ServiceView(
            name=service,
            base_url=base_url,
            default_headers=default_headers,
            rate_limits=rate_limits,
            endpoints=endpoints,
        )


# ----------------------------
# Helpers
# ----------------------------

def _ensure_trailing_slash(u: str) -> str:
    return u if u.endswith("/") else (u + "/")
