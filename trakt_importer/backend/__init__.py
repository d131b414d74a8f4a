"""Backend public interfaces with lazy loading to avoid circular imports."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any

__all__ = [
    "CancellationToken",
    "DeviceAuthPollResult",
    "DeviceAuthStart",
    "DeviceAuthStatus",
    "ImportCapabilities",
    "ImportedRating",
    "ImportedWatchEvent",
    "ImportedWatchlistEntry",
    "TraktDeviceAuth",
    "TraktImportProvider",
    "TraktSyncClient",
]

_MODULE_EXPORTS = {
    "common.cancellation": {
        "CancellationToken",
    },
    "information_handlers.models": {
        "DeviceAuthPollResult",
        "DeviceAuthStart",
        "DeviceAuthStatus",
        "ImportCapabilities",
        "ImportedRating",
        "ImportedWatchEvent",
        "ImportedWatchlistEntry",
    },
    "information_handlers.import_provider": {
        "TraktImportProvider",
    },
    "information_handlers.trakt_auth": {
        "TraktDeviceAuth",
    },
    "information_handlers.trakt_client": {
        "TraktSyncClient",
    },
}

if TYPE_CHECKING:  # pragma: no cover - for static analysis only
    from .common.cancellation import CancellationToken
    from .information_handlers.import_provider import TraktImportProvider
    from .information_handlers.models import (
        DeviceAuthPollResult,
        DeviceAuthStart,
        DeviceAuthStatus,
        ImportCapabilities,
        ImportedRating,
        ImportedWatchEvent,
        ImportedWatchlistEntry,
    )
    from .information_handlers.trakt_auth import TraktDeviceAuth
    from .information_handlers.trakt_client import TraktSyncClient


def __getattr__(name: str) -> Any:
    for module_name, symbols in _MODULE_EXPORTS.items():
        if name in symbols:
            module = importlib.import_module(f"{__name__}.{module_name}")
            value = getattr(module, name)
            globals()[name] = value
            return value
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    exported = set(__all__)
    for symbols in _MODULE_EXPORTS.values():
        exported.update(symbols)
    exported.update(globals().keys())
    return sorted(exported)
