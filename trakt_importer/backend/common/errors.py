from __future__ import annotations

from typing import Any, Dict



class TraktImportError(Exception):
    """Base for all Trakt importer exceptions."""


class ConfigError(TraktImportError):
    """Configuration related issues (missing credentials, bad settings)."""


class AuthenticationRequired(TraktImportError):
    """No usable access token; the device flow has to be completed first."""


class ReauthRequired(AuthenticationRequired):
    """Raised when the stored token expired and could not be refreshed."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Trakt requires re-authentication ({reason}); re-run authorization")
        self.reason = reason

    @property
    def payload(self) -> Dict[str, Any]:
        return {"reauth_required": True, "reason": self.reason}


class NetworkError(TraktImportError):
    """Network/HTTP layer issues."""


class ProviderError(TraktImportError):
    """Remote service returned something we cannot use (invalid JSON, bad shape)."""


class OperationCancelled(TraktImportError):
    """The caller cancelled the operation while it was waiting or in flight."""
