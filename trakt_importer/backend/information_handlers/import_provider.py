"""Host-facing Trakt import provider.

The host hands over a flat string mapping (credentials plus any tokens it
persisted earlier); each :meth:`TraktImportProvider.configure` call starts a new
configuration epoch with its own client, rate budget and token state.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from trakt_importer.backend.common.cancellation import CancellationToken
from trakt_importer.backend.common.errors import ConfigError
from trakt_importer.backend.common.logging import get_logger
from trakt_importer.backend.information_handlers.import_mapper import (
    map_entries,
    map_history_entry,
    map_rating_entry,
    map_watchlist_entry,
)
from trakt_importer.backend.information_handlers.models import (
    DeviceAuthPollResult,
    DeviceAuthStart,
    ImportCapabilities,
    ImportedRating,
    ImportedWatchEvent,
    ImportedWatchlistEntry,
)
from trakt_importer.backend.information_handlers.trakt_auth import (
    KEY_ACCESS_TOKEN,
    KEY_CREATED_AT,
    KEY_EXPIRES_AT,
    KEY_REFRESH_TOKEN,
    TokenState,
    TraktCredentials,
    TraktDeviceAuth,
)
from trakt_importer.backend.information_handlers.trakt_client import TraktSyncClient
from trakt_importer.config.settings import Settings, get_settings

KEY_CLIENT_ID = "client_id"
KEY_CLIENT_SECRET = "client_secret"

SETTINGS_KEYS = (
    KEY_CLIENT_ID,
    KEY_CLIENT_SECRET,
    KEY_ACCESS_TOKEN,
    KEY_REFRESH_TOKEN,
    KEY_EXPIRES_AT,
    KEY_CREATED_AT,
)

ClientFactory = Callable[[str, Optional[str]], TraktSyncClient]
SettingsListener = Callable[[Mapping[str, str]], None]


def _parse_unix(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def tokens_from_settings(values: Mapping[str, str]) -> Optional[TokenState]:
    access_token = (values.get(KEY_ACCESS_TOKEN) or "").strip()
    if not access_token:
        return None

    return TokenState(
        access_token=access_token,
        refresh_token=(values.get(KEY_REFRESH_TOKEN) or "").strip() or None,
        expires_at=_parse_unix(values.get(KEY_EXPIRES_AT)) or 0,
        issued_at=_parse_unix(values.get(KEY_CREATED_AT)),
    )


class TraktImportProvider:
    """Imports watch history, ratings and watchlist from a Trakt account."""

    provider_id = "trakt"
    display_name = "Trakt"

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        client_factory: Optional[ClientFactory] = None,
        clock: Optional[Callable[[], float]] = None,
        on_settings_changed: Optional[SettingsListener] = None,
    ) -> None:
        self._log = get_logger(__name__)
        self._settings = settings or get_settings()
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock
        self.on_settings_changed = on_settings_changed

        self._lock = threading.Lock()
        self._credentials = TraktCredentials()
        self._client: Optional[TraktSyncClient] = None
        self._auth: Optional[TraktDeviceAuth] = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def configure(self, settings: Mapping[str, str]) -> None:
        values = {k: str(v).strip() for k, v in settings.items() if v is not None}
        credentials = TraktCredentials(
            client_id=values.get(KEY_CLIENT_ID, ""),
            client_secret=values.get(KEY_CLIENT_SECRET, ""),
        )
        tokens = tokens_from_settings(values)

        client: Optional[TraktSyncClient] = None
        auth: Optional[TraktDeviceAuth] = None
        if credentials.client_id:
            client = self._client_factory(
                credentials.client_id, tokens.access_token if tokens else None
            )
            auth = TraktDeviceAuth(
                client,
                credentials,
                tokens=tokens,
                clock=self._clock,
                max_poll_attempts=self._settings.max_poll_attempts,
                on_tokens_changed=self._handle_tokens_changed,
            )
        else:
            self._log.warning("Trakt provider configured without a client_id")

        with self._lock:
            previous = self._client
            if previous is not None:
                previous.close()
            self._credentials = credentials
            self._client = client
            self._auth = auth

        self._log.info(
            "Trakt provider configured",
            extra={"has_client_id": bool(credentials.client_id), "has_token": tokens is not None},
        )

    def capabilities(self) -> ImportCapabilities:
        return ImportCapabilities(
            supports_history=True,
            supports_ratings=True,
            supports_watchlist=True,
            requires_device_auth=True,
        )

    def current_settings(self) -> Dict[str, str]:
        with self._lock:
            credentials = self._credentials
            auth = self._auth

        values = {
            KEY_CLIENT_ID: credentials.client_id,
            KEY_CLIENT_SECRET: credentials.client_secret,
        }
        if auth is not None:
            values.update(auth.current_settings())

        return values

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------
    def start_auth(self, *, cancel: Optional[CancellationToken] = None) -> DeviceAuthStart:
        _, auth = self._require_configured()
        return auth.start_auth(cancel=cancel)

    def poll_auth(
        self,
        poll_code: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> DeviceAuthPollResult:
        _, auth = self._require_configured()
        return auth.poll_auth(poll_code, cancel=cancel)

    def is_authenticated(self) -> bool:
        with self._lock:
            auth = self._auth

        return auth is not None and auth.is_authenticated()

    def health_check(self, *, cancel: Optional[CancellationToken] = None) -> bool:
        with self._lock:
            client, auth = self._client, self._auth
        if client is None or auth is None or not auth.is_authenticated():
            return False

        return client.health_check(cancel=cancel)

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------
    def get_watch_history(
        self,
        since: Optional[datetime] = None,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> List[ImportedWatchEvent]:
        client, auth = self._require_configured()
        auth.ensure_valid(cancel=cancel)
        rows = client.get_history_all(
            since, strategy=self._settings.history_strategy, cancel=cancel
        )
        records = map_entries(map_history_entry, rows, kind="history entries")
        self._log.info("Imported %d Trakt watch events", len(records))

        return records

    def get_ratings(self, *, cancel: Optional[CancellationToken] = None) -> List[ImportedRating]:
        client, auth = self._require_configured()
        auth.ensure_valid(cancel=cancel)
        records = map_entries(map_rating_entry, client.get_ratings(cancel=cancel), kind="ratings")
        self._log.info("Imported %d Trakt ratings", len(records))

        return records

    def get_watchlist(
        self, *, cancel: Optional[CancellationToken] = None
    ) -> List[ImportedWatchlistEntry]:
        client, auth = self._require_configured()
        auth.ensure_valid(cancel=cancel)
        records = map_entries(
            map_watchlist_entry, client.get_watchlist(cancel=cancel), kind="watchlist entries"
        )
        self._log.info("Imported %d Trakt watchlist entries", len(records))

        return records

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
            self._auth = None
        if client is not None:
            client.close()

    def __enter__(self) -> "TraktImportProvider":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _default_client_factory(self, client_id: str, access_token: Optional[str]) -> TraktSyncClient:
        return TraktSyncClient(
            client_id,
            access_token=access_token,
            timeout=self._settings.http_timeout,
        )

    def _require_configured(self) -> Tuple[TraktSyncClient, TraktDeviceAuth]:
        with self._lock:
            client, auth = self._client, self._auth
        if client is None or auth is None:
            raise ConfigError("Trakt client_id must be configured")

        return client, auth

    def _handle_tokens_changed(self, token_settings: Mapping[str, str]) -> None:
        listener = self.on_settings_changed
        if listener is None:
            return
        with self._lock:
            credentials = self._credentials
        merged = {
            KEY_CLIENT_ID: credentials.client_id,
            KEY_CLIENT_SECRET: credentials.client_secret,
        }
        merged.update(token_settings)
        listener(merged)


__all__ = [
    "KEY_CLIENT_ID",
    "KEY_CLIENT_SECRET",
    "SETTINGS_KEYS",
    "TraktImportProvider",
    "tokens_from_settings",
]
