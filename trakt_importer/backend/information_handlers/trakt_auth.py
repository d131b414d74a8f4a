"""OAuth device authorization and token lifecycle for Trakt."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from trakt_importer.backend.common.cancellation import CancellationToken
from trakt_importer.backend.common.errors import (
    AuthenticationRequired,
    ConfigError,
    OperationCancelled,
    ReauthRequired,
    TraktImportError,
)
from trakt_importer.backend.common.logging import get_logger
from trakt_importer.backend.information_handlers.models import (
    DeviceAuthPollResult,
    DeviceAuthStart,
    DeviceAuthStatus,
)
from trakt_importer.backend.information_handlers.trakt_client import TraktSyncClient
from trakt_importer.backend.information_handlers.trakt_models import OAuthToken

REFRESH_MARGIN_SECONDS = 86400
DEFAULT_MAX_POLL_ATTEMPTS = 120
POLL_ATTEMPT_SLACK = 2
SLOW_DOWN_STEP_SECONDS = 5

KEY_ACCESS_TOKEN = "access_token"
KEY_REFRESH_TOKEN = "refresh_token"
KEY_EXPIRES_AT = "access_token_expires_at"
KEY_CREATED_AT = "access_token_created_at"

TokensListener = Callable[[Mapping[str, str]], None]


class TraktCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: str = ""
    client_secret: str = ""


class TokenState(BaseModel):
    """Immutable token snapshot; replaced as a whole, never edited in place."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: int = 0
    issued_at: Optional[int] = None

    @classmethod
    def from_oauth(cls, token: OAuthToken, *, now: Optional[float] = None) -> "TokenState":
        created = token.ensure_created_at(now)
        return cls(
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=created + int(token.expires_in),
            issued_at=created,
        )

    @property
    def expiry_known(self) -> bool:
        return self.expires_at > 0

    @property
    def lifetime(self) -> Optional[int]:
        if self.issued_at is None or not self.expiry_known:
            return None
        return self.expires_at - self.issued_at

    def refresh_margin(self, margin: int = REFRESH_MARGIN_SECONDS) -> int:
        lifetime = self.lifetime
        if lifetime is not None and lifetime <= margin:
            return 0
        return margin

    def is_expired(self, now_ts: float) -> bool:
        return self.expiry_known and now_ts >= self.expires_at

    def needs_refresh(self, now_ts: float, margin: int = REFRESH_MARGIN_SECONDS) -> bool:
        if not self.expiry_known:
            return False
        return now_ts >= self.expires_at - self.refresh_margin(margin)

    def to_settings(self) -> Dict[str, str]:
        values = {
            KEY_ACCESS_TOKEN: self.access_token,
            KEY_REFRESH_TOKEN: self.refresh_token or "",
            KEY_EXPIRES_AT: str(self.expires_at),
        }
        if self.issued_at is not None:
            values[KEY_CREATED_AT] = str(self.issued_at)

        return values


@dataclass
class _PollTracker:
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS
    interval: int = 5
    deadline: Optional[float] = None


class TraktDeviceAuth:
    """Drives the device-code grant and keeps the client's bearer token current.

    Poll codes are tracked per instance: each one gets a local deadline and an
    attempt cap, and once it has resolved it is never sent to Trakt again.
    """

    def __init__(
        self,
        client: TraktSyncClient,
        credentials: TraktCredentials,
        *,
        tokens: Optional[TokenState] = None,
        clock: Optional[Callable[[], float]] = None,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        margin_seconds: int = REFRESH_MARGIN_SECONDS,
        on_tokens_changed: Optional[TokensListener] = None,
    ) -> None:
        self._log = get_logger(__name__)
        self._client = client
        self._credentials = credentials
        self._clock = clock or time.time
        self._max_poll_attempts = max(1, int(max_poll_attempts))
        self._margin = int(margin_seconds)
        self._listener = on_tokens_changed

        self._state_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._tokens: Optional[TokenState] = None
        self._polls: Dict[str, _PollTracker] = {}
        self._resolved: Dict[str, DeviceAuthStatus] = {}

        if tokens is not None and tokens.access_token:
            self._tokens = tokens
            self._client.set_access_token(tokens.access_token)

    # ------------------------------------------------------------------
    # Device flow
    # ------------------------------------------------------------------
    def start_auth(self, *, cancel: Optional[CancellationToken] = None) -> DeviceAuthStart:
        if not self._credentials.client_id:
            raise ConfigError("Trakt client_id must be configured before starting authorization")

        device = self._client.request_device_code(cancel=cancel)
        interval = max(1, int(device.interval))
        expires_in = max(1, int(device.expires_in))
        with self._state_lock:
            self._polls[device.device_code] = _PollTracker(
                max_attempts=math.ceil(expires_in / interval) + POLL_ATTEMPT_SLACK,
                interval=interval,
                deadline=self._clock() + expires_in,
            )

        self._log.info(
            "Trakt device code issued; user must visit %s and enter %s",
            device.verification_url,
            device.user_code,
        )
        return DeviceAuthStart(
            user_code=device.user_code,
            verification_url=device.verification_url,
            expires_in=device.expires_in,
            interval=device.interval,
            poll_code=device.device_code,
        )

    def poll_auth(
        self,
        poll_code: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> DeviceAuthPollResult:
        if not self._credentials.client_id or not self._credentials.client_secret:
            raise ConfigError("Trakt client_id and client_secret must be configured to poll authorization")
        if not poll_code:
            raise ConfigError("A poll code from start_auth is required")

        with self._state_lock:
            previous = self._resolved.get(poll_code)
            if previous is not None:
                return DeviceAuthPollResult(
                    status=DeviceAuthStatus.ALREADY_USED,
                    error_message=f"Device code already resolved ({previous.value})",
                )

            tracker = self._polls.setdefault(
                poll_code, _PollTracker(max_attempts=self._max_poll_attempts)
            )
            past_deadline = tracker.deadline is not None and self._clock() >= tracker.deadline
            if past_deadline or tracker.attempts >= tracker.max_attempts:
                self._resolve(poll_code, DeviceAuthStatus.EXPIRED)
                return DeviceAuthPollResult(
                    status=DeviceAuthStatus.EXPIRED,
                    error_message="Device code expired before the user approved it",
                )
            tracker.attempts += 1

        response = self._client.poll_device_token(
            poll_code, self._credentials.client_secret, cancel=cancel
        )
        return self._handle_poll_response(poll_code, tracker, response)

    def _handle_poll_response(
        self,
        poll_code: str,
        tracker: _PollTracker,
        response: Any,
    ) -> DeviceAuthPollResult:
        status = response.status_code

        if status == 200:
            try:
                oauth = OAuthToken.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                self._log.warning("Trakt device token payload invalid: %s", exc)
                return DeviceAuthPollResult(
                    status=DeviceAuthStatus.PENDING,
                    error_message="Trakt returned an unreadable token; retry",
                )

            with self._state_lock:
                if poll_code in self._resolved:
                    return DeviceAuthPollResult(status=DeviceAuthStatus.ALREADY_USED)
                self._resolve(poll_code, DeviceAuthStatus.AUTHORIZED)

            tokens = TokenState.from_oauth(oauth, now=self._clock())
            self._install(tokens)
            self._log.info("Trakt access token granted via device flow")
            return DeviceAuthPollResult(
                status=DeviceAuthStatus.AUTHORIZED,
                new_settings=tokens.to_settings(),
            )

        if status in (400, 404):
            return DeviceAuthPollResult(status=DeviceAuthStatus.PENDING)

        if status == 429:
            interval = self._slow_down_interval(tracker, response)
            return DeviceAuthPollResult(
                status=DeviceAuthStatus.SLOW_DOWN,
                retry_interval=interval,
            )

        terminal = {
            409: (DeviceAuthStatus.ALREADY_USED, "Device code was already used"),
            410: (DeviceAuthStatus.EXPIRED, "Device code expired"),
            418: (DeviceAuthStatus.DENIED, "User denied the authorization request"),
        }.get(status)
        if terminal is not None:
            outcome, message = terminal
            with self._state_lock:
                self._resolve(poll_code, outcome)
            self._log.info("Trakt device authorization ended: %s", outcome.value)
            return DeviceAuthPollResult(status=outcome, error_message=message)

        self._log.warning("Unexpected status %s while polling Trakt device token", status)
        return DeviceAuthPollResult(
            status=DeviceAuthStatus.PENDING,
            error_message=f"Unexpected status {status}",
        )

    def _slow_down_interval(self, tracker: _PollTracker, response: Any) -> int:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        payload_interval = _try_int(payload.get("interval")) if isinstance(payload, Mapping) else None
        headers = getattr(response, "headers", None) or {}
        retry_after = _try_int(headers.get("Retry-After"))

        candidates = [tracker.interval + SLOW_DOWN_STEP_SECONDS]
        if payload_interval is not None:
            candidates.append(payload_interval)
        if retry_after is not None:
            candidates.append(retry_after)

        with self._state_lock:
            tracker.interval = max(candidates)
            return tracker.interval

    def _resolve(self, poll_code: str, outcome: DeviceAuthStatus) -> None:
        self._resolved[poll_code] = outcome
        self._polls.pop(poll_code, None)

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------
    @property
    def tokens(self) -> Optional[TokenState]:
        return self._tokens

    def is_authenticated(self) -> bool:
        tokens = self._tokens
        if tokens is None or not tokens.access_token:
            return False

        return not tokens.needs_refresh(self._clock(), self._margin)

    def ensure_valid(self, *, cancel: Optional[CancellationToken] = None) -> TokenState:
        tokens = self._tokens
        if tokens is None or not tokens.access_token:
            raise AuthenticationRequired("Trakt is not authorized; run the device authorization first")
        if not tokens.needs_refresh(self._clock(), self._margin):
            return tokens

        with self._refresh_lock:
            tokens = self._tokens
            if tokens is None:
                raise AuthenticationRequired("Trakt is not authorized; run the device authorization first")
            if not tokens.needs_refresh(self._clock(), self._margin):
                return tokens

            refreshed = None
            if tokens.refresh_token:
                self._log.debug("Trakt token inside refresh window; refreshing")
                refreshed = self.refresh(tokens.refresh_token, cancel=cancel)

            if refreshed is not None:
                return refreshed
            if tokens.is_expired(self._clock()):
                reason = "token_expired" if tokens.refresh_token else "no_refresh_token"
                raise ReauthRequired(reason)

            self._log.warning("Trakt token refresh failed; continuing with the current token until it expires")
            return tokens

    def refresh(
        self,
        refresh_token: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[TokenState]:
        if not refresh_token or not self._credentials.client_secret:
            return None
        try:
            oauth = self._client.refresh_token(
                refresh_token, self._credentials.client_secret, cancel=cancel
            )
        except OperationCancelled:
            raise
        except TraktImportError as exc:
            self._log.warning("Trakt token refresh failed: %s", exc)
            return None

        tokens = TokenState.from_oauth(oauth, now=self._clock())
        if not tokens.refresh_token:
            tokens = tokens.model_copy(update={"refresh_token": refresh_token})
        self._install(tokens)
        self._log.info("Trakt access token refreshed")
        return tokens

    def current_settings(self) -> Dict[str, str]:
        tokens = self._tokens
        return tokens.to_settings() if tokens is not None else {}

    def _install(self, tokens: TokenState) -> None:
        with self._state_lock:
            self._tokens = tokens
        self._client.set_access_token(tokens.access_token)

        if self._listener is not None:
            try:
                self._listener(tokens.to_settings())
            except Exception:
                self._log.exception("Token change listener failed")


def _try_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(str(value)))
    except (TypeError, ValueError):
        return None


__all__ = [
    "DEFAULT_MAX_POLL_ATTEMPTS",
    "KEY_ACCESS_TOKEN",
    "KEY_CREATED_AT",
    "KEY_EXPIRES_AT",
    "KEY_REFRESH_TOKEN",
    "REFRESH_MARGIN_SECONDS",
    "TokenState",
    "TraktCredentials",
    "TraktDeviceAuth",
]
