"""Rate-limited Trakt v2 client used by the import provider."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, NamedTuple, Optional

import requests
from pydantic import ValidationError

from trakt_importer.backend.common.cancellation import CancellationToken, ensure_token
from trakt_importer.backend.common.errors import (
    AuthenticationRequired,
    ConfigError,
    OperationCancelled,
    ProviderError,
    TraktImportError,
)
from trakt_importer.backend.common.logging import get_logger
from trakt_importer.backend.information_handlers.trakt_models import DeviceCode, OAuthToken
from trakt_importer.backend.network_handlers.session import (
    HttpSession,
    RateLimited,
    raise_for_status,
)
from trakt_importer.backend.network_handlers.url_manager import URLManager

_SERVICE_NAME = "trakt"

HISTORY_STRATEGY_PAGE_COUNT = "page_count"
HISTORY_STRATEGY_SHORT_PAGE = "short_page"

Clock = Callable[[], float]
Sleeper = Callable[[float, CancellationToken], None]


@dataclass(frozen=True)
class RateBudget:
    """Last known quota window; ``reset_at`` is unix seconds, 0 when unknown."""

    remaining: int
    reset_at: float = 0.0


class HistoryPage(NamedTuple):
    items: List[Any]
    total_pages: int


def _cancellable_sleep(seconds: float, cancel: CancellationToken) -> None:
    cancel.sleep(seconds)


def _try_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        try:
            return int(float(str(value)))
        except (TypeError, ValueError):
            return None


def _header(headers: Optional[Mapping[str, Any]], name: str) -> Optional[str]:
    if not headers:
        return None
    value = headers.get(name)
    if value is not None:
        return str(value)
    lowered = name.lower()
    for key, candidate in headers.items():
        if str(key).lower() == lowered:
            return str(candidate)

    return None


def format_since(since: datetime) -> str:
    """ISO-8601 UTC timestamp with a ``Z`` suffix; naive values are taken as UTC."""

    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)

    return since.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class TraktSyncClient:
    """Owns one HTTP session plus the advisory rate budget for one client id.

    Every authenticated read goes through :meth:`authenticated_get`, which
    serializes the budget check, the request and the budget update behind a
    single lock so concurrent callers never race on a stale quota.
    """

    def __init__(
        self,
        client_id: str,
        *,
        access_token: Optional[str] = None,
        session: Optional[HttpSession] = None,
        urlm: Optional[URLManager] = None,
        timeout: float = 20,
        clock: Optional[Clock] = None,
        sleeper: Optional[Sleeper] = None,
    ) -> None:
        if not client_id:
            raise ConfigError("Trakt client_id is required")

        self._log = get_logger(__name__)
        self._client_id = client_id
        self._access_token = access_token or None
        self._urlm = urlm or URLManager(
            {_SERVICE_NAME: {"default_headers": {"trakt-api-key": client_id}}}
        )
        if not self._urlm.service_headers(_SERVICE_NAME).get("trakt-api-key"):
            raise ConfigError("URLManager must supply the trakt-api-key header")
        self._session = session or HttpSession(timeout, urlm=self._urlm)
        self._clock: Clock = clock or time.time
        self._sleeper: Sleeper = sleeper or _cancellable_sleep
        self._lock = threading.Lock()

        limits = self._urlm.rate_limits(_SERVICE_NAME)
        self.page_size = max(1, _limit_int(limits, "history_page_size", 500))
        self.max_history_pages = max(1, _limit_int(limits, "max_history_pages", 1000))
        self._page_delay = _limit_float(limits, "page_delay_ms", 250.0) / 1000.0
        self._reset_margin = _limit_float(limits, "reset_margin_ms", 500.0) / 1000.0
        self._default_retry_after = _limit_float(limits, "default_retry_after_seconds", 5.0)
        self._max_retry_after = _limit_float(limits, "max_retry_after_seconds", 300.0)
        self._respect_retry_after = self._urlm.should_respect_retry_after(_SERVICE_NAME)
        self._budget = RateBudget(remaining=_limit_int(limits, "initial_remaining", 1000))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def rate_budget(self) -> RateBudget:
        return self._budget

    @property
    def has_access_token(self) -> bool:
        return bool(self._access_token)

    def set_access_token(self, access_token: Optional[str]) -> None:
        self._access_token = access_token or None

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "TraktSyncClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Sync endpoints
    # ------------------------------------------------------------------
    def get_history_page(
        self,
        since: Optional[datetime] = None,
        page: int = 1,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> HistoryPage:
        params: Dict[str, Any] = {"limit": self.page_size, "page": page}
        if since is not None:
            params["start_at"] = format_since(since)

        response = self.authenticated_get(self._endpoint("sync", "history"), params, cancel=cancel)
        items = self._parse_list(response)
        total_pages = _try_int(_header(response.headers, "X-Pagination-Page-Count"))
        if total_pages is None or total_pages < 1:
            total_pages = 1

        return HistoryPage(items=items, total_pages=total_pages)

    def iter_history(
        self,
        since: Optional[datetime] = None,
        *,
        strategy: str = HISTORY_STRATEGY_SHORT_PAGE,
        cancel: Optional[CancellationToken] = None,
    ) -> Iterator[List[Any]]:
        """Yield history pages in order.

        ``short_page`` keeps going until a page comes back empty or shorter
        than the page size. ``page_count`` trusts ``X-Pagination-Page-Count``
        and also stops early on an empty page.

        Running past ``max_history_pages`` while pages are still full raises
        :class:`ProviderError` rather than ending on a partial history.
        """

        if strategy not in (HISTORY_STRATEGY_PAGE_COUNT, HISTORY_STRATEGY_SHORT_PAGE):
            raise ValueError(f"Unknown history strategy '{strategy}'")

        token = ensure_token(cancel)
        page = 1
        while True:
            batch = self.get_history_page(since, page, cancel=token)
            if batch.items:
                yield batch.items

            if strategy == HISTORY_STRATEGY_SHORT_PAGE:
                done = len(batch.items) < self.page_size
            else:
                done = not batch.items or page >= batch.total_pages
            if done:
                return

            if page >= self.max_history_pages:
                raise ProviderError(
                    f"Trakt history exceeds {self.max_history_pages} pages; refusing a partial import"
                )

            page += 1
            self._sleeper(self._page_delay, token)

    def get_history_all(
        self,
        since: Optional[datetime] = None,
        *,
        strategy: str = HISTORY_STRATEGY_SHORT_PAGE,
        cancel: Optional[CancellationToken] = None,
    ) -> List[Any]:
        items: List[Any] = []
        for batch in self.iter_history(since, strategy=strategy, cancel=cancel):
            items.extend(batch)

        self._log.debug("Fetched %d Trakt history rows", len(items))
        return items

    def get_ratings(self, *, cancel: Optional[CancellationToken] = None) -> List[Any]:
        response = self.authenticated_get(self._endpoint("sync", "ratings"), cancel=cancel)
        return self._parse_list(response)

    def get_watchlist(self, *, cancel: Optional[CancellationToken] = None) -> List[Any]:
        response = self.authenticated_get(self._endpoint("sync", "watchlist"), cancel=cancel)
        return self._parse_list(response)

    def health_check(self, *, cancel: Optional[CancellationToken] = None) -> bool:
        try:
            self.authenticated_get(self._endpoint("sync", "last_activities"), cancel=cancel)
        except OperationCancelled:
            raise
        except TraktImportError as exc:
            self._log.info("Trakt health check failed: %s", exc)
            return False

        return True

    # ------------------------------------------------------------------
    # OAuth endpoints
    # ------------------------------------------------------------------
    def request_device_code(self, *, cancel: Optional[CancellationToken] = None) -> DeviceCode:
        response = self._session.post(
            _SERVICE_NAME,
            self._endpoint("oauth", "device_code"),
            json_body={"client_id": self._client_id},
            headers=self._base_headers(),
            cancel=cancel,
        )
        return self._validate(DeviceCode, self._parse_json(response))

    def poll_device_token(
        self,
        device_code: str,
        client_secret: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> requests.Response:
        """Send one poll; the raw response is returned for status mapping."""

        return self._session.post(
            _SERVICE_NAME,
            self._endpoint("oauth", "poll"),
            json_body={
                "code": device_code,
                "client_id": self._client_id,
                "client_secret": client_secret,
            },
            headers=self._base_headers(),
            raise_on_error=False,
            cancel=cancel,
        )

    def refresh_token(
        self,
        refresh_token: str,
        client_secret: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> OAuthToken:
        response = self._session.post(
            _SERVICE_NAME,
            self._endpoint("oauth", "refresh"),
            json_body={
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": client_secret,
                "grant_type": "refresh_token",
            },
            headers=self._base_headers(),
            cancel=cancel,
        )
        return self._validate(OAuthToken, self._parse_json(response))

    # ------------------------------------------------------------------
    # Rate-limited request path
    # ------------------------------------------------------------------
    def authenticated_get(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> requests.Response:
        token = ensure_token(cancel)
        headers = self._auth_headers()

        with self._lock:
            self._wait_for_budget(token)
            response = self._send(path, params, headers, token)
            if response.status_code == 429:
                delay = self._retry_delay(response)
                self._log.warning("Trakt rate limit hit on %s; retrying in %.1fs", path, delay)
                self._sleeper(delay, token)
                response = self._send(path, params, headers, token)
                if response.status_code == 429:
                    raise RateLimited("Trakt rate limit still exceeded after retry", status=429)

        raise_for_status(response)
        return response

    def _send(
        self,
        path: str,
        params: Optional[Mapping[str, Any]],
        headers: Mapping[str, str],
        cancel: CancellationToken,
    ) -> requests.Response:
        response = self._session.get(
            _SERVICE_NAME,
            path,
            params=dict(params or {}),
            headers=headers,
            raise_on_error=False,
            cancel=cancel,
        )
        self._update_budget(response.headers)
        return response

    def _wait_for_budget(self, cancel: CancellationToken) -> None:
        budget = self._budget
        if budget.remaining > 0 or budget.reset_at <= 0:
            return

        delay = budget.reset_at - self._clock() + self._reset_margin
        if delay > 0:
            self._log.info("Trakt rate budget exhausted; waiting %.1fs for the window reset", delay)
            self._sleeper(delay, cancel)

    def _update_budget(self, headers: Optional[Mapping[str, Any]]) -> None:
        remaining = _try_int(_header(headers, "X-RateLimit-Remaining"))
        reset_at = _try_int(_header(headers, "X-RateLimit-Reset"))
        if remaining is None and reset_at is None:
            return

        current = self._budget
        self._budget = RateBudget(
            remaining=current.remaining if remaining is None else remaining,
            reset_at=current.reset_at if reset_at is None else float(reset_at),
        )

    def _retry_delay(self, response: requests.Response) -> float:
        retry_after = None
        if self._respect_retry_after:
            retry_after = _try_int(_header(response.headers, "Retry-After"))
        if retry_after is None or retry_after < 0:
            return min(self._default_retry_after, self._max_retry_after)

        return retry_after + 1.0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _endpoint(self, group: str, key: str) -> str:
        return self._urlm.endpoint(_SERVICE_NAME, group, key)

    def _base_headers(self) -> Dict[str, str]:
        return self._urlm.service_headers(_SERVICE_NAME)

    def _auth_headers(self) -> Dict[str, str]:
        if not self._access_token:
            raise AuthenticationRequired("No Trakt access token; complete device authorization first")
        headers = self._base_headers()
        headers["Authorization"] = f"Bearer {self._access_token}"

        return headers

    def _parse_json(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError("Trakt returned invalid JSON") from exc

    def _parse_list(self, response: requests.Response) -> List[Any]:
        data = self._parse_json(response)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ProviderError(f"Expected a JSON array from Trakt, got {type(data).__name__}")

        return data

    def _validate(self, model: Any, data: Any) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise ProviderError(f"Unexpected Trakt payload for {model.__name__}") from exc


def _limit_int(limits: Mapping[str, Any], key: str, default: int) -> int:
    value = _try_int(limits.get(key))
    return default if value is None else value


def _limit_float(limits: Mapping[str, Any], key: str, default: float) -> float:
    raw = limits.get(key)
    if raw is None:
        return default
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return default


__all__ = [
    "HISTORY_STRATEGY_PAGE_COUNT",
    "HISTORY_STRATEGY_SHORT_PAGE",
    "HistoryPage",
    "RateBudget",
    "TraktSyncClient",
    "format_since",
]
