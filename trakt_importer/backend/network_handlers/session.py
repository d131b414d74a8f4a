from __future__ import annotations

import socket
from typing import Any, Collection, Dict, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter

from trakt_importer.backend.common.cancellation import CancellationToken
from trakt_importer.backend.common.errors import NetworkError
from trakt_importer.backend.common.logging import get_logger
from trakt_importer.backend.network_handlers.url_manager import URLManager

log = get_logger(__name__)


# ---------------- Exceptions ----------------

class NetError(NetworkError):
    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

class RequestTimeout(NetError): ...
class DNSFailure(NetError): ...
class ConnectionFailed(NetError): ...
class BadRequest(NetError): ...
class Unauthorized(NetError): ...
class Forbidden(NetError): ...
class NotFound(NetError): ...
class RateLimited(NetError): ...
class Upstream5xx(NetError): ...
class Client4xx(NetError): ...


def map_http_error(status: int) -> NetError:
    if status == 400: return BadRequest("400 Bad Request", status=status)
    if status == 401: return Unauthorized("401 Unauthorized", status=status)
    if status == 403: return Forbidden("403 Forbidden", status=status)
    if status == 404: return NotFound("404 Not Found", status=status)
    if status == 429: return RateLimited("429 Too Many Requests", status=status)
    if 500 <= status < 600: return Upstream5xx(f"{status} Upstream error", status=status)

    return Client4xx(f"{status} HTTP error", status=status)


def raise_for_status(response: requests.Response, allowed_statuses: Optional[Collection[int]] = None) -> None:
    status = response.status_code
    if status < 400 or status in set(allowed_statuses or ()):
        return
    raise map_http_error(status)


# ---------------- Main Session ----------------

class HttpSession:
    """
    Thin HTTP transport for one configuration epoch:
      - URL building + per-service headers via URLManager
      - Typed error mapping for statuses and transport failures
      - Cancellation checked before the call and as soon as it returns

    Retrying is the caller's decision; this layer sends each request once.
    """

    def __init__(self, timeout: float = 20, *, urlm: Optional[URLManager] = None):
        self.urlm = urlm or URLManager()
        self.timeout = timeout

        self._session = requests.Session()
        self._session.mount("http://", HTTPAdapter(pool_connections=4, pool_maxsize=8))
        self._session.mount("https://", HTTPAdapter(pool_connections=4, pool_maxsize=8))
        self._closed = False

    # -------- public API --------

    def get(
        self,
        service: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        allowed_statuses: Optional[Collection[int]] = None,
        raise_on_error: bool = True,
        cancel: Optional[CancellationToken] = None,
    ) -> requests.Response:

        return self._request(
            "GET",
            service,
            path,
            params=params,
            headers=headers,
            allowed_statuses=allowed_statuses,
            raise_on_error=raise_on_error,
            cancel=cancel,
        )

    def post(
        self,
        service: str,
        path: str,
        *,
        json_body: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        allowed_statuses: Optional[Collection[int]] = None,
        raise_on_error: bool = True,
        cancel: Optional[CancellationToken] = None,
    ) -> requests.Response:

        return self._request(
            "POST",
            service,
            path,
            params=params,
            json_body=json_body,
            headers=headers,
            allowed_statuses=allowed_statuses,
            raise_on_error=raise_on_error,
            cancel=cancel,
        )

    def close(self) -> None:
        if not self._closed:
            self._session.close()
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "HttpSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------- internals --------

    def _request(
        self,
        method: str,
        service: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]],
        json_body: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        allowed_statuses: Optional[Collection[int]] = None,
        raise_on_error: bool = True,
        cancel: Optional[CancellationToken] = None,
    ) -> requests.Response:
        if self._closed:
            raise NetError("HTTP session is closed")
        if cancel is not None:
            cancel.raise_if_cancelled()

        url, base_headers = self.urlm.build(service, path, params)
        hdrs: Dict[str, str] = dict(base_headers or {})
        if headers:
            hdrs.update(headers)

        try:
            resp = self._session.request(
                method=method,
                url=url,
                headers=hdrs,
                json=dict(json_body) if json_body is not None else None,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise RequestTimeout(str(e)) from e
        except requests.exceptions.ConnectionError as e:
            if isinstance(getattr(e, "__cause__", None), socket.gaierror):
                raise DNSFailure(str(e)) from e
            raise ConnectionFailed(str(e)) from e
        except requests.exceptions.RequestException as e:
            raise NetError(str(e)) from e

        if cancel is not None:
            cancel.raise_if_cancelled()

        log.debug("%s %s -> %s", method, path, resp.status_code)
        if raise_on_error:
            raise_for_status(resp, allowed_statuses)

        return resp


__all__ = [
    "BadRequest",
    "Client4xx",
    "ConnectionFailed",
    "DNSFailure",
    "Forbidden",
    "HttpSession",
    "NetError",
    "NotFound",
    "RateLimited",
    "RequestTimeout",
    "Unauthorized",
    "Upstream5xx",
    "map_http_error",
    "raise_for_status",
]
