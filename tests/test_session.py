"""Tests for the HTTP transport and URL building."""

import socket
from unittest.mock import MagicMock

import pytest
import requests

from trakt_importer.backend.common.cancellation import CancellationToken
from trakt_importer.backend.common.errors import NetworkError, OperationCancelled
from trakt_importer.backend.network_handlers.session import (
    BadRequest,
    Client4xx,
    ConnectionFailed,
    DNSFailure,
    Forbidden,
    HttpSession,
    NetError,
    NotFound,
    RateLimited,
    RequestTimeout,
    Unauthorized,
    Upstream5xx,
    map_http_error,
)
from trakt_importer.backend.network_handlers.url_manager import URLManager


@pytest.mark.parametrize(
    "status,expected",
    [
        (400, BadRequest),
        (401, Unauthorized),
        (403, Forbidden),
        (404, NotFound),
        (429, RateLimited),
        (503, Upstream5xx),
        (422, Client4xx),
    ],
)
def test_map_http_error(status, expected):
    error = map_http_error(status)

    assert isinstance(error, expected)
    assert isinstance(error, NetworkError)
    assert error.status == status


class TestURLManager:
    def test_build_drops_empty_params(self):
        urlm = URLManager()

        url, headers = urlm.build("trakt", "/sync/history", {"page": 2, "start_at": None})

        assert url == "https://api.trakt.tv/sync/history?page=2"
        assert headers["trakt-api-version"] == "2"

    def test_header_overrides(self):
        urlm = URLManager({"trakt": {"default_headers": {"trakt-api-key": "cid"}}})

        headers = urlm.service_headers("trakt")

        assert headers["trakt-api-key"] == "cid"
        assert headers["Content-Type"] == "application/json"

    def test_endpoint_lookup(self):
        urlm = URLManager()

        assert urlm.endpoint("trakt", "oauth", "poll") == "/oauth/device/token"
        with pytest.raises(ValueError):
            urlm.endpoint("trakt", "oauth", "authorize")

    def test_unknown_service(self):
        with pytest.raises(ValueError):
            URLManager().build("imdb", "/x")

    def test_rate_limits(self):
        urlm = URLManager()

        assert urlm.rate_limits("trakt")["history_page_size"] == 500
        assert urlm.should_respect_retry_after("trakt") is True


class TestHttpSession:
    @pytest.fixture
    def session(self):
        http = HttpSession(timeout=3)
        http._session = MagicMock()
        return http

    def _response(self, status):
        response = MagicMock()
        response.status_code = status
        return response

    def test_get_merges_headers(self, session):
        session._session.request.return_value = self._response(200)

        session.get("trakt", "/sync/ratings", headers={"Authorization": "Bearer t"})

        kwargs = session._session.request.call_args.kwargs
        assert kwargs["method"] == "GET"
        assert kwargs["url"] == "https://api.trakt.tv/sync/ratings"
        assert kwargs["headers"]["Authorization"] == "Bearer t"
        assert kwargs["headers"]["trakt-api-version"] == "2"
        assert kwargs["timeout"] == 3

    def test_post_sends_json(self, session):
        session._session.request.return_value = self._response(200)

        session.post("trakt", "/oauth/device/code", json_body={"client_id": "cid"})

        assert session._session.request.call_args.kwargs["json"] == {"client_id": "cid"}

    def test_error_status_raises(self, session):
        session._session.request.return_value = self._response(404)

        with pytest.raises(NotFound):
            session.get("trakt", "/sync/ratings")

    def test_error_status_returned_when_not_raising(self, session):
        session._session.request.return_value = self._response(418)

        response = session.post("trakt", "/oauth/device/token", raise_on_error=False)

        assert response.status_code == 418

    def test_allowed_statuses(self, session):
        session._session.request.return_value = self._response(409)

        assert session.get("trakt", "/x", allowed_statuses={409}).status_code == 409

    def test_timeout(self, session):
        session._session.request.side_effect = requests.exceptions.Timeout("slow")

        with pytest.raises(RequestTimeout):
            session.get("trakt", "/sync/ratings")

    def test_dns_failure(self, session):
        error = requests.exceptions.ConnectionError("dns")
        error.__cause__ = socket.gaierror("no host")
        session._session.request.side_effect = error

        with pytest.raises(DNSFailure):
            session.get("trakt", "/sync/ratings")

    def test_connection_failure(self, session):
        session._session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(ConnectionFailed):
            session.get("trakt", "/sync/ratings")

    def test_cancelled_before_send(self, session):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelled):
            session.get("trakt", "/sync/ratings", cancel=token)
        session._session.request.assert_not_called()

    def test_closed_session(self, session):
        session.close()

        assert session.closed
        with pytest.raises(NetError):
            session.get("trakt", "/sync/ratings")
