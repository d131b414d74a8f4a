"""
Shared pytest fixtures for the Trakt importer tests.

- A controllable clock and a sleeper that records waits and advances it
- Canned HTTP responses and a mocked transport session
- A sync client wired to those fakes
"""

from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from trakt_importer.backend.information_handlers.trakt_client import TraktSyncClient
from trakt_importer.config.settings import Settings


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleeper:
    """Records every wait and moves the fake clock forward instead of blocking."""

    def __init__(self, clock: FakeClock, events: Optional[List[Any]] = None) -> None:
        self.clock = clock
        self.calls: List[float] = []
        self.events = events if events is not None else []

    def __call__(self, seconds: float, cancel: Any) -> None:
        cancel.raise_if_cancelled()
        self.calls.append(seconds)
        self.events.append(("sleep", seconds))
        self.clock.advance(seconds)


def make_response(
    status: int = 200,
    payload: Any = None,
    headers: Optional[Dict[str, str]] = None,
    *,
    invalid_json: bool = False,
) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.headers = dict(headers or {})
    if invalid_json:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> List[Any]:
    return []


@pytest.fixture
def sleeper(clock, events) -> RecordingSleeper:
    return RecordingSleeper(clock, events)


@pytest.fixture
def mock_session() -> MagicMock:
    """Transport double; configure ``get``/``post`` return values per test."""
    session = MagicMock()
    session.get.return_value = make_response(200, [])
    return session


@pytest.fixture
def client(mock_session, clock, sleeper) -> TraktSyncClient:
    return TraktSyncClient(
        "client-123",
        access_token="access-abc",
        session=mock_session,
        clock=clock,
        sleeper=sleeper,
    )


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        app_name="Trakt Importer (tests)",
        env="test",
        log_level="DEBUG",
        http_timeout=5.0,
        history_strategy="short_page",
        max_poll_attempts=120,
        host_settings_path=tmp_path / "settings.json",
    )


# ---------------- sample Trakt rows ----------------

def movie_history_row(trakt_id: int = 1, history_id: int = 900) -> Dict[str, Any]:
    return {
        "id": history_id,
        "watched_at": "2024-03-01T20:15:00.000Z",
        "action": "watch",
        "type": "movie",
        "movie": {
            "title": "Heat",
            "year": 1995,
            "ids": {"trakt": trakt_id, "slug": "heat-1995", "imdb": "tt0113277", "tmdb": 949},
        },
    }


def episode_history_row(episode_id: int = 73640, show_id: int = 1390) -> Dict[str, Any]:
    return {
        "id": 901,
        "watched_at": "2024-03-02T21:00:00.000Z",
        "action": "scrobble",
        "type": "episode",
        "show": {
            "title": "Game of Thrones",
            "year": 2011,
            "ids": {"trakt": show_id, "slug": "game-of-thrones", "tvdb": 121361, "tmdb": 1399},
        },
        "episode": {
            "season": 1,
            "number": 2,
            "title": "The Kingsroad",
            "ids": {"trakt": episode_id, "tvdb": 3436411, "imdb": "tt1668746"},
        },
    }
