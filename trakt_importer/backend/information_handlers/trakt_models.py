"""Typed views of the Trakt v2 JSON payloads consumed by the importer.

Every collection row is modelled as a tagged union keyed on the ``type`` field.
Each variant declares the sub-objects it needs as required fields, so a row
whose tag is unknown or whose payload is incomplete simply fails validation and
is reported as ``None`` by the ``parse_*`` helpers instead of breaking a batch.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


# ---------------------------------------------------------------------------
# OAuth payloads
# ---------------------------------------------------------------------------


class DeviceCode(BaseModel):
    device_code: str
    user_code: str
    verification_url: str
    expires_in: int
    interval: int


class OAuthToken(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    created_at: Optional[int] = None

    def ensure_created_at(self, now: Optional[float] = None) -> int:
        if self.created_at is None:
            self.created_at = int(now if now is not None else time.time())
        return self.created_at


# ---------------------------------------------------------------------------
# Media identifiers
# ---------------------------------------------------------------------------


class _TraktObject(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class TraktIds(_TraktObject):
    trakt: Optional[int] = None
    slug: Optional[str] = None
    imdb: Optional[str] = None
    tmdb: Optional[int] = None
    tvdb: Optional[int] = None


class TraktMovie(_TraktObject):
    title: str
    year: Optional[int] = None
    ids: TraktIds = Field(default_factory=TraktIds)


class TraktShow(_TraktObject):
    title: str
    year: Optional[int] = None
    ids: TraktIds = Field(default_factory=TraktIds)


class TraktEpisode(_TraktObject):
    season: int
    number: int
    title: Optional[str] = None
    ids: TraktIds = Field(default_factory=TraktIds)


# ---------------------------------------------------------------------------
# History (/sync/history)
# ---------------------------------------------------------------------------


class _HistoryBase(_TraktObject):
    id: Optional[int] = None
    watched_at: datetime
    action: Optional[str] = None


class MovieHistoryEntry(_HistoryBase):
    type: Literal["movie"]
    movie: TraktMovie


class EpisodeHistoryEntry(_HistoryBase):
    type: Literal["episode"]
    show: TraktShow
    episode: TraktEpisode


HistoryEntry = Annotated[
    Union[MovieHistoryEntry, EpisodeHistoryEntry],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Ratings (/sync/ratings)
# ---------------------------------------------------------------------------


class _RatingBase(_TraktObject):
    rated_at: datetime
    rating: int = Field(ge=1, le=10)


class MovieRatingEntry(_RatingBase):
    type: Literal["movie"]
    movie: TraktMovie


class ShowRatingEntry(_RatingBase):
    type: Literal["show"]
    show: TraktShow


class EpisodeRatingEntry(_RatingBase):
    type: Literal["episode"]
    show: TraktShow
    episode: TraktEpisode


RatingEntry = Annotated[
    Union[MovieRatingEntry, ShowRatingEntry, EpisodeRatingEntry],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Watchlist (/sync/watchlist)
# ---------------------------------------------------------------------------


class _WatchlistBase(_TraktObject):
    id: Optional[int] = None
    listed_at: datetime
    rank: Optional[int] = None
    notes: Optional[str] = None


class MovieWatchlistEntry(_WatchlistBase):
    type: Literal["movie"]
    movie: TraktMovie


class ShowWatchlistEntry(_WatchlistBase):
    type: Literal["show"]
    show: TraktShow


class EpisodeWatchlistEntry(_WatchlistBase):
    type: Literal["episode"]
    show: TraktShow
    episode: TraktEpisode


WatchlistEntry = Annotated[
    Union[MovieWatchlistEntry, ShowWatchlistEntry, EpisodeWatchlistEntry],
    Field(discriminator="type"),
]


_HISTORY_ADAPTER: TypeAdapter[Any] = TypeAdapter(HistoryEntry)
_RATING_ADAPTER: TypeAdapter[Any] = TypeAdapter(RatingEntry)
_WATCHLIST_ADAPTER: TypeAdapter[Any] = TypeAdapter(WatchlistEntry)

_HISTORY_TYPES = (MovieHistoryEntry, EpisodeHistoryEntry)
_RATING_TYPES = (MovieRatingEntry, ShowRatingEntry, EpisodeRatingEntry)
_WATCHLIST_TYPES = (MovieWatchlistEntry, ShowWatchlistEntry, EpisodeWatchlistEntry)


def _parse(adapter: TypeAdapter[Any], known: tuple, value: Any) -> Optional[Any]:
    if isinstance(value, known):
        return value
    if not isinstance(value, Mapping):
        return None
    try:
        return adapter.validate_python(dict(value))
    except ValidationError:
        return None


def parse_history_entry(value: Any) -> Optional[Union[MovieHistoryEntry, EpisodeHistoryEntry]]:
    return _parse(_HISTORY_ADAPTER, _HISTORY_TYPES, value)


def parse_rating_entry(
    value: Any,
) -> Optional[Union[MovieRatingEntry, ShowRatingEntry, EpisodeRatingEntry]]:
    return _parse(_RATING_ADAPTER, _RATING_TYPES, value)


def parse_watchlist_entry(
    value: Any,
) -> Optional[Union[MovieWatchlistEntry, ShowWatchlistEntry, EpisodeWatchlistEntry]]:
    return _parse(_WATCHLIST_ADAPTER, _WATCHLIST_TYPES, value)


__all__ = [
    "DeviceCode",
    "EpisodeHistoryEntry",
    "EpisodeRatingEntry",
    "EpisodeWatchlistEntry",
    "HistoryEntry",
    "MovieHistoryEntry",
    "MovieRatingEntry",
    "MovieWatchlistEntry",
    "OAuthToken",
    "RatingEntry",
    "ShowRatingEntry",
    "ShowWatchlistEntry",
    "TraktEpisode",
    "TraktIds",
    "TraktMovie",
    "TraktShow",
    "WatchlistEntry",
    "parse_history_entry",
    "parse_rating_entry",
    "parse_watchlist_entry",
]
