"""Conversion of Trakt collection rows into normalized import records.

All functions here are pure. A row that does not match any supported variant
maps to ``None`` and is dropped by :func:`map_entries`; one malformed row never
aborts a batch.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar, Union

from pydantic import ValidationError

from trakt_importer.backend.common.logging import get_logger
from trakt_importer.backend.information_handlers.models import (
    ImportedRating,
    ImportedWatchEvent,
    ImportedWatchlistEntry,
    ImportMediaType,
)
from trakt_importer.backend.information_handlers.trakt_models import (
    EpisodeHistoryEntry,
    EpisodeRatingEntry,
    EpisodeWatchlistEntry,
    MovieHistoryEntry,
    MovieRatingEntry,
    MovieWatchlistEntry,
    ShowRatingEntry,
    ShowWatchlistEntry,
    TraktEpisode,
    TraktIds,
    parse_history_entry,
    parse_rating_entry,
    parse_watchlist_entry,
)

log = get_logger(__name__)

_ID_KEYS = ("trakt", "slug", "imdb", "tmdb", "tvdb")
SHOW_ID_PREFIX = "show_"

T = TypeVar("T")

IdsLike = Union[TraktIds, Mapping[str, Any]]


def _coerce_ids(ids: Optional[IdsLike]) -> TraktIds:
    if ids is None:
        return TraktIds()
    if isinstance(ids, TraktIds):
        return ids
    return TraktIds.model_validate(dict(ids))


def merge_ids(
    primary: IdsLike,
    secondary: Optional[IdsLike] = None,
    *,
    prefix: str = SHOW_ID_PREFIX,
) -> Dict[str, str]:
    """Flatten one or two id blocks into a string mapping.

    Primary keys are kept as-is, secondary keys get ``prefix`` so they never
    overwrite the primary values. Absent ids are omitted.
    """

    merged: Dict[str, str] = {}
    _add_ids(merged, _coerce_ids(primary), "")
    if secondary is not None:
        _add_ids(merged, _coerce_ids(secondary), prefix)
    return merged


def _add_ids(target: Dict[str, str], ids: TraktIds, prefix: str) -> None:
    for key in _ID_KEYS:
        value = getattr(ids, key)
        if value is None or value == "":
            continue
        target[f"{prefix}{key}"] = str(value)


def external_id(kind: str, ids: TraktIds) -> Optional[str]:
    if ids.trakt is None:
        return None
    return f"trakt:{kind}:{ids.trakt}"


def format_episode_title(show_title: str, episode: TraktEpisode) -> str:
    code = f"S{episode.season:02d}E{episode.number:02d}"
    if episode.title:
        return f"{show_title} {code} - {episode.title}"
    return f"{show_title} {code}"


# ---------------------------------------------------------------------------
# Per-collection mappers
# ---------------------------------------------------------------------------


def map_history_entry(entry: Any) -> Optional[ImportedWatchEvent]:
    parsed = parse_history_entry(entry)

    if isinstance(parsed, MovieHistoryEntry):
        key = external_id("movie", parsed.movie.ids)
        if key is None:
            return None
        return _build(
            ImportedWatchEvent,
            external_id=key,
            additional_ids=merge_ids(parsed.movie.ids),
            media_type=ImportMediaType.MOVIE,
            title=parsed.movie.title,
            year=parsed.movie.year,
            watched_at=parsed.watched_at,
            history_id=parsed.id,
            action=parsed.action,
        )

    if isinstance(parsed, EpisodeHistoryEntry):
        key = external_id("episode", parsed.episode.ids)
        if key is None:
            return None
        return _build(
            ImportedWatchEvent,
            external_id=key,
            additional_ids=merge_ids(parsed.episode.ids, parsed.show.ids),
            media_type=ImportMediaType.TV_EPISODE,
            title=format_episode_title(parsed.show.title, parsed.episode),
            year=parsed.show.year,
            watched_at=parsed.watched_at,
            history_id=parsed.id,
            action=parsed.action,
        )

    return None


def map_rating_entry(entry: Any) -> Optional[ImportedRating]:
    parsed = parse_rating_entry(entry)

    if isinstance(parsed, MovieRatingEntry):
        key = external_id("movie", parsed.movie.ids)
        if key is None:
            return None
        return _build(
            ImportedRating,
            external_id=key,
            additional_ids=merge_ids(parsed.movie.ids),
            media_type=ImportMediaType.MOVIE,
            title=parsed.movie.title,
            year=parsed.movie.year,
            rating=parsed.rating,
            rated_at=parsed.rated_at,
        )

    if isinstance(parsed, ShowRatingEntry):
        key = external_id("show", parsed.show.ids)
        if key is None:
            return None
        return _build(
            ImportedRating,
            external_id=key,
            additional_ids=merge_ids(parsed.show.ids),
            media_type=ImportMediaType.TV,
            title=parsed.show.title,
            year=parsed.show.year,
            rating=parsed.rating,
            rated_at=parsed.rated_at,
        )

    if isinstance(parsed, EpisodeRatingEntry):
        key = external_id("episode", parsed.episode.ids)
        if key is None:
            return None
        return _build(
            ImportedRating,
            external_id=key,
            additional_ids=merge_ids(parsed.episode.ids, parsed.show.ids),
            media_type=ImportMediaType.TV_EPISODE,
            title=format_episode_title(parsed.show.title, parsed.episode),
            year=parsed.show.year,
            rating=parsed.rating,
            rated_at=parsed.rated_at,
        )

    return None


def map_watchlist_entry(entry: Any) -> Optional[ImportedWatchlistEntry]:
    parsed = parse_watchlist_entry(entry)

    if isinstance(parsed, MovieWatchlistEntry):
        key = external_id("movie", parsed.movie.ids)
        if key is None:
            return None
        return _build(
            ImportedWatchlistEntry,
            external_id=key,
            additional_ids=merge_ids(parsed.movie.ids),
            media_type=ImportMediaType.MOVIE,
            title=parsed.movie.title,
            year=parsed.movie.year,
            added_at=parsed.listed_at,
            rank=parsed.rank,
            notes=parsed.notes,
        )

    if isinstance(parsed, ShowWatchlistEntry):
        key = external_id("show", parsed.show.ids)
        if key is None:
            return None
        return _build(
            ImportedWatchlistEntry,
            external_id=key,
            additional_ids=merge_ids(parsed.show.ids),
            media_type=ImportMediaType.TV,
            title=parsed.show.title,
            year=parsed.show.year,
            added_at=parsed.listed_at,
            rank=parsed.rank,
            notes=parsed.notes,
        )

    if isinstance(parsed, EpisodeWatchlistEntry):
        key = external_id("episode", parsed.episode.ids)
        if key is None:
            return None
        return _build(
            ImportedWatchlistEntry,
            external_id=key,
            additional_ids=merge_ids(parsed.episode.ids, parsed.show.ids),
            media_type=ImportMediaType.TV_EPISODE,
            title=format_episode_title(parsed.show.title, parsed.episode),
            year=parsed.show.year,
            added_at=parsed.listed_at,
            rank=parsed.rank,
            notes=parsed.notes,
        )

    return None


def _build(model: Callable[..., T], **fields: Any) -> Optional[T]:
    try:
        return model(**fields)
    except ValidationError:
        return None


def map_entries(
    mapper: Callable[[Any], Optional[T]],
    rows: Iterable[Any],
    *,
    kind: str = "entries",
) -> List[T]:
    """Map a batch, dropping rows the mapper rejects."""

    mapped: List[T] = []
    skipped = 0
    for row in rows:
        item = mapper(row)
        if item is None:
            skipped += 1
            continue
        mapped.append(item)

    if skipped:
        log.info("Skipped %d unsupported or malformed Trakt %s", skipped, kind)
    return mapped


__all__ = [
    "SHOW_ID_PREFIX",
    "external_id",
    "format_episode_title",
    "map_entries",
    "map_history_entry",
    "map_rating_entry",
    "map_watchlist_entry",
    "merge_ids",
]
