"""Tests for the Trakt row to import record mapping."""

from datetime import datetime, timezone

import pytest

from conftest import episode_history_row, movie_history_row
from trakt_importer.backend.information_handlers.import_mapper import (
    format_episode_title,
    map_entries,
    map_history_entry,
    map_rating_entry,
    map_watchlist_entry,
    merge_ids,
)
from trakt_importer.backend.information_handlers.models import ImportMediaType
from trakt_importer.backend.information_handlers.trakt_models import (
    TraktEpisode,
    parse_history_entry,
)


class TestMergeIds:
    def test_primary_and_prefixed_secondary(self):
        merged = merge_ids({"trakt": 1, "imdb": "tt1"}, {"trakt": 2, "tmdb": 5})

        assert merged == {"trakt": "1", "imdb": "tt1", "show_trakt": "2", "show_tmdb": "5"}

    def test_absent_ids_are_omitted(self):
        merged = merge_ids({"trakt": 7, "slug": None, "imdb": ""})

        assert merged == {"trakt": "7"}

    def test_custom_prefix(self):
        merged = merge_ids({"trakt": 1}, {"tvdb": 9}, prefix="series_")

        assert merged == {"trakt": "1", "series_tvdb": "9"}


class TestEpisodeTitle:
    def test_with_episode_title(self):
        episode = TraktEpisode(season=1, number=2, title="Pilot")

        assert format_episode_title("Show", episode) == "Show S01E02 - Pilot"

    def test_without_episode_title(self):
        episode = TraktEpisode(season=10, number=3)

        assert format_episode_title("Show", episode) == "Show S10E03"


class TestHistoryMapping:
    def test_movie(self):
        record = map_history_entry(movie_history_row())

        assert record is not None
        assert record.external_id == "trakt:movie:1"
        assert record.media_type == ImportMediaType.MOVIE
        assert record.title == "Heat"
        assert record.year == 1995
        assert record.progress_percent == 100.0
        assert record.history_id == 900
        assert record.action == "watch"
        assert record.watched_at == datetime(2024, 3, 1, 20, 15, tzinfo=timezone.utc)
        assert record.additional_ids == {
            "trakt": "1",
            "slug": "heat-1995",
            "imdb": "tt0113277",
            "tmdb": "949",
        }

    def test_episode(self):
        record = map_history_entry(episode_history_row())

        assert record is not None
        assert record.external_id == "trakt:episode:73640"
        assert record.media_type == ImportMediaType.TV_EPISODE
        assert record.title == "Game of Thrones S01E02 - The Kingsroad"
        assert record.year == 2011
        assert record.additional_ids["trakt"] == "73640"
        assert record.additional_ids["show_trakt"] == "1390"
        assert record.additional_ids["show_tvdb"] == "121361"
        assert record.additional_ids["imdb"] == "tt1668746"

    def test_episode_without_show_is_dropped(self):
        row = episode_history_row()
        del row["show"]

        assert map_history_entry(row) is None

    def test_episode_without_episode_is_dropped(self):
        row = episode_history_row()
        del row["episode"]

        assert map_history_entry(row) is None

    def test_unknown_tag_is_dropped(self):
        row = movie_history_row()
        row["type"] = "season"

        assert map_history_entry(row) is None

    def test_show_tag_not_supported_in_history(self):
        row = {"watched_at": "2024-01-01T00:00:00Z", "type": "show", "show": {"title": "X", "ids": {"trakt": 3}}}

        assert map_history_entry(row) is None

    def test_missing_trakt_id_is_dropped(self):
        row = movie_history_row()
        row["movie"]["ids"] = {"imdb": "tt0113277"}

        assert map_history_entry(row) is None

    def test_non_mapping_is_dropped(self):
        assert map_history_entry("not a row") is None
        assert map_history_entry(None) is None

    def test_accepts_parsed_variant(self):
        parsed = parse_history_entry(movie_history_row(trakt_id=42))

        record = map_history_entry(parsed)

        assert record is not None
        assert record.external_id == "trakt:movie:42"


class TestRatingMapping:
    def test_show_rating(self):
        row = {
            "rated_at": "2024-02-10T10:00:00.000Z",
            "rating": 9,
            "type": "show",
            "show": {"title": "The Wire", "year": 2002, "ids": {"trakt": 1429, "tvdb": 79126}},
        }

        record = map_rating_entry(row)

        assert record is not None
        assert record.external_id == "trakt:show:1429"
        assert record.media_type == ImportMediaType.TV
        assert record.rating == 9
        assert record.additional_ids == {"trakt": "1429", "tvdb": "79126"}

    def test_episode_rating_uses_show_year(self):
        row = episode_history_row()
        row.pop("watched_at")
        row.update({"rated_at": "2024-02-10T10:00:00Z", "rating": 7})

        record = map_rating_entry(row)

        assert record is not None
        assert record.media_type == ImportMediaType.TV_EPISODE
        assert record.year == 2011

    @pytest.mark.parametrize("rating", [0, 11])
    def test_out_of_range_rating_is_dropped(self, rating):
        row = {
            "rated_at": "2024-02-10T10:00:00Z",
            "rating": rating,
            "type": "movie",
            "movie": {"title": "Heat", "ids": {"trakt": 1}},
        }

        assert map_rating_entry(row) is None


class TestWatchlistMapping:
    def test_movie_entry(self):
        row = {
            "rank": 3,
            "id": 55,
            "listed_at": "2024-01-05T08:00:00.000Z",
            "notes": "weekend",
            "type": "movie",
            "movie": {"title": "Alien", "year": 1979, "ids": {"trakt": 840}},
        }

        record = map_watchlist_entry(row)

        assert record is not None
        assert record.external_id == "trakt:movie:840"
        assert record.rank == 3
        assert record.notes == "weekend"
        assert record.added_at == datetime(2024, 1, 5, 8, 0, tzinfo=timezone.utc)

    def test_show_without_show_object_is_dropped(self):
        row = {"listed_at": "2024-01-05T08:00:00Z", "type": "show"}

        assert map_watchlist_entry(row) is None


class TestMapEntries:
    def test_drops_rejected_rows(self):
        rows = [movie_history_row(1), {"type": "bogus"}, episode_history_row(), movie_history_row(2)]

        records = map_entries(map_history_entry, rows)

        assert [r.external_id for r in records] == [
            "trakt:movie:1",
            "trakt:episode:73640",
            "trakt:movie:2",
        ]
