"""
Tests for services/curator/db/records.py

Covers:
  - Place / PlaceCandidate / Keyword parsing from store rows
  - RecordError on missing or malformed columns
"""

from datetime import datetime, timezone

import pytest

from services.curator.db.records import (
    Keyword,
    KeywordStatus,
    Place,
    PlaceCandidate,
    Provider,
    RecordError,
)
from services.curator.tests.helpers.fakes import candidate_row, keyword_row, place_row


class TestPlace:
    def test_parses_row(self):
        row = place_row(lat="37.5", mention_count=None)
        place = Place.from_record(row)
        assert place.id == row["id"]
        assert place.lat == 37.5
        assert place.mention_count == 0
        assert place.source_count == 1

    def test_missing_coordinates(self):
        with pytest.raises(RecordError):
            Place.from_record(place_row(lat=None))

    def test_non_numeric_coordinates(self):
        with pytest.raises(RecordError):
            Place.from_record(place_row(lng="east"))

    def test_iso_timestamps(self):
        place = Place.from_record(place_row(last_mentioned_at="2026-03-01T00:00:00Z"))
        assert place.last_mentioned_at == datetime(2026, 3, 1, tzinfo=timezone.utc)

    def test_bad_timestamp(self):
        with pytest.raises(RecordError):
            Place.from_record(place_row(created_at="yesterday"))


class TestPlaceCandidate:
    def test_parses_row(self):
        candidate = PlaceCandidate.from_record(candidate_row())
        assert candidate.source_count == 2
        assert len(candidate.source_urls) == 2
        assert candidate.lat is None

    def test_empty_urls_are_dropped(self):
        candidate = PlaceCandidate.from_record(candidate_row(source_urls=["", "https://a/1", None]))
        assert candidate.source_urls == ["https://a/1"]

    def test_urls_must_be_a_list(self):
        with pytest.raises(RecordError):
            PlaceCandidate.from_record(candidate_row(source_urls="https://a/1"))

    def test_missing_name(self):
        with pytest.raises(RecordError):
            PlaceCandidate.from_record(candidate_row(name=None))


class TestKeyword:
    def test_parses_row(self):
        kw = Keyword.from_record(keyword_row(seasonal_months=[12, 1, 2]))
        assert kw.provider is Provider.KAKAO
        assert kw.status is KeywordStatus.ACTIVE
        assert kw.seasonal_months == frozenset({1, 2, 12})
        assert kw.is_seasonal

    def test_status_defaults_to_new(self):
        assert Keyword.from_record(keyword_row(status=None)).status is KeywordStatus.NEW

    def test_empty_months_are_not_seasonal(self):
        kw = Keyword.from_record(keyword_row(seasonal_months=[]))
        assert kw.seasonal_months is None
        assert not kw.is_seasonal

    def test_unknown_provider(self):
        with pytest.raises(RecordError):
            Keyword.from_record(keyword_row(provider="google"))

    def test_unknown_status(self):
        with pytest.raises(RecordError):
            Keyword.from_record(keyword_row(status="RETIRED"))

    def test_month_out_of_range(self):
        with pytest.raises(RecordError):
            Keyword.from_record(keyword_row(seasonal_months=[0, 13]))
