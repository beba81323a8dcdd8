"""
Tests for services/curator/candidates/sources.py and categories.py

Covers:
  - Origin grouping (host + first path segment)
  - Public-authority shortcut
  - Category inference and silence thresholds
"""

import pytest

from services.curator.candidates import categories
from services.curator.candidates.categories import (
    guess_category_from_name,
    infer_category,
    silence_days_for,
    sub_category_from,
)
from services.curator.candidates.sources import (
    count_independent_sources,
    has_enough_sources,
    has_public_source,
    is_public_source,
    source_origin,
)


class TestSourceOrigin:
    def test_host_and_first_segment(self):
        assert source_origin("https://blog.naver.com/alice/1") == "blog.naver.com/alice"

    def test_no_path(self):
        assert source_origin("https://example.com") == "example.com/"

    def test_malformed_url_uses_leading_characters(self):
        assert source_origin("not a url") == "not a url"


class TestIndependentSources:
    def test_same_blogger_counts_once(self):
        urls = ["https://blog.naver.com/alice/1", "https://blog.naver.com/alice/2"]
        assert count_independent_sources(urls) == 1
        assert not has_enough_sources(urls)

    def test_two_bloggers_same_platform(self):
        urls = ["https://blog.naver.com/alice/1", "https://blog.naver.com/bob/2"]
        assert count_independent_sources(urls) == 2
        assert has_enough_sources(urls)

    def test_empty_entries_ignored(self):
        assert count_independent_sources(["", None, "https://a.com/x"]) == 1

    def test_no_sources(self):
        assert not has_enough_sources([])


class TestPublicSources:
    @pytest.mark.parametrize("url", [
        "https://www.data.go.kr/data/15000001",
        "https://apis.data.go.kr/B551011/KorService",
        "http://kopis.or.kr/openApi/restful/pblprfr",
    ])
    def test_public_domains(self, url):
        assert is_public_source(url)

    def test_lookalike_domain_is_not_public(self):
        assert not is_public_source("https://notdata.go.kr.example.com/x")
        assert not is_public_source("https://fakedata.go.kr/x")

    def test_one_public_source_is_enough(self):
        urls = ["https://www.data.go.kr/data/1"]
        assert has_public_source(urls)
        assert has_enough_sources(urls)


class TestCategories:
    def test_provider_taxonomy_first(self):
        assert infer_category("문화,예술 > 문화시설 > 박물관", "어린이 놀이터") == categories.EXHIBIT

    def test_name_fallback(self):
        assert infer_category(None, "서울숲 물놀이터") == categories.PARK
        assert infer_category("", "국립어린이과학관") == categories.EXHIBIT

    def test_defaults_to_play(self):
        assert guess_category_from_name("코코몽에코파크") == categories.PLAY

    def test_silence_days(self):
        assert silence_days_for(categories.PLAY) == 90
        assert silence_days_for(categories.LIBRARY) == 365
        assert silence_days_for("unknown") == 180
        assert silence_days_for(None) == 180

    def test_sub_category(self):
        assert sub_category_from("가정,생활 > 어린이시설 > 키즈카페") == "키즈카페"
        assert sub_category_from(None) is None
        assert sub_category_from("키즈카페 > ") is None
