"""
Keyword candidate generation, triggered when a provider's keyword pool is
at least 30% EXHAUSTED.

Two sources:
  1. Text mining: frequent tokens in the last 7 days of blog mention
     titles and snippets (text-search provider only).
  2. Templates: parenting term + place type, per provider, plus the
     season-tagged seeds of the seasonal calendar.

Candidates are inserted as NEW (season-tagged ones as SEASONAL with their
months); keywords already known for the provider
(case-insensitive) are left untouched.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional

import asyncpg

from services.curator.db.records import KeywordStatus, Provider
from services.curator.keywords.seasonal import DEFAULT_SEASONAL_KEYWORDS
from services.curator.matching.similarity import similarity

logger = logging.getLogger(__name__)

MINING_LOOKBACK_DAYS = 7
MINING_SAMPLE_SIZE = 1000
MINING_MIN_COUNT = 3
MINING_TOP_N = 20
TEMPLATE_RELEVANCE = 0.85

# A token this similar to a parenting term counts as parenting-related
RESEMBLANCE_THRESHOLD = 0.5

BABY_KEYWORDS = (
    "아기", "유아", "영아", "어린이", "아이", "아이들", "엄마", "부모", "임산부",
    "신생아", "돌아기", "미취학", "유치원", "보육", "키즈", "베이비", "수유",
    "기저귀", "유모차", "아기띠",
)

STOP_WORDS = frozenset({
    "을", "를", "이", "가", "에", "에서", "은", "는", "고", "과", "의", "그", "저",
    "그리고", "또는", "있다", "없다", "하다", "되다", "말다", "있는", "없는",
    "하는", "되는",
})

_TOKEN_SPLIT = re.compile(r"[\s\-.,;:'\"()\[\]]+")

# Blog-search templates, grouped by place category
TEXT_SEARCH_TEMPLATES: dict[str, tuple[str, ...]] = {
    "놀이": ("아기 키즈카페", "아기 실내놀이터", "아기 유아놀이", "어린이 재미있는 곳", "아기 음악학원"),
    "공원/놀이터": ("아기 공원", "아기 놀이터", "유아 숲", "아기 산책", "아기 어린이공원"),
    "전시/체험": ("아기 박물관", "아기 과학관", "유아 체험", "아기 전시", "영아 교육"),
    "동물/자연": ("아기 동물원", "아기 아쿠아리움", "아기 자연", "유아 생태", "아기 팜스테이"),
    "식당/카페": ("아기 카페", "유아식당", "아기 친화 카페", "아기 밥", "유모차 카페"),
    "도서관": ("아기 도서관", "유아 도서", "그림책 도서관", "아기 책", "영아 프로그램"),
    "수영/물놀이": ("아기 수영장", "아기 물놀이", "유아 워터파크", "아기 수영", "영아 수영"),
    "문화행사": ("아기 축제", "유아 공연", "아기 뮤지컬", "어린이 뮤지컬", "아기 인형극"),
    "편의시설": ("아기 수유실", "기저귀 갈기", "아기 화장실", "아기 유모차", "아기 쉬는곳"),
}

# Local-search queries are place types; the parenting term is part of the name
DISCOVERY_TEMPLATES: tuple[str, ...] = (
    "키즈카페", "실내놀이터", "어린이공원", "유아숲체험원", "어린이박물관",
    "어린이과학관", "아쿠아리움", "어린이동물원", "어린이도서관", "유아수영장",
    "물놀이터", "수유실", "유아체험", "키즈풀",
)

BASE_KEYWORDS: dict[Provider, tuple[str, ...]] = {
    Provider.KAKAO: (
        "키즈카페", "실내놀이터", "어린이공원", "어린이박물관", "아쿠아리움",
        "동물원", "유아숲체험원", "어린이도서관",
    ),
    Provider.NAVER: (
        "아기랑 가볼만한곳", "아기 키즈카페 추천", "유아 체험", "아기 나들이",
        "아기랑 카페", "유모차 산책",
    ),
}


@dataclass(frozen=True)
class KeywordCandidate:
    keyword: str
    source: str
    relevance: float
    seasonal_months: Optional[tuple[int, ...]] = None

    @property
    def status(self) -> KeywordStatus:
        return KeywordStatus.SEASONAL if self.seasonal_months else KeywordStatus.NEW


@dataclass
class GenerationResult:
    provider: str
    generated: int = 0
    inserted: int = 0
    errors: int = 0


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def tokenize(text: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT.split(text) if t]


def is_baby_related(token: str) -> bool:
    return any(term in token for term in BABY_KEYWORDS)


def resembles_baby_term(token: str) -> bool:
    return any(similarity(token, term) >= RESEMBLANCE_THRESHOLD for term in BABY_KEYWORDS)


def estimate_keyword_relevance(keyword: str) -> float:
    """Share of parenting vocabulary in the keyword; three or more terms score 1.0."""
    lower = keyword.lower()
    hits = sum(1 for term in BABY_KEYWORDS if term in lower)
    return min(hits / 3, 1.0)


def mine_terms(
    texts: Iterable[str],
    min_count: int = MINING_MIN_COUNT,
    top_n: int = MINING_TOP_N,
) -> list[KeywordCandidate]:
    """
    Frequent tokens that contain or resemble a parenting term, or are at
    least 3 characters long.
    """
    counts: Counter[str] = Counter()
    for text in texts:
        for token in tokenize(text.lower()):
            if token in STOP_WORDS or len(token) < 2 or len(token) > 20:
                continue
            if is_baby_related(token) or resembles_baby_term(token) or len(token) >= 3:
                counts[token] += 1

    # Stable by first appearance on ties
    frequent = [(token, n) for token, n in counts.items() if n >= min_count]
    frequent.sort(key=lambda item: item[1], reverse=True)
    return [
        KeywordCandidate(
            keyword=token, source="text_mining", relevance=estimate_keyword_relevance(token),
        )
        for token, _ in frequent[:top_n]
    ]


def template_candidates(provider: Provider) -> list[KeywordCandidate]:
    if provider is Provider.KAKAO:
        terms: Iterable[str] = DISCOVERY_TEMPLATES
    else:
        terms = (t for group in TEXT_SEARCH_TEMPLATES.values() for t in group)
    candidates = [
        KeywordCandidate(keyword=term, source="template", relevance=TEMPLATE_RELEVANCE)
        for term in terms
    ]
    candidates.extend(
        KeywordCandidate(
            keyword=seed.keyword,
            source="seasonal_template",
            relevance=TEMPLATE_RELEVANCE,
            seasonal_months=seed.months,
        )
        for seed in DEFAULT_SEASONAL_KEYWORDS
        if seed.provider is provider
    )
    return candidates


def deduplicate_candidates(candidates: Iterable[KeywordCandidate]) -> list[KeywordCandidate]:
    """Case-insensitive dedupe, keeping the higher relevance."""
    by_key: dict[str, KeywordCandidate] = {}
    for candidate in candidates:
        key = candidate.keyword.strip().lower()
        if not key:
            continue
        existing = by_key.get(key)
        if existing is None or candidate.relevance > existing.relevance:
            by_key[key] = candidate
    return list(by_key.values())


# ---------------------------------------------------------------------------
# Store-backed generator
# ---------------------------------------------------------------------------

_SELECT_RECENT_MENTIONS_SQL = """
SELECT title, snippet FROM blog_mentions
WHERE created_at > now() - make_interval(days => $1)
ORDER BY created_at DESC
LIMIT $2
"""

_INSERT_KEYWORD_SQL = """
INSERT INTO keywords (keyword, provider, status, source, seasonal_months)
VALUES ($1, $2, $3, $4, $5::int[])
ON CONFLICT (provider, lower(keyword)) DO NOTHING
RETURNING id
"""


class KeywordGenerator:
    """
    Usage:
        generator = KeywordGenerator(pool)
        result = await generator.generate(Provider.NAVER)
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def generate(self, provider: Provider) -> GenerationResult:
        result = GenerationResult(provider=provider.value)

        candidates: list[KeywordCandidate] = []
        if provider is Provider.NAVER:
            candidates.extend(mine_terms(await self._recent_mention_texts()))
        candidates.extend(template_candidates(provider))
        unique = deduplicate_candidates(candidates)
        result.generated = len(unique)

        result.inserted, result.errors = await self._insert(provider, unique)
        logger.info(
            "Generated %d keyword candidates for %s (%d new, %d errors)",
            result.generated, provider.value, result.inserted, result.errors,
        )
        return result

    async def seed_base_keywords(self) -> GenerationResult:
        """Insert the starting keyword set for every provider."""
        result = GenerationResult(provider="all")
        for provider, terms in BASE_KEYWORDS.items():
            seeds = [KeywordCandidate(t, "seed", TEMPLATE_RELEVANCE) for t in terms]
            result.generated += len(seeds)
            inserted, errors = await self._insert(provider, seeds)
            result.inserted += inserted
            result.errors += errors
        logger.info("Seeded %d base keywords (%d new)", result.generated, result.inserted)
        return result

    async def _recent_mention_texts(self) -> list[str]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    _SELECT_RECENT_MENTIONS_SQL, MINING_LOOKBACK_DAYS, MINING_SAMPLE_SIZE,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.warning("Could not load blog mentions for text mining: %s", e)
            return []
        return [f"{row['title'] or ''} {row['snippet'] or ''}" for row in rows]

    async def _insert(
        self, provider: Provider, candidates: list[KeywordCandidate],
    ) -> tuple[int, int]:
        inserted = errors = 0
        async with self.pool.acquire() as conn:
            for candidate in candidates:
                try:
                    new_id = await conn.fetchval(
                        _INSERT_KEYWORD_SQL,
                        candidate.keyword,
                        provider.value,
                        candidate.status.value,
                        candidate.source,
                        list(candidate.seasonal_months) if candidate.seasonal_months else None,
                    )
                except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
                    errors += 1
                    logger.exception("Failed to insert keyword %r", candidate.keyword)
                    continue
                if new_id is not None:
                    inserted += 1
        return inserted, errors
