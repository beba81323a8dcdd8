"""
Blog mention collection from the text-search provider.

Phase 1, reverse search (place -> posts):
    Up to 500 active places, never-mentioned ones first, then the most
    mentioned with the stalest mention. Each is searched by name + district;
    posts scoring relevance >= 0.3 become blog_mentions and the place's
    mention count grows by the number of new rows.

Phase 2, keyword search (keyword -> posts -> places):
    Eligible naver keywords, least-cycled first. Names quoted or bracketed
    in each post (and the keyword itself) are matched against active places
    with find_matching_place(). A match links the post to the place; an
    unmatched quoted name with an in-region address in the text becomes a
    place candidate. Cycle metrics go to the rotation engine.

blog_mentions.url is unique, so re-running either phase never double counts.

Usage:
    python -m services.curator.jobs.run blog-search
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

import asyncpg

from services.curator.candidates.intake import IntakeOutcome, record_candidate_mention
from services.curator.db.records import Keyword, Provider
from services.curator.geo.region import ServiceArea, extract_district
from services.curator.jobs.run_log import RunSummary, record_run
from services.curator.keywords.rotation import CycleMetrics, KeywordRotationEngine
from services.curator.matching.duplicate import DuplicateMatcher
from services.curator.providers.base import MalformedPayloadError, ProviderUnavailableError
from services.curator.providers.naver import BlogPost, NaverBlogClient
from services.curator.quota import QuotaExceededError

logger = logging.getLogger(__name__)

REVERSE_SEARCH_BATCH = 500
MIN_MENTION_RELEVANCE = 0.3
DEFAULT_MAX_KEYWORDS = 60
SNIPPET_CHARS = 500
SOURCE_TYPE = "naver_blog"

PARENTING_TERMS = ("아기", "유아", "아이", "키즈", "어린이", "유모차", "수유")

# 「코코몽에코파크」, 『...』, "...", '...' and [...]
_QUOTED_NAME_PATTERNS = (
    re.compile(r"[「『\"']([가-힣a-zA-Z0-9\s]{2,20})[」』\"']"),
    re.compile(r"\[([가-힣a-zA-Z0-9\s]{2,20})\]"),
)

_ADDRESS_RE = re.compile(r"(서울|경기|인천)\S*?\s*[가-힣]+[구군시]\s*[가-힣]+[동읍면]?")


@dataclass(frozen=True)
class RelevanceWeights:
    """Scores for how clearly a post is about one place; the total is capped at 1.0."""
    title_match: float = 0.6
    text_match: float = 0.4
    partial_match: float = 0.2
    district_match: float = 0.2
    parenting_term: float = 0.1


DEFAULT_RELEVANCE_WEIGHTS = RelevanceWeights()


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def extract_place_names(text: str) -> list[str]:
    """Quoted or bracketed names of 2-20 characters, in order of appearance."""
    names: list[str] = []
    for pattern in _QUOTED_NAME_PATTERNS:
        for match in pattern.finditer(text):
            name = match.group(1).strip()
            if len(name) >= 2 and name not in names:
                names.append(name)
    return names


def extract_address(text: str) -> Optional[str]:
    """First capital-region district-level address in the text, e.g. "서울 강남구 역삼동"."""
    match = _ADDRESS_RE.search(text)
    return match.group(0).strip() if match else None


def compute_post_relevance(
    place_name: str,
    district: str,
    title: str,
    snippet: str,
    weights: RelevanceWeights = DEFAULT_RELEVANCE_WEIGHTS,
) -> float:
    text = f"{title} {snippet}".lower()
    name = place_name.lower()
    score = 0.0

    if name and name in title.lower():
        score += weights.title_match
    elif name and name in text:
        score += weights.text_match
    else:
        words = [w for w in name.split() if len(w) >= 2]
        matched = [w for w in words if w in text]
        if matched:
            score += weights.partial_match * len(matched) / len(words)

    if district and district.lower() in text:
        score += weights.district_match
    if any(term in text for term in PARENTING_TERMS):
        score += weights.parenting_term

    return round(min(score, 1.0), 3)


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_SELECT_UNMENTIONED_PLACES_SQL = """
SELECT id, name, road_address, address FROM places
WHERE is_active = true AND last_mentioned_at IS NULL
ORDER BY id
LIMIT $1
"""

_SELECT_POPULAR_PLACES_SQL = """
SELECT id, name, road_address, address FROM places
WHERE is_active = true AND last_mentioned_at IS NOT NULL
ORDER BY mention_count DESC, last_mentioned_at ASC
LIMIT $1
"""

_INSERT_MENTION_SQL = """
INSERT INTO blog_mentions (
    place_id, keyword_id, source_type, title, url, snippet, post_date, relevance_score
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
ON CONFLICT (url) DO NOTHING
RETURNING id
"""

_BUMP_MENTIONS_SQL = """
UPDATE places
SET mention_count = mention_count + $2,
    last_mentioned_at = now(),
    updated_at = now()
WHERE id = $1
"""


@dataclass
class KeywordSearchResult:
    api_results: int = 0
    new_mentions: int = 0
    new_candidates: int = 0
    duplicates: int = 0
    errors: int = 0

    def metrics(self) -> CycleMetrics:
        return CycleMetrics(
            api_results=self.api_results,
            new_discoveries=self.new_mentions + self.new_candidates,
            duplicates=self.duplicates,
        )


class BlogSearchJob:
    """
    Usage:
        job = BlogSearchJob(pool, naver_client)
        summary = await job.run()
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        naver: NaverBlogClient,
        *,
        engine: Optional[KeywordRotationEngine] = None,
        matcher: Optional[DuplicateMatcher] = None,
        area: Optional[ServiceArea] = None,
        reverse_batch: int = REVERSE_SEARCH_BATCH,
        max_keywords: int = DEFAULT_MAX_KEYWORDS,
        weights: RelevanceWeights = DEFAULT_RELEVANCE_WEIGHTS,
    ):
        self.pool = pool
        self.naver = naver
        self.engine = engine or KeywordRotationEngine(pool)
        self.matcher = matcher or DuplicateMatcher(pool)
        self.area = area or ServiceArea()
        self.reverse_batch = reverse_batch
        self.max_keywords = max_keywords
        self.weights = weights

    async def run(self) -> RunSummary:
        summary = RunSummary(job="blog_search", provider=Provider.NAVER.value)
        summary.details.update(
            reverse_places=0, mentions=0, candidates=0, keywords_evaluated=0,
        )

        try:
            await self._run_reverse_search(summary)
            await self._run_keyword_search(summary)
        except QuotaExceededError as e:
            summary.stopped_early = True
            logger.warning("Stopping blog search: %s", e)

        await record_run(self.pool, summary.finish())
        return summary

    # ------------------------------------------------------------------
    # Phase 1: reverse search
    # ------------------------------------------------------------------

    async def select_reverse_targets(self) -> list:
        async with self.pool.acquire() as conn:
            rows = list(await conn.fetch(_SELECT_UNMENTIONED_PLACES_SQL, self.reverse_batch))
            remaining = self.reverse_batch - len(rows)
            if remaining > 0:
                rows.extend(await conn.fetch(_SELECT_POPULAR_PLACES_SQL, remaining))
        return rows

    async def _run_reverse_search(self, summary: RunSummary) -> None:
        try:
            places = await self.select_reverse_targets()
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            summary.errors += 1
            logger.exception("Failed to select places for reverse search")
            return

        for place in places:
            try:
                inserted = await self.reverse_search_place(
                    str(place["id"]), place["name"], place["road_address"] or place["address"],
                )
            except QuotaExceededError:
                raise
            except (ProviderUnavailableError, MalformedPayloadError) as e:
                summary.errors += 1
                logger.warning("Reverse search failed for %r: %s", place["name"], e)
                continue
            except Exception:
                summary.errors += 1
                logger.exception("Reverse search error for place %s", place["id"])
                continue

            summary.details["reverse_places"] += 1
            summary.details["mentions"] += inserted
            summary.succeeded += inserted

    async def reverse_search_place(
        self, place_id: str, name: str, address: Optional[str],
    ) -> int:
        """Search posts for one place. Returns the number of new mentions."""
        district = extract_district(address)
        query = f"{name} {district}" if district else name
        posts = await self.naver.search_blog(query, sort="date")

        inserted = 0
        for post in posts:
            relevance = compute_post_relevance(
                name, district, post.title, post.description, self.weights,
            )
            if relevance < MIN_MENTION_RELEVANCE:
                continue
            if await self._insert_mention(place_id, None, post, relevance):
                inserted += 1

        if inserted:
            await self._bump_mentions(place_id, inserted)
        return inserted

    # ------------------------------------------------------------------
    # Phase 2: keyword search
    # ------------------------------------------------------------------

    async def _run_keyword_search(self, summary: RunSummary) -> None:
        try:
            keywords = await self.engine.eligible_keywords(Provider.NAVER, self.max_keywords)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            summary.errors += 1
            logger.exception("Failed to load blog search keywords")
            return

        for keyword in keywords:
            try:
                result = await self.search_keyword(keyword)
            except QuotaExceededError:
                raise
            except (ProviderUnavailableError, MalformedPayloadError) as e:
                # Not scored: an outage says nothing about the keyword
                summary.errors += 1
                logger.warning("Blog search failed for keyword %r: %s", keyword.keyword, e)
                continue

            summary.processed += result.api_results
            summary.succeeded += result.new_mentions + result.new_candidates
            summary.duplicates += result.duplicates
            summary.errors += result.errors
            summary.details["mentions"] += result.new_mentions
            summary.details["candidates"] += result.new_candidates

            try:
                await self.engine.evaluate_cycle(keyword, result.metrics())
                summary.details["keywords_evaluated"] += 1
            except Exception:
                summary.errors += 1
                logger.exception("Failed to score keyword %r", keyword.keyword)

    async def search_keyword(self, keyword: Keyword) -> KeywordSearchResult:
        result = KeywordSearchResult()
        posts = await self.naver.search_blog(keyword.keyword, sort="sim")
        result.api_results = len(posts)

        for post in posts:
            try:
                await self._process_post(keyword, post, result)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
                result.errors += 1
                logger.exception("Failed to record post %s", post.link)
        return result

    async def _process_post(
        self, keyword: Keyword, post: BlogPost, result: KeywordSearchResult,
    ) -> None:
        text = post.text
        address = extract_address(text)
        quoted = extract_place_names(text)

        # The keyword may itself be a place name; it is never turned into a candidate
        names = quoted + ([keyword.keyword] if keyword.keyword not in quoted else [])

        for name in names:
            match = await self.matcher.find_matching_place(name, address)
            if match is not None:
                relevance = compute_post_relevance(
                    name, extract_district(address), post.title, post.description, self.weights,
                )
                if await self._insert_mention(match.place_id, keyword.id, post, relevance):
                    result.new_mentions += 1
                    await self._bump_mentions(match.place_id, 1)
                else:
                    result.duplicates += 1
                # blog_mentions.url is unique: one place per post
                return

            if name in quoted and address and self.area.is_valid_address(address):
                outcome = await record_candidate_mention(self.pool, name, post.link, address)
                if outcome is IntakeOutcome.REPEATED:
                    result.duplicates += 1
                else:
                    result.new_candidates += 1

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _insert_mention(
        self,
        place_id: str,
        keyword_id: Optional[str],
        post: BlogPost,
        relevance: float,
    ) -> bool:
        async with self.pool.acquire() as conn:
            mention_id = await conn.fetchval(
                _INSERT_MENTION_SQL,
                place_id,
                keyword_id,
                SOURCE_TYPE,
                post.title,
                post.link,
                post.description[:SNIPPET_CHARS],
                post.post_date,
                relevance,
            )
        return mention_id is not None

    async def _bump_mentions(self, place_id: str, count: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(_BUMP_MENTIONS_SQL, place_id, count)

