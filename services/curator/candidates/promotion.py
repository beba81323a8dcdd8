"""
Auto-promotion: place_candidates -> places.

Per run:
  1. TTL expiry. Candidates first seen more than 30 days ago are deleted
     before anything is evaluated, whatever else is true of them.
  2. Remaining candidates are evaluated most-recently-seen first. All of
     these must hold:
       - sources: 1+ public-authority URL, or 2+ independent origins
       - provider verification: keyword search (name + first 3 address
         tokens) gives a best match with similarity >= 0.8
       - service area: provider coordinates inside the bounding box, and
         the resolved address (if any) starts with a recognised region
  3. Eligible candidates go through the duplicate matcher on the provider's
     coordinates. Already known -> candidate dropped (counts as success).
     New -> place inserted with an inferred category, candidate dropped.

Ineligible candidates stay, with their best provider similarity recorded.
Provider failures count as "no match"; a spent quota stops the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

import asyncpg

from services.curator.candidates.categories import infer_category
from services.curator.candidates.sources import has_enough_sources
from services.curator.db.pool import parse_command_tag_count
from services.curator.db.records import PlaceCandidate, RecordError
from services.curator.geo.region import ServiceArea, address_prefix, district_code_from_address
from services.curator.jobs.run_log import RunSummary, record_run
from services.curator.matching.duplicate import DuplicateMatcher, NewPlace
from services.curator.matching.similarity import similarity
from services.curator.providers.base import MalformedPayloadError, ProviderUnavailableError
from services.curator.providers.kakao import KakaoLocalClient, ProviderPlace
from services.curator.quota import QuotaExceededError

logger = logging.getLogger(__name__)

CANDIDATE_TTL_DAYS = 30
PROMOTION_SIMILARITY_THRESHOLD = 0.8
VERIFY_RESULT_SIZE = 5
VERIFY_ADDRESS_TOKENS = 3

PROMOTED_SOURCE = "auto_promoted"


_DELETE_EXPIRED_SQL = "DELETE FROM place_candidates WHERE first_seen_at < $1"

_SELECT_CANDIDATES_SQL = """
SELECT id, name, address, lat, lng, external_id, external_similarity,
       source_urls, source_count, first_seen_at, last_seen_at
FROM place_candidates
ORDER BY last_seen_at DESC
"""

_RECORD_SIMILARITY_SQL = """
UPDATE place_candidates SET external_similarity = $2 WHERE id = $1
"""

_DELETE_CANDIDATE_SQL = "DELETE FROM place_candidates WHERE id = $1"


class PromotionOutcome(str, Enum):
    PROMOTED = "promoted"
    MERGED_DUPLICATE = "merged_duplicate"
    INSUFFICIENT_SOURCES = "insufficient_sources"
    NO_PROVIDER_MATCH = "no_provider_match"
    OUT_OF_AREA = "out_of_area"

    @property
    def consumes_candidate(self) -> bool:
        return self in (PromotionOutcome.PROMOTED, PromotionOutcome.MERGED_DUPLICATE)


@dataclass
class ProviderVerification:
    matched: bool
    place: Optional[ProviderPlace] = None
    # Best similarity seen; None when the provider gave no usable answer
    similarity: Optional[float] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutoPromoter:
    """
    Usage:
        promoter = AutoPromoter(pool, kakao_client)
        summary = await promoter.run()
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        kakao: KakaoLocalClient,
        *,
        matcher: Optional[DuplicateMatcher] = None,
        area: Optional[ServiceArea] = None,
        ttl_days: int = CANDIDATE_TTL_DAYS,
        similarity_threshold: float = PROMOTION_SIMILARITY_THRESHOLD,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.pool = pool
        self.kakao = kakao
        self.matcher = matcher or DuplicateMatcher(pool)
        self.area = area or ServiceArea()
        self.ttl_days = ttl_days
        self.similarity_threshold = similarity_threshold
        self._now = now

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> RunSummary:
        summary = RunSummary(job="auto_promote", provider="kakao")
        outcomes = {outcome.value: 0 for outcome in PromotionOutcome}
        summary.details["outcomes"] = outcomes

        try:
            summary.details["expired"] = await self.expire_stale()
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            summary.errors += 1
            logger.exception("Candidate TTL cleanup failed")

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(_SELECT_CANDIDATES_SQL)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.exception("Failed to fetch candidates; aborting promotion run")
            summary.aborted = True
            summary.error_message = str(e)
            await record_run(self.pool, summary.finish())
            return summary

        for row in rows:
            summary.processed += 1
            try:
                candidate = PlaceCandidate.from_record(row)
                outcome = await self.evaluate(candidate)
                outcomes[outcome.value] += 1
                if outcome.consumes_candidate:
                    await self._delete_candidate(candidate.id)
                    summary.succeeded += 1
                    if outcome is PromotionOutcome.MERGED_DUPLICATE:
                        summary.duplicates += 1
            except QuotaExceededError as e:
                summary.processed -= 1
                summary.stopped_early = True
                logger.warning("Stopping promotion: %s", e)
                break
            except RecordError as e:
                summary.errors += 1
                logger.warning("Skipping malformed candidate row: %s", e)
            except Exception:
                summary.errors += 1
                logger.exception("Error evaluating candidate %s", row["id"])

        await record_run(self.pool, summary.finish())
        return summary

    async def expire_stale(self) -> int:
        cutoff = self._now() - timedelta(days=self.ttl_days)
        async with self.pool.acquire() as conn:
            tag = await conn.execute(_DELETE_EXPIRED_SQL, cutoff)
        deleted = parse_command_tag_count(tag)
        if deleted:
            logger.info("TTL: deleted %d candidates first seen before %s", deleted, cutoff.date())
        return deleted

    async def evaluate(self, candidate: PlaceCandidate) -> PromotionOutcome:
        if not has_enough_sources(candidate.source_urls):
            return PromotionOutcome.INSUFFICIENT_SOURCES

        verification = await self.verify_with_provider(candidate)
        if not verification.matched or verification.place is None:
            await self._record_similarity(candidate, verification.similarity)
            return PromotionOutcome.NO_PROVIDER_MATCH

        found = verification.place
        address = found.best_address or candidate.address
        if not self.area.is_in_area(found.lat, found.lng, address):
            await self._record_similarity(candidate, verification.similarity)
            return PromotionOutcome.OUT_OF_AREA

        place = NewPlace.from_provider(
            found,
            category=infer_category(found.category_name, candidate.name),
            source=PROMOTED_SOURCE,
            source_count=max(candidate.source_count, 1),
        )
        if place.district_code is None:
            place.district_code = district_code_from_address(address)

        result = await self.matcher.ingest(place)
        if not result.inserted:
            logger.info("Candidate %r already known as place %s", candidate.name, result.place_id)
            return PromotionOutcome.MERGED_DUPLICATE

        logger.info("Promoted %r (candidate %s) -> place %s", found.name, candidate.id, result.place_id)
        return PromotionOutcome.PROMOTED

    async def verify_with_provider(self, candidate: PlaceCandidate) -> ProviderVerification:
        """
        Best-similarity provider match for the candidate. Provider failures
        degrade to "no match"; QuotaExceededError propagates.
        """
        prefix = address_prefix(candidate.address, VERIFY_ADDRESS_TOKENS)
        query = f"{candidate.name} {prefix}" if prefix else candidate.name

        try:
            page = await self.kakao.search_keyword(query, size=VERIFY_RESULT_SIZE)
        except (ProviderUnavailableError, MalformedPayloadError) as e:
            logger.warning("Provider verification failed for %r: %s", candidate.name, e)
            return ProviderVerification(matched=False)

        if not page.documents:
            return ProviderVerification(matched=False, similarity=0.0)

        best: Optional[ProviderPlace] = None
        best_score = 0.0
        for doc in page.documents:
            score = similarity(candidate.name, doc.name)
            if best is None or score > best_score:
                best, best_score = doc, score

        if best_score >= self.similarity_threshold:
            return ProviderVerification(matched=True, place=best, similarity=best_score)
        return ProviderVerification(matched=False, similarity=best_score)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _record_similarity(self, candidate: PlaceCandidate, score: Optional[float]) -> None:
        if score is None:
            return
        async with self.pool.acquire() as conn:
            await conn.execute(_RECORD_SIMILARITY_SQL, candidate.id, score)

    async def _delete_candidate(self, candidate_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(_DELETE_CANDIDATE_SQL, candidate_id)
