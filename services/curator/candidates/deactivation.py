"""
Closure detection: retire active places that went silent and that the
provider no longer knows about.

Both conditions are required; neither alone deactivates a place:
  1. Silence: no mention for longer than the category threshold
     (90-365 days, 180 for unknown categories). A place that was never
     mentioned is measured from its created_at.
  2. Failed revalidation: a provider keyword search (name + first 2
     address tokens) returns neither the stored external id nor any name
     with similarity >= 0.75.

Provider failures (non-2xx, network error, unreadable payload) count as
"still alive" so an outage can never cause mass deactivation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import asyncpg

from services.curator.candidates.categories import (
    CATEGORY_SILENCE_DAYS,
    DEFAULT_SILENCE_DAYS,
    silence_days_for,
)
from services.curator.db.pool import parse_command_tag_count
from services.curator.db.records import Place, RecordError
from services.curator.geo.region import address_prefix
from services.curator.jobs.run_log import RunSummary, record_run
from services.curator.matching.similarity import similarity
from services.curator.providers.base import MalformedPayloadError, ProviderUnavailableError
from services.curator.providers.kakao import KakaoLocalClient
from services.curator.quota import QuotaExceededError

logger = logging.getLogger(__name__)

REVALIDATION_BATCH_SIZE = 200
REVALIDATION_MATCH_THRESHOLD = 0.75
REVALIDATION_RESULT_SIZE = 5
REVALIDATION_ADDRESS_TOKENS = 2


# Category thresholds travel as two parallel arrays so the silence filter
# runs in SQL; unknown categories fall back to $3 days.
_SELECT_SILENT_PLACES_SQL = """
SELECT p.id, p.name, p.category, p.external_id, p.address, p.lat, p.lng,
       p.is_active, p.mention_count, p.popularity_score, p.last_mentioned_at,
       p.source_count, p.created_at, p.updated_at
FROM places p
LEFT JOIN unnest($1::text[], $2::int[]) AS ttl(category, days)
       ON ttl.category = p.category
WHERE p.is_active = true
  AND COALESCE(p.last_mentioned_at, p.created_at)
      < $4::timestamptz - make_interval(days => COALESCE(ttl.days, $3::int))
ORDER BY p.last_mentioned_at ASC NULLS FIRST, p.created_at ASC
LIMIT $5
"""

# Re-checks silence at write time so a mention that landed mid-run wins
_DEACTIVATE_SQL = """
UPDATE places
SET is_active = false, updated_at = now()
WHERE id = $1
  AND is_active = true
  AND COALESCE(last_mentioned_at, created_at) < $2
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def silence_cutoff(category: Optional[str], now: datetime) -> datetime:
    return now - timedelta(days=silence_days_for(category))


def is_silent(place: Place, now: datetime) -> bool:
    """True if the place has gone unmentioned past its category threshold."""
    reference = place.last_mentioned_at or place.created_at
    if reference is None:
        return True
    return reference < silence_cutoff(place.category, now)


class AutoDeactivator:
    """
    Usage:
        deactivator = AutoDeactivator(pool, kakao_client)
        summary = await deactivator.run()
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        kakao: KakaoLocalClient,
        *,
        batch_size: int = REVALIDATION_BATCH_SIZE,
        match_threshold: float = REVALIDATION_MATCH_THRESHOLD,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.pool = pool
        self.kakao = kakao
        self.batch_size = batch_size
        self.match_threshold = match_threshold
        self._now = now

    async def run(self) -> RunSummary:
        summary = RunSummary(job="auto_deactivate", provider="kakao")
        summary.details["still_active"] = 0
        now = self._now()

        try:
            rows = await self.select_stale_places(now)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.exception("Failed to fetch places for revalidation; aborting")
            summary.aborted = True
            summary.error_message = str(e)
            await record_run(self.pool, summary.finish())
            return summary

        if not rows:
            logger.info("No silent places to revalidate")

        for row in rows:
            summary.processed += 1
            try:
                place = Place.from_record(row)
                if not is_silent(place, now):
                    summary.details["still_active"] += 1
                    continue

                if await self.is_still_alive(place):
                    summary.details["still_active"] += 1
                    continue

                if await self._deactivate(place, now):
                    summary.succeeded += 1
                    logger.info(
                        "Deactivated %r (id=%s, category=%s): provider miss + %dd silence",
                        place.name, place.id, place.category, silence_days_for(place.category),
                    )
            except QuotaExceededError as e:
                summary.processed -= 1
                summary.stopped_early = True
                logger.warning("Stopping revalidation: %s", e)
                break
            except RecordError as e:
                summary.errors += 1
                logger.warning("Skipping malformed place row: %s", e)
            except Exception:
                summary.errors += 1
                logger.exception("Error revalidating place %s", row["id"])

        summary.details["deactivated"] = summary.succeeded
        await record_run(self.pool, summary.finish())
        return summary

    async def select_stale_places(self, now: datetime) -> list:
        categories = list(CATEGORY_SILENCE_DAYS)
        days = [CATEGORY_SILENCE_DAYS[c] for c in categories]
        async with self.pool.acquire() as conn:
            return await conn.fetch(
                _SELECT_SILENT_PLACES_SQL,
                categories,
                days,
                DEFAULT_SILENCE_DAYS,
                now,
                self.batch_size,
            )

    async def is_still_alive(self, place: Place) -> bool:
        prefix = address_prefix(place.address, REVALIDATION_ADDRESS_TOKENS)
        query = f"{place.name} {prefix}" if prefix else place.name

        try:
            page = await self.kakao.search_keyword(query, size=REVALIDATION_RESULT_SIZE)
        except (ProviderUnavailableError, MalformedPayloadError) as e:
            logger.warning("Revalidation inconclusive for %r, keeping active: %s", place.name, e)
            return True

        if not page.documents:
            return False
        if place.external_id and any(d.external_id == place.external_id for d in page.documents):
            return True
        return any(similarity(place.name, d.name) >= self.match_threshold for d in page.documents)

    async def _deactivate(self, place: Place, now: datetime) -> bool:
        async with self.pool.acquire() as conn:
            tag = await conn.execute(_DEACTIVATE_SQL, place.id, silence_cutoff(place.category, now))
        updated = parse_command_tag_count(tag) > 0
        if not updated:
            logger.info("Place %s was mentioned or retired concurrently; left unchanged", place.id)
        return updated
