"""
Daily keyword maintenance.

  1. Seasonal transition (one month ahead)
  2. Health check per provider (share of EXHAUSTED keywords)
  3. Candidate generation for providers at or above the threshold
  4. Count of keywords eligible for the next ingestion runs

Usage:
    python -m services.curator.jobs.run rotate
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional, Sequence

import asyncpg

from services.curator.db.records import Provider
from services.curator.jobs.run_log import RunSummary, record_run
from services.curator.keywords.generator import KeywordGenerator
from services.curator.keywords.rotation import GENERATION_TRIGGER_RATIO, KeywordRotationEngine
from services.curator.keywords.seasonal import SeasonalCalendar

logger = logging.getLogger(__name__)

# Upper bound for the eligible-keyword count
ELIGIBLE_COUNT_LIMIT = 10_000


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class KeywordRotationJob:
    """
    Usage:
        job = KeywordRotationJob(pool)
        summary = await job.run()
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        engine: Optional[KeywordRotationEngine] = None,
        calendar: Optional[SeasonalCalendar] = None,
        generator: Optional[KeywordGenerator] = None,
        providers: Sequence[Provider] = (Provider.NAVER, Provider.KAKAO),
        generation_ratio: float = GENERATION_TRIGGER_RATIO,
        today: Callable[[], date] = _utc_today,
    ):
        self.pool = pool
        self.engine = engine or KeywordRotationEngine(pool)
        self.calendar = calendar or SeasonalCalendar(pool)
        self.generator = generator or KeywordGenerator(pool)
        self.providers = tuple(providers)
        self.generation_ratio = generation_ratio
        self._today = today

    async def run(self) -> RunSummary:
        summary = RunSummary(job="keyword_rotation")
        health_details: dict = {}
        generation_details: dict = {}
        summary.details.update(health=health_details, generated=generation_details, eligible=0)

        transition = await self.calendar.run_transition(self._today())
        summary.errors += transition.errors
        summary.details["seasonal"] = {
            "activated": transition.activated,
            "deactivated": transition.deactivated,
        }

        for provider in self.providers:
            summary.processed += 1
            try:
                health = await self.engine.check_health(provider)
                health_details[provider.value] = health.percent_exhausted

                if health.should_generate(self.generation_ratio):
                    logger.info(
                        "%s keywords %.2f%% exhausted; generating candidates",
                        provider.value, health.percent_exhausted,
                    )
                    generated = await self.generator.generate(provider)
                    generation_details[provider.value] = generated.inserted
                    summary.errors += generated.errors

                eligible = await self.engine.eligible_keywords(provider, ELIGIBLE_COUNT_LIMIT)
                summary.details["eligible"] += len(eligible)
                summary.succeeded += 1
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
                summary.errors += 1
                logger.exception("Keyword maintenance failed for %s", provider.value)

        logger.info(
            "Keyword rotation: seasonal +%d/-%d, exhausted %s, %d eligible",
            transition.activated, transition.deactivated, health_details,
            summary.details["eligible"],
        )
        await record_run(self.pool, summary.finish())
        return summary
