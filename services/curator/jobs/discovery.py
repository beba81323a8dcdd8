"""
Place discovery from the local-search provider.

Two passes, each scanning the service area tile by tile (up to 45 pages of
15 results per tile, stopping early on the provider's last page):

  1. Fixed category scans (cafes, restaurants, cultural facilities,
     attractions). Not scored.
  2. Rotating keywords: the eligible kakao keywords, least-cycled first.
     Each keyword's cycle metrics (results, new places, duplicates) go to
     the rotation engine afterwards.

Every in-area document goes through the duplicate matcher; known places
are touched, new ones inserted. A spent quota stops the run. A keyword
cut short by the quota or by a provider failure is not scored.

Usage:
    python -m services.curator.jobs.run discover
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

import asyncpg

from services.curator.candidates import categories
from services.curator.candidates.categories import infer_category
from services.curator.db.records import Keyword, Provider
from services.curator.geo.region import BoundingBox, ServiceArea
from services.curator.jobs.run_log import RunSummary, record_run
from services.curator.keywords.rotation import CycleMetrics, KeywordRotationEngine
from services.curator.matching.duplicate import DuplicateMatcher, NewPlace
from services.curator.providers.base import MalformedPayloadError, ProviderUnavailableError
from services.curator.providers.kakao import MAX_PAGE, KakaoLocalClient, ProviderPlace, SearchPage
from services.curator.quota import QuotaExceededError

logger = logging.getLogger(__name__)

DISCOVERY_SOURCE = "kakao"
DEFAULT_MAX_KEYWORDS = 60


@dataclass(frozen=True)
class CategoryTarget:
    code: str
    category: str


CATEGORY_TARGETS: tuple[CategoryTarget, ...] = (
    CategoryTarget("CE7", categories.FOOD),     # cafes
    CategoryTarget("FD6", categories.FOOD),     # restaurants
    CategoryTarget("CT1", categories.EXHIBIT),  # cultural facilities
    CategoryTarget("AT4", categories.NATURE),   # attractions
)

PageFetcher = Callable[[BoundingBox, int], Awaitable[SearchPage]]


@dataclass
class ScanResult:
    api_results: int = 0
    inserted: int = 0
    duplicates: int = 0
    out_of_area: int = 0
    errors: int = 0
    provider_errors: int = 0

    def metrics(self) -> CycleMetrics:
        return CycleMetrics(
            api_results=self.api_results,
            new_discoveries=self.inserted,
            duplicates=self.duplicates,
        )


class DiscoveryJob:
    """
    Usage:
        job = DiscoveryJob(pool, kakao_client, area=ServiceArea.from_settings(settings))
        summary = await job.run()
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        kakao: KakaoLocalClient,
        *,
        engine: Optional[KeywordRotationEngine] = None,
        matcher: Optional[DuplicateMatcher] = None,
        area: Optional[ServiceArea] = None,
        max_pages: int = MAX_PAGE,
        max_keywords: int = DEFAULT_MAX_KEYWORDS,
        category_targets: Sequence[CategoryTarget] = CATEGORY_TARGETS,
    ):
        self.pool = pool
        self.kakao = kakao
        self.engine = engine or KeywordRotationEngine(pool)
        self.matcher = matcher or DuplicateMatcher(pool)
        self.area = area or ServiceArea()
        self.max_pages = min(max_pages, MAX_PAGE)
        self.max_keywords = max_keywords
        self.category_targets = tuple(category_targets)

    async def run(self) -> RunSummary:
        summary = RunSummary(job="discovery", provider=Provider.KAKAO.value)
        summary.details.update(out_of_area=0, keywords_evaluated=0)

        try:
            for target in self.category_targets:
                scan = await self.scan(
                    lambda rect, page, code=target.code: self.kakao.search_category(
                        code, rect, page=page,
                    ),
                    category=target.category,
                    label=target.code,
                )
                self._accumulate(summary, scan)

            try:
                keywords = await self.engine.eligible_keywords(Provider.KAKAO, self.max_keywords)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
                logger.exception("Failed to load discovery keywords; aborting")
                summary.aborted = True
                summary.error_message = str(e)
                await record_run(self.pool, summary.finish())
                return summary

            for keyword in keywords:
                scan = await self.scan_keyword(keyword)
                self._accumulate(summary, scan)
                if scan.provider_errors:
                    # Not scored: an outage says nothing about the keyword
                    logger.warning(
                        "Skipping evaluation of %r after %d provider failures",
                        keyword.keyword, scan.provider_errors,
                    )
                    continue
                try:
                    await self.engine.evaluate_cycle(keyword, scan.metrics())
                    summary.details["keywords_evaluated"] += 1
                except Exception:
                    summary.errors += 1
                    logger.exception("Failed to score keyword %r", keyword.keyword)
        except QuotaExceededError as e:
            summary.stopped_early = True
            logger.warning("Stopping discovery: %s", e)

        await record_run(self.pool, summary.finish())
        return summary

    async def scan_keyword(self, keyword: Keyword) -> ScanResult:
        return await self.scan(
            lambda rect, page: self.kakao.search_keyword(keyword.keyword, page=page, rect=rect),
            category=None,
            label=keyword.keyword,
        )

    async def scan(
        self,
        fetch_page: PageFetcher,
        *,
        category: Optional[str],
        label: str,
    ) -> ScanResult:
        """
        Page through every tile of the service area. Provider failures end
        the current tile only; QuotaExceededError propagates.
        """
        result = ScanResult()
        for rect in self.area.tiles():
            for page_no in range(1, self.max_pages + 1):
                try:
                    page = await fetch_page(rect, page_no)
                except (ProviderUnavailableError, MalformedPayloadError) as e:
                    result.errors += 1
                    result.provider_errors += 1
                    logger.warning("Discovery %r tile %s page %d failed: %s",
                                   label, rect.to_rect_param(), page_no, e)
                    break

                result.api_results += len(page.documents)
                for found in page.documents:
                    await self._ingest(found, category, result)

                if page.is_end or not page.documents:
                    break

        logger.info(
            "Discovery %r: %d results, %d new, %d known, %d out of area",
            label, result.api_results, result.inserted, result.duplicates, result.out_of_area,
        )
        return result

    async def _ingest(
        self, found: ProviderPlace, category: Optional[str], result: ScanResult,
    ) -> None:
        if not self.area.is_in_area(found.lat, found.lng, found.best_address):
            result.out_of_area += 1
            return

        place = NewPlace.from_provider(
            found,
            category=category or infer_category(found.category_name, found.name),
            source=DISCOVERY_SOURCE,
        )
        try:
            outcome = await self.matcher.ingest(place, touch_existing=True)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            result.errors += 1
            logger.exception("Failed to ingest %r (%s)", found.name, found.external_id)
            return

        if outcome.inserted:
            result.inserted += 1
        else:
            result.duplicates += 1

    @staticmethod
    def _accumulate(summary: RunSummary, scan: ScanResult) -> None:
        summary.processed += scan.api_results
        summary.succeeded += scan.inserted
        summary.duplicates += scan.duplicates
        summary.errors += scan.errors
        summary.details["out_of_area"] += scan.out_of_area
