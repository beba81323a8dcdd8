"""
Job runner: one short-lived process per scheduled job.

Usage:
    python -m services.curator.jobs.run <job> [--database-url URL] [--verbose]
    place-curator daily

Exit status is 0 when every job finished (fully or partially), 1 when a
job could not run at all, 2 on missing configuration.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

import asyncpg
import httpx

from services.curator.candidates.deactivation import AutoDeactivator
from services.curator.candidates.promotion import AutoPromoter
from services.curator.config import Settings, settings as default_settings
from services.curator.db.pool import standalone_pool
from services.curator.db.records import Provider
from services.curator.db.schema import ensure_schema
from services.curator.geo.region import ServiceArea
from services.curator.jobs.blog_search import BlogSearchJob
from services.curator.jobs.discovery import DiscoveryJob
from services.curator.jobs.keyword_rotation import KeywordRotationJob
from services.curator.jobs.run_log import RunStatus, RunSummary
from services.curator.keywords.generator import KeywordGenerator
from services.curator.keywords.seasonal import SeasonalCalendar
from services.curator.matching.duplicate import DuplicateMatcher
from services.curator.observability import setup_logging, setup_sentry
from services.curator.providers.kakao import KakaoLocalClient
from services.curator.providers.naver import NaverBlogClient
from services.curator.quota import LimiterRegistry

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


class ConfigurationError(RuntimeError):
    """A job needs a credential or setting that is not configured."""


@dataclass
class JobContext:
    """Everything a job needs, built once per process."""
    pool: asyncpg.Pool
    settings: Settings
    registry: LimiterRegistry
    http: httpx.AsyncClient
    area: ServiceArea

    def kakao(self) -> KakaoLocalClient:
        if not self.settings.kakao_rest_key:
            raise ConfigurationError("KAKAO_REST_KEY not set")
        return KakaoLocalClient(
            self.registry.get(Provider.KAKAO),
            self.settings.kakao_rest_key,
            http=self.http,
            timeout_s=self.settings.provider_timeout_s,
        )

    def naver(self) -> NaverBlogClient:
        if not (self.settings.naver_client_id and self.settings.naver_client_secret):
            raise ConfigurationError("NAVER_CLIENT_ID / NAVER_CLIENT_SECRET not set")
        return NaverBlogClient(
            self.registry.get(Provider.NAVER),
            self.settings.naver_client_id,
            self.settings.naver_client_secret,
            http=self.http,
            timeout_s=self.settings.provider_timeout_s,
        )


@asynccontextmanager
async def job_context(
    settings: Settings, database_url: Optional[str] = None,
) -> AsyncIterator[JobContext]:
    async with standalone_pool(database_url) as pool:
        async with httpx.AsyncClient(timeout=settings.provider_timeout_s) as http:
            yield JobContext(
                pool=pool,
                settings=settings,
                registry=LimiterRegistry.from_settings(pool, settings),
                http=http,
                area=ServiceArea.from_settings(settings),
            )


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

async def run_init_db(ctx: JobContext) -> list[RunSummary]:
    summary = RunSummary(job="init_db")
    summary.processed = summary.succeeded = await ensure_schema(ctx.pool)
    return [summary.finish()]


async def run_seed_keywords(ctx: JobContext) -> list[RunSummary]:
    summary = RunSummary(job="seed_keywords")
    base = await KeywordGenerator(ctx.pool).seed_base_keywords()
    seasonal = await SeasonalCalendar(ctx.pool).seed_default_keywords()
    summary.processed = base.generated + seasonal.inserted + seasonal.existing + seasonal.errors
    summary.succeeded = base.inserted + seasonal.inserted
    summary.errors = base.errors + seasonal.errors
    return [summary.finish()]


async def run_discover(ctx: JobContext) -> list[RunSummary]:
    job = DiscoveryJob(
        ctx.pool,
        ctx.kakao(),
        area=ctx.area,
        max_pages=ctx.settings.discovery_max_pages,
        max_keywords=ctx.settings.max_keywords_per_run,
    )
    return [await job.run()]


async def run_blog_search(ctx: JobContext) -> list[RunSummary]:
    job = BlogSearchJob(
        ctx.pool,
        ctx.naver(),
        area=ctx.area,
        max_keywords=ctx.settings.max_keywords_per_run,
    )
    return [await job.run()]


async def run_rotate(ctx: JobContext) -> list[RunSummary]:
    job = KeywordRotationJob(
        ctx.pool, generation_ratio=ctx.settings.keyword_generation_exhausted_ratio,
    )
    return [await job.run()]


async def run_promote(ctx: JobContext) -> list[RunSummary]:
    promoter = AutoPromoter(
        ctx.pool,
        ctx.kakao(),
        matcher=DuplicateMatcher(ctx.pool),
        area=ctx.area,
        ttl_days=ctx.settings.candidate_ttl_days,
        similarity_threshold=ctx.settings.promotion_similarity_threshold,
    )
    return [await promoter.run()]


async def run_deactivate(ctx: JobContext) -> list[RunSummary]:
    deactivator = AutoDeactivator(
        ctx.pool,
        ctx.kakao(),
        batch_size=ctx.settings.revalidation_batch_size,
        match_threshold=ctx.settings.revalidation_match_threshold,
    )
    return [await deactivator.run()]


async def run_daily(ctx: JobContext) -> list[RunSummary]:
    """rotate -> promote -> deactivate. A partial or aborted step does not skip the next."""
    summaries: list[RunSummary] = []
    for step in (run_rotate, run_promote, run_deactivate):
        summaries.extend(await step(ctx))
    return summaries


JOBS: dict[str, Callable[[JobContext], Awaitable[list[RunSummary]]]] = {
    "init-db": run_init_db,
    "seed-keywords": run_seed_keywords,
    "discover": run_discover,
    "blog-search": run_blog_search,
    "rotate": run_rotate,
    "promote": run_promote,
    "deactivate": run_deactivate,
    "daily": run_daily,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="place-curator",
        description="Run one place-curation batch job",
    )
    parser.add_argument("job", choices=sorted(JOBS), help="Job to run")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Overrides DATABASE_URL",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def exit_code_for(summaries: list[RunSummary]) -> int:
    if any(s.status is RunStatus.ERROR for s in summaries):
        return EXIT_FAILED
    return EXIT_OK


async def main(argv: Optional[list[str]] = None, settings: Settings = default_settings) -> int:
    args = build_parser().parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)
    setup_sentry()

    try:
        async with job_context(settings, args.database_url) as ctx:
            summaries = await JOBS[args.job](ctx)
    except ConfigurationError as e:
        logger.error("Cannot run %s: %s", args.job, e)
        return EXIT_CONFIG
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
        logger.exception("Job %s failed", args.job)
        return EXIT_FAILED

    for summary in summaries:
        logger.info("Result: %s", summary.as_dict())
    return exit_code_for(summaries)


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
