"""
Tests for services/curator/jobs/run.py

Covers:
  - Argument parsing and job registry
  - Exit codes: 0 on success/partial, 1 on aborted jobs or storage failure,
    2 on missing credentials
  - daily = rotate -> promote -> deactivate, each step always attempted
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from services.curator.config import Settings
from services.curator.geo.region import ServiceArea
from services.curator.jobs import run as run_module
from services.curator.jobs.run import (
    EXIT_CONFIG,
    EXIT_FAILED,
    EXIT_OK,
    JOBS,
    ConfigurationError,
    JobContext,
    build_parser,
    exit_code_for,
    main,
    run_daily,
)
from services.curator.jobs.run_log import RunSummary
from services.curator.providers.kakao import KakaoLocalClient
from services.curator.providers.naver import NaverBlogClient
from services.curator.quota import LimiterRegistry


def _context(settings: Settings) -> JobContext:
    pool = MagicMock()
    return JobContext(
        pool=pool,
        settings=settings,
        registry=LimiterRegistry.from_settings(pool, settings),
        http=MagicMock(),
        area=ServiceArea.from_settings(settings),
    )


def _fake_job_context(ctx=None, exc=None):
    @asynccontextmanager
    async def fake(settings, database_url=None):
        if exc is not None:
            raise exc
        yield ctx or _context(settings)
    return fake


class TestParser:
    def test_every_job_is_a_choice(self):
        args = build_parser().parse_args(["blog-search", "--database-url", "postgresql://x/y", "-v"])
        assert args.job == "blog-search"
        assert args.database_url == "postgresql://x/y"
        assert args.verbose

    def test_unknown_job(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["explode"])

    def test_registry(self):
        assert set(JOBS) == {
            "init-db", "seed-keywords", "discover", "blog-search",
            "rotate", "promote", "deactivate", "daily",
        }


class TestExitCode:
    def test_partial_is_ok(self):
        assert exit_code_for([RunSummary(job="a"), RunSummary(job="b", errors=3)]) == EXIT_OK

    def test_aborted_fails(self):
        assert exit_code_for([RunSummary(job="a"), RunSummary(job="b", aborted=True)]) == EXIT_FAILED


class TestJobContext:
    def test_clients_need_credentials(self):
        ctx = _context(Settings(kakao_rest_key="", naver_client_id="id", naver_client_secret=""))
        with pytest.raises(ConfigurationError):
            ctx.kakao()
        with pytest.raises(ConfigurationError):
            ctx.naver()

    def test_clients_share_registry_limiters(self):
        ctx = _context(Settings(kakao_rest_key="k", naver_client_id="i", naver_client_secret="s"))
        kakao = ctx.kakao()
        naver = ctx.naver()
        assert isinstance(kakao, KakaoLocalClient)
        assert isinstance(naver, NaverBlogClient)
        assert kakao.limiter is ctx.registry.get("kakao")
        assert naver.limiter is ctx.registry.get("naver")


class TestMain:
    @pytest.mark.asyncio
    async def test_runs_selected_job(self):
        job = AsyncMock(return_value=[RunSummary(job="keyword_rotation")])
        with patch.object(run_module, "job_context", _fake_job_context()), \
                patch.dict(JOBS, {"rotate": job}):
            code = await main(["rotate"], settings=Settings())

        assert code == EXIT_OK
        job.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aborted_job_exits_1(self):
        job = AsyncMock(return_value=[RunSummary(job="auto_promote", aborted=True)])
        with patch.object(run_module, "job_context", _fake_job_context()), \
                patch.dict(JOBS, {"promote": job}):
            assert await main(["promote"], settings=Settings()) == EXIT_FAILED

    @pytest.mark.asyncio
    async def test_missing_credentials_exit_2(self):
        job = AsyncMock(side_effect=ConfigurationError("KAKAO_REST_KEY not set"))
        with patch.object(run_module, "job_context", _fake_job_context()), \
                patch.dict(JOBS, {"discover": job}):
            assert await main(["discover"], settings=Settings()) == EXIT_CONFIG

    @pytest.mark.asyncio
    async def test_database_unreachable_exit_1(self):
        fake = _fake_job_context(exc=OSError("connection refused"))
        with patch.object(run_module, "job_context", fake):
            assert await main(["rotate"], settings=Settings()) == EXIT_FAILED


class TestDaily:
    @pytest.mark.asyncio
    async def test_runs_every_step_in_order(self):
        order = []

        def step(name, **summary_fields):
            async def _run(ctx):
                order.append(name)
                return [RunSummary(job=name, **summary_fields)]
            return _run

        with patch.object(run_module, "run_rotate", step("rotate", aborted=True)), \
                patch.object(run_module, "run_promote", step("promote")), \
                patch.object(run_module, "run_deactivate", step("deactivate")):
            summaries = await run_daily(_context(Settings()))

        assert order == ["rotate", "promote", "deactivate"]
        assert [s.job for s in summaries] == ["rotate", "promote", "deactivate"]
