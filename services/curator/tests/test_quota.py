"""
Tests for services/curator/quota.py

Covers:
  - Per-second sliding window waits instead of failing
  - Daily budget is a hard stop, checked before the operation runs
  - Durable counter: atomic function, fallback upsert, fail-open reads
  - LimiterRegistry wiring from settings
"""

from datetime import date
from unittest.mock import AsyncMock

import asyncpg
import pytest

from services.curator.config import Settings
from services.curator.db.records import Provider
from services.curator.quota import (
    LimiterRegistry,
    QuotaConfig,
    QuotaExceededError,
    QuotaLimiter,
)
from services.curator.tests.helpers.fakes import make_conn, make_pool

TODAY = date(2026, 3, 15)


class FakeClock:
    """Monotonic clock that only moves when the limiter sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _limiter(conn, *, per_second=10, per_day=100, require_atomic=False, clock=None):
    clock = clock or FakeClock()
    return QuotaLimiter(
        make_pool(conn),
        QuotaConfig("kakao", per_second, per_day),
        require_atomic=require_atomic,
        clock=clock,
        sleep=clock.sleep,
        today=lambda: TODAY,
    )


class TestQuotaConfig:
    def test_rejects_non_positive_limits(self):
        with pytest.raises(ValueError):
            QuotaConfig("kakao", 0, 100)
        with pytest.raises(ValueError):
            QuotaConfig("kakao", 10, 0)


class TestThrottle:
    @pytest.mark.asyncio
    async def test_runs_operation_and_bumps_counter(self):
        conn = make_conn(fetchval=5)
        limiter = _limiter(conn)
        operation = AsyncMock(return_value="ok")

        assert await limiter.throttle(operation) == "ok"

        operation.assert_awaited_once()
        sql = [c.args[0] for c in conn.fetchval.call_args_list]
        assert "increment_rate_limit_counter" in sql[-1]
        assert conn.fetchval.call_args_list[-1].args[1:] == ("kakao", TODAY)

    @pytest.mark.asyncio
    async def test_daily_limit_raises_without_calling_operation(self):
        conn = make_conn(fetchval=100)
        limiter = _limiter(conn, per_day=100)
        operation = AsyncMock()

        with pytest.raises(QuotaExceededError) as exc_info:
            await limiter.throttle(operation)

        operation.assert_not_awaited()
        assert exc_info.value.count == 100
        assert exc_info.value.limit == 100
        assert "midnight UTC" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_operation_errors_propagate(self):
        limiter = _limiter(make_conn(fetchval=0))
        operation = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError, match="boom"):
            await limiter.throttle(operation)

    @pytest.mark.asyncio
    async def test_per_second_window_waits(self):
        clock = FakeClock()
        limiter = _limiter(make_conn(fetchval=0), per_second=2, clock=clock)
        operation = AsyncMock(return_value=None)

        for _ in range(3):
            await limiter.throttle(operation)

        assert operation.await_count == 3
        assert len(clock.sleeps) == 1
        assert clock.sleeps[0] == pytest.approx(1.001)

    @pytest.mark.asyncio
    async def test_window_slides(self):
        clock = FakeClock()
        limiter = _limiter(make_conn(fetchval=0), per_second=1, clock=clock)
        operation = AsyncMock(return_value=None)

        await limiter.throttle(operation)
        clock.now += 1.5
        await limiter.throttle(operation)

        assert clock.sleeps == []


class TestDailyCounter:
    @pytest.mark.asyncio
    async def test_read_failure_fails_open(self):
        conn = make_conn()
        conn.fetchval.side_effect = [OSError("db down"), None]
        limiter = _limiter(conn)
        operation = AsyncMock(return_value="ok")

        assert await limiter.throttle(operation) == "ok"

    @pytest.mark.asyncio
    async def test_missing_function_falls_back_to_upsert(self):
        conn = make_conn()
        conn.fetchval.side_effect = [
            5,                                          # daily read
            asyncpg.UndefinedFunctionError("missing"),  # atomic increment
            5,                                          # fallback re-read
            6,                                          # next daily read
            6,                                          # fallback re-read
        ]
        limiter = _limiter(conn)
        operation = AsyncMock(return_value=None)

        await limiter.throttle(operation)
        await limiter.throttle(operation)

        upserts = conn.execute.call_args_list
        assert [c.args[3] for c in upserts] == [6, 7]
        atomic_calls = [
            c for c in conn.fetchval.call_args_list
            if "increment_rate_limit_counter" in c.args[0]
        ]
        assert len(atomic_calls) == 1

    @pytest.mark.asyncio
    async def test_require_atomic_refuses_fallback(self):
        conn = make_conn()
        conn.fetchval.side_effect = [0, asyncpg.UndefinedFunctionError("missing")]
        limiter = _limiter(conn, require_atomic=True)
        operation = AsyncMock()

        with pytest.raises(asyncpg.UndefinedFunctionError):
            await limiter.throttle(operation)

        operation.assert_not_awaited()
        conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remaining_daily(self):
        limiter = _limiter(make_conn(fetchval=90), per_day=100)
        assert await limiter.get_daily_count() == 90
        assert await limiter.get_remaining_daily() == 10

    @pytest.mark.asyncio
    async def test_remaining_never_negative(self):
        limiter = _limiter(make_conn(fetchval=150), per_day=100)
        assert await limiter.get_remaining_daily() == 0


class TestLimiterRegistry:
    def test_from_settings(self):
        s = Settings(kakao_max_per_day=500, naver_max_per_second=3)
        registry = LimiterRegistry.from_settings(make_pool(make_conn()), s)

        assert registry.providers() == ["kakao", "naver"]
        assert registry.get(Provider.KAKAO).config.max_per_day == 500
        assert registry.get("naver").config.max_per_second == 3

    def test_same_limiter_for_every_caller(self):
        registry = LimiterRegistry.from_settings(make_pool(make_conn()), Settings())
        assert registry.get(Provider.NAVER) is registry.get("naver")

    def test_unknown_provider(self):
        with pytest.raises(KeyError):
            LimiterRegistry().get("google")

    def test_duplicate_registration(self):
        pool = make_pool(make_conn())
        registry = LimiterRegistry()
        registry.register(QuotaLimiter(pool, QuotaConfig("kakao", 1, 1)))
        with pytest.raises(ValueError):
            registry.register(QuotaLimiter(pool, QuotaConfig("kakao", 2, 2)))
