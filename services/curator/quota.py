"""
Per-provider quota limiter for external search APIs.

Two budgets per provider:
  - per second: in-memory sliding window, local to this process. Slight
    over-admission across overlapping processes is acceptable.
  - per day: durable counter in rate_limit_counters keyed by
    (provider, UTC date), shared by every process. Reaching the daily
    maximum is a hard stop (QuotaExceededError), never a wait.

On admission the daily counter is bumped through the DB-side function
increment_rate_limit_counter(), an INSERT ... ON CONFLICT DO UPDATE that is
atomic across processes. When that function is missing, the limiter falls
back to read-then-upsert, which can under-count if two processes race.
Setting QUOTA_REQUIRE_ATOMIC_INCREMENT=true refuses the fallback.

Limiters are built once per process by LimiterRegistry and injected into
provider clients:

    registry = LimiterRegistry.from_settings(pool, settings)
    kakao = KakaoLocalClient(registry.get(Provider.KAKAO), settings.kakao_rest_key)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

import asyncpg

from services.curator.db.records import Provider

logger = logging.getLogger(__name__)

T = TypeVar("T")

WINDOW_SECONDS = 1.0

_SELECT_DAILY_COUNT_SQL = """
SELECT count FROM rate_limit_counters
WHERE provider = $1 AND date = $2
"""

_ATOMIC_INCREMENT_SQL = "SELECT increment_rate_limit_counter($1, $2)"

_FALLBACK_UPSERT_SQL = """
INSERT INTO rate_limit_counters (provider, date, count)
VALUES ($1, $2, $3)
ON CONFLICT (provider, date) DO UPDATE SET count = EXCLUDED.count
"""


class QuotaExceededError(RuntimeError):
    """The provider's daily budget is spent. Not retriable until the UTC day rolls over."""

    def __init__(self, provider: str, count: int, limit: int):
        self.provider = provider
        self.count = count
        self.limit = limit
        super().__init__(
            f"Daily API quota exceeded for {provider!r} ({count}/{limit}). "
            "Quota resets at midnight UTC."
        )


@dataclass(frozen=True)
class QuotaConfig:
    provider: str
    max_per_second: int
    max_per_day: int

    def __post_init__(self):
        if self.max_per_second < 1 or self.max_per_day < 1:
            raise ValueError(f"quota limits must be positive: {self}")


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class QuotaLimiter:
    """
    Sliding-window + durable daily quota for one provider.

    Usage:
        result = await limiter.throttle(lambda: client.get(url))
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        config: QuotaConfig,
        *,
        require_atomic: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Callable[[], date] = _utc_today,
    ):
        self.pool = pool
        self.config = config
        self.require_atomic = require_atomic
        self._clock = clock
        self._sleep = sleep
        self._today = today
        self._window: deque[float] = deque()
        self._lock = asyncio.Lock()
        self._atomic_available = True

    @property
    def provider(self) -> str:
        return self.config.provider

    async def throttle(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Wait for a slot, then run `operation`.

        Raises QuotaExceededError without running `operation` when the daily
        budget is already spent. Errors from `operation` propagate unchanged.
        """
        await self._acquire()
        return await operation()

    async def _acquire(self) -> None:
        today = self._today()

        count = await self._fetch_daily_count(today)
        if count >= self.config.max_per_day:
            raise QuotaExceededError(self.provider, count, self.config.max_per_day)

        async with self._lock:
            while True:
                now = self._clock()
                while self._window and now - self._window[0] >= WINDOW_SECONDS:
                    self._window.popleft()

                if len(self._window) < self.config.max_per_second:
                    self._window.append(now)
                    break

                wait_s = WINDOW_SECONDS - (now - self._window[0]) + 0.001
                await self._sleep(wait_s)

        await self._increment_daily_count(today, count)

    # ------------------------------------------------------------------
    # Durable daily counter
    # ------------------------------------------------------------------

    async def _fetch_daily_count(self, day: date) -> int:
        # Fail open: if the counter can't be read, the per-second window
        # still applies.
        try:
            async with self.pool.acquire() as conn:
                count = await conn.fetchval(_SELECT_DAILY_COUNT_SQL, self.provider, day)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.warning("Failed to read daily count for %r: %s", self.provider, e)
            return 0
        return int(count or 0)

    async def _increment_daily_count(self, day: date, seen_count: int) -> None:
        if self._atomic_available:
            try:
                async with self.pool.acquire() as conn:
                    await conn.fetchval(_ATOMIC_INCREMENT_SQL, self.provider, day)
                return
            except asyncpg.UndefinedFunctionError:
                if self.require_atomic:
                    raise
                self._atomic_available = False
                logger.warning(
                    "increment_rate_limit_counter() missing; %r daily count falls back "
                    "to non-atomic upsert and may under-count under concurrent runs",
                    self.provider,
                )

        try:
            async with self.pool.acquire() as conn:
                current = await conn.fetchval(_SELECT_DAILY_COUNT_SQL, self.provider, day)
                await conn.execute(
                    _FALLBACK_UPSERT_SQL,
                    self.provider,
                    day,
                    int(current if current is not None else seen_count) + 1,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.warning("Failed to increment daily count for %r: %s", self.provider, e)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def get_daily_count(self) -> int:
        return await self._fetch_daily_count(self._today())

    async def get_remaining_daily(self) -> int:
        count = await self.get_daily_count()
        return max(0, self.config.max_per_day - count)


class LimiterRegistry:
    """One QuotaLimiter per provider, shared by every caller in the process."""

    def __init__(self, limiters: Optional[dict[str, QuotaLimiter]] = None):
        self._limiters: dict[str, QuotaLimiter] = dict(limiters or {})

    @classmethod
    def from_settings(cls, pool: asyncpg.Pool, settings) -> "LimiterRegistry":
        configs = [
            QuotaConfig(Provider.KAKAO.value, settings.kakao_max_per_second, settings.kakao_max_per_day),
            QuotaConfig(Provider.NAVER.value, settings.naver_max_per_second, settings.naver_max_per_day),
        ]
        registry = cls()
        for config in configs:
            registry.register(
                QuotaLimiter(pool, config, require_atomic=settings.quota_require_atomic_increment)
            )
        return registry

    def register(self, limiter: QuotaLimiter) -> QuotaLimiter:
        if limiter.provider in self._limiters:
            raise ValueError(f"limiter for {limiter.provider!r} already registered")
        self._limiters[limiter.provider] = limiter
        return limiter

    def get(self, provider: Provider | str) -> QuotaLimiter:
        key = provider.value if isinstance(provider, Provider) else provider
        try:
            return self._limiters[key]
        except KeyError:
            raise KeyError(f"no quota limiter registered for {key!r}") from None

    def providers(self) -> list[str]:
        return sorted(self._limiters)
