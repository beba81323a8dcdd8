"""
Seasonal keyword calendar.

Seasons (months):
    spring  3, 4, 5
    summer  6, 7, 8
    autumn  9, 10, 11
    winter  12, 1, 2

Runs once per cycle, one month ahead: on any day of February the spring
keywords are woken up, because provider results lag behind the calendar.

  - Activation: keywords whose months include the upcoming month are reset
    to a fresh ACTIVE state (efficiency, cycle count and zero streak all
    zeroed). Dormant SEASONAL keywords wake at any point of their season;
    DECLINING or EXHAUSTED ones only on the boundary cycle, while the
    current month is still outside the season.
  - Deactivation: seasonal keywords whose months include neither the
    current nor the upcoming month go back to SEASONAL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Optional

import asyncpg

from services.curator.candidates import categories
from services.curator.db.pool import parse_command_tag_count
from services.curator.db.records import KeywordStatus, Provider

logger = logging.getLogger(__name__)

SEASONS: dict[str, tuple[int, ...]] = {
    "spring": (3, 4, 5),
    "summer": (6, 7, 8),
    "autumn": (9, 10, 11),
    "winter": (12, 1, 2),
}


@dataclass(frozen=True)
class SeasonalSeed:
    keyword: str
    provider: Provider
    season: str
    category: Optional[str] = None

    @property
    def months(self) -> tuple[int, ...]:
        return SEASONS[self.season]


DEFAULT_SEASONAL_KEYWORDS: tuple[SeasonalSeed, ...] = (
    # Naver blog search
    SeasonalSeed("아기 벚꽃", Provider.NAVER, "spring"),
    SeasonalSeed("아기 봄 공원", Provider.NAVER, "spring"),
    SeasonalSeed("봄 축제", Provider.NAVER, "spring"),
    SeasonalSeed("아기 봄나들이", Provider.NAVER, "spring"),
    SeasonalSeed("아기 물놀이", Provider.NAVER, "summer"),
    SeasonalSeed("아기 워터파크", Provider.NAVER, "summer"),
    SeasonalSeed("아기 계곡", Provider.NAVER, "summer"),
    SeasonalSeed("여름 물놀이터", Provider.NAVER, "summer"),
    SeasonalSeed("아기 단풍", Provider.NAVER, "autumn"),
    SeasonalSeed("아기 숲", Provider.NAVER, "autumn"),
    SeasonalSeed("가을 축제", Provider.NAVER, "autumn"),
    SeasonalSeed("아기 가을 공원", Provider.NAVER, "autumn"),
    SeasonalSeed("아기 실내", Provider.NAVER, "winter"),
    SeasonalSeed("아기 눈썰매", Provider.NAVER, "winter"),
    SeasonalSeed("겨울 실내놀이터", Provider.NAVER, "winter"),
    SeasonalSeed("아기 온실", Provider.NAVER, "winter"),
    # Kakao local search
    SeasonalSeed("물놀이장", Provider.KAKAO, "summer", categories.SWIM),
    SeasonalSeed("유아워터파크", Provider.KAKAO, "summer", categories.SWIM),
    SeasonalSeed("여름키즈", Provider.KAKAO, "summer", categories.PLAY),
    SeasonalSeed("실내키즈카페", Provider.KAKAO, "winter", categories.PLAY),
    SeasonalSeed("눈썰매장", Provider.KAKAO, "winter", categories.PLAY),
    SeasonalSeed("실내놀이공원", Provider.KAKAO, "winter", categories.PLAY),
    SeasonalSeed("벚꽃놀이터", Provider.KAKAO, "spring", categories.PARK),
    SeasonalSeed("봄나들이", Provider.KAKAO, "spring", categories.NATURE),
    SeasonalSeed("단풍공원", Provider.KAKAO, "autumn", categories.PARK),
    SeasonalSeed("가을체험", Provider.KAKAO, "autumn", categories.EXHIBIT),
)


def season_for_month(month: int) -> str:
    for name, months in SEASONS.items():
        if month in months:
            return name
    raise ValueError(f"month out of range: {month}")


def upcoming_month(month: int) -> int:
    return 1 if month == 12 else month + 1


def current_season_name(today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return season_for_month(today.month)


def upcoming_season_name(today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return season_for_month(upcoming_month(today.month))


def validate_months(months: Iterable[int]) -> list[int]:
    result = sorted({int(m) for m in months})
    if not result or any(m < 1 or m > 12 for m in result):
        raise ValueError(f"seasonal months must be a non-empty subset of 1-12: {months!r}")
    return result


_ACTIVATE_SQL = """
UPDATE keywords
SET status = 'ACTIVE',
    efficiency_score = 0,
    cycle_count = 0,
    consecutive_zero_new = 0
WHERE $1::int = ANY(seasonal_months)
  AND (
        status = 'SEASONAL'
     OR (status IN ('DECLINING', 'EXHAUSTED') AND NOT ($2::int = ANY(seasonal_months)))
  )
"""

_DEACTIVATE_SQL = """
UPDATE keywords
SET status = 'SEASONAL'
WHERE status <> 'SEASONAL'
  AND cardinality(seasonal_months) > 0
  AND NOT ($1::int = ANY(seasonal_months))
  AND NOT ($2::int = ANY(seasonal_months))
"""

_SET_MONTHS_SQL = """
UPDATE keywords SET seasonal_months = $2::int[], status = 'SEASONAL' WHERE id = $1
"""

_INSERT_SEED_SQL = """
INSERT INTO keywords (keyword, provider, status, seasonal_months, source)
VALUES ($1, $2, $3, $4::int[], $5)
ON CONFLICT (provider, lower(keyword)) DO NOTHING
RETURNING id
"""


@dataclass
class SeasonalTransition:
    current_month: int
    upcoming_month: int
    activated: int = 0
    deactivated: int = 0
    errors: int = 0


@dataclass
class SeedResult:
    inserted: int = 0
    existing: int = 0
    errors: int = 0


class SeasonalCalendar:
    """
    Usage:
        calendar = SeasonalCalendar(pool)
        transition = await calendar.run_transition(date.today())
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def run_transition(self, today: Optional[date] = None) -> SeasonalTransition:
        today = today or datetime.now(timezone.utc).date()
        result = SeasonalTransition(
            current_month=today.month, upcoming_month=upcoming_month(today.month),
        )

        try:
            result.activated = await self._update(
                _ACTIVATE_SQL, result.upcoming_month, result.current_month,
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            result.errors += 1
            logger.exception("Seasonal activation failed")

        try:
            result.deactivated = await self._update(
                _DEACTIVATE_SQL, result.current_month, result.upcoming_month,
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            result.errors += 1
            logger.exception("Seasonal deactivation failed")

        logger.info(
            "Seasonal transition (month=%d, next=%d, upcoming season=%s): activated=%d deactivated=%d",
            result.current_month,
            result.upcoming_month,
            season_for_month(result.upcoming_month),
            result.activated,
            result.deactivated,
        )
        return result

    async def _update(self, sql: str, *args) -> int:
        async with self.pool.acquire() as conn:
            tag = await conn.execute(sql, *args)
        return parse_command_tag_count(tag)

    async def set_seasonal_months(self, keyword_id: str, months: Iterable[int]) -> bool:
        """Mark a keyword seasonal. Raises ValueError on an invalid month set."""
        valid = validate_months(months)
        async with self.pool.acquire() as conn:
            tag = await conn.execute(_SET_MONTHS_SQL, keyword_id, valid)
        return parse_command_tag_count(tag) > 0

    async def seed_default_keywords(
        self, seeds: Iterable[SeasonalSeed] = DEFAULT_SEASONAL_KEYWORDS,
    ) -> SeedResult:
        """Insert the default seasonal keywords; already-known ones are left alone."""
        result = SeedResult()
        async with self.pool.acquire() as conn:
            for seed in seeds:
                try:
                    inserted_id = await conn.fetchval(
                        _INSERT_SEED_SQL,
                        seed.keyword,
                        seed.provider.value,
                        KeywordStatus.SEASONAL.value,
                        list(seed.months),
                        "seasonal",
                    )
                except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
                    result.errors += 1
                    logger.exception("Failed to seed seasonal keyword %r", seed.keyword)
                    continue
                if inserted_id is None:
                    result.existing += 1
                else:
                    result.inserted += 1

        logger.info("Seeded %d seasonal keywords (%d already present)", result.inserted, result.existing)
        return result
