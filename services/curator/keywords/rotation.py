"""
Adaptive keyword rotation: per-cycle efficiency score + status transitions.

Per-cycle inputs (CycleMetrics) come from the ingestion job that spent the
keyword. Efficiency:

    yield          = clamp(new / api_results, 0, 1)         (0 if no results)
    duplicate_rate = clamp(duplicates / api_results, 0, 1)  (0 if no results)
    cycle_fatigue  = exp(-cycle_count / 10)                  (count before this cycle)
    zero_penalty   = 1 - min(consecutive_zero * 0.3, 1)      (count after this cycle)

    discovery providers:  0.50*yield*(1-dup) + 0.30*fatigue + 0.20*zero_penalty
    text providers:       0.40*yield*(1-dup) + 0.25*relevance + 0.20*fatigue + 0.15*zero_penalty

`relevance` is the mean relevance of this keyword's blog mentions over the
last 30 days, 0.5 when there are none.

Status transitions are a pure function (next_status) so they can be tested
without a database:

    NEW/ACTIVE  --(< 0.3)-->  DECLINING  --(< 0.1)-->  EXHAUSTED
    DECLINING   --(>= 0.3)->  ACTIVE
    any         --(3 consecutive zero-discovery cycles)-->  EXHAUSTED
    SEASONAL while off-season: unchanged by score
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional

import asyncpg

from services.curator.db.records import Keyword, KeywordStatus, Provider, RecordError

logger = logging.getLogger(__name__)

ACTIVE_THRESHOLD = 0.3
EXHAUSTED_THRESHOLD = 0.1
MAX_CONSECUTIVE_ZERO = 3
ZERO_CYCLE_PENALTY = 0.3
FATIGUE_CYCLES = 10.0

DEFAULT_RELEVANCE = 0.5
RELEVANCE_LOOKBACK_DAYS = 30

# Share of EXHAUSTED keywords at which new ones get generated
GENERATION_TRIGGER_RATIO = 0.3

# Statuses that may spend quota this cycle
ELIGIBLE_STATUSES = (KeywordStatus.NEW, KeywordStatus.ACTIVE, KeywordStatus.DECLINING)


@dataclass(frozen=True)
class EfficiencyWeights:
    """Tunable weights; each variant sums to 1.0."""
    yield_weight: float
    relevance_weight: float
    fatigue_weight: float
    zero_penalty_weight: float


DISCOVERY_WEIGHTS = EfficiencyWeights(0.50, 0.0, 0.30, 0.20)
TEXT_SEARCH_WEIGHTS = EfficiencyWeights(0.40, 0.25, 0.20, 0.15)

PROVIDER_WEIGHTS = {
    Provider.KAKAO: DISCOVERY_WEIGHTS,
    Provider.NAVER: TEXT_SEARCH_WEIGHTS,
}


@dataclass(frozen=True)
class CycleMetrics:
    api_results: int
    new_discoveries: int
    duplicates: int = 0

    @property
    def yield_rate(self) -> float:
        if self.api_results <= 0:
            return 0.0
        return min(max(self.new_discoveries / self.api_results, 0.0), 1.0)

    @property
    def duplicate_rate(self) -> float:
        if self.api_results <= 0:
            return 0.0
        return min(max(self.duplicates / self.api_results, 0.0), 1.0)


@dataclass
class CycleEvaluation:
    keyword_id: str
    keyword: str
    old_status: KeywordStatus
    new_status: KeywordStatus
    old_efficiency: float
    new_efficiency: float
    consecutive_zero: int
    relevance: Optional[float] = None


@dataclass
class KeywordHealth:
    provider: str
    total: int = 0
    exhausted: int = 0

    @property
    def exhausted_ratio(self) -> float:
        return self.exhausted / self.total if self.total else 0.0

    @property
    def percent_exhausted(self) -> float:
        return round(self.exhausted_ratio * 100, 2)

    def should_generate(self, ratio: float = GENERATION_TRIGGER_RATIO) -> bool:
        return self.total > 0 and self.exhausted_ratio >= ratio


# ---------------------------------------------------------------------------
# Pure scoring
# ---------------------------------------------------------------------------

def next_consecutive_zero(previous: int, metrics: CycleMetrics) -> int:
    return previous + 1 if metrics.new_discoveries == 0 else 0


def compute_efficiency(
    metrics: CycleMetrics,
    cycle_count: int,
    consecutive_zero: int,
    weights: EfficiencyWeights,
    relevance: float = DEFAULT_RELEVANCE,
) -> float:
    """
    Args:
        cycle_count: cycles completed before this one.
        consecutive_zero: zero-discovery streak including this cycle.
    """
    fatigue = math.exp(-cycle_count / FATIGUE_CYCLES)
    zero_penalty = 1.0 - min(consecutive_zero * ZERO_CYCLE_PENALTY, 1.0)
    score = (
        weights.yield_weight * metrics.yield_rate * (1.0 - metrics.duplicate_rate)
        + weights.relevance_weight * min(max(relevance, 0.0), 1.0)
        + weights.fatigue_weight * fatigue
        + weights.zero_penalty_weight * zero_penalty
    )
    return round(min(max(score, 0.0), 1.0), 3)


def next_status(
    current: KeywordStatus,
    efficiency: float,
    consecutive_zero: int,
    in_season: bool = True,
) -> KeywordStatus:
    if consecutive_zero >= MAX_CONSECUTIVE_ZERO:
        return KeywordStatus.EXHAUSTED

    if current is KeywordStatus.SEASONAL and not in_season:
        return KeywordStatus.SEASONAL
    if current is KeywordStatus.EXHAUSTED:
        return KeywordStatus.EXHAUSTED

    if current is KeywordStatus.DECLINING:
        if efficiency < EXHAUSTED_THRESHOLD:
            return KeywordStatus.EXHAUSTED
        if efficiency >= ACTIVE_THRESHOLD:
            return KeywordStatus.ACTIVE
        return KeywordStatus.DECLINING

    # NEW, ACTIVE, and in-season SEASONAL
    if efficiency < ACTIVE_THRESHOLD:
        return KeywordStatus.DECLINING
    return KeywordStatus.ACTIVE


def is_in_season(keyword: Keyword, today: date) -> bool:
    """Non-seasonal keywords are always in season; seasonal ones one month early too."""
    if not keyword.seasonal_months:
        return True
    upcoming = today.month % 12 + 1
    return today.month in keyword.seasonal_months or upcoming in keyword.seasonal_months


# ---------------------------------------------------------------------------
# Store-backed engine
# ---------------------------------------------------------------------------

_UPDATE_KEYWORD_SQL = """
UPDATE keywords
SET efficiency_score     = $2,
    status               = $3,
    cycle_count          = cycle_count + 1,
    consecutive_zero_new = $4,
    total_results        = total_results + $5,
    new_places_found     = new_places_found + $6,
    duplicate_ratio      = $7,
    last_used_at         = now()
WHERE id = $1
"""

_INSERT_KEYWORD_LOG_SQL = """
INSERT INTO keyword_logs (keyword_id, api_results, new_places, duplicates, efficiency_score, status)
VALUES ($1, $2, $3, $4, $5, $6)
"""

_SELECT_RELEVANCE_SQL = """
SELECT avg(relevance_score) FROM blog_mentions
WHERE keyword_id = $1
  AND relevance_score IS NOT NULL
  AND created_at > now() - make_interval(days => $2)
"""

_SELECT_HEALTH_SQL = """
SELECT count(*) AS total,
       count(*) FILTER (WHERE status = 'EXHAUSTED') AS exhausted
FROM keywords
WHERE provider = $1
"""

_SELECT_ELIGIBLE_SQL = """
SELECT id, keyword, provider, status, efficiency_score, cycle_count,
       consecutive_zero_new, seasonal_months, total_results,
       new_places_found, duplicate_ratio, last_used_at
FROM keywords
WHERE provider = $1
  AND status = ANY($2::text[])
ORDER BY cycle_count ASC, efficiency_score DESC
LIMIT $3
"""


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class KeywordRotationEngine:
    """
    Usage:
        engine = KeywordRotationEngine(pool)
        for keyword in await engine.eligible_keywords(Provider.NAVER, limit=60):
            metrics = ...  # spend the keyword
            await engine.evaluate_cycle(keyword, metrics)
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        weights: Optional[dict[Provider, EfficiencyWeights]] = None,
        today: Callable[[], date] = _utc_today,
    ):
        self.pool = pool
        self.weights = dict(PROVIDER_WEIGHTS)
        if weights:
            self.weights.update(weights)
        self._today = today

    async def evaluate_cycle(self, keyword: Keyword, metrics: CycleMetrics) -> CycleEvaluation:
        weights = self.weights[keyword.provider]
        relevance: Optional[float] = None
        if weights.relevance_weight > 0:
            relevance = await self.compute_relevance(keyword.id)

        consecutive = next_consecutive_zero(keyword.consecutive_zero_new, metrics)
        efficiency = compute_efficiency(
            metrics,
            keyword.cycle_count,
            consecutive,
            weights,
            relevance if relevance is not None else DEFAULT_RELEVANCE,
        )
        status = next_status(
            keyword.status, efficiency, consecutive, is_in_season(keyword, self._today()),
        )

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    _UPDATE_KEYWORD_SQL,
                    keyword.id,
                    efficiency,
                    status.value,
                    consecutive,
                    metrics.api_results,
                    metrics.new_discoveries,
                    round(metrics.duplicate_rate, 3),
                )
                await conn.execute(
                    _INSERT_KEYWORD_LOG_SQL,
                    keyword.id,
                    metrics.api_results,
                    metrics.new_discoveries,
                    metrics.duplicates,
                    efficiency,
                    status.value,
                )

        if status is not keyword.status:
            logger.info(
                "Keyword %r (%s): %s -> %s (efficiency %.3f, zero streak %d)",
                keyword.keyword, keyword.provider.value, keyword.status.value,
                status.value, efficiency, consecutive,
            )

        return CycleEvaluation(
            keyword_id=keyword.id,
            keyword=keyword.keyword,
            old_status=keyword.status,
            new_status=status,
            old_efficiency=keyword.efficiency_score,
            new_efficiency=efficiency,
            consecutive_zero=consecutive,
            relevance=relevance,
        )

    async def compute_relevance(self, keyword_id: str) -> float:
        """Mean recent mention relevance, normalised to 0-1. Falls back to 0.5."""
        try:
            async with self.pool.acquire() as conn:
                avg = await conn.fetchval(_SELECT_RELEVANCE_SQL, keyword_id, RELEVANCE_LOOKBACK_DAYS)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.warning("Relevance lookup failed for keyword %s: %s", keyword_id, e)
            return DEFAULT_RELEVANCE

        if avg is None:
            return DEFAULT_RELEVANCE
        value = float(avg)
        if value > 1:
            value /= 100
        return min(max(value, 0.0), 1.0)

    async def check_health(self, provider: Provider) -> KeywordHealth:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(_SELECT_HEALTH_SQL, provider.value)
        health = KeywordHealth(
            provider=provider.value,
            total=int(row["total"] or 0) if row else 0,
            exhausted=int(row["exhausted"] or 0) if row else 0,
        )
        logger.info(
            "Keyword health %s: %d/%d exhausted (%.2f%%)",
            provider.value, health.exhausted, health.total, health.percent_exhausted,
        )
        return health

    async def eligible_keywords(self, provider: Provider, limit: int = 60) -> list[Keyword]:
        """NEW, ACTIVE and DECLINING keywords, least-cycled first. Malformed rows are skipped."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                _SELECT_ELIGIBLE_SQL,
                provider.value,
                [s.value for s in ELIGIBLE_STATUSES],
                limit,
            )

        keywords = []
        for row in rows:
            try:
                keywords.append(Keyword.from_record(row))
            except RecordError as e:
                logger.warning("Skipping malformed keyword row: %s", e)
        return keywords
