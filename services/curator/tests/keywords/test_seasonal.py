"""
Tests for services/curator/keywords/seasonal.py

Covers:
  - Season/month helpers and month-set validation
  - run_transition: activation one month ahead, deactivation out of season
  - Default seasonal seeds
"""

from datetime import date

import pytest

from services.curator.db.records import Provider
from services.curator.keywords.seasonal import (
    DEFAULT_SEASONAL_KEYWORDS,
    SeasonalCalendar,
    SeasonalSeed,
    current_season_name,
    season_for_month,
    upcoming_month,
    upcoming_season_name,
    validate_months,
)
from services.curator.tests.helpers.fakes import make_conn, make_id, make_pool, tag


class TestSeasonHelpers:
    @pytest.mark.parametrize("month,season", [
        (1, "winter"), (2, "winter"), (3, "spring"), (6, "summer"),
        (9, "autumn"), (11, "autumn"), (12, "winter"),
    ])
    def test_season_for_month(self, month, season):
        assert season_for_month(month) == season

    def test_invalid_month(self):
        with pytest.raises(ValueError):
            season_for_month(13)

    def test_upcoming_month_wraps(self):
        assert upcoming_month(12) == 1
        assert upcoming_month(2) == 3

    def test_season_names(self):
        february = date(2026, 2, 10)
        assert current_season_name(february) == "winter"
        assert upcoming_season_name(february) == "spring"

    def test_validate_months(self):
        assert validate_months([5, 3, 3]) == [3, 5]
        with pytest.raises(ValueError):
            validate_months([])
        with pytest.raises(ValueError):
            validate_months([0, 4])


class TestDefaults:
    def test_seed_counts(self):
        naver = [s for s in DEFAULT_SEASONAL_KEYWORDS if s.provider is Provider.NAVER]
        kakao = [s for s in DEFAULT_SEASONAL_KEYWORDS if s.provider is Provider.KAKAO]
        assert len(naver) == 16
        assert len(kakao) == 10

    def test_every_season_covered(self):
        seasons = {s.season for s in DEFAULT_SEASONAL_KEYWORDS}
        assert seasons == {"spring", "summer", "autumn", "winter"}

    def test_seed_months(self):
        assert SeasonalSeed("아기 눈썰매", Provider.NAVER, "winter").months == (12, 1, 2)


class TestRunTransition:
    @pytest.mark.asyncio
    async def test_february_wakes_spring(self):
        conn = make_conn()
        conn.execute.side_effect = [tag("UPDATE", 4), tag("UPDATE", 2)]

        result = await SeasonalCalendar(make_pool(conn)).run_transition(date(2026, 2, 10))

        activate, deactivate = conn.execute.call_args_list
        assert "status = 'ACTIVE'" in activate.args[0]
        assert activate.args[1:] == (3, 2)
        assert "status = 'SEASONAL'" in deactivate.args[0]
        assert deactivate.args[1:] == (2, 3)
        assert (result.activated, result.deactivated, result.errors) == (4, 2, 0)

    @pytest.mark.asyncio
    async def test_december_looks_at_january(self):
        conn = make_conn()
        result = await SeasonalCalendar(make_pool(conn)).run_transition(date(2026, 12, 5))

        assert result.upcoming_month == 1
        assert conn.execute.call_args_list[0].args[1:] == (1, 12)

    @pytest.mark.asyncio
    async def test_activation_resets_counters(self):
        conn = make_conn()
        await SeasonalCalendar(make_pool(conn)).run_transition(date(2026, 5, 1))

        sql = conn.execute.call_args_list[0].args[0]
        assert "efficiency_score = 0" in sql
        assert "cycle_count = 0" in sql
        assert "consecutive_zero_new = 0" in sql

    @pytest.mark.asyncio
    async def test_one_failed_step_does_not_block_the_other(self):
        conn = make_conn()
        conn.execute.side_effect = [OSError("db down"), tag("UPDATE", 1)]

        result = await SeasonalCalendar(make_pool(conn)).run_transition(date(2026, 8, 1))

        assert result.errors == 1
        assert result.activated == 0
        assert result.deactivated == 1

    @pytest.mark.asyncio
    async def test_unreachable_store_is_counted_not_raised(self):
        pool = make_pool(make_conn())
        pool.acquire.return_value.__aenter__.side_effect = OSError("connection refused")

        result = await SeasonalCalendar(pool).run_transition(date(2026, 8, 1))

        assert result.errors == 2
        assert (result.activated, result.deactivated) == (0, 0)


class TestSetSeasonalMonths:
    @pytest.mark.asyncio
    async def test_sets_sorted_months(self):
        conn = make_conn(execute=tag("UPDATE", 1))
        keyword_id = make_id()

        assert await SeasonalCalendar(make_pool(conn)).set_seasonal_months(keyword_id, [8, 6, 7])
        assert conn.execute.call_args.args[1:] == (keyword_id, [6, 7, 8])

    @pytest.mark.asyncio
    async def test_unknown_keyword(self):
        conn = make_conn(execute=tag("UPDATE", 0))
        assert not await SeasonalCalendar(make_pool(conn)).set_seasonal_months(make_id(), [1])

    @pytest.mark.asyncio
    async def test_invalid_months_never_reach_the_store(self):
        pool = make_pool(make_conn())
        with pytest.raises(ValueError):
            await SeasonalCalendar(pool).set_seasonal_months(make_id(), [13])
        pool.acquire.assert_not_called()


class TestSeedDefaultKeywords:
    @pytest.mark.asyncio
    async def test_inserts_defaults(self):
        conn = make_conn(fetchval=make_id())
        result = await SeasonalCalendar(make_pool(conn)).seed_default_keywords()

        assert result.inserted == len(DEFAULT_SEASONAL_KEYWORDS)
        assert result.existing == 0

    @pytest.mark.asyncio
    async def test_existing_keywords_are_left_alone(self):
        seeds = [
            SeasonalSeed("아기 벚꽃", Provider.NAVER, "spring"),
            SeasonalSeed("눈썰매장", Provider.KAKAO, "winter"),
        ]
        conn = make_conn()
        conn.fetchval.side_effect = [make_id(), None]

        result = await SeasonalCalendar(make_pool(conn)).seed_default_keywords(seeds)

        assert (result.inserted, result.existing, result.errors) == (1, 1, 0)
        first = conn.fetchval.call_args_list[0]
        assert first.args[1:] == ("아기 벚꽃", "naver", "SEASONAL", [3, 4, 5], "seasonal")

    @pytest.mark.asyncio
    async def test_insert_errors_are_counted(self):
        conn = make_conn()
        conn.fetchval.side_effect = [OSError("db down"), make_id()]
        seeds = DEFAULT_SEASONAL_KEYWORDS[:2]

        result = await SeasonalCalendar(make_pool(conn)).seed_default_keywords(seeds)

        assert result.errors == 1
        assert result.inserted == 1
