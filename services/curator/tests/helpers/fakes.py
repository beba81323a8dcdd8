"""
Fake asyncpg pools/connections and row factories shared by the test suite.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def make_id() -> str:
    return str(uuid.uuid4())


class FakeRecord(dict):
    """Dict subclass standing in for asyncpg.Record."""


# ---------------------------------------------------------------------------
# Pool / connection mock builders
# ---------------------------------------------------------------------------

def make_conn(
    fetch=None,
    fetchrow=None,
    fetchval=None,
    execute="UPDATE 0",
) -> AsyncMock:
    """
    Build a mock asyncpg connection.

    Each argument is a return value, or a list wrapped in `side_effect`
    by the caller when successive calls need different results.
    """
    conn = AsyncMock()
    conn.fetch = AsyncMock(return_value=fetch if fetch is not None else [])
    conn.fetchrow = AsyncMock(return_value=fetchrow)
    conn.fetchval = AsyncMock(return_value=fetchval)
    conn.execute = AsyncMock(return_value=execute)

    txn = AsyncMock()
    txn.__aenter__ = AsyncMock(return_value=txn)
    txn.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=txn)
    return conn


def make_pool(conn: AsyncMock) -> MagicMock:
    """Wrap a mock connection in a mock pool: `async with pool.acquire() as conn`."""
    pool = MagicMock()
    acquire_ctx = AsyncMock()
    acquire_ctx.__aenter__ = AsyncMock(return_value=conn)
    acquire_ctx.__aexit__ = AsyncMock(return_value=False)
    pool.acquire = MagicMock(return_value=acquire_ctx)
    return pool


def executed_sql(conn: AsyncMock) -> list[str]:
    """SQL text of every conn.execute call, in order."""
    return [c.args[0] for c in conn.execute.call_args_list]


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

def place_row(**overrides: Any) -> FakeRecord:
    row = {
        "id": make_id(),
        "name": "코코몽에코파크",
        "category": "놀이",
        "lat": 37.5,
        "lng": 127.0,
        "address": "서울 강남구 역삼동 123",
        "road_address": None,
        "external_id": "kakao-1",
        "is_active": True,
        "mention_count": 0,
        "popularity_score": 0.0,
        "last_mentioned_at": NOW - timedelta(days=400),
        "source_count": 1,
        "created_at": NOW - timedelta(days=500),
        "updated_at": NOW - timedelta(days=400),
    }
    row.update(overrides)
    return FakeRecord(row)


def candidate_row(**overrides: Any) -> FakeRecord:
    row = {
        "id": make_id(),
        "name": "코코몽에코파크",
        "address": "경기 남양주시 와부읍 덕소로2번길 84",
        "lat": None,
        "lng": None,
        "external_id": None,
        "external_similarity": None,
        "source_urls": [
            "https://blog.naver.com/alice/1",
            "https://blog.naver.com/bob/2",
        ],
        "source_count": 2,
        "first_seen_at": NOW - timedelta(days=3),
        "last_seen_at": NOW - timedelta(days=1),
    }
    row.update(overrides)
    return FakeRecord(row)


def keyword_row(**overrides: Any) -> FakeRecord:
    row = {
        "id": make_id(),
        "keyword": "키즈카페",
        "provider": "kakao",
        "status": "ACTIVE",
        "efficiency_score": 0.5,
        "cycle_count": 0,
        "consecutive_zero_new": 0,
        "seasonal_months": None,
        "total_results": 0,
        "new_places_found": 0,
        "duplicate_ratio": 0.0,
        "last_used_at": None,
    }
    row.update(overrides)
    return FakeRecord(row)


def kakao_document(**overrides: Any) -> dict:
    doc = {
        "id": "12345",
        "place_name": "코코몽에코파크",
        "category_name": "가정,생활 > 어린이시설 > 키즈카페",
        "address_name": "경기 남양주시 와부읍 덕소리 1",
        "road_address_name": "경기 남양주시 와부읍 덕소로2번길 84",
        "x": "127.2",
        "y": "37.58",
        "phone": "031-000-0000",
    }
    doc.update(overrides)
    return doc


def naver_item(**overrides: Any) -> dict:
    item = {
        "title": "<b>코코몽에코파크</b> 아기랑 다녀왔어요",
        "link": "https://blog.naver.com/alice/100",
        "description": "남양주 &quot;코코몽에코파크&quot; 후기",
        "bloggername": "alice",
        "postdate": "20260301",
    }
    item.update(overrides)
    return item


def tag(verb: str, count: int) -> str:
    """asyncpg command tag, e.g. tag("DELETE", 3) -> "DELETE 3"."""
    return f"{verb} {count}"


class PassthroughLimiter:
    """QuotaLimiter stand-in: admits everything, counts calls."""

    provider = "test"

    def __init__(self, exc: Exception | None = None):
        self.calls = 0
        self._exc = exc

    async def throttle(self, operation):
        if self._exc is not None:
            raise self._exc
        self.calls += 1
        return await operation()
