"""
Tests for services/curator/candidates/intake.py
"""

import pytest

from services.curator.candidates.intake import IntakeOutcome, record_candidate_mention
from services.curator.tests.helpers.fakes import FakeRecord, make_conn, make_pool


class TestRecordCandidateMention:
    @pytest.mark.asyncio
    async def test_first_mention_creates(self):
        conn = make_conn(fetchrow=FakeRecord(inserted=True, new_source=True))
        outcome = await record_candidate_mention(
            make_pool(conn), "  코코몽에코파크 ", "https://blog.naver.com/alice/1", "경기 남양주시",
        )

        assert outcome is IntakeOutcome.CREATED
        assert conn.fetchrow.call_args.args[1:] == (
            "코코몽에코파크", "경기 남양주시", "https://blog.naver.com/alice/1",
        )

    @pytest.mark.asyncio
    async def test_new_url_corroborates(self):
        conn = make_conn(fetchrow=FakeRecord(inserted=False, new_source=True))
        outcome = await record_candidate_mention(make_pool(conn), "코코몽에코파크", "https://b/2")
        assert outcome is IntakeOutcome.CORROBORATED

    @pytest.mark.asyncio
    async def test_repeated_url(self):
        conn = make_conn(fetchrow=FakeRecord(inserted=False, new_source=False))
        outcome = await record_candidate_mention(make_pool(conn), "코코몽에코파크", "https://b/2")
        assert outcome is IntakeOutcome.REPEATED

    @pytest.mark.asyncio
    async def test_requires_name_and_url(self):
        pool = make_pool(make_conn())
        with pytest.raises(ValueError):
            await record_candidate_mention(pool, "   ", "https://b/2")
        with pytest.raises(ValueError):
            await record_candidate_mention(pool, "코코몽에코파크", "")
        pool.acquire.assert_not_called()
