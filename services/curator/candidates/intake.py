"""
Candidate intake: record one mention of an unconfirmed place.

Single-statement upsert keyed on lower(name), so overlapping runs never
create two rows for one name and never lose a source:
  - first mention      -> new row, source_count = 1
  - new source URL     -> URL appended, source_count + 1
  - repeated URL       -> only last_seen_at refreshed
"""

import logging
from enum import Enum
from typing import Optional

import asyncpg

logger = logging.getLogger(__name__)


class IntakeOutcome(str, Enum):
    CREATED = "created"
    CORROBORATED = "corroborated"
    REPEATED = "repeated"


# `prior` reads the pre-statement snapshot, so it tells whether the URL
# was already known before this upsert ran.
_UPSERT_CANDIDATE_SQL = """
WITH prior AS (
    SELECT source_urls FROM place_candidates WHERE lower(name) = lower($1)
)
INSERT INTO place_candidates (name, address, source_urls, source_count)
VALUES ($1, $2, ARRAY[$3::text], 1)
ON CONFLICT ((lower(name))) DO UPDATE SET
    source_urls = CASE
        WHEN $3::text = ANY(place_candidates.source_urls) THEN place_candidates.source_urls
        ELSE array_append(place_candidates.source_urls, $3::text)
    END,
    source_count = place_candidates.source_count + CASE
        WHEN $3::text = ANY(place_candidates.source_urls) THEN 0
        ELSE 1
    END,
    address = COALESCE(place_candidates.address, EXCLUDED.address),
    last_seen_at = now()
RETURNING (xmax = 0) AS inserted,
          NOT COALESCE((SELECT $3::text = ANY(prior.source_urls) FROM prior), false) AS new_source
"""


async def record_candidate_mention(
    pool: asyncpg.Pool,
    name: str,
    source_url: str,
    address: Optional[str] = None,
) -> IntakeOutcome:
    name = name.strip()
    if not name or not source_url:
        raise ValueError("candidate mention needs a name and a source URL")

    async with pool.acquire() as conn:
        row = await conn.fetchrow(_UPSERT_CANDIDATE_SQL, name, address, source_url)

    if row["inserted"]:
        logger.debug("New candidate %r from %s", name, source_url)
        return IntakeOutcome.CREATED
    if row["new_source"]:
        return IntakeOutcome.CORROBORATED
    return IntakeOutcome.REPEATED
