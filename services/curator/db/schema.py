"""
Bootstrap DDL for the tables the curation jobs read and write.

The schema is owned by the primary application; this module exists so a
fresh database (local dev, CI) can be brought up with:

    python -m services.curator.jobs.run init-db

Every statement is idempotent (IF NOT EXISTS / CREATE OR REPLACE).

Constraints the pipeline relies on:
  - places_external_id_active_uq: at most one active place per external id.
    A unique violation on insert is treated as a resolved duplicate.
  - place_candidates_name_uq: one candidate row per case-folded name, so
    repeat mentions upsert instead of multiplying rows.
  - keywords_provider_keyword_uq: keyword generation is insert-or-ignore.
  - rate_limit_counters (provider, date): the shared daily quota counter.
"""

import logging

import asyncpg

logger = logging.getLogger(__name__)


SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS places (
        id                 uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        name               text NOT NULL,
        category           text NOT NULL,
        sub_category       text,
        lat                double precision NOT NULL,
        lng                double precision NOT NULL,
        address            text,
        road_address       text,
        district_code      text,
        phone              text,
        external_id        text,
        source             text NOT NULL DEFAULT 'manual',
        is_active          boolean NOT NULL DEFAULT true,
        mention_count      integer NOT NULL DEFAULT 0,
        popularity_score   double precision NOT NULL DEFAULT 0,
        last_mentioned_at  timestamptz,
        source_count       integer NOT NULL DEFAULT 1,
        created_at         timestamptz NOT NULL DEFAULT now(),
        updated_at         timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS places_external_id_active_uq
        ON places (external_id)
        WHERE is_active AND external_id IS NOT NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS places_active_lat_lng_idx
        ON places (lat, lng)
        WHERE is_active
    """,
    """
    CREATE INDEX IF NOT EXISTS places_last_mentioned_idx
        ON places (last_mentioned_at NULLS FIRST)
        WHERE is_active
    """,
    """
    CREATE TABLE IF NOT EXISTS place_candidates (
        id                   uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        name                 text NOT NULL,
        address              text,
        lat                  double precision,
        lng                  double precision,
        external_id          text,
        external_similarity  double precision,
        source_urls          text[] NOT NULL DEFAULT '{}',
        source_count         integer NOT NULL DEFAULT 0,
        first_seen_at        timestamptz NOT NULL DEFAULT now(),
        last_seen_at         timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS place_candidates_name_uq
        ON place_candidates (lower(name))
    """,
    """
    CREATE TABLE IF NOT EXISTS keywords (
        id                    uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        keyword               text NOT NULL,
        provider              text NOT NULL CHECK (provider IN ('kakao', 'naver')),
        status                text NOT NULL DEFAULT 'NEW'
                              CHECK (status IN ('NEW', 'ACTIVE', 'DECLINING', 'EXHAUSTED', 'SEASONAL')),
        efficiency_score      double precision NOT NULL DEFAULT 0,
        cycle_count           integer NOT NULL DEFAULT 0,
        consecutive_zero_new  integer NOT NULL DEFAULT 0,
        seasonal_months       integer[],
        total_results         bigint NOT NULL DEFAULT 0,
        new_places_found      integer NOT NULL DEFAULT 0,
        duplicate_ratio       double precision NOT NULL DEFAULT 0,
        last_used_at          timestamptz,
        source                text NOT NULL DEFAULT 'manual',
        created_at            timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS keywords_provider_keyword_uq
        ON keywords (provider, lower(keyword))
    """,
    """
    CREATE TABLE IF NOT EXISTS keyword_logs (
        id                bigserial PRIMARY KEY,
        keyword_id        uuid NOT NULL REFERENCES keywords (id) ON DELETE CASCADE,
        api_results       integer NOT NULL,
        new_places        integer NOT NULL,
        duplicates        integer NOT NULL,
        efficiency_score  double precision NOT NULL,
        status            text NOT NULL,
        ran_at            timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS blog_mentions (
        id               uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        place_id         uuid NOT NULL REFERENCES places (id) ON DELETE CASCADE,
        keyword_id       uuid REFERENCES keywords (id) ON DELETE SET NULL,
        source_type      text NOT NULL DEFAULT 'naver_blog',
        title            text NOT NULL,
        url              text NOT NULL UNIQUE,
        snippet          text,
        post_date        date,
        relevance_score  double precision NOT NULL DEFAULT 0,
        created_at       timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS blog_mentions_keyword_created_idx
        ON blog_mentions (keyword_id, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS rate_limit_counters (
        provider  text NOT NULL,
        date      date NOT NULL,
        count     integer NOT NULL DEFAULT 0,
        UNIQUE (provider, date)
    )
    """,
    """
    CREATE OR REPLACE FUNCTION increment_rate_limit_counter(p_provider text, p_date date)
    RETURNS integer
    LANGUAGE sql
    AS $$
        INSERT INTO rate_limit_counters (provider, date, count)
        VALUES (p_provider, p_date, 1)
        ON CONFLICT (provider, date)
        DO UPDATE SET count = rate_limit_counters.count + 1
        RETURNING count
    $$
    """,
    """
    CREATE TABLE IF NOT EXISTS collection_logs (
        id             bigserial PRIMARY KEY,
        job            text NOT NULL,
        provider       text,
        processed      integer NOT NULL DEFAULT 0,
        succeeded      integer NOT NULL DEFAULT 0,
        duplicates     integer NOT NULL DEFAULT 0,
        errors         integer NOT NULL DEFAULT 0,
        status         text NOT NULL CHECK (status IN ('success', 'partial', 'error')),
        duration_ms    integer NOT NULL DEFAULT 0,
        error_message  text,
        ran_at         timestamptz NOT NULL DEFAULT now()
    )
    """,
]


async def ensure_schema(pool: asyncpg.Pool) -> int:
    """Apply every bootstrap statement. Returns the number executed."""
    async with pool.acquire() as conn:
        for stmt in SCHEMA_SQL:
            await conn.execute(stmt)
    logger.info("Schema ensured (%d statements)", len(SCHEMA_SQL))
    return len(SCHEMA_SQL)
