"""
asyncpg access layer for the curation jobs.

Re-exports pool helpers, the schema bootstrap, and the typed row records.
"""

from services.curator.db.pool import create_pool, parse_command_tag_count, standalone_pool
from services.curator.db.records import (
    Keyword,
    KeywordStatus,
    Place,
    PlaceCandidate,
    Provider,
    RecordError,
)
from services.curator.db.schema import ensure_schema

__all__ = [
    "create_pool",
    "parse_command_tag_count",
    "standalone_pool",
    "ensure_schema",
    "Keyword",
    "KeywordStatus",
    "Place",
    "PlaceCandidate",
    "Provider",
    "RecordError",
]
