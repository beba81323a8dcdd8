"""
Duplicate detection for places. Every ingestion path runs through here.

check_duplicate() cascade:
  1. External ID exact match against active places -> definite duplicate (1.0)
  2. Active places inside a ~100m box (lat +-0.0009, lng +-0.0011) with
     name similarity > 0.7 -> probable duplicate. First hit wins; this path
     does not search for the global best match.
  3. Otherwise not a duplicate.

find_matching_place() is the coordinate-free mode for text-mined names:
coarse ILIKE prefilter on the first 4 characters, Dice similarity on the
survivors, +0.05 when both addresses share a district-level prefix.

The partial unique index on places(external_id) WHERE is_active is the
final backstop against races between overlapping runs; ingest() treats
a unique violation on insert as a resolved duplicate, not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import asyncpg

from services.curator.candidates.categories import sub_category_from
from services.curator.geo.region import BoundingBox, district_code_from_address, district_key
from services.curator.matching.similarity import similarity

logger = logging.getLogger(__name__)

# Name similarity above which a nearby place is the same place
NEARBY_SIMILARITY_THRESHOLD = 0.7

# Default acceptance threshold for coordinate-free matching
TEXT_MATCH_THRESHOLD = 0.8

# Bonus for a shared district prefix in find_matching_place
DISTRICT_BONUS = 0.05

PREFIX_CHARS = 4
PREFIX_SCAN_LIMIT = 50


_SELECT_BY_EXTERNAL_ID_SQL = """
SELECT id, name FROM places
WHERE external_id = $1 AND is_active = true
LIMIT 1
"""

_SELECT_NEARBY_SQL = """
SELECT id, name, lat, lng FROM places
WHERE is_active = true
  AND lat BETWEEN $1 AND $2
  AND lng BETWEEN $3 AND $4
"""

_SELECT_BY_NAME_PREFIX_SQL = """
SELECT id, name, address FROM places
WHERE is_active = true
  AND name ILIKE $1 ESCAPE '\\'
LIMIT $2
"""

_INSERT_PLACE_SQL = """
INSERT INTO places (
    name, category, sub_category, lat, lng, address, road_address,
    district_code, phone, external_id, source, source_count, is_active
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, true)
RETURNING id
"""

_TOUCH_PLACE_SQL = "UPDATE places SET updated_at = now() WHERE id = $1"


class MatchType(str, Enum):
    """How an observation was matched to an existing place."""
    EXTERNAL_ID = "external_id"
    NAME_PROXIMITY = "name_proximity"


@dataclass
class PlaceObservation:
    """A place as seen by one source, before deduplication."""
    name: str
    lat: float
    lng: float
    address: Optional[str] = None
    external_id: Optional[str] = None


@dataclass
class NewPlace:
    """Everything needed to insert an active place row."""
    name: str
    category: str
    lat: float
    lng: float
    address: Optional[str] = None
    road_address: Optional[str] = None
    external_id: Optional[str] = None
    sub_category: Optional[str] = None
    district_code: Optional[str] = None
    phone: Optional[str] = None
    source: str = "manual"
    source_count: int = 1

    @classmethod
    def from_provider(
        cls,
        found,
        category: str,
        source: str,
        source_count: int = 1,
    ) -> "NewPlace":
        """Build from a provider search result (anything shaped like ProviderPlace)."""
        return cls(
            name=found.name,
            category=category,
            sub_category=sub_category_from(found.category_name),
            lat=found.lat,
            lng=found.lng,
            address=found.address,
            road_address=found.road_address,
            district_code=district_code_from_address(found.road_address or found.address),
            phone=found.phone,
            external_id=found.external_id,
            source=source,
            source_count=source_count,
        )

    def observation(self) -> PlaceObservation:
        return PlaceObservation(
            name=self.name,
            lat=self.lat,
            lng=self.lng,
            address=self.road_address or self.address,
            external_id=self.external_id,
        )


@dataclass
class DuplicateCheckResult:
    is_duplicate: bool
    existing_id: Optional[str] = None
    existing_name: Optional[str] = None
    match_type: Optional[MatchType] = None
    similarity: Optional[float] = None


@dataclass
class PlaceMatch:
    place_id: str
    score: float


@dataclass
class IngestResult:
    inserted: bool
    place_id: Optional[str] = None
    check: Optional[DuplicateCheckResult] = None

    @property
    def is_duplicate(self) -> bool:
        return not self.inserted


NOT_DUPLICATE = DuplicateCheckResult(is_duplicate=False)


def address_district_match(addr_a: Optional[str], addr_b: Optional[str]) -> bool:
    """
    True if both addresses share the same district-level prefix.
    "서울 강남구" matches "서울특별시 강남구 삼성동".
    """
    if not addr_a or not addr_b:
        return False
    joined_a = "".join(addr_a.split()[:2])
    joined_b = "".join(addr_b.split()[:2])
    if len(joined_a) < 2 or len(joined_b) < 2:
        return False
    return district_key(addr_a).lower() == district_key(addr_b).lower()


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DuplicateMatcher:
    """
    Identity resolution for incoming places.

    Usage:
        matcher = DuplicateMatcher(pool)
        result = await matcher.check_duplicate(observation)
        match = await matcher.find_matching_place("코코몽에코파크", None)
        outcome = await matcher.ingest(new_place, touch_existing=True)
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def check_duplicate(self, observation: PlaceObservation) -> DuplicateCheckResult:
        async with self.pool.acquire() as conn:
            if observation.external_id:
                row = await conn.fetchrow(_SELECT_BY_EXTERNAL_ID_SQL, observation.external_id)
                if row is not None:
                    return DuplicateCheckResult(
                        is_duplicate=True,
                        existing_id=str(row["id"]),
                        existing_name=row["name"],
                        match_type=MatchType.EXTERNAL_ID,
                        similarity=1.0,
                    )

            box = BoundingBox.around(observation.lat, observation.lng)
            nearby = await conn.fetch(
                _SELECT_NEARBY_SQL, box.sw_lat, box.ne_lat, box.sw_lng, box.ne_lng,
            )

        for place in nearby:
            score = similarity(observation.name, place["name"])
            if score > NEARBY_SIMILARITY_THRESHOLD:
                return DuplicateCheckResult(
                    is_duplicate=True,
                    existing_id=str(place["id"]),
                    existing_name=place["name"],
                    match_type=MatchType.NAME_PROXIMITY,
                    similarity=score,
                )

        return NOT_DUPLICATE

    async def find_matching_place(
        self,
        name: str,
        address: Optional[str] = None,
        threshold: float = TEXT_MATCH_THRESHOLD,
    ) -> Optional[PlaceMatch]:
        prefix = name.strip()[:PREFIX_CHARS]
        if not prefix:
            return None

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                _SELECT_BY_NAME_PREFIX_SQL, f"%{_escape_like(prefix)}%", PREFIX_SCAN_LIMIT,
            )

        best: Optional[PlaceMatch] = None
        for place in rows:
            score = similarity(name, place["name"])
            if address_district_match(address, place["address"]):
                score = min(1.0, score + DISTRICT_BONUS)
            if best is None or score > best.score:
                best = PlaceMatch(place_id=str(place["id"]), score=score)

        if best is not None and best.score >= threshold:
            return best
        return None

    async def insert_place(self, place: NewPlace) -> str:
        """Insert an active place. Raises asyncpg.UniqueViolationError on external-id conflict."""
        async with self.pool.acquire() as conn:
            place_id = await conn.fetchval(
                _INSERT_PLACE_SQL,
                place.name,
                place.category,
                place.sub_category,
                place.lat,
                place.lng,
                place.address,
                place.road_address,
                place.district_code,
                place.phone,
                place.external_id,
                place.source,
                place.source_count,
            )
        return str(place_id)

    async def ingest(self, place: NewPlace, touch_existing: bool = False) -> IngestResult:
        """
        Check, then insert if new. Idempotent per external id: a second
        ingest of the same place resolves as a duplicate.
        """
        check = await self.check_duplicate(place.observation())
        if check.is_duplicate:
            if touch_existing and check.existing_id:
                async with self.pool.acquire() as conn:
                    await conn.execute(_TOUCH_PLACE_SQL, check.existing_id)
            return IngestResult(inserted=False, place_id=check.existing_id, check=check)

        try:
            place_id = await self.insert_place(place)
        except asyncpg.UniqueViolationError:
            logger.info(
                "Concurrent insert for external id %s resolved as duplicate", place.external_id,
            )
            return IngestResult(inserted=False, check=check)

        return IngestResult(inserted=True, place_id=place_id, check=check)
