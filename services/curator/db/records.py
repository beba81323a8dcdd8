"""
Typed row records for the curation tables.

Rows are parsed once at the store boundary (`from_record`) so business
logic never passes loosely-typed asyncpg.Record maps around. A row that
is missing a required column, or carries a value of the wrong shape,
raises RecordError; callers count it as a malformed item and move on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional


class RecordError(ValueError):
    """A store row could not be parsed into its record type."""


class Provider(str, Enum):
    """External search providers that spend quota."""
    KAKAO = "kakao"   # direct-discovery geocoding/local search
    NAVER = "naver"   # blog text search


class KeywordStatus(str, Enum):
    NEW = "NEW"
    ACTIVE = "ACTIVE"
    DECLINING = "DECLINING"
    EXHAUSTED = "EXHAUSTED"
    SEASONAL = "SEASONAL"


# ---------------------------------------------------------------------------
# Column coercion helpers
# ---------------------------------------------------------------------------

def _get(row: Mapping[str, Any], key: str, default: Any = None) -> Any:
    try:
        return row[key]
    except KeyError:
        return default


def _required(row: Mapping[str, Any], key: str, entity: str) -> Any:
    value = _get(row, key)
    if value is None:
        raise RecordError(f"{entity} row missing required column {key!r}")
    return value


def _as_float(value: Any, key: str, entity: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise RecordError(f"{entity}.{key} is not numeric: {value!r}") from e


def _as_int(value: Any, key: str, entity: str, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise RecordError(f"{entity}.{key} is not an integer: {value!r}") from e


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _as_datetime(value: Any, key: str, entity: str) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise RecordError(f"{entity}.{key} is not a timestamp: {value!r}") from e
    raise RecordError(f"{entity}.{key} is not a timestamp: {value!r}")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Place:
    """A confirmed, geolocated entity in the curated dataset."""
    id: str
    name: str
    category: str
    lat: float
    lng: float
    address: Optional[str] = None
    external_id: Optional[str] = None
    is_active: bool = True
    mention_count: int = 0
    popularity_score: float = 0.0
    last_mentioned_at: Optional[datetime] = None
    source_count: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sub_category: Optional[str] = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "Place":
        entity = "Place"
        lat = _as_float(_required(row, "lat", entity), "lat", entity)
        lng = _as_float(_required(row, "lng", entity), "lng", entity)
        return cls(
            id=str(_required(row, "id", entity)),
            name=str(_required(row, "name", entity)),
            category=str(_get(row, "category") or ""),
            lat=lat,
            lng=lng,
            address=_as_str(_get(row, "address")),
            external_id=_as_str(_get(row, "external_id")),
            is_active=bool(_get(row, "is_active", True)),
            mention_count=_as_int(_get(row, "mention_count"), "mention_count", entity),
            popularity_score=_as_float(_get(row, "popularity_score"), "popularity_score", entity) or 0.0,
            last_mentioned_at=_as_datetime(_get(row, "last_mentioned_at"), "last_mentioned_at", entity),
            source_count=_as_int(_get(row, "source_count"), "source_count", entity, default=1),
            created_at=_as_datetime(_get(row, "created_at"), "created_at", entity),
            updated_at=_as_datetime(_get(row, "updated_at"), "updated_at", entity),
            sub_category=_as_str(_get(row, "sub_category")),
        )


@dataclass
class PlaceCandidate:
    """An unconfirmed discovery awaiting corroboration."""
    id: str
    name: str
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    external_id: Optional[str] = None
    external_similarity: Optional[float] = None
    source_urls: list[str] = field(default_factory=list)
    source_count: int = 0
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "PlaceCandidate":
        entity = "PlaceCandidate"
        urls = _get(row, "source_urls") or []
        if isinstance(urls, str) or not isinstance(urls, (list, tuple)):
            raise RecordError(f"{entity}.source_urls is not a list: {urls!r}")
        return cls(
            id=str(_required(row, "id", entity)),
            name=str(_required(row, "name", entity)),
            address=_as_str(_get(row, "address")),
            lat=_as_float(_get(row, "lat"), "lat", entity),
            lng=_as_float(_get(row, "lng"), "lng", entity),
            external_id=_as_str(_get(row, "external_id")),
            external_similarity=_as_float(
                _get(row, "external_similarity"), "external_similarity", entity,
            ),
            source_urls=[str(u) for u in urls if u],
            source_count=_as_int(_get(row, "source_count"), "source_count", entity),
            first_seen_at=_as_datetime(_get(row, "first_seen_at"), "first_seen_at", entity),
            last_seen_at=_as_datetime(_get(row, "last_seen_at"), "last_seen_at", entity),
        )


@dataclass
class Keyword:
    """A search term spent against one provider's quota."""
    id: str
    keyword: str
    provider: Provider
    status: KeywordStatus = KeywordStatus.NEW
    efficiency_score: float = 0.0
    cycle_count: int = 0
    consecutive_zero_new: int = 0
    seasonal_months: Optional[frozenset[int]] = None
    total_results: int = 0
    new_places_found: int = 0
    duplicate_ratio: float = 0.0
    last_used_at: Optional[datetime] = None

    @property
    def is_seasonal(self) -> bool:
        return bool(self.seasonal_months)

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "Keyword":
        entity = "Keyword"
        try:
            provider = Provider(_required(row, "provider", entity))
            status = KeywordStatus(_get(row, "status") or KeywordStatus.NEW.value)
        except ValueError as e:
            raise RecordError(f"{entity} has unknown provider/status: {e}") from e

        months_raw = _get(row, "seasonal_months")
        months: Optional[frozenset[int]] = None
        if months_raw:
            parsed = {_as_int(m, "seasonal_months", entity) for m in months_raw}
            if any(m < 1 or m > 12 for m in parsed):
                raise RecordError(f"{entity}.seasonal_months out of range: {months_raw!r}")
            months = frozenset(parsed)

        return cls(
            id=str(_required(row, "id", entity)),
            keyword=str(_required(row, "keyword", entity)),
            provider=provider,
            status=status,
            efficiency_score=_as_float(_get(row, "efficiency_score"), "efficiency_score", entity) or 0.0,
            cycle_count=_as_int(_get(row, "cycle_count"), "cycle_count", entity),
            consecutive_zero_new=_as_int(
                _get(row, "consecutive_zero_new"), "consecutive_zero_new", entity,
            ),
            seasonal_months=months,
            total_results=_as_int(_get(row, "total_results"), "total_results", entity),
            new_places_found=_as_int(_get(row, "new_places_found"), "new_places_found", entity),
            duplicate_ratio=_as_float(_get(row, "duplicate_ratio"), "duplicate_ratio", entity) or 0.0,
            last_used_at=_as_datetime(_get(row, "last_used_at"), "last_used_at", entity),
        )
