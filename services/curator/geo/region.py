"""
Service-area geometry and Korean address helpers.

Two-layer service-area check:
  1. Coordinate bounding box (Seoul + Gyeonggi + Incheon)
  2. Address prefix against the recognised region names

The address layer is skipped only when no address text exists.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

# ~100m at Seoul's latitude
NEARBY_LAT_DELTA = 0.0009
NEARBY_LNG_DELTA = 0.0011

DEFAULT_REGION_PREFIXES = ("서울", "경기", "인천")

# Administrative suffixes dropped when comparing district-level prefixes
_ADMIN_SUFFIX_RE = re.compile(r"(특별시|광역시|도|시|구|군)")

# Province-level tokens never name a district
_PROVINCE_SUFFIXES = ("특별시", "광역시", "특별자치시", "특별자치도", "도")

_DISTRICT_CODE_DROP_RE = re.compile(r"[^가-힣a-zA-Z0-9_]")


@dataclass(frozen=True)
class BoundingBox:
    sw_lat: float
    sw_lng: float
    ne_lat: float
    ne_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.sw_lat <= lat <= self.ne_lat and self.sw_lng <= lng <= self.ne_lng

    @classmethod
    def around(
        cls,
        lat: float,
        lng: float,
        lat_delta: float = NEARBY_LAT_DELTA,
        lng_delta: float = NEARBY_LNG_DELTA,
    ) -> "BoundingBox":
        return cls(lat - lat_delta, lng - lng_delta, lat + lat_delta, lng + lng_delta)

    def to_rect_param(self) -> str:
        """Provider rect format: "swLng,swLat,neLng,neLat"."""
        return f"{self.sw_lng},{self.sw_lat},{self.ne_lng},{self.ne_lat}"

    def grid(
        self,
        lat_edges: Sequence[float],
        lng_edges: Sequence[float],
    ) -> list["BoundingBox"]:
        """
        Split into tiles at the given edges, south-to-north then west-to-east.
        Edges must start and end on this box's own bounds.
        """
        if len(lat_edges) < 2 or len(lng_edges) < 2:
            raise ValueError("grid needs at least two edges per axis")
        if (lat_edges[0], lat_edges[-1]) != (self.sw_lat, self.ne_lat):
            raise ValueError("lat edges must span the box")
        if (lng_edges[0], lng_edges[-1]) != (self.sw_lng, self.ne_lng):
            raise ValueError("lng edges must span the box")

        tiles = []
        for south, north in zip(lat_edges, lat_edges[1:]):
            for west, east in zip(lng_edges, lng_edges[1:]):
                tiles.append(BoundingBox(south, west, north, east))
        return tiles


SERVICE_AREA_BOUNDS = BoundingBox(sw_lat=36.9, sw_lng=126.5, ne_lat=38.0, ne_lng=127.9)

# Provider search pages cap out at 45 x 15 results per rect, so the area is
# scanned as a 2-column x 3-row grid.
SERVICE_AREA_LAT_EDGES = (36.9, 37.3, 37.65, 38.0)
SERVICE_AREA_LNG_EDGES = (126.5, 127.2, 127.9)


class ServiceArea:
    """
    Bounding box + address-prefix rule defining which discoveries are in scope.

    Usage:
        area = ServiceArea.from_settings(settings)
        area.is_in_area(37.5, 127.0, "서울 강남구 역삼동")
    """

    def __init__(
        self,
        bounds: BoundingBox = SERVICE_AREA_BOUNDS,
        region_prefixes: Iterable[str] = DEFAULT_REGION_PREFIXES,
    ):
        self.bounds = bounds
        self.region_prefixes = tuple(region_prefixes)
        self._address_re = re.compile(
            "^(" + "|".join(re.escape(p) for p in self.region_prefixes) + ")"
        )

    @classmethod
    def from_settings(cls, settings) -> "ServiceArea":
        return cls(
            bounds=BoundingBox(
                settings.service_area_sw_lat,
                settings.service_area_sw_lng,
                settings.service_area_ne_lat,
                settings.service_area_ne_lng,
            ),
            region_prefixes=settings.service_region_prefixes,
        )

    def contains(self, lat: float, lng: float) -> bool:
        return self.bounds.contains(lat, lng)

    def is_valid_address(self, address: Optional[str]) -> bool:
        if not address or not address.strip():
            return False
        return bool(self._address_re.match(address.strip()))

    def is_in_area(self, lat: float, lng: float, address: Optional[str]) -> bool:
        if not self.contains(lat, lng):
            return False
        if address and address.strip():
            return self.is_valid_address(address)
        return True

    def tiles(self) -> list[BoundingBox]:
        if self.bounds == SERVICE_AREA_BOUNDS:
            return self.bounds.grid(SERVICE_AREA_LAT_EDGES, SERVICE_AREA_LNG_EDGES)
        return [self.bounds]


# ---------------------------------------------------------------------------
# Address helpers
# ---------------------------------------------------------------------------

def address_tokens(address: Optional[str]) -> list[str]:
    if not address:
        return []
    return address.split()


def address_prefix(address: Optional[str], tokens: int) -> str:
    """First `tokens` whitespace-separated tokens, e.g. "경기 용인시 기흥구"."""
    return " ".join(address_tokens(address)[:tokens])


def district_key(address: Optional[str]) -> str:
    """
    District-level comparison key: first two tokens joined, administrative
    suffixes removed, truncated to 3 characters.

    "서울특별시 강남구 ..." and "서울 강남구 ..." both give "서울강".
    """
    joined = "".join(address_tokens(address)[:2])
    return _ADMIN_SUFFIX_RE.sub("", joined)[:3]


def extract_district(address: Optional[str]) -> str:
    """
    District/city name without its suffix.

    "경기 남양주시 와부읍 덕소로2번길 84" -> "남양주"
    "서울 강남구 역삼동 123" -> "강남"
    """
    for token in address_tokens(address):
        if token.endswith(_PROVINCE_SUFFIXES):
            continue
        if len(token) >= 2 and token[-1] in "시군구" and re.fullmatch(r"[가-힣]+", token):
            return token[:-1]
    return ""


def district_code_from_address(address: Optional[str]) -> Optional[str]:
    """
    Rough grouping code from the first three address tokens, e.g.
    "서울_강남구_역삼동". Not an official code.
    """
    parts = address_tokens(address)
    if len(parts) < 2:
        return None
    return _DISTRICT_CODE_DROP_RE.sub("", "_".join(parts[:3]))
