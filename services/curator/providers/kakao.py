"""
Kakao Local search client (keyword + category).

Endpoints:
  GET https://dapi.kakao.com/v2/local/search/keyword?query=...&size=&page=&rect=
  GET https://dapi.kakao.com/v2/local/search/category?category_group_code=...&rect=

Response shape (fields we consume):
  {
    "meta": {"is_end": false, ...},
    "documents": [
      {"id": "12345", "place_name": "...", "category_name": "가정,생활 > 키즈카페",
       "address_name": "...", "road_address_name": "...",
       "x": "127.0276", "y": "37.4979", "phone": "02-..."}
    ]
  }

Pages cap at 45 with at most 15 documents each.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from services.curator.geo.region import BoundingBox
from services.curator.providers.base import (
    DEFAULT_TIMEOUT_S,
    MalformedPayloadError,
    ProviderClient,
)
from services.curator.quota import QuotaLimiter

logger = logging.getLogger(__name__)

KAKAO_LOCAL_BASE = "https://dapi.kakao.com/v2/local/search"
KEYWORD_ENDPOINT = f"{KAKAO_LOCAL_BASE}/keyword"
CATEGORY_ENDPOINT = f"{KAKAO_LOCAL_BASE}/category"

MAX_PAGE = 45
MAX_PAGE_SIZE = 15


@dataclass
class ProviderPlace:
    external_id: str
    name: str
    lat: float
    lng: float
    address: Optional[str] = None
    road_address: Optional[str] = None
    phone: Optional[str] = None
    category_name: Optional[str] = None

    @property
    def best_address(self) -> Optional[str]:
        return self.road_address or self.address

    @classmethod
    def from_document(cls, doc: Any) -> "ProviderPlace":
        if not isinstance(doc, dict):
            raise MalformedPayloadError(f"document is not an object: {doc!r}")
        try:
            external_id = str(doc["id"])
            name = str(doc["place_name"])
            lng = float(doc["x"])
            lat = float(doc["y"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayloadError(f"document missing id/name/coordinates: {e}") from e
        if not external_id or not name.strip():
            raise MalformedPayloadError("document has empty id or name")
        return cls(
            external_id=external_id,
            name=name,
            lat=lat,
            lng=lng,
            address=doc.get("address_name") or None,
            road_address=doc.get("road_address_name") or None,
            phone=doc.get("phone") or None,
            category_name=doc.get("category_name") or None,
        )


@dataclass
class SearchPage:
    documents: list[ProviderPlace] = field(default_factory=list)
    is_end: bool = True
    malformed: int = 0


def _parse_page(payload: dict[str, Any]) -> SearchPage:
    raw_docs = payload.get("documents")
    if not isinstance(raw_docs, list):
        raise MalformedPayloadError("kakao: 'documents' is not a list")

    page = SearchPage(is_end=bool((payload.get("meta") or {}).get("is_end", True)))
    for doc in raw_docs:
        try:
            page.documents.append(ProviderPlace.from_document(doc))
        except MalformedPayloadError as e:
            page.malformed += 1
            logger.debug("Skipping malformed kakao document: %s", e)
    return page


class KakaoLocalClient(ProviderClient):
    """
    Usage:
        client = KakaoLocalClient(registry.get(Provider.KAKAO), settings.kakao_rest_key)
        page = await client.search_keyword("키즈카페 강남", size=5)
    """

    provider = "kakao"

    def __init__(
        self,
        limiter: QuotaLimiter,
        api_key: str,
        *,
        http: Optional[httpx.AsyncClient] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        super().__init__(limiter, http=http, timeout_s=timeout_s)
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"KakaoAK {self._api_key}"}

    async def search_keyword(
        self,
        query: str,
        *,
        size: int = MAX_PAGE_SIZE,
        page: int = 1,
        rect: Optional[BoundingBox] = None,
    ) -> SearchPage:
        params: dict[str, Any] = {
            "query": query,
            "size": min(size, MAX_PAGE_SIZE),
            "page": min(page, MAX_PAGE),
        }
        if rect is not None:
            params["rect"] = rect.to_rect_param()
        return _parse_page(await self._get_json(KEYWORD_ENDPOINT, params))

    async def search_category(
        self,
        category_code: str,
        rect: BoundingBox,
        *,
        page: int = 1,
        size: int = MAX_PAGE_SIZE,
    ) -> SearchPage:
        params = {
            "category_group_code": category_code,
            "rect": rect.to_rect_param(),
            "size": min(size, MAX_PAGE_SIZE),
            "page": min(page, MAX_PAGE),
        }
        return _parse_page(await self._get_json(CATEGORY_ENDPOINT, params))
