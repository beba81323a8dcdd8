"""
Naver blog search client.

Endpoint:
  GET https://openapi.naver.com/v1/search/blog.json?query=...&display=30&sort=sim|date

Response items carry HTML-escaped title/description with <b> highlights;
postdate is YYYYMMDD.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

import httpx

from services.curator.providers.base import (
    DEFAULT_TIMEOUT_S,
    MalformedPayloadError,
    ProviderClient,
)
from services.curator.quota import QuotaLimiter

logger = logging.getLogger(__name__)

BLOG_SEARCH_URL = "https://openapi.naver.com/v1/search/blog.json"

DEFAULT_DISPLAY = 30
MAX_DISPLAY = 100

_TAG_RE = re.compile(r"<[^>]+>")

_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&amp;", "&"),
)


def strip_html(html: Optional[str]) -> str:
    """Drop tags and decode the handful of entities the API emits."""
    if not html:
        return ""
    text = _TAG_RE.sub("", html)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text.strip()


def parse_post_date(postdate: Optional[str]) -> Optional[date]:
    if not postdate or len(postdate) != 8 or not postdate.isdigit():
        return None
    try:
        return date(int(postdate[:4]), int(postdate[4:6]), int(postdate[6:]))
    except ValueError:
        return None


@dataclass
class BlogPost:
    title: str
    link: str
    description: str
    blogger_name: Optional[str] = None
    post_date: Optional[date] = None

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}"

    @classmethod
    def from_item(cls, item: Any) -> "BlogPost":
        if not isinstance(item, dict) or not item.get("link"):
            raise MalformedPayloadError(f"blog item without link: {item!r}")
        return cls(
            title=strip_html(item.get("title")),
            link=str(item["link"]),
            description=strip_html(item.get("description")),
            blogger_name=item.get("bloggername") or None,
            post_date=parse_post_date(item.get("postdate")),
        )


class NaverBlogClient(ProviderClient):
    """
    Usage:
        client = NaverBlogClient(registry.get(Provider.NAVER), client_id, client_secret)
        posts = await client.search_blog("아기 물놀이")
    """

    provider = "naver"

    def __init__(
        self,
        limiter: QuotaLimiter,
        client_id: str,
        client_secret: str,
        *,
        http: Optional[httpx.AsyncClient] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        super().__init__(limiter, http=http, timeout_s=timeout_s)
        self._client_id = client_id
        self._client_secret = client_secret

    def _headers(self) -> dict[str, str]:
        return {
            "X-Naver-Client-Id": self._client_id,
            "X-Naver-Client-Secret": self._client_secret,
        }

    async def search_blog(
        self,
        query: str,
        *,
        display: int = DEFAULT_DISPLAY,
        sort: str = "sim",
    ) -> list[BlogPost]:
        """Malformed items are skipped; a malformed envelope raises MalformedPayloadError."""
        payload = await self._get_json(
            BLOG_SEARCH_URL,
            {"query": query, "display": min(display, MAX_DISPLAY), "sort": sort},
        )
        items = payload.get("items")
        if not isinstance(items, list):
            raise MalformedPayloadError("naver: 'items' is not a list")

        posts = []
        for item in items:
            try:
                posts.append(BlogPost.from_item(item))
            except MalformedPayloadError as e:
                logger.debug("Skipping malformed naver item: %s", e)
        return posts
