"""
Source corroboration rules for candidate promotion.

Independence is judged per origin = hostname + first path segment, so
several posts by one blogger (blog.naver.com/alice/1, /alice/2) count once
while two different bloggers on the same platform count twice.
"""

from typing import Iterable, Optional
from urllib.parse import urlsplit

# Public-authority data portals; one of these is enough corroboration
PUBLIC_SOURCE_DOMAINS = (
    "data.go.kr",
    "apis.data.go.kr",
    "kopis.or.kr",
    "tour.go.kr",
    "openapi.seoul.go.kr",
)

MIN_INDEPENDENT_SOURCES = 2

# Malformed URLs are grouped by their leading characters
_MALFORMED_KEY_CHARS = 50


def _hostname(url: str) -> Optional[str]:
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    return host or None


def source_origin(url: str) -> str:
    host = _hostname(url)
    if host is None:
        return url[:_MALFORMED_KEY_CHARS]
    path = urlsplit(url.strip()).path
    segments = path.split("/")
    first = segments[1] if len(segments) > 1 else ""
    return f"{host}/{first}"


def count_independent_sources(urls: Iterable[str]) -> int:
    return len({source_origin(u) for u in urls if u})


def is_public_source(url: str) -> bool:
    host = _hostname(url)
    if host is None:
        return any(domain in url for domain in PUBLIC_SOURCE_DOMAINS)
    host = host.lower()
    return any(host == d or host.endswith("." + d) for d in PUBLIC_SOURCE_DOMAINS)


def has_public_source(urls: Iterable[str]) -> bool:
    return any(is_public_source(u) for u in urls if u)


def has_enough_sources(urls: Iterable[str]) -> bool:
    urls = [u for u in urls if u]
    return has_public_source(urls) or count_independent_sources(urls) >= MIN_INDEPENDENT_SOURCES
