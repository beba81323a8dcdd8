"""
Quota-limited clients for the external search providers.

Every request goes through the provider's QuotaLimiter; QuotaExceededError
is never swallowed here so jobs can stop spending on that provider.
"""

from services.curator.providers.base import MalformedPayloadError, ProviderUnavailableError
from services.curator.providers.kakao import KakaoLocalClient, ProviderPlace, SearchPage
from services.curator.providers.naver import BlogPost, NaverBlogClient, strip_html

__all__ = [
    "BlogPost",
    "KakaoLocalClient",
    "MalformedPayloadError",
    "NaverBlogClient",
    "ProviderPlace",
    "ProviderUnavailableError",
    "SearchPage",
    "strip_html",
]
