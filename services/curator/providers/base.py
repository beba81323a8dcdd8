"""
Shared request path for provider clients: quota -> HTTP -> JSON.

Failure mapping:
  - quota spent               -> QuotaExceededError (propagates untouched)
  - transport error / non-2xx -> ProviderUnavailableError
  - body is not a JSON object -> MalformedPayloadError
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from services.curator.quota import QuotaLimiter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0


class ProviderUnavailableError(Exception):
    """Network failure or non-success HTTP status from a provider."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class MalformedPayloadError(Exception):
    """Provider responded, but not with something we can parse."""


class ProviderClient:
    """
    Base for quota-limited JSON APIs.

    Pass `http` to share one AsyncClient across calls (and to inject a
    MockTransport in tests); otherwise a client is opened per request.
    """

    provider = "unknown"

    def __init__(
        self,
        limiter: QuotaLimiter,
        *,
        http: Optional[httpx.AsyncClient] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        self.limiter = limiter
        self._http = http
        self._timeout_s = timeout_s

    def _headers(self) -> dict[str, str]:
        return {}

    async def _send(self, url: str, params: dict[str, Any]) -> httpx.Response:
        headers = self._headers()
        if self._http is not None:
            return await self._http.get(url, params=params, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout_s) as client:
            return await client.get(url, params=params, headers=headers)

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self.limiter.throttle(lambda: self._send(url, params))
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(self.provider, f"request failed: {e}") from e

        if resp.status_code < 200 or resp.status_code >= 300:
            logger.warning("%s API HTTP %d for %s", self.provider, resp.status_code, url)
            raise ProviderUnavailableError(
                self.provider, f"HTTP {resp.status_code}", status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise MalformedPayloadError(f"{self.provider}: response is not JSON") from e
        if not isinstance(payload, dict):
            raise MalformedPayloadError(f"{self.provider}: expected a JSON object")
        return payload
