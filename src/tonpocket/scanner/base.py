"""Shared HTTP plumbing for remote ledger clients.

Both providers report throttling inconsistently (HTTP 429, an error envelope
with ``code: 429``, or a plain string in a 200 body), so responses are
classified here once and surfaced as the wallet's own error types.
"""

import logging
from typing import Any, Optional

import httpx

from tonpocket.errors import LedgerAPIError, NetworkError, RateLimitError
from tonpocket.utils.retry import has_rate_limit_marker

logger = logging.getLogger(__name__)


class LedgerClient:
    """Base class for toncenter / tonapi clients.

    A shared ``httpx.AsyncClient`` may be injected; otherwise a short-lived
    client is opened per request.
    """

    provider = "ledger"

    def __init__(
        self,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self._client = client
        self._headers: dict[str, str] = {"Accept": "application/json"}

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.request(method, url, headers=self._headers, **kwargs)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, headers=self._headers, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{self.provider} request timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{self.provider} request failed: {e}") from e

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        """Send a request and return the decoded body.

        Raises:
            RateLimitError: HTTP 429 or a throttling marker in an error body
            LedgerAPIError: any other non-2xx answer
            NetworkError: transport failure or timeout
        """
        response = await self._send(method, url, **kwargs)

        if response.status_code == 429:
            raise RateLimitError(f"{self.provider} returned 429")

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if response.status_code >= 400:
            message = self._error_text(body) or f"HTTP {response.status_code}"
            if has_rate_limit_marker(message):
                raise RateLimitError(f"{self.provider}: {message}")
            logger.warning(f"{self.provider} API error {response.status_code}: {message}")
            raise LedgerAPIError(f"{self.provider}: {message}", status_code=response.status_code)

        return body

    @staticmethod
    def _error_text(body: Any) -> str:
        if isinstance(body, str):
            return body.strip()
        if isinstance(body, dict):
            for key in ("error", "message", "detail"):
                value = body.get(key)
                if value:
                    return str(value)
        return ""

    async def close(self) -> None:
        """Close the injected client, if any."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
