"""tonapi v2 REST client (indexed jettons and account events).

API Docs: https://tonapi.io/api-v2
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from tonpocket.errors import LedgerAPIError
from tonpocket.scanner.base import LedgerClient

logger = logging.getLogger(__name__)

TONAPI_MAINNET = "https://tonapi.io"
TONAPI_TESTNET = "https://testnet.tonapi.io"


class TonApiClient(LedgerClient):
    """Indexer queries that the JSON-RPC endpoint cannot answer."""

    provider = "tonapi"

    def __init__(
        self,
        base_url: str = TONAPI_MAINNET,
        api_key: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self.base_url = base_url.rstrip("/")
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    def _account_url(self, account: str, suffix: str) -> str:
        return f"{self.base_url}/v2/accounts/{quote(account, safe=':')}/{suffix}"

    async def get_jettons(self, account: str) -> list[dict]:
        """Jetton balances of an account (``balances`` array)."""
        body = await self._request("GET", self._account_url(account, "jettons"))
        return self._list_field(body, "balances")

    async def get_events(self, account: str, limit: int = 50) -> list[dict]:
        """Recent account events with decoded actions."""
        body = await self._request(
            "GET", self._account_url(account, "events"), params={"limit": limit}
        )
        return self._list_field(body, "events")

    @staticmethod
    def _list_field(body: Any, name: str) -> list[dict]:
        if isinstance(body, dict):
            items = body.get(name)
            if isinstance(items, list):
                return [item for item in items if isinstance(item, dict)]
            return []
        if isinstance(body, str):
            # Throttled bodies come back as text; let the fetcher classify them
            raise LedgerAPIError(f"tonapi: {body[:120]}")
        logger.debug(f"tonapi: unexpected {name} payload type {type(body).__name__}")
        return []
