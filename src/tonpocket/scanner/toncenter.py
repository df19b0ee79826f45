"""toncenter v2 JSON-RPC client.

API Docs: https://toncenter.com/api/v2/
"""

import logging
from typing import Any, Optional

import httpx

from tonpocket.errors import LedgerAPIError, RateLimitError
from tonpocket.scanner.base import LedgerClient
from tonpocket.utils.retry import has_rate_limit_marker

logger = logging.getLogger(__name__)

TONCENTER_MAINNET = "https://toncenter.com/api/v2/jsonRPC"
TONCENTER_TESTNET = "https://testnet.toncenter.com/api/v2/jsonRPC"


class TonCenterClient(LedgerClient):
    """Balance, transactions, get-methods and message submission.

    Results are returned as the provider shapes them; callers extract fields
    tolerantly. A textual body (seen under throttling) is returned unchanged
    so the fetcher can classify it.
    """

    provider = "toncenter"

    def __init__(
        self,
        api_url: str = TONCENTER_MAINNET,
        api_key: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize toncenter client.

        Args:
            api_url: JSON-RPC endpoint
            api_key: Optional API key for higher rate limits
            timeout: Request timeout in seconds
            client: Shared HTTP client (tests inject one with a mock transport)
        """
        super().__init__(timeout=timeout, client=client)
        self.api_url = api_url
        if api_key:
            self._headers["X-API-Key"] = api_key
        self._request_id = 0

    async def _rpc(self, method: str, params: dict) -> Any:
        self._request_id += 1
        payload = {
            "id": self._request_id,
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
        }
        body = await self._request("POST", self.api_url, json=payload)

        if isinstance(body, dict):
            if body.get("ok") is False or ("error" in body and "result" not in body):
                error = str(body.get("error") or "unknown error")
                if body.get("code") == 429 or has_rate_limit_marker(error):
                    raise RateLimitError(f"toncenter {method}: {error}")
                raise LedgerAPIError(f"toncenter {method}: {error}", status_code=body.get("code"))
            if "result" in body:
                return body["result"]

        return body

    async def get_balance(self, address: str) -> Any:
        """Balance in nanotons, usually a decimal string."""
        return await self._rpc("getAddressBalance", {"address": address})

    async def get_transactions(self, address: str, limit: int = 20) -> Any:
        """Most recent transactions of an account, newest first."""
        result = await self._rpc("getTransactions", {"address": address, "limit": limit})
        if isinstance(result, dict):
            # Some gateways wrap the list once more
            result = result.get("transactions", result)
        return result

    async def run_get_method(
        self, address: str, method: str, stack: Optional[list] = None
    ) -> dict:
        """Run a contract get-method.

        Raises:
            LedgerAPIError: if the method exited with a non-zero code
        """
        result = await self._rpc(
            "runGetMethod", {"address": address, "method": method, "stack": stack or []}
        )
        if not isinstance(result, dict):
            raise LedgerAPIError(f"toncenter runGetMethod {method}: unexpected result")

        exit_code = result.get("exit_code", 0)
        if exit_code not in (0, 1, None):
            raise LedgerAPIError(f"toncenter runGetMethod {method}: exit code {exit_code}")
        return result

    async def send_boc(self, boc_b64: str) -> Any:
        """Submit a signed external message."""
        logger.info("Submitting external message to toncenter")
        return await self._rpc("sendBoc", {"boc": boc_b64})
