"""
JSON-RPC 2.0 client for the configured network.

Used for passthrough reads and for the nonce / fee / gas lookups needed to
build a transaction. Failures are raised, never retried.
"""
import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .config import DEFAULT_RPC_TIMEOUT
from .errors import RpcError, RpcTimeout
from .utils import parse_quantity

logger = logging.getLogger(__name__)


class NetworkForwarder:
    """
    Stateless JSON-RPC POST client.

    Usage:
        forwarder = NetworkForwarder("https://rpc.sepolia.org")
        block = await forwarder.call("eth_blockNumber")
        await forwarder.close()
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = DEFAULT_RPC_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Args:
            rpc_url: HTTP(S) JSON-RPC endpoint
            timeout: Total timeout per call, in seconds
            session: Shared aiohttp session (created lazily if not provided)
        """
        if not rpc_url:
            raise ValueError("RPC URL cannot be empty")
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Send one JSON-RPC request and return its ``result``.

        Raises:
            RpcTimeout: No response within ``timeout``
            RpcError: Non-2xx status, JSON-RPC error payload or transport failure
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params) if params is not None else [],
        }
        try:
            async with self._client().post(
                self.rpc_url,
                json=payload,
                headers={"content-type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                status = response.status
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None
        except asyncio.TimeoutError as e:
            logger.warning("%s timed out after %ss", method, self.timeout)
            raise RpcTimeout(method, f"timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            logger.warning("%s failed: %s", method, e)
            raise RpcError(method, str(e)) from e

        error = body.get("error") if isinstance(body, dict) else None
        if not 200 <= status < 300 or error or not isinstance(body, dict):
            message = error.get("message") if isinstance(error, dict) else None
            code = error.get("code") if isinstance(error, dict) else None
            logger.warning("%s rejected (HTTP %s): %s", method, status, message)
            raise RpcError(method, message or f"RPC_ERROR_{status}", status=status, code=code)
        if "result" not in body:
            logger.warning("%s answered without a result (HTTP %s)", method, status)
            raise RpcError(method, "response has no result", status=status)
        return body["result"]

    # ============================================
    # Lookups used while building transactions
    # ============================================

    async def _require(self, method: str, params: Optional[List[Any]] = None) -> Any:
        result = await self.call(method, params)
        if result is None or result == "":
            raise RpcError(method, "empty result")
        return result

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return parse_quantity(await self._require("eth_getTransactionCount", [address, block]), "nonce")

    async def gas_price(self) -> int:
        return parse_quantity(await self._require("eth_gasPrice"), "gasPrice")

    async def estimate_gas(self, tx: Dict[str, Any], block: str = "pending") -> int:
        return parse_quantity(await self._require("eth_estimateGas", [tx, block]), "gas")

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self._require("eth_sendRawTransaction", [raw_tx])

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def __repr__(self):
        return f"<NetworkForwarder rpc={self.rpc_url}>"
