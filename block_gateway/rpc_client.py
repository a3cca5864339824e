import asyncio
import itertools
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from block_gateway.config import settings
from block_gateway.errors import (
    RateLimitError,
    RPCError,
    UpstreamError,
    is_rate_limit_message,
)
from block_gateway.utils.decorators import log_execution

# JSON-RPC error code some providers use for "limit exceeded"
LIMIT_EXCEEDED_CODE = -32005


class RPCClient:
    """
    Single-attempt JSON-RPC client for an EVM node over HTTP.

    Every call is made exactly once. Failures are sorted into
    ``RateLimitError``, ``RPCError`` and ``UpstreamError`` and raised, and the
    RetryGovernor in front of this client decides whether to try again.

    Methods:
        get_latest_block_number() -> int:
        get_block_by_number(block_number, full_transactions) -> Optional[dict]:
        get_transaction_receipt(tx_hash) -> Optional[dict]:
        get_block_receipts(block_number) -> List[dict]:
        get_balance(address) -> int:
        call(to, data) -> str:
        get_transaction_count(address) -> int:
        get_chain_id() -> int:
        send_raw_transaction(raw_transaction) -> str:
        close() -> None:
    """

    def __init__(self, url: str, timeout: float = settings.rpc_timeout) -> None:
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self.session

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            logger.debug(f"Closed RPC session for {self.url}")

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Send one JSON-RPC request and unwrap its result.

        Args:
            method (str): Node method, e.g. ``eth_blockNumber``.
            params (Optional[List[Any]]): Positional parameters.

        Returns:
            Any: The ``result`` member of the response.

        Raises:
            RateLimitError: HTTP 429, code -32005, or a limit-like error message.
            RPCError: Any other error object from the node.
            UpstreamError: Non-200 status, timeout or connection failure.
        """
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            async with self._get_session().post(self.url, json=body) as response:
                if response.status == 429:
                    raise RateLimitError(f"{method}: too many requests")
                if response.status != 200:
                    raise UpstreamError(f"{method}: node answered HTTP {response.status}")
                reply = await response.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise UpstreamError(f"{method}: request timed out") from exc
        except aiohttp.ClientError as exc:
            raise UpstreamError(f"{method}: {exc}") from exc

        error = reply.get("error")
        if not error:
            return reply.get("result")

        if isinstance(error, dict):
            code = error.get("code")
            text = str(error.get("message", error))
        else:
            code, text = None, str(error)
        if code == LIMIT_EXCEEDED_CODE or is_rate_limit_message(text):
            raise RateLimitError(f"{method}: {text}")
        raise RPCError(f"{method}: {text}", code=code)

    @log_execution(enabled=settings.log_rpc_timing)
    async def get_latest_block_number(self) -> int:
        return int(await self._call("eth_blockNumber"), 16)

    @log_execution(enabled=settings.log_rpc_timing)
    async def get_block_by_number(
        self,
        block_number: int,
        full_transactions: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """
        Fetch a block.

        Args:
            block_number (int): Height to fetch.
            full_transactions (bool): Inline transaction objects instead of hashes.

        Returns:
            Optional[Dict[str, Any]]: Raw block, or None for an unknown height.
        """
        return await self._call("eth_getBlockByNumber", [hex(block_number), full_transactions])

    @log_execution(enabled=settings.log_rpc_timing)
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt of ``tx_hash``, None while the transaction is pending."""
        return await self._call("eth_getTransactionReceipt", [tx_hash])

    @log_execution(enabled=settings.log_rpc_timing)
    async def get_block_receipts(self, block_number: int) -> List[Dict[str, Any]]:
        # Not every provider implements this; callers fall back to per-tx lookups
        return await self._call("eth_getBlockReceipts", [hex(block_number)])

    @log_execution(enabled=settings.log_rpc_timing)
    async def get_balance(self, address: str) -> int:
        return int(await self._call("eth_getBalance", [address, "latest"]), 16)

    @log_execution(enabled=settings.log_rpc_timing)
    async def call(self, to: str, data: str) -> str:
        """
        Run a read-only contract call at the latest block.

        Args:
            to (str): Contract address.
            data (str): 0x-prefixed ABI call data.

        Returns:
            str: 0x-prefixed ABI return data.
        """
        return await self._call("eth_call", [{"to": to, "data": data}, "latest"])

    @log_execution(enabled=settings.log_rpc_timing)
    async def get_transaction_count(self, address: str) -> int:
        return int(await self._call("eth_getTransactionCount", [address, "pending"]), 16)

    @log_execution(enabled=settings.log_rpc_timing)
    async def get_chain_id(self) -> int:
        return int(await self._call("eth_chainId"), 16)

    @log_execution(enabled=settings.log_rpc_timing)
    async def send_raw_transaction(self, raw_transaction: str) -> str:
        """Broadcast a signed transaction and return its hash."""
        return await self._call("eth_sendRawTransaction", [raw_transaction])
