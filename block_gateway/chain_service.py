import asyncio
from typing import Any, Dict, List, Optional, Union

from eth_abi import decode, encode
from eth_account import Account
from eth_utils import (
    from_wei,
    function_signature_to_4byte_selector,
    is_address,
    to_checksum_address,
    to_hex,
)
from loguru import logger

from block_gateway.cache import ResultCache
from block_gateway.config import Settings
from block_gateway.errors import (
    BlockNotFoundError,
    ConfigurationError,
    InvalidInputError,
    RPCError,
    TransactionTimeoutError,
)
from block_gateway.governor import RetryGovernor
from block_gateway.models import (
    BalanceInfo,
    BlockAnalysis,
    BlockSummary,
    StoreResult,
    TransactionSummary,
)
from block_gateway.rpc_client import RPCClient

LATEST_BLOCK_KEY = "latest_block"
GREETING_KEY = "greeting"

# Seconds between receipt lookups while a transaction is pending
RECEIPT_POLL_INTERVAL = 1.0

GREETING_SELECTOR = function_signature_to_4byte_selector("greeting()")
SET_GREETING_SELECTOR = function_signature_to_4byte_selector("setGreeting(string)")


def parse_block_number(value: Union[int, str]) -> int:
    """
    Parse a caller-supplied block number.

    Raises:
        InvalidInputError: If the value is not a non-negative integer.
    """
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError("Invalid block number") from exc
    if number < 0:
        raise InvalidInputError("Invalid block number")
    return number


def checksum_address(address: str, message: str = "Invalid address format") -> str:
    if not isinstance(address, str) or not is_address(address):
        raise InvalidInputError(message)
    return to_checksum_address(address)


class ChainService:
    """
    ChainService answers the gateway's chain reads and writes.

    Every outbound call goes through the retry governor; the latest block
    number and the contract greeting are served from the result cache while
    fresh.

    config (Settings): Service settings (contract, signing key, gas, timeouts).
    rpc_client (RPCClient): JSON-RPC client for the chain provider.
    governor (RetryGovernor): Global pacing and rate-limit retry.
    cache (ResultCache): Short-TTL cache for the latest block and greeting.

    Methods:
        get_latest_block_number() -> int:
        get_data() -> str:
        get_balance(address: str) -> BalanceInfo:
        analyze_block(block_number: Union[int, str]) -> BlockAnalysis:
        store_data(value: str) -> StoreResult:
        execute_chain(value: str) -> Dict[str, Any]:
        parallel_block_analysis() -> List[BlockSummary]:
    """

    def __init__(
        self,
        config: Settings,
        rpc_client: RPCClient,
        governor: RetryGovernor,
        cache: ResultCache,
    ) -> None:
        self.config = config
        self.rpc_client = rpc_client
        self.governor = governor
        self.cache = cache
        self._chain_id: Optional[int] = config.chain_id

    @property
    def contract_address(self) -> str:
        if not self.config.contract_address:
            raise ConfigurationError("Contract address is not configured")
        return to_checksum_address(self.config.contract_address)

    async def get_latest_block_number(self) -> int:
        return await self.cache.get_or_fetch(
            LATEST_BLOCK_KEY,
            lambda: self.governor.run(self.rpc_client.get_latest_block_number),
        )

    async def get_data(self) -> str:
        """
        Read the contract's current greeting.

        Returns:
            str: The greeting; empty when the contract returns no data.
        """
        return await self.cache.get_or_fetch(GREETING_KEY, self._fetch_greeting)

    async def _fetch_greeting(self) -> str:
        raw = await self.governor.run(
            self.rpc_client.call, self.contract_address, to_hex(GREETING_SELECTOR),
        )
        if not raw or raw == "0x":
            return ""
        (greeting,) = decode(["string"], bytes.fromhex(raw[2:]))
        return greeting

    async def get_balance(self, address: str) -> BalanceInfo:
        checksummed = checksum_address(address)
        logger.info(f"Checking balance for address: {checksummed}")
        balance = await self.governor.run(self.rpc_client.get_balance, checksummed)
        return BalanceInfo(
            address=checksummed,
            balance=balance,
            balanceInEth=str(from_wei(balance, "ether")),
        )

    async def analyze_block(self, block_number: Union[int, str]) -> BlockAnalysis:
        """
        Fetch a block with its transactions and their gas usage.

        Args:
            block_number (Union[int, str]): Block to analyse.

        Returns:
            BlockAnalysis: Block totals plus one summary per transaction.

        Raises:
            InvalidInputError: If the block number is malformed.
            BlockNotFoundError: If the provider does not know the block.
        """
        number = parse_block_number(block_number)
        logger.info(f"Analyzing block: {number}")
        block = await self.governor.run(self.rpc_client.get_block_by_number, number, True)
        if not block:
            raise BlockNotFoundError(number)

        transactions = [tx for tx in block.get("transactions", []) if isinstance(tx, dict)]
        receipts = await self._get_receipts(number, [tx["hash"] for tx in transactions])

        return BlockAnalysis(
            blockNumber=block["number"],
            timestamp=block.get("timestamp", 0),
            transactionCount=len(block.get("transactions", [])),
            totalGasUsed=block.get("gasUsed", 0),
            transactions=[
                TransactionSummary.model_validate(
                    {
                        "hash": tx["hash"],
                        "from": tx.get("from"),
                        "to": tx.get("to"),
                        "value": tx.get("value", 0),
                        "gasUsed": (receipts.get(tx["hash"]) or {}).get("gasUsed", 0),
                    },
                )
                for tx in transactions
            ],
        )

    async def _get_receipts(self, block_number: int, hashes: List[str]) -> Dict[str, Any]:
        if not hashes:
            return {}
        try:
            receipts = await self.governor.run(
                self.rpc_client.get_block_receipts, block_number,
            )
            return {receipt["transactionHash"]: receipt for receipt in receipts or []}
        except RPCError as exc:
            logger.warning(f"eth_getBlockReceipts unavailable, fetching one by one: {exc}")

        receipts = {}
        for tx_hash in hashes:
            receipts[tx_hash] = await self.governor.run(
                self.rpc_client.get_transaction_receipt, tx_hash,
            )
        return receipts

    def _signer(self) -> Any:
        if not self.config.private_key:
            raise ConfigurationError("Signing key is not configured")
        return Account.from_key(self.config.private_key)

    async def _get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self.governor.run(self.rpc_client.get_chain_id)
        return self._chain_id

    async def store_data(self, value: str) -> StoreResult:
        """
        Store a new greeting in the contract.

        Builds and signs a ``setGreeting(string)`` transaction with the
        configured key, submits it and waits for its receipt.

        Args:
            value (str): The greeting to store.

        Returns:
            StoreResult: Transaction hash and the block it was mined in.

        Raises:
            TransactionTimeoutError: If no receipt arrives within the
                                     configured transaction timeout.
            RPCError: If the transaction reverted.
        """
        account = self._signer()
        logger.info(f"Attempting to store greeting from {account.address}")
        nonce = await self.governor.run(self.rpc_client.get_transaction_count, account.address)
        transaction = {
            "to": self.contract_address,
            "data": to_hex(SET_GREETING_SELECTOR + encode(["string"], [value])),
            "value": 0,
            "gas": self.config.gas_limit,
            "gasPrice": self.config.gas_price,
            "nonce": nonce,
            "chainId": await self._get_chain_id(),
        }
        signed = account.sign_transaction(transaction)
        tx_hash = await self.governor.run(
            self.rpc_client.send_raw_transaction, to_hex(signed.raw_transaction),
        )
        receipt = await self.wait_for_receipt(tx_hash)
        self.cache.invalidate(GREETING_KEY)

        result = StoreResult(
            transactionHash=tx_hash,
            blockNumber=receipt["blockNumber"],
            greeting=value,
        )
        logger.info(f"Successfully stored greeting in block {result.block_number}")
        return result

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """
        Wait until the transaction is mined.

        Raises:
            TransactionTimeoutError: After ``transaction_timeout`` seconds.
            RPCError: If the receipt reports a failed transaction.
        """
        try:
            receipt = await asyncio.wait_for(
                self._poll_receipt(tx_hash), timeout=self.config.transaction_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransactionTimeoutError(tx_hash) from exc
        if receipt.get("status") == "0x0":
            raise RPCError(f"Transaction {tx_hash} reverted")
        return receipt

    async def _poll_receipt(self, tx_hash: str) -> Dict[str, Any]:
        while True:
            receipt = await self.governor.run(self.rpc_client.get_transaction_receipt, tx_hash)
            if receipt:
                return receipt
            await asyncio.sleep(RECEIPT_POLL_INTERVAL)

    async def execute_chain(self, value: str) -> Dict[str, Any]:
        """
        Store a value, read it back and analyse the block it landed in.

        Returns:
            Dict[str, Any]: ``stored``, ``retrieved`` and ``gasAnalysis`` sections.
        """
        logger.info(f"Starting execution chain: {value}")
        stored = await self.store_data(value)
        retrieved = await self.get_data()
        analysis = await self.analyze_block(stored.block_number)

        ours = next(
            (tx for tx in analysis.transactions if tx.hash == stored.transaction_hash),
            None,
        )
        return {
            "stored": {
                "value": value,
                "transactionHash": stored.transaction_hash,
                "blockNumber": str(stored.block_number),
            },
            "retrieved": {"value": retrieved},
            "gasAnalysis": {
                "blockGasUsed": str(analysis.total_gas_used),
                "transactionGasUsed": str(ours.gas_used) if ours else None,
            },
        }

    async def parallel_block_analysis(self) -> List[BlockSummary]:
        """
        Analyse the latest three blocks concurrently.

        Blocks that fail to load are logged and left out of the result.
        """
        latest = await self.get_latest_block_number()
        numbers = [n for n in (latest, latest - 1, latest - 2) if n >= 0]
        logger.info(f"Analyzing blocks in parallel: {numbers}")

        results = await asyncio.gather(
            *(self.analyze_block(n) for n in numbers), return_exceptions=True,
        )
        summaries = []
        for number, result in zip(numbers, results):
            if isinstance(result, BaseException):
                logger.error(f"Error analyzing block {number}: {result}")
                continue
            summaries.append(
                BlockSummary(
                    blockNumber=result.block_number,
                    timestamp=result.timestamp,
                    transactionCount=result.transaction_count,
                    totalGasUsed=result.total_gas_used,
                ),
            )
        return summaries
