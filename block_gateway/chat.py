import re
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from eth_utils import is_address
from loguru import logger

from block_gateway.chain_service import ChainService
from block_gateway.errors import InvalidInputError
from block_gateway.indexer_client import IndexerClient

ADDRESS_PATTERN = re.compile(r"0x[a-fA-F0-9]{40}")
CONTRACT_PATTERN = re.compile(r"(?:contract|token|collection)\s+(0x[a-fA-F0-9]{40})", re.I)

FALLBACK_REPLY = (
    "I didn't quite understand that. Try something like 'Check the balance of 0x...' "
    "or 'What NFTs does 0x... own?'"
)

# How many items each reply lists
PAGE = 5


def format_balance(balance: Union[int, str, None], decimals: Union[int, str, None] = 18) -> str:
    """Render a raw token amount with two decimals, or six below one unit."""
    scale = 18 if decimals is None else int(decimals)
    amount = Decimal(int(balance or 0)) / (Decimal(10) ** scale)
    return f"{amount:.2f}" if amount >= 1 else f"{amount:.6f}"


def _result(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    return (data.get("result") or {}).get(key) or []


def _short(value: Optional[str]) -> str:
    return (value or "")[:10]


class ChatResponder:
    """
    Answers plain-language questions about accounts, tokens and blocks.

    Each message is matched against keyword intents, multi-word intents
    first, so "token holders" is never taken for a plain "tokens" question.
    The intent's indexer call is made and its result summarized as text.

    Methods:
        reply(message: str) -> str:
    """

    def __init__(self, indexer: IndexerClient, chain: ChainService) -> None:
        self.indexer = indexer
        self.chain = chain
        self.intents: List[Tuple[Tuple[str, ...], Callable[..., Awaitable[str]]]] = [
            (("internal transactions",), self._internal_transactions),
            (("token activities",), self._token_activities),
            (("collection activities",), self._collection_activities),
            (("token holders",), self._token_holders),
            (("native holders", "mon holders"), self._native_holders),
            (("collection holders",), self._collection_holders),
            (("contract source", "source code"), self._contract_source),
            (("token gating",), self._token_gating),
            (("activities",), self._activities),
            (("transactions",), self._transactions),
            (("nfts",), self._nfts),
            (("balance", "tokens"), self._tokens),
            (("latest block", "block number"), self._latest_block),
        ]

    async def reply(self, message: str) -> str:
        """
        Answer one chat message.

        Args:
            message (str): Free-form question.

        Returns:
            str: Reply text.

        Raises:
            InvalidInputError: If the message is not understood or lacks a
                               valid address the intent needs.
        """
        if not isinstance(message, str) or not message.strip():
            raise InvalidInputError("Please send a valid message.")

        logger.info(f"Processing chat message: {message}")
        lowered = message.lower()
        address_match = ADDRESS_PATTERN.search(message)
        contract_match = CONTRACT_PATTERN.search(message)
        address = address_match.group(0) if address_match else None
        contract = contract_match.group(1) if contract_match else None

        for keywords, handler in self.intents:
            if any(keyword in lowered for keyword in keywords):
                return await handler(address, contract)
        raise InvalidInputError(FALLBACK_REPLY)

    @staticmethod
    def _require(value: Optional[str], message: str) -> str:
        if not value or not is_address(value):
            raise InvalidInputError(message)
        return value

    async def _tokens(self, address: Optional[str], contract: Optional[str]) -> str:
        address = self._require(
            address,
            'I need a valid address to check the balance. Try something like "Check the balance of 0x...".',
        )
        tokens = _result(await self.indexer.get_account_tokens(address), "tokens")
        if not tokens:
            return f"Looks like {address} doesn't hold any tokens right now."
        lines = [f"Here's what {address} is holding:"]
        for token in tokens:
            balance = format_balance(token.get("balance"), token.get("decimals"))
            lines.append(f"- {balance} {token.get('symbol')} ({token.get('name')})")
        return "\n".join(lines)

    async def _nfts(self, address: Optional[str], contract: Optional[str]) -> str:
        address = self._require(address, "Please give me a valid address to check NFTs.")
        nfts = _result(await self.indexer.get_account_nfts(address, 1), "nfts")
        if not nfts:
            return f"{address} doesn't seem to own any NFTs at the moment."
        lines = [f"{address} has some cool NFTs:"]
        for nft in nfts[:PAGE]:
            lines.append(f"- {nft.get('name') or 'Unnamed NFT'} (Token ID: {nft.get('tokenId')})")
        if len(nfts) > PAGE:
            lines.append(f"...and {len(nfts) - PAGE} more! Want me to fetch more details?")
        return "\n".join(lines)

    async def _activities(self, address: Optional[str], contract: Optional[str]) -> str:
        address = self._require(address, "I need a valid address to check activities.")
        activities = _result(await self.indexer.get_account_activities(address, PAGE), "activities")
        if not activities:
            return f"No recent activities found for {address}."
        lines = [f"Recent activities for {address}:"]
        for activity in activities:
            lines.append(
                f"- {activity.get('type')} on block {activity.get('blockNumber')} "
                f"(Hash: {_short(activity.get('transactionHash'))}...)",
            )
        return "\n".join(lines)

    async def _transactions(self, address: Optional[str], contract: Optional[str]) -> str:
        address = self._require(address, "Please provide a valid address to see transactions.")
        transactions = _result(
            await self.indexer.get_account_transactions(address, PAGE), "transactions",
        )
        if not transactions:
            return f"{address} hasn't made any transactions recently."
        lines = [f"Here are some recent transactions for {address}:"]
        for tx in transactions:
            lines.append(
                f"- Sent {format_balance(tx.get('value'))} MON to {_short(tx.get('to'))}... "
                f"(Hash: {_short(tx.get('hash'))}...)",
            )
        return "\n".join(lines)

    async def _internal_transactions(self, address: Optional[str], contract: Optional[str]) -> str:
        address = self._require(address, "I need a valid address for internal transactions.")
        transactions = _result(
            await self.indexer.get_account_internal_transactions(address, "all", PAGE),
            "transactions",
        )
        if not transactions:
            return f"No internal transactions found for {address}."
        lines = [f"Internal transactions for {address}:"]
        for tx in transactions:
            lines.append(
                f"- {tx.get('type')} of {format_balance(tx.get('value'))} MON "
                f"(Hash: {_short(tx.get('hash'))}...)",
            )
        return "\n".join(lines)

    async def _token_activities(self, address: Optional[str], contract: Optional[str]) -> str:
        message = "Please provide both an account address and a token contract address."
        address = self._require(address, message)
        contract = self._require(contract, message)
        activities = _result(
            await self.indexer.get_token_activities(address, contract, PAGE), "activities",
        )
        if not activities:
            return f"No activities found for token {contract} at {address}."
        lines = [f"Token activities for {address} with {contract}:"]
        for activity in activities:
            lines.append(
                f"- {activity.get('type')} on block {activity.get('blockNumber')} "
                f"(Hash: {_short(activity.get('transactionHash'))}...)",
            )
        return "\n".join(lines)

    async def _collection_activities(self, address: Optional[str], contract: Optional[str]) -> str:
        message = "Please provide both an account address and a collection contract address."
        address = self._require(address, message)
        contract = self._require(contract, message)
        activities = _result(
            await self.indexer.get_collection_activities(address, contract, PAGE), "activities",
        )
        if not activities:
            return f"No collection activities found for {address} with {contract}."
        lines = [f"Collection activities for {address} with {contract}:"]
        for activity in activities:
            lines.append(
                f"- {activity.get('type')} (Token ID: {activity.get('tokenId') or 'N/A'}) "
                f"on block {activity.get('blockNumber')}",
            )
        return "\n".join(lines)

    async def _token_holders(self, address: Optional[str], contract: Optional[str]) -> str:
        contract = self._require(contract, "Please provide a valid token contract address.")
        holders = _result(await self.indexer.get_token_holders(contract, 1, PAGE), "holders")
        if not holders:
            return f"No holders found for token {contract}."
        lines = [f"Top holders for token {contract}:"]
        for holder in holders:
            balance = format_balance(holder.get("balance"), holder.get("decimals"))
            lines.append(f"- {_short(holder.get('address'))}... holds {balance} tokens")
        return "\n".join(lines)

    async def _native_holders(self, address: Optional[str], contract: Optional[str]) -> str:
        holders = _result(await self.indexer.get_native_holders(1, PAGE), "holders")
        if not holders:
            return "No native MON holders found."
        lines = ["Top holders of MON tokens:"]
        for holder in holders:
            lines.append(
                f"- {_short(holder.get('address'))}... holds "
                f"{format_balance(holder.get('balance'))} MON",
            )
        return "\n".join(lines)

    async def _collection_holders(self, address: Optional[str], contract: Optional[str]) -> str:
        contract = self._require(contract, "Please provide a valid collection contract address.")
        holders = _result(await self.indexer.get_collection_holders(contract, 1, PAGE), "holders")
        if not holders:
            return f"No holders found for collection {contract}."
        lines = [f"Top holders for collection {contract}:"]
        for holder in holders:
            lines.append(
                f"- {_short(holder.get('address'))}... owns {holder.get('tokenCount')} NFTs",
            )
        return "\n".join(lines)

    async def _contract_source(self, address: Optional[str], contract: Optional[str]) -> str:
        contract = self._require(contract or address, "Please provide a valid contract address.")
        result = (await self.indexer.get_contract_source_code(contract)).get("result") or {}
        source = result.get("sourceCode") or "No source code available"
        name = result.get("contractName") or "Unknown contract"
        return (
            f"The source code for {contract} ({name}) is:\n"
            f"{source[:200]}... (shortened for brevity)"
        )

    async def _token_gating(self, address: Optional[str], contract: Optional[str]) -> str:
        message = "Please provide both an account address and a contract address."
        address = self._require(address, message)
        contract = self._require(contract, message)
        result = (await self.indexer.get_token_gating(address, contract)).get("result") or {}
        if result.get("isGated"):
            return f"{address} has access to gated content for {contract}!"
        return f"{address} doesn't have access to gated content for {contract}."

    async def _latest_block(self, address: Optional[str], contract: Optional[str]) -> str:
        number = await self.chain.get_latest_block_number()
        return f"The latest block is {number}."
