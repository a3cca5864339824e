from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from block_gateway.utils.custom_types import Address, HexInt


class BlockHead(BaseModel):
    """
    Canonical shape of a chain head, as announced to subscribers.

    Attributes:
        number (int): Block number. Python ints do not overflow, so heads past
                      2**53 are represented exactly.
        hash (str): Block hash as a 0x-prefixed hex string.
        timestamp (int): Block timestamp in seconds.
        gas_used (int): Gas used by all transactions in the block.
        miner (str): Address of the block producer.
        transaction_count (int): Number of transactions in the block.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    number: HexInt
    hash: str
    timestamp: HexInt
    gas_used: HexInt = Field(default=0, alias="gasUsed")
    miner: str = ""
    transaction_count: int = Field(default=0, alias="transactionCount")

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "BlockHead":
        """
        Normalise a provider block or pushed header into a BlockHead.

        Args:
            raw (Dict[str, Any]): Result of eth_getBlockByNumber or a newHeads
                                  notification. Headers carry no transaction
                                  list, so the count is 0 for them.

        Returns:
            BlockHead: The immutable head.
        """
        transactions = raw.get("transactions") or []
        return cls.model_validate(
            {
                "number": raw["number"],
                "hash": raw.get("hash") or "",
                "timestamp": raw.get("timestamp", 0),
                "gasUsed": raw.get("gasUsed", 0),
                "miner": raw.get("miner") or "",
                "transactionCount": len(transactions),
            },
        )


class TrackerDegraded(BaseModel):
    """Notice emitted by the head tracker after repeated upstream failures."""

    model_config = ConfigDict(frozen=True)

    message: str = "Experiencing temporary issues with block updates"
    failure_streak: int


class TransactionSummary(BaseModel):
    hash: str
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    value: HexInt = 0
    gas_used: HexInt = Field(default=0, alias="gasUsed")

    model_config = ConfigDict(populate_by_name=True)


class BlockAnalysis(BaseModel):
    block_number: HexInt = Field(alias="blockNumber")
    timestamp: HexInt
    transaction_count: int = Field(alias="transactionCount")
    total_gas_used: HexInt = Field(alias="totalGasUsed")
    transactions: List[TransactionSummary] = []

    model_config = ConfigDict(populate_by_name=True)


class BlockSummary(BaseModel):
    """BlockAnalysis without the per-transaction breakdown."""

    block_number: HexInt = Field(alias="blockNumber")
    timestamp: HexInt
    transaction_count: int = Field(alias="transactionCount")
    total_gas_used: HexInt = Field(alias="totalGasUsed")

    model_config = ConfigDict(populate_by_name=True)


class BalanceInfo(BaseModel):
    address: Address
    balance: HexInt
    balance_in_eth: str = Field(alias="balanceInEth")

    model_config = ConfigDict(populate_by_name=True)


class StoreResult(BaseModel):
    transaction_hash: str = Field(alias="transactionHash")
    block_number: HexInt = Field(alias="blockNumber")
    greeting: str

    model_config = ConfigDict(populate_by_name=True)


class StoreDataRequest(BaseModel):
    value: str


class ChatRequest(BaseModel):
    message: str


class JsonRpcRequest(BaseModel):
    """
    A JSON-RPC 2.0 request received on the MCP endpoint.

    Attributes:
        jsonrpc (str): Protocol version, must be "2.0".
        id (Union[int, str, None]): Request id echoed in the response.
        method (str): Method name such as "block/latest".
        params (Dict[str, Any]): Method parameters.
    """

    jsonrpc: str
    id: Union[int, str, None]
    method: str
    params: Dict[str, Any] = {}
