from unittest.mock import AsyncMock

import pytest
from eth_abi import encode

from block_gateway.cache import ResultCache
from block_gateway.chain_service import GREETING_KEY, LATEST_BLOCK_KEY, ChainService
from block_gateway.errors import (
    BlockNotFoundError,
    ConfigurationError,
    InvalidInputError,
    RPCError,
    TransactionTimeoutError,
)
from tests.conftest import make_block

TX_HASH = "0x" + "ab" * 32


@pytest.fixture
def rpc_mock() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def cache() -> ResultCache:
    return ResultCache({LATEST_BLOCK_KEY: 2.0, GREETING_KEY: 5.0})


@pytest.fixture
def service(config, rpc_mock, governor, cache) -> ChainService:
    return ChainService(config, rpc_mock, governor, cache)


@pytest.mark.asyncio
async def test_latest_block_number_is_cached(service, rpc_mock) -> None:
    rpc_mock.get_latest_block_number.return_value = 100

    assert await service.get_latest_block_number() == 100
    assert await service.get_latest_block_number() == 100

    rpc_mock.get_latest_block_number.assert_awaited_once()


@pytest.mark.asyncio
async def test_get_data_decodes_greeting(service, rpc_mock) -> None:
    rpc_mock.call.return_value = "0x" + encode(["string"], ["hello monad"]).hex()

    assert await service.get_data() == "hello monad"


@pytest.mark.asyncio
async def test_get_data_empty_return(service, rpc_mock) -> None:
    rpc_mock.call.return_value = "0x"

    assert await service.get_data() == ""


@pytest.mark.asyncio
async def test_missing_contract_address(service, config) -> None:
    config.contract_address = None

    with pytest.raises(ConfigurationError):
        await service.get_data()


@pytest.mark.asyncio
async def test_balance(service, rpc_mock) -> None:
    rpc_mock.get_balance.return_value = 1_500_000_000_000_000_000

    info = await service.get_balance("0x742d35cc6634c0532925a3b844bc9e7595f0beb0")

    assert info.address == "0x742D35CC6634c0532925A3b844BC9E7595F0BEb0"
    assert info.balance_in_eth == "1.5"
    assert info.model_dump(mode="json", by_alias=True)["balance"] == "1500000000000000000"


@pytest.mark.asyncio
async def test_balance_rejects_bad_address(service) -> None:
    with pytest.raises(InvalidInputError, match="Invalid address format"):
        await service.get_balance("0x1234")


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["abc", "-1", "1.5"])
async def test_analyze_block_rejects_bad_numbers(service, value) -> None:
    with pytest.raises(InvalidInputError, match="Invalid block number"):
        await service.analyze_block(value)


@pytest.mark.asyncio
async def test_analyze_unknown_block(service, rpc_mock) -> None:
    rpc_mock.get_block_by_number.return_value = None

    with pytest.raises(BlockNotFoundError):
        await service.analyze_block("123")


@pytest.mark.asyncio
async def test_analyze_block_joins_receipts(service, rpc_mock) -> None:
    tx = {"hash": TX_HASH, "from": "0x01", "to": "0x02", "value": "0xde0b6b3a7640000"}
    rpc_mock.get_block_by_number.return_value = make_block(50, [tx])
    rpc_mock.get_block_receipts.return_value = [
        {"transactionHash": TX_HASH, "gasUsed": "0x5208"},
    ]

    analysis = await service.analyze_block(50)

    dumped = analysis.model_dump(mode="json", by_alias=True)
    assert dumped["blockNumber"] == "50"
    assert dumped["transactionCount"] == 1
    assert dumped["transactions"][0] == {
        "hash": TX_HASH,
        "from": "0x01",
        "to": "0x02",
        "value": "1000000000000000000",
        "gasUsed": "21000",
    }


@pytest.mark.asyncio
async def test_analyze_block_falls_back_to_single_receipts(service, rpc_mock) -> None:
    tx = {"hash": TX_HASH, "from": "0x01", "to": "0x02", "value": "0x0"}
    rpc_mock.get_block_by_number.return_value = make_block(50, [tx])
    rpc_mock.get_block_receipts.side_effect = RPCError("method not found", code=-32601)
    rpc_mock.get_transaction_receipt.return_value = {"transactionHash": TX_HASH, "gasUsed": "0x10"}

    analysis = await service.analyze_block(50)

    assert analysis.transactions[0].gas_used == 16
    rpc_mock.get_transaction_receipt.assert_awaited_once_with(TX_HASH)


@pytest.mark.asyncio
async def test_store_data_signs_submits_and_invalidates_greeting(
    service,
    rpc_mock,
    cache,
) -> None:
    cache.put(GREETING_KEY, "old")
    rpc_mock.get_transaction_count.return_value = 3
    rpc_mock.send_raw_transaction.return_value = TX_HASH
    rpc_mock.get_transaction_receipt.return_value = {"blockNumber": "0x10", "status": "0x1"}

    result = await service.store_data("gm")

    assert result.transaction_hash == TX_HASH
    assert result.block_number == 16
    assert cache.get(GREETING_KEY) is None
    raw = rpc_mock.send_raw_transaction.await_args.args[0]
    assert raw.startswith("0x")
    rpc_mock.get_chain_id.assert_not_awaited()


@pytest.mark.asyncio
async def test_store_data_times_out(service, rpc_mock, config) -> None:
    config.transaction_timeout = 0.05
    rpc_mock.get_transaction_count.return_value = 0
    rpc_mock.send_raw_transaction.return_value = TX_HASH
    rpc_mock.get_transaction_receipt.return_value = None

    with pytest.raises(TransactionTimeoutError, match="Transaction timed out"):
        await service.store_data("gm")


@pytest.mark.asyncio
async def test_store_data_reverted(service, rpc_mock) -> None:
    rpc_mock.get_transaction_count.return_value = 0
    rpc_mock.send_raw_transaction.return_value = TX_HASH
    rpc_mock.get_transaction_receipt.return_value = {"blockNumber": "0x10", "status": "0x0"}

    with pytest.raises(RPCError, match="reverted"):
        await service.store_data("gm")


@pytest.mark.asyncio
async def test_store_data_requires_signing_key(service, config) -> None:
    config.private_key = None

    with pytest.raises(ConfigurationError):
        await service.store_data("gm")


@pytest.mark.asyncio
async def test_parallel_analysis_drops_failed_blocks(service, rpc_mock) -> None:
    rpc_mock.get_latest_block_number.return_value = 10

    async def get_block(number, full_transactions=True):
        return None if number == 9 else make_block(number)

    rpc_mock.get_block_by_number.side_effect = get_block

    summaries = await service.parallel_block_analysis()

    assert [summary.block_number for summary in summaries] == [10, 8]
