"""Pytest configuration and shared fixtures for all tests."""

import os

os.environ.setdefault("GATEWAY_CONTRACT_ADDRESS", "0x742D35CC6634c0532925A3b844BC9E7595F0BEb0")
os.environ.setdefault("GATEWAY_ENABLE_METRICS", "false")
os.environ.setdefault("GATEWAY_ENABLE_SUBSCRIPTION", "false")
os.environ.setdefault("GATEWAY_LOG_RPC_TIMING", "true")

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from block_gateway.config import Settings
from block_gateway.governor import RetryGovernor

CONTRACT = "0x742D35CC6634c0532925A3b844BC9E7595F0BEb0"
# Well-known throwaway key (hardhat account #0), never funded on a real chain
PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


def make_block(number: int, transactions: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    return {
        "number": hex(number),
        "hash": "0x" + f"{number:064x}",
        "timestamp": hex(1_700_000_000 + number),
        "gasUsed": hex(21_000 * len(transactions or [])),
        "miner": "0x0000000000000000000000000000000000000001",
        "transactions": transactions or [],
    }


class FakeClock:
    """Monotonic clock that only moves when the fake sleep is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class FakeRPCClient:
    """In-memory chain with a settable head."""

    def __init__(self, head: int = 100) -> None:
        self.head = head
        self.fail_with: Optional[Exception] = None
        self.block_requests: List[int] = []
        self.closed = False

    async def get_latest_block_number(self) -> int:
        if self.fail_with is not None:
            raise self.fail_with
        return self.head

    async def get_block_by_number(
        self,
        block_number: int,
        full_transactions: bool = True,
    ) -> Optional[Dict[str, Any]]:
        self.block_requests.append(block_number)
        return make_block(block_number)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        rpc_url="http://localhost:8545",
        contract_address=CONTRACT,
        private_key=PRIVATE_KEY,
        chain_id=10143,
        enable_subscription=False,
        poll_interval=60,
        error_poll_interval=60,
        heartbeat_interval=30,
        min_request_interval=0,
    )


@pytest.fixture
def rpc() -> FakeRPCClient:
    return FakeRPCClient()


@pytest.fixture
def governor() -> RetryGovernor:
    return RetryGovernor(min_interval=0, max_attempts=3, base_delay=0)


@pytest.fixture
def events() -> "asyncio.Queue[Any]":
    return asyncio.Queue()
