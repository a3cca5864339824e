from typing import Any, Dict, List, Optional

import aiohttp
import pytest

from block_gateway.errors import RateLimitError, RPCError, UpstreamError
from block_gateway.rpc_client import RPCClient

RPC_METHODS = [
    "get_latest_block_number",
    "get_block_by_number",
    "get_transaction_receipt",
    "get_block_receipts",
    "get_balance",
    "call",
    "get_transaction_count",
    "get_chain_id",
    "send_raw_transaction",
]


class FakeResponse:
    def __init__(self, status: int, body: Optional[Dict[str, Any]]) -> None:
        self.status = status
        self.body = body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    async def json(self, content_type: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self.body


class FakeSession:
    """Answers every post with the next queued response, or raises ``error``."""

    def __init__(self, *responses: FakeResponse, error: Optional[Exception] = None) -> None:
        self.responses = list(responses)
        self.error = error
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def post(self, url: str, json: Dict[str, Any]) -> FakeResponse:
        self.requests.append(json)
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)

    async def close(self) -> None:
        self.closed = True


def make_client(session: FakeSession) -> RPCClient:
    client = RPCClient("http://localhost:8545", timeout=1)
    client.session = session  # type: ignore[assignment]
    return client


@pytest.mark.parametrize("name", RPC_METHODS)
def test_every_rpc_method_is_timed(name: str) -> None:
    assert hasattr(getattr(RPCClient, name), "__wrapped__")


@pytest.mark.asyncio
async def test_result_is_unwrapped_and_ids_increase() -> None:
    session = FakeSession(
        FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "result": "0x279f"}),
        FakeResponse(200, {"jsonrpc": "2.0", "id": 2, "result": "0x10"}),
    )
    client = make_client(session)

    assert await client.get_chain_id() == 10143
    assert await client.get_transaction_count("0x01") == 16

    assert [r["id"] for r in session.requests] == [1, 2]
    assert session.requests[1]["method"] == "eth_getTransactionCount"
    assert session.requests[1]["params"] == ["0x01", "pending"]


@pytest.mark.asyncio
async def test_http_429_is_a_rate_limit() -> None:
    client = make_client(FakeSession(FakeResponse(429, None)))

    with pytest.raises(RateLimitError):
        await client.get_latest_block_number()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        {"code": -32005, "message": "limit exceeded"},
        {"code": -32000, "message": "Request limit reached, try again later"},
    ],
)
async def test_rate_limit_error_objects(error: Dict[str, Any]) -> None:
    body = {"jsonrpc": "2.0", "id": 1, "error": error}
    client = make_client(FakeSession(FakeResponse(200, body)))

    with pytest.raises(RateLimitError):
        await client.get_latest_block_number()


@pytest.mark.asyncio
async def test_other_error_objects_keep_their_code() -> None:
    body = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "method not found"}}
    client = make_client(FakeSession(FakeResponse(200, body)))

    with pytest.raises(RPCError) as exc_info:
        await client.get_block_receipts(5)

    assert exc_info.value.code == -32601
    assert exc_info.value.message == "eth_getBlockReceipts: method not found"


@pytest.mark.asyncio
async def test_transport_failures_are_upstream_errors() -> None:
    client = make_client(FakeSession(FakeResponse(503, None)))
    with pytest.raises(UpstreamError, match="HTTP 503"):
        await client.get_balance("0x01")

    client = make_client(FakeSession(error=aiohttp.ClientConnectionError("refused")))
    with pytest.raises(UpstreamError, match="refused"):
        await client.get_balance("0x01")


@pytest.mark.asyncio
async def test_close_releases_the_session() -> None:
    session = FakeSession()
    client = make_client(session)

    await client.close()

    assert session.closed is True
