import time
from typing import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from block_gateway.chain_service import ChainService
from block_gateway.chat import ChatResponder
from block_gateway.context import GatewayContext
from block_gateway.errors import (
    BlockNotFoundError,
    InvalidInputError,
    RateLimitError,
    UpstreamError,
)
from block_gateway.models import BlockHead, StoreResult
from block_gateway.web.application import get_app
from tests.conftest import FakeRPCClient, make_block

ACCOUNT = "0x742D35CC6634c0532925A3b844BC9E7595F0BEb0"


@pytest.fixture
def context(config) -> GatewayContext:
    context = GatewayContext(config, rpc_client=FakeRPCClient(), indexer=AsyncMock())
    context.chain = AsyncMock()
    context.chat = ChatResponder(context.indexer, context.chain)
    return context


@pytest.fixture
def client(context) -> Iterator[TestClient]:
    with TestClient(get_app(context)) as client:
        yield client


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["tracker"] == "idle"


def test_root_lists_endpoints(client) -> None:
    body = client.get("/").json()

    assert body["message"] == "MCP Server is running!"
    assert body["endpoints"]["sse"].endswith("/sse")
    assert body["endpoints"]["websocket"].startswith("ws://")


def test_unknown_route(client) -> None:
    response = client.get("/nope")

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Not Found"}


def test_legacy_events_redirects_to_sse(client) -> None:
    response = client.get("/api/events", follow_redirects=False)

    assert response.status_code == 307
    assert response.headers["location"] == "/sse"


def test_latest_block(client, context) -> None:
    context.chain.get_latest_block_number.return_value = 2**60

    response = client.get("/api/blockchain/latest-block")

    assert response.json() == {"success": True, "data": {"blockNumber": str(2**60)}}


def test_analyze_block_invalid_number(client, context) -> None:
    context.chain.analyze_block.side_effect = InvalidInputError("Invalid block number")

    response = client.get("/api/blockchain/analyze-block/abc")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid block number"}


def test_analyze_block_not_found(client, context) -> None:
    context.chain.analyze_block.side_effect = BlockNotFoundError(10**9)

    response = client.get("/api/blockchain/analyze-block/1000000000")

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Block not found"}


def test_upstream_failure(client, context) -> None:
    context.chain.get_data.side_effect = UpstreamError("eth_call: request timed out")

    response = client.get("/api/get-data")

    assert response.status_code == 502
    assert response.json() == {"success": False, "error": "eth_call: request timed out"}


def test_store_data(client, context) -> None:
    context.chain.store_data.return_value = StoreResult(
        transactionHash="0xabc", blockNumber=16, greeting="gm",
    )

    response = client.post("/api/store-data", json={"value": "gm"})

    assert response.json() == {
        "success": True,
        "data": {"transactionHash": "0xabc", "blockNumber": "16", "greeting": "gm"},
    }
    context.chain.store_data.assert_awaited_once_with("gm")


def test_store_data_requires_value(client) -> None:
    response = client.post("/api/store-data", json={})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Missing required parameter: value"}


def test_parallel_block_analysis(client, context) -> None:
    context.chain.parallel_block_analysis.return_value = []

    response = client.get("/api/parallel-block-analysis")

    assert response.json() == {"success": True, "data": {"analyzedBlocks": 0, "blocks": []}}


def test_chat_errors_use_reply(client) -> None:
    response = client.post("/api/chat", json={"message": "tell me a joke"})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["reply"].startswith("I didn't quite understand that.")


def test_indexer_pass_through(client, context) -> None:
    context.indexer.get_token_holders.return_value = {"code": 0, "result": {"holders": []}}

    response = client.get(f"/api/token/holders/{ACCOUNT}?pageIndex=2&pageSize=10")

    assert response.json() == {"success": True, "data": {"code": 0, "result": {"holders": []}}}
    context.indexer.get_token_holders.assert_awaited_once_with(ACCOUNT, 2, 10)


def test_indexer_rejects_bad_address(client, context) -> None:
    response = client.get("/api/account/tokens/0x1234")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid address"}
    context.indexer.get_account_tokens.assert_not_awaited()


def test_mcp_block_latest(client, context) -> None:
    context.chain.get_latest_block_number.return_value = 77

    response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "block/latest"})

    assert response.json() == {"jsonrpc": "2.0", "id": 1, "result": {"blockNumber": "77"}}


def test_mcp_greeting(client, context) -> None:
    context.chain.get_data.return_value = ""

    response = client.post("/mcp", json={"jsonrpc": "2.0", "id": "a", "method": "greeting/get"})

    assert response.json()["result"] == {"greeting": ""}


@pytest.mark.parametrize(
    "payload",
    [
        {"jsonrpc": "1.0", "id": 1, "method": "block/latest"},
        {"jsonrpc": "2.0", "method": "block/latest"},
        {"jsonrpc": "2.0", "id": 1},
    ],
)
def test_mcp_invalid_request(client, payload) -> None:
    response = client.post("/mcp", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == {"code": -32600, "message": "Invalid Request"}


def test_mcp_unknown_method(client) -> None:
    response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 3, "method": "tools/list"})

    assert response.status_code == 200
    assert response.json()["error"] == {"code": -32601, "message": "Method not found"}


def test_mcp_server_error(client, context) -> None:
    context.chain.get_latest_block_number.side_effect = UpstreamError("down")

    response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 4, "method": "block/latest"})

    assert response.status_code == 500
    assert response.json()["error"] == {"code": -32000, "message": "Server error"}


def wait_for_subscribers(context: GatewayContext, count: int) -> None:
    for _ in range(200):
        if context.hub.subscriber_count == count and context.lifecycle.total == count:
            return
        time.sleep(0.01)
    raise AssertionError(f"expected {count} subscribers, have {context.hub.subscriber_count}")


def test_websocket_receives_new_blocks(client, context) -> None:
    with client.websocket_connect("/ws") as websocket:
        greeting = websocket.receive_json()
        assert greeting["type"] == "connection"
        assert greeting["status"] == "connected"

        wait_for_subscribers(context, 1)
        client.portal.call(context.events.put, BlockHead.from_rpc(make_block(101)))

        message = websocket.receive_json()
        assert message["type"] == "newBlock"
        assert message["data"]["number"] == "101"

    wait_for_subscribers(context, 0)


def test_rate_limit_after_retries_is_a_server_error(config, governor) -> None:
    rpc = FakeRPCClient()
    rpc.fail_with = RateLimitError("eth_blockNumber: request limit reached")
    context = GatewayContext(config, rpc_client=rpc, indexer=AsyncMock())
    context.chain = ChainService(config, rpc, governor, context.cache)

    with TestClient(get_app(context)) as client:
        response = client.get("/api/blockchain/latest-block")

    assert response.status_code == 503
    assert response.json() == {
        "success": False,
        "error": "eth_blockNumber: request limit reached",
    }
