import json

from block_gateway import envelopes
from block_gateway.envelopes import TransportKind
from block_gateway.models import BlockHead


def test_generic_block_message_uses_strings_for_large_values() -> None:
    head = BlockHead(
        number=2**60,
        hash="0xabc",
        timestamp=1_700_000_000,
        gas_used=2**64,
        miner="0x01",
        transaction_count=7,
    )

    message = json.loads(envelopes.block_message(TransportKind.SSE, head))

    assert message["data"]["number"] == str(2**60)
    assert message["data"]["gasUsed"] == str(2**64)
    assert "transactions" not in message["data"]


def test_mcp_block_message_carries_transaction_count() -> None:
    head = BlockHead(number=5, hash="0xabc", timestamp=1, transaction_count=7)

    message = json.loads(envelopes.block_message(TransportKind.MCP_SSE, head))

    assert message["method"] == "block/new"
    assert message["params"]["block"]["transactions"] == 7
    assert message["params"]["block"]["number"] == "5"


def test_connection_greetings() -> None:
    connection = json.loads(envelopes.connection_message())
    assert connection["type"] == "connection"
    assert connection["status"] == "connected"
    assert isinstance(connection["timestamp"], int)

    connected = json.loads(envelopes.mcp_connected_message("abc"))
    assert connected["id"] == 0
    assert connected["result"]["clientId"] == "abc"
    assert connected["result"]["serverInfo"]["transport"] == "sse"


def test_mcp_heartbeat() -> None:
    heartbeat = json.loads(envelopes.mcp_heartbeat_message())

    assert heartbeat["method"] == "heartbeat"
    assert heartbeat["params"]["status"] == "alive"


def test_initial_sse_messages() -> None:
    assert json.loads(envelopes.current_block_message(2**55)) == {
        "type": "current_block",
        "data": {"blockNumber": str(2**55)},
    }
    assert json.loads(envelopes.current_greeting_message("gm")) == {
        "type": "current_greeting",
        "data": {"greeting": "gm"},
    }
