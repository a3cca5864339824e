"""Wire formats of the messages pushed to subscribers, per transport kind."""

import json
import time
from enum import Enum
from typing import Any, Dict

from block_gateway.models import BlockHead, TrackerDegraded

SERVER_INFO = {
    "name": "block-gateway-mcp-server",
    "version": "2.0",
    "transport": "sse",
}


class TransportKind(str, Enum):
    WEBSOCKET = "websocket"
    SSE = "sse"
    MCP_SSE = "mcp-sse"


def _dumps(message: Dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


def _now_ms() -> int:
    return int(time.time() * 1000)


def block_message(kind: TransportKind, head: BlockHead) -> str:
    """
    Serialize a new head for one transport kind.

    WebSocket and SSE subscribers get the generic ``newBlock`` event with every
    value as a string; MCP-SSE subscribers get a JSON-RPC ``block/new``
    notification carrying the transaction count.
    """
    if kind is TransportKind.MCP_SSE:
        return _dumps(
            {
                "jsonrpc": "2.0",
                "method": "block/new",
                "params": {
                    "block": {
                        "number": str(head.number),
                        "hash": head.hash,
                        "timestamp": str(head.timestamp),
                        "transactions": head.transaction_count,
                    },
                },
            },
        )
    return _dumps(
        {
            "type": "newBlock",
            "data": {
                "number": str(head.number),
                "hash": head.hash,
                "timestamp": str(head.timestamp),
                "gasUsed": str(head.gas_used),
                "miner": head.miner,
            },
        },
    )


def error_message(kind: TransportKind, message: str) -> str:
    if kind is TransportKind.MCP_SSE:
        return _dumps(
            {
                "jsonrpc": "2.0",
                "method": "notifications/error",
                "params": {"message": message},
            },
        )
    return _dumps({"type": "error", "data": {"message": message}})


def degraded_message(kind: TransportKind, notice: TrackerDegraded) -> str:
    return error_message(kind, notice.message)


def connection_message() -> str:
    return _dumps({"type": "connection", "status": "connected", "timestamp": _now_ms()})


def current_block_message(block_number: int) -> str:
    return _dumps({"type": "current_block", "data": {"blockNumber": str(block_number)}})


def current_greeting_message(greeting: str) -> str:
    return _dumps({"type": "current_greeting", "data": {"greeting": greeting}})


def mcp_connected_message(client_id: str) -> str:
    return _dumps(
        {
            "jsonrpc": "2.0",
            "id": 0,
            "result": {
                "status": "connected",
                "clientId": client_id,
                "serverInfo": SERVER_INFO,
            },
        },
    )


def mcp_heartbeat_message() -> str:
    return _dumps(
        {
            "jsonrpc": "2.0",
            "method": "heartbeat",
            "params": {"timestamp": _now_ms(), "status": "alive"},
        },
    )
