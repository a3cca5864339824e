import asyncio
import json
import uuid
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from block_gateway import envelopes
from block_gateway.context import GatewayContext
from block_gateway.envelopes import TransportKind
from block_gateway.errors import GatewayError
from block_gateway.hub import Subscriber
from block_gateway.models import JsonRpcRequest
from block_gateway.sinks import QueueSink, WebSocketSink
from block_gateway.web.dependencies import get_context

router = APIRouter()

INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
SERVER_ERROR = -32000

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def _sse_heartbeat() -> ServerSentEvent:
    return ServerSentEvent(comment="heartbeat")


def _mcp_heartbeat() -> ServerSentEvent:
    return ServerSentEvent(data=envelopes.mcp_heartbeat_message())


async def _stream(
    request: Request,
    context: GatewayContext,
    kind: TransportKind,
    opening: List[str],
    heartbeat: Callable[[], ServerSentEvent],
) -> AsyncGenerator[ServerSentEvent, None]:
    """
    Relay hub events to one streaming HTTP client.

    The client is registered with the hub for as long as the generator runs
    and removed when it ends, whether the client went away, the hub closed the
    sink or the response was cancelled.

    Args:
        request (Request): The streaming request, polled for disconnects.
        context (GatewayContext): Gateway components.
        kind (TransportKind): Envelope family the client receives.
        opening (List[str]): Messages sent before any hub event.
        heartbeat (Callable[[], ServerSentEvent]): Builds the frame sent after
            ``heartbeat_interval`` seconds without traffic.
    """
    sink = QueueSink()
    subscriber: Optional[Subscriber] = None
    try:
        for message in opening:
            yield ServerSentEvent(data=message)
        subscriber = await context.hub.subscribe(kind, sink)

        while True:
            if await request.is_disconnected():
                break
            try:
                message = await asyncio.wait_for(
                    sink.queue.get(), timeout=context.config.heartbeat_interval,
                )
            except asyncio.TimeoutError:
                yield heartbeat()
                continue
            if message is None:
                break
            yield ServerSentEvent(data=message)
    finally:
        sink.closed = True
        if subscriber is not None:
            await asyncio.shield(context.hub.unsubscribe(subscriber))


async def _initial_sse_messages(context: GatewayContext) -> List[str]:
    try:
        messages = [
            envelopes.current_block_message(await context.chain.get_latest_block_number()),
        ]
        greeting = await context.chain.get_data()
        if greeting:
            messages.append(envelopes.current_greeting_message(greeting))
        return messages
    except GatewayError as exc:
        logger.error(f"Error sending initial SSE data: {exc.message}")
        return [
            envelopes.error_message(
                TransportKind.SSE, "Failed to fetch initial data, will retry shortly",
            ),
        ]


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    context: GatewayContext = Depends(get_context),
) -> None:
    """
    Push new blocks to a WebSocket client.

    Incoming frames are only logged; the client cannot send commands.
    """
    await websocket.accept()
    await websocket.send_text(envelopes.connection_message())
    subscriber = await context.hub.subscribe(TransportKind.WEBSOCKET, WebSocketSink(websocket))
    try:
        while True:
            text = await websocket.receive_text()
            try:
                logger.info(f"Received WebSocket message: {json.loads(text)}")
            except ValueError:
                logger.error(f"Error processing WebSocket message: {text!r}")
    except WebSocketDisconnect:
        pass
    finally:
        await context.hub.unsubscribe(subscriber)


@router.get("/sse")
async def sse_endpoint(
    request: Request,
    context: GatewayContext = Depends(get_context),
) -> EventSourceResponse:
    """
    Stream new blocks as server-sent events.

    The stream opens with the current block number and greeting.
    """
    opening = await _initial_sse_messages(context)
    logger.info("New SSE client connected")
    return EventSourceResponse(
        _stream(request, context, TransportKind.SSE, opening, _sse_heartbeat),
        ping=int(context.config.heartbeat_interval),
        ping_message_factory=_sse_heartbeat,
        headers=SSE_HEADERS,
    )


@router.get("/api/events")
async def legacy_events() -> RedirectResponse:
    return RedirectResponse(url="/sse", status_code=307)


@router.get("/mcp-sse")
async def mcp_sse_endpoint(
    request: Request,
    context: GatewayContext = Depends(get_context),
) -> EventSourceResponse:
    """Stream new blocks as JSON-RPC notifications to an MCP client."""
    client_id = uuid.uuid4().hex
    logger.info(f"MCP SSE client connected: {client_id}")
    return EventSourceResponse(
        _stream(
            request,
            context,
            TransportKind.MCP_SSE,
            [envelopes.mcp_connected_message(client_id)],
            _mcp_heartbeat,
        ),
        ping=int(context.config.heartbeat_interval),
        ping_message_factory=_mcp_heartbeat,
        headers=SSE_HEADERS,
    )


def _rpc_error(request_id: Any, code: int, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        },
    )


@router.post("/mcp")
async def mcp_endpoint(
    request: Request,
    context: GatewayContext = Depends(get_context),
) -> JSONResponse:
    """
    Answer one MCP JSON-RPC request.

    Supported methods are ``block/latest`` and ``greeting/get``.
    """
    try:
        payload: Dict[str, Any] = await request.json()
    except ValueError:
        return _rpc_error(None, INVALID_REQUEST, "Invalid Request", 400)
    if not isinstance(payload, dict):
        return _rpc_error(None, INVALID_REQUEST, "Invalid Request", 400)

    try:
        rpc = JsonRpcRequest.model_validate(payload)
    except ValidationError:
        return _rpc_error(payload.get("id"), INVALID_REQUEST, "Invalid Request", 400)
    if rpc.jsonrpc != "2.0" or not rpc.method:
        return _rpc_error(rpc.id, INVALID_REQUEST, "Invalid Request", 400)

    try:
        if rpc.method == "block/latest":
            block_number = await context.chain.get_latest_block_number()
            result: Dict[str, Any] = {"blockNumber": str(block_number)}
        elif rpc.method == "greeting/get":
            result = {"greeting": await context.chain.get_data() or ""}
        else:
            return _rpc_error(rpc.id, METHOD_NOT_FOUND, "Method not found", 200)
    except GatewayError as exc:
        logger.error(f"Error handling MCP request: {exc.message}")
        return _rpc_error(rpc.id, SERVER_ERROR, "Server error", 500)

    return JSONResponse(content={"jsonrpc": "2.0", "id": rpc.id, "result": result})
