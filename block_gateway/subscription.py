import asyncio
import itertools
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from loguru import logger

from block_gateway.errors import SubscriptionError

HeaderCallback = Callable[[Dict[str, Any]], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


class HeadSubscription:
    """
    A ``newHeads`` push subscription over the provider's websocket endpoint.

    The subscription counts as connected once the provider answers the
    ``eth_subscribe`` request with a subscription id. From then on every
    pushed header is handed to ``on_header``; a dropped socket or a provider
    error is reported once through ``on_error``.

    Methods:
        connect(timeout: float) -> None:
            Open the socket and wait for the subscription acknowledgement.
        unsubscribe() -> None:
            Cancel the subscription and close the socket.
    """

    def __init__(
        self,
        ws_url: str,
        on_header: HeaderCallback,
        on_error: ErrorCallback,
    ) -> None:
        self.ws_url = ws_url
        self.on_header = on_header
        self.on_error = on_error
        self.subscription_id: Optional[str] = None

        self._ids = itertools.count(1)
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._closing = False

    async def connect(self, timeout: float) -> None:
        """
        Open the websocket and subscribe to new heads.

        Args:
            timeout (float): Seconds to wait for the provider's acknowledgement.

        Raises:
            SubscriptionError: If the socket cannot be opened, the provider
                               rejects the subscription or does not answer
                               within ``timeout``.
        """
        try:
            await asyncio.wait_for(self._handshake(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            await self._close()
            raise SubscriptionError("Subscription acknowledgement timed out") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            await self._close()
            raise SubscriptionError(f"Subscription failed: {exc}") from exc
        except (SubscriptionError, asyncio.CancelledError):
            await self._close()
            raise

        self._reader = asyncio.create_task(self._read_headers())
        logger.info(f"Subscribed to new heads on {self.ws_url} ({self.subscription_id})")

    async def _handshake(self) -> None:
        self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(self.ws_url, heartbeat=60)
        request_id = next(self._ids)
        await self._ws.send_json(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "method": "eth_subscribe",
                "params": ["newHeads"],
            },
        )
        while True:
            message = await self._ws.receive_json()
            if message.get("id") != request_id:
                continue
            if "error" in message:
                raise SubscriptionError(f"eth_subscribe rejected: {message['error']}")
            self.subscription_id = message["result"]
            return

    async def _read_headers(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    if msg.type == aiohttp.WSMsgType.ERROR:
                        raise SubscriptionError(f"Websocket error: {self._ws.exception()}")
                    continue
                data = json.loads(msg.data)
                params = data.get("params") or {}
                if (
                    data.get("method") == "eth_subscription"
                    and params.get("subscription") == self.subscription_id
                ):
                    await self.on_header(params["result"])
            if not self._closing:
                raise SubscriptionError("Subscription socket closed by provider")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._closing:
                await self.on_error(exc)

    async def unsubscribe(self) -> None:
        """
        Cancel the subscription and release the socket.

        Raises:
            SubscriptionError: If the unsubscribe request could not be sent.
                               The socket is closed regardless.
        """
        self._closing = True
        try:
            if self._ws is not None and not self._ws.closed and self.subscription_id:
                await self._ws.send_json(
                    {
                        "jsonrpc": "2.0",
                        "id": next(self._ids),
                        "method": "eth_unsubscribe",
                        "params": [self.subscription_id],
                    },
                )
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise SubscriptionError(f"eth_unsubscribe failed: {exc}") from exc
        finally:
            await self._close()

    async def _close(self) -> None:
        self._closing = True
        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
        if self._ws is not None:
            await self._ws.close()
        if self._session is not None:
            await self._session.close()


async def subscribe_new_heads(
    ws_url: str,
    on_header: HeaderCallback,
    on_error: ErrorCallback,
    timeout: float,
) -> HeadSubscription:
    """Open a ``newHeads`` subscription and return its handle once acknowledged."""
    subscription = HeadSubscription(ws_url, on_header, on_error)
    await subscription.connect(timeout)
    return subscription
