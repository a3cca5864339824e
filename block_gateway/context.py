import asyncio
from typing import Optional

from loguru import logger

from block_gateway.cache import ResultCache
from block_gateway.chain_service import GREETING_KEY, LATEST_BLOCK_KEY, ChainService
from block_gateway.chat import ChatResponder
from block_gateway.config import Settings
from block_gateway.governor import RetryGovernor
from block_gateway.head_tracker import HeadTracker, SubscribeNewHeads, TrackerEvent
from block_gateway.hub import FanoutHub
from block_gateway.indexer_client import IndexerClient
from block_gateway.rpc_client import RPCClient
from block_gateway.sessions import SessionLifecycle
from block_gateway.subscription import subscribe_new_heads


class GatewayContext:
    """
    Owns every long-lived component of the gateway.

    Built once at application startup and stored on ``app.state``; route
    handlers reach the components through it instead of module globals.

    Attributes:
        config (Settings): Service settings.
        rpc_client (RPCClient): Chain JSON-RPC client.
        governor (RetryGovernor): Process-wide pacing and rate-limit retry.
        cache (ResultCache): Latest block and greeting cache.
        tracker (HeadTracker): Chain head watcher.
        lifecycle (SessionLifecycle): Starts and stops the tracker with sessions.
        hub (FanoutHub): Subscriber registry and broadcaster.
        chain (ChainService): Chain reads and writes.
        indexer (IndexerClient): Indexing API pass-through.
        chat (ChatResponder): Keyword chat bot.
    """

    def __init__(
        self,
        config: Settings,
        rpc_client: Optional[RPCClient] = None,
        indexer: Optional[IndexerClient] = None,
        subscribe: Optional[SubscribeNewHeads] = None,
    ) -> None:
        self.config = config
        self.rpc_client = rpc_client or RPCClient(
            str(config.rpc_endpoint), timeout=config.rpc_timeout,
        )
        self.governor = RetryGovernor(
            min_interval=config.min_request_interval,
            max_attempts=config.max_retries,
            base_delay=config.retry_delay,
        )
        self.cache = ResultCache(
            {
                LATEST_BLOCK_KEY: config.latest_block_ttl,
                GREETING_KEY: config.greeting_ttl,
            },
        )
        self.events: "asyncio.Queue[TrackerEvent]" = asyncio.Queue()

        if subscribe is None and config.subscription_supported:
            ws_url = str(config.ws_endpoint)

            async def subscribe(on_header, on_error):  # type: ignore[no-redef]
                return await subscribe_new_heads(
                    ws_url, on_header, on_error, config.subscription_timeout,
                )

        self.tracker = HeadTracker(
            self.rpc_client,
            self.governor,
            self.events,
            subscribe_new_heads=subscribe,
            poll_interval=config.poll_interval,
            error_interval=config.error_poll_interval,
            max_consecutive_errors=config.max_consecutive_errors,
            subscription_timeout=config.subscription_timeout,
        )
        self.lifecycle = SessionLifecycle(self.tracker, retry_interval=config.error_poll_interval)
        self.hub = FanoutHub(self.events, self.lifecycle)
        self.chain = ChainService(config, self.rpc_client, self.governor, self.cache)
        self.indexer = indexer or IndexerClient(
            config.blockvision_base_url, config.blockvision_api_key,
        )
        self.chat = ChatResponder(self.indexer, self.chain)

    async def start(self) -> None:
        self.hub.start()
        mode = "subscription" if self.tracker.subscribe_new_heads else "polling"
        logger.info(f"Gateway started against {self.config.rpc_url} ({mode} mode)")

    async def close(self) -> None:
        """Disconnect every subscriber, stop head tracking and close HTTP sessions."""
        await self.hub.stop()
        await self.rpc_client.close()
        await self.indexer.close()
        logger.info("Gateway stopped")
