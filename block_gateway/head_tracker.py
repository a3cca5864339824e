import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from loguru import logger

from block_gateway.governor import RetryGovernor, Sleep
from block_gateway.models import BlockHead, TrackerDegraded
from block_gateway.rpc_client import RPCClient

TrackerEvent = Union[BlockHead, TrackerDegraded]


class SubscriptionHandle(Protocol):
    async def unsubscribe(self) -> None: ...


SubscribeNewHeads = Callable[
    [Callable[[Dict[str, Any]], Awaitable[None]], Callable[[Exception], Awaitable[None]]],
    Awaitable[SubscriptionHandle],
]


class TrackerMode(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    POLLING = "polling"
    SUBSCRIBED = "subscribed"
    STOPPING = "stopping"


@dataclass
class TrackerState:
    """
    Mutable state of the process-wide head tracker.

    Attributes:
        last_seen_head (Optional[int]): Highest block number announced (or the
                                        baseline taken at start).
        mode (TrackerMode): Current state-machine state.
        failure_streak (int): Consecutive failed poll iterations.
        subscription_disabled (bool): Set once a push subscription failed; the
                                      tracker then only polls for the rest of
                                      the process lifetime.
    """

    last_seen_head: Optional[int] = None
    mode: TrackerMode = TrackerMode.IDLE
    failure_streak: int = 0
    subscription_disabled: bool = False

    @property
    def active(self) -> bool:
        return self.mode in (TrackerMode.POLLING, TrackerMode.SUBSCRIBED)


class HeadTracker:
    """
    HeadTracker detects chain head advances and emits one event per new head.

    Heads are detected either by a push subscription or, as the degraded mode
    always available, by polling the latest block number. Every detected head
    goes through the same rule: it is emitted only when its number is strictly
    greater than ``last_seen_head``. Emitted events are put on ``events``,
    which the fan-out hub consumes.

    When polling observes a head several blocks ahead, only that head is
    fetched and announced; the blocks in between are not backfilled.

    Methods:
        start() -> bool:
            Take a baseline head and begin watching. No-op unless idle.
        stop() -> None:
            Stop watching and return to idle.
        poll_once() -> float:
            Run one polling iteration and return the delay before the next one.
    """

    def __init__(
        self,
        rpc_client: RPCClient,
        governor: RetryGovernor,
        events: "asyncio.Queue[TrackerEvent]",
        subscribe_new_heads: Optional[SubscribeNewHeads] = None,
        poll_interval: float = 2.0,
        error_interval: float = 5.0,
        max_consecutive_errors: int = 3,
        subscription_timeout: float = 10.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.rpc_client = rpc_client
        self.governor = governor
        self.events = events
        self.subscribe_new_heads = subscribe_new_heads
        self.poll_interval = poll_interval
        self.error_interval = error_interval
        self.max_consecutive_errors = max_consecutive_errors
        self.subscription_timeout = subscription_timeout
        self._sleep = sleep

        self.state = TrackerState()
        self._lock = asyncio.Lock()
        self._advance_lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._subscription: Optional[SubscriptionHandle] = None

    @property
    def mode(self) -> TrackerMode:
        return self.state.mode

    async def start(self) -> bool:
        """
        Leave the idle state: take the baseline head, then subscribe or poll.

        The baseline block itself is never announced. A push subscription is
        attempted first when one is available and has not failed before; any
        error or a missing acknowledgement within ``subscription_timeout``
        falls back to polling.

        Returns:
            bool: True if this call started the tracker, False if it was
                  already running.

        Raises:
            Exception: If the baseline head cannot be fetched. The tracker is
                       left idle.
        """
        async with self._lock:
            if self.state.mode != TrackerMode.IDLE:
                return False
            self.state.mode = TrackerMode.STARTING

            try:
                baseline = await self.governor.run(self.rpc_client.get_latest_block_number)
            except Exception:
                self.state.mode = TrackerMode.IDLE
                raise
            self.state.last_seen_head = baseline
            self.state.failure_streak = 0
            logger.info(f"Head tracker baseline: block {baseline}")

            if self.subscribe_new_heads is not None and not self.state.subscription_disabled:
                try:
                    self._subscription = await asyncio.wait_for(
                        self.subscribe_new_heads(self._on_header, self._on_subscription_error),
                        timeout=self.subscription_timeout,
                    )
                    self.state.mode = TrackerMode.SUBSCRIBED
                    logger.info("Head tracker subscribed to new heads")
                    return True
                except Exception as exc:
                    logger.warning(f"Head subscription unavailable, falling back to polling: {exc}")
                    self.state.subscription_disabled = True

            self._start_polling()
            return True

    async def stop(self) -> None:
        """
        Stop watching the chain and return to idle.

        A failure to unsubscribe is logged and does not prevent the transition.
        The next ``start`` takes a fresh baseline.
        """
        async with self._lock:
            if self.state.mode == TrackerMode.IDLE:
                return
            self.state.mode = TrackerMode.STOPPING

            if self._poll_task is not None:
                self._poll_task.cancel()
                await asyncio.gather(self._poll_task, return_exceptions=True)
                self._poll_task = None
                logger.info("Block polling stopped")

            if self._subscription is not None:
                subscription, self._subscription = self._subscription, None
                try:
                    await subscription.unsubscribe()
                    logger.info("Unsubscribed from new heads")
                except Exception as exc:
                    logger.error(f"Error unsubscribing from new heads: {exc}")

            self.state.last_seen_head = None
            self.state.failure_streak = 0
            self.state.mode = TrackerMode.IDLE

    def _start_polling(self) -> None:
        self.state.mode = TrackerMode.POLLING
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Block polling started every {self.poll_interval}s")

    async def _poll_loop(self) -> None:
        while True:
            delay = await self.poll_once()
            await self._sleep(delay)

    async def poll_once(self) -> float:
        """
        Run one polling iteration.

        Returns:
            float: Seconds to wait before the next iteration; the error
                   interval after a failure, the normal interval otherwise.
        """
        try:
            current = await self.governor.run(self.rpc_client.get_latest_block_number)
            last = self.state.last_seen_head
            if last is None or current > last:
                block = await self.governor.run(
                    self.rpc_client.get_block_by_number, current, True,
                )
                if block:
                    await self._advance(BlockHead.from_rpc(block))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.state.failure_streak += 1
            logger.error(
                f"Error in block polling ({self.state.failure_streak} in a row): {exc}",
            )
            if self.state.failure_streak == self.max_consecutive_errors:
                await self.events.put(
                    TrackerDegraded(failure_streak=self.state.failure_streak),
                )
            return self.error_interval

        self.state.failure_streak = 0
        return self.poll_interval

    async def _advance(self, head: BlockHead) -> bool:
        async with self._advance_lock:
            last = self.state.last_seen_head
            if last is not None and head.number <= last:
                return False
            self.state.last_seen_head = head.number
            await self.events.put(head)
            logger.info(f"New block detected: {head.number}")
            return True

    async def _on_header(self, raw: Dict[str, Any]) -> None:
        if not raw:
            logger.warning("Received empty block header")
            return
        await self._advance(BlockHead.from_rpc(raw))

    async def _on_subscription_error(self, exc: Exception) -> None:
        logger.error(f"Error in block header subscription: {exc}")
        async with self._lock:
            if self.state.mode != TrackerMode.SUBSCRIBED:
                return
            self.state.subscription_disabled = True
            subscription, self._subscription = self._subscription, None
            if subscription is not None:
                try:
                    await subscription.unsubscribe()
                except Exception as unsubscribe_exc:
                    logger.error(f"Error unsubscribing from new heads: {unsubscribe_exc}")
            logger.info("Falling back to polling due to subscription error")
            self._start_polling()
