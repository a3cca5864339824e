import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger

from block_gateway import envelopes
from block_gateway.envelopes import TransportKind
from block_gateway.errors import SinkClosedError
from block_gateway.head_tracker import TrackerEvent
from block_gateway.models import BlockHead
from block_gateway.sessions import SessionLifecycle
from block_gateway.sinks import Sink


@dataclass(eq=False)
class Subscriber:
    """
    A live subscriber connection owned by the hub.

    Attributes:
        kind (TransportKind): Protocol spoken on the connection.
        sink (Sink): Write side of the connection.
        id (str): Opaque unique identifier.
        last_delivered (Optional[int]): Number of the last block delivered,
                                        used to never deliver a block twice.
    """

    kind: TransportKind
    sink: Sink
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    last_delivered: Optional[int] = None


class FanoutHub:
    """
    FanoutHub owns every subscriber and broadcasts tracker events to them.

    It is the single consumer of the head tracker's event queue. Each event
    is serialized once per transport kind and written to all matching
    subscribers concurrently. A subscriber whose write fails or times out is
    dropped without affecting anybody else.

    Methods:
        subscribe(kind: TransportKind, sink: Sink) -> Subscriber:
        unsubscribe(subscriber: Subscriber) -> None:
        broadcast(event: TrackerEvent) -> int:
        start() -> None:
        stop() -> None:
    """

    def __init__(
        self,
        events: "asyncio.Queue[TrackerEvent]",
        lifecycle: SessionLifecycle,
        send_timeout: float = 5.0,
    ) -> None:
        self.events = events
        self.lifecycle = lifecycle
        self.send_timeout = send_timeout
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()
        self._consumer: Optional[asyncio.Task[None]] = None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def count_by_kind(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in TransportKind}
        for subscriber in list(self._subscribers.values()):
            counts[subscriber.kind.value] += 1
        return counts

    async def subscribe(self, kind: TransportKind, sink: Sink) -> Subscriber:
        """
        Register a sink and start head tracking if it is the first one.

        Args:
            kind (TransportKind): Protocol the sink speaks.
            sink (Sink): Connection to write events to.

        Returns:
            Subscriber: Handle to pass to ``unsubscribe``.
        """
        subscriber = Subscriber(kind=kind, sink=sink)
        async with self._lock:
            self._subscribers[subscriber.id] = subscriber
        logger.info(f"{kind.value} subscriber {subscriber.id} connected")
        await self.lifecycle.session_opened(kind)
        return subscriber

    async def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove a subscriber; stops head tracking if it was the last one."""
        async with self._lock:
            removed = self._subscribers.pop(subscriber.id, None)
        if removed is None:
            return
        logger.info(f"{subscriber.kind.value} subscriber {subscriber.id} disconnected")
        await self.lifecycle.session_closed(subscriber.kind)

    async def broadcast(self, event: TrackerEvent) -> int:
        """
        Deliver one event to every live subscriber.

        Args:
            event (TrackerEvent): A new head or a degraded-tracker notice.

        Returns:
            int: Number of subscribers the event was written to.
        """
        async with self._lock:
            targets = list(self._subscribers.values())

        number = event.number if isinstance(event, BlockHead) else None
        if number is not None:
            targets = [
                s for s in targets if s.last_delivered is None or s.last_delivered < number
            ]
        if not targets:
            return 0

        payloads: Dict[TransportKind, str] = {}
        for subscriber in targets:
            if subscriber.kind not in payloads:
                payloads[subscriber.kind] = self._render(subscriber.kind, event)

        results = await asyncio.gather(
            *(self._deliver(s, payloads[s.kind], number) for s in targets),
        )

        dead = [s for s, ok in zip(targets, results) if not ok]
        for subscriber in dead:
            await self.unsubscribe(subscriber)
            await self._close_sink(subscriber)

        return len(targets) - len(dead)

    async def _close_sink(self, subscriber: Subscriber) -> None:
        try:
            await asyncio.wait_for(subscriber.sink.close(), timeout=self.send_timeout)
        except Exception as exc:
            logger.error(f"Error closing subscriber {subscriber.id}: {exc}")

    @staticmethod
    def _render(kind: TransportKind, event: TrackerEvent) -> str:
        if isinstance(event, BlockHead):
            return envelopes.block_message(kind, event)
        return envelopes.degraded_message(kind, event)

    async def _deliver(self, subscriber: Subscriber, text: str, number: Optional[int]) -> bool:
        try:
            await asyncio.wait_for(subscriber.sink.send(text), timeout=self.send_timeout)
        except (SinkClosedError, asyncio.TimeoutError) as exc:
            logger.info(f"Dropping subscriber {subscriber.id}: {str(exc) or 'write timed out'}")
            return False
        except Exception as exc:
            logger.error(f"Error broadcasting to subscriber {subscriber.id}: {exc}")
            return False
        if number is not None:
            subscriber.last_delivered = number
        return True

    async def run(self) -> None:
        """Consume tracker events forever, broadcasting each one in order."""
        while True:
            event = await self.events.get()
            try:
                delivered = await self.broadcast(event)
                if isinstance(event, BlockHead):
                    logger.info(f"Block {event.number} broadcast to {delivered} subscribers")
            except Exception as exc:
                logger.exception(f"Error broadcasting event: {exc}")
            finally:
                self.events.task_done()

    def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Stop consuming events and close every subscriber connection."""
        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None

        async with self._lock:
            subscribers: List[Subscriber] = list(self._subscribers.values())
            self._subscribers.clear()
        for subscriber in subscribers:
            await self._close_sink(subscriber)
        await self.lifecycle.shutdown()
