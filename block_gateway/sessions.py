import asyncio
from typing import Dict, Optional

from loguru import logger

from block_gateway.envelopes import TransportKind
from block_gateway.governor import Sleep
from block_gateway.head_tracker import HeadTracker
from block_gateway.models import TrackerDegraded


class SessionLifecycle:
    """
    Starts the head tracker with the first subscriber and stops it with the last.

    Sessions are counted per transport kind, but the tracker follows the
    combined total: it runs while at least one WebSocket, SSE or MCP-SSE
    session is open and is idle otherwise. Transitions are serialized by a
    lock, so concurrent connects start the tracker once.

    If the tracker cannot start (its baseline head fetch failed), open
    sessions are told through an in-band error and activation is retried
    every ``retry_interval`` seconds until it succeeds or everyone leaves.
    """

    def __init__(
        self,
        tracker: HeadTracker,
        retry_interval: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.tracker = tracker
        self.retry_interval = retry_interval
        self._sleep = sleep
        self.sessions: Dict[TransportKind, int] = {kind: 0 for kind in TransportKind}
        self._lock = asyncio.Lock()
        self._retry_task: Optional[asyncio.Task[None]] = None

    @property
    def total(self) -> int:
        return sum(self.sessions.values())

    async def session_opened(self, kind: TransportKind) -> None:
        async with self._lock:
            self.sessions[kind] += 1
            logger.info(f"{kind.value} session opened ({self.total} active)")
            if self.total == 1:
                await self._activate()

    async def session_closed(self, kind: TransportKind) -> None:
        async with self._lock:
            if self.sessions[kind] == 0:
                return
            self.sessions[kind] -= 1
            logger.info(f"{kind.value} session closed ({self.total} active)")
            if self.total == 0:
                await self._deactivate()

    async def shutdown(self) -> None:
        async with self._lock:
            for kind in self.sessions:
                self.sessions[kind] = 0
            await self._deactivate()

    async def _activate(self) -> None:
        try:
            await self.tracker.start()
        except Exception as exc:
            logger.error(f"Error starting head tracker: {exc}")
            await self.tracker.events.put(
                TrackerDegraded(
                    message="Failed to fetch initial data, will retry shortly",
                    failure_streak=0,
                ),
            )
            if self._retry_task is None or self._retry_task.done():
                self._retry_task = asyncio.create_task(self._retry_activation())

    async def _retry_activation(self) -> None:
        while True:
            await self._sleep(self.retry_interval)
            async with self._lock:
                if self.total == 0 or self.tracker.state.active:
                    return
                try:
                    await self.tracker.start()
                    return
                except Exception as exc:
                    logger.error(f"Retrying head tracker start failed: {exc}")

    async def _deactivate(self) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            if self._retry_task is not asyncio.current_task():
                self._retry_task.cancel()
                await asyncio.gather(self._retry_task, return_exceptions=True)
        self._retry_task = None
        await self.tracker.stop()
