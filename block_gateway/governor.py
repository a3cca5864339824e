import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger

from block_gateway.errors import RateLimitError

R = TypeVar("R")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetrySchedule:
    """
    Retry state for one governed call.

    Attributes:
        max_attempts (int): Total attempts allowed, the first one included.
        base_delay (float): Delay unit in seconds; retry k waits base_delay * k.
        attempt (int): Attempts made so far.
    """

    max_attempts: int
    base_delay: float
    attempt: int = 0

    def record_attempt(self) -> None:
        self.attempt += 1

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def next_delay(self) -> float:
        return self.base_delay * self.attempt


class RetryGovernor:
    """
    Paces and retries every outbound chain call.

    Two rules apply process-wide: consecutive calls start at least
    ``min_interval`` seconds apart, and a call that fails with
    ``RateLimitError`` is retried with linear backoff up to ``max_attempts``
    times in total. Every other error propagates on the first failure.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None
        self._lock = asyncio.Lock()

    async def _pace(self) -> None:
        async with self._lock:
            if self._last_request is not None:
                wait = self.min_interval - (self._clock() - self._last_request)
                if wait > 0:
                    await self._sleep(wait)
            self._last_request = self._clock()

    async def run(
        self,
        operation: Callable[..., Awaitable[R]],
        *args: Any,
        **kwargs: Any,
    ) -> R:
        """
        Run ``operation(*args, **kwargs)`` under the pacing and retry rules.

        Args:
            operation (Callable[..., Awaitable[R]]): The coroutine function to call,
                                                     usually an RPCClient method.

        Returns:
            R: Whatever the operation returns on its first successful attempt.

        Raises:
            RateLimitError: If every attempt was rate limited.
            Exception: Any other error raised by the operation, unchanged.
        """
        schedule = RetrySchedule(self.max_attempts, self.base_delay)
        while True:
            await self._pace()
            schedule.record_attempt()
            try:
                return await operation(*args, **kwargs)
            except RateLimitError:
                if schedule.exhausted:
                    raise
                delay = schedule.next_delay
                logger.warning(
                    f"Rate limit reached, retrying in {delay}s "
                    f"(attempt {schedule.attempt}/{schedule.max_attempts})",
                )
                await self._sleep(delay)
