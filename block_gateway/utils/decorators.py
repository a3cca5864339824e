import asyncio
import functools
import time
from typing import Any, Callable, Tuple, TypeVar

from loguru import logger

C = TypeVar("C", bound=Callable[..., Any])


def log_execution(enabled: bool = True) -> Callable[[C], C]:
    """
    Decorator factory that logs how long the decorated call took.

    Args:
        enabled (bool): Flag to enable or disable logging.

    Returns:
        Callable: A decorator that wraps the target function or method.
    """

    def decorator(func: C) -> C:
        if not enabled:
            return func

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start = time.perf_counter()
                failed = True
                try:
                    result = await func(*args, **kwargs)
                    failed = False
                    return result
                finally:
                    _log_execution_details(func, start, args, failed)

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            failed = True
            try:
                result = func(*args, **kwargs)
                failed = False
                return result
            finally:
                _log_execution_details(func, start, args, failed)

        return sync_wrapper  # type: ignore

    return decorator


def _log_execution_details(
    f: Callable[..., Any],
    start: float,
    args: Tuple[Any, ...],
    failed: bool,
) -> None:
    """
    Logs execution details of the function or method.

    Args:
        f (Callable): The function or method that was executed.
        start (float): perf_counter value taken before the call.
        args (Tuple[Any, ...]): Arguments passed to the call, used to name the
                                owning class for methods.
        failed (bool): Whether the call raised.
    """
    elapsed = time.perf_counter() - start
    owner = f"{args[0].__class__.__name__}." if args and hasattr(args[0], f.__name__) else ""
    outcome = "failed" if failed else "ok"
    logger.debug(f"{owner}{f.__name__} {outcome} in {elapsed:f} seconds")
