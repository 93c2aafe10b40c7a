"""
Bounded re-fetch with a fixed delay, used to ride out ledger eventual consistency.
"""
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY_MS = 1000

# Indirection so tests can make delays instantaneous
_sleep = asyncio.sleep


async def invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """
    Call a function that may be synchronous or a coroutine function.

    Synchronous callables run in a worker thread so blocking transports
    never stall the event loop.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def retry_fetch(
    fn: Callable[[], Union[Awaitable[Optional[T]], Optional[T]]],
    attempts: int = DEFAULT_ATTEMPTS,
    delay_ms: int = DEFAULT_DELAY_MS,
) -> Optional[T]:
    """
    Call ``fn`` until it returns a value, at most ``attempts`` times.

    Every attempt after the first is preceded by a fixed delay. An attempt
    fails when ``fn`` raises or returns None. ``fn`` may be a coroutine
    function or a plain callable; plain callables run in a worker thread.

    Args:
        fn: Zero-argument fetch function
        attempts: Maximum number of attempts (at least 1)
        delay_ms: Delay before each retry in milliseconds

    Returns:
        The first non-None result, or None when every attempt failed
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            await _sleep(delay_ms / 1000)
        try:
            result = await invoke(fn)
        except Exception as e:
            logger.debug(f"Fetch attempt {attempt}/{attempts} failed: {e}")
            continue
        if result is not None:
            return result
        logger.debug(f"Fetch attempt {attempt}/{attempts} returned nothing")

    logger.warning(f"Fetch failed after {attempts} attempts")
    return None
