"""Retry with exponential backoff for asynchronous attempts."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from common.exceptions import RetryExhaustedError
from common.logging_config import get_logger

logger = get_logger(__name__)


async def retry_with_backoff(
    attempt_fn: Callable[[int, float], Awaitable[Optional[Any]]],
    max_attempts: int,
    base_delay: float,
    multiplier: float = 2.0,
    description: str = "operation"
) -> Any:
    """
    Run attempt_fn until it returns a non-None result.

    attempt_fn receives the 1-based attempt number and the current delay, and
    is responsible for spending up to that delay waiting for its own answer.
    The delay is multiplied after every unsuccessful attempt, so with
    max_attempts=3 and base_delay=0.1 attempts start at roughly 0, 0.1 and
    0.3 seconds and the last wait ends at 0.7 seconds.

    Args:
        attempt_fn: Coroutine function (attempt, delay) -> result or None
        max_attempts: Maximum number of attempts
        base_delay: Wait after the first attempt in seconds
        multiplier: Factor applied to the delay after each attempt
        description: Name used in log messages

    Returns:
        First non-None result

    Raises:
        RetryExhaustedError: If no attempt produced a result
    """
    delay = base_delay

    for attempt in range(1, max_attempts + 1):
        logger.debug(f"{description}: attempt {attempt}/{max_attempts} (wait {delay:.3f}s)")
        result = await attempt_fn(attempt, delay)
        if result is not None:
            return result
        delay *= multiplier

    raise RetryExhaustedError(
        f"{description} produced no result after {max_attempts} attempts",
        attempts=max_attempts
    )


async def wait_for_event(event: asyncio.Event, timeout: float) -> bool:
    """
    Wait up to timeout seconds for event.

    Returns:
        True if the event was set in time, False otherwise
    """
    try:
        await asyncio.wait_for(event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False
