import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from src.domain.errors import GameError

T = TypeVar("T")


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
    description: str = "operation",
) -> T:
    """Run operation, retrying transient failures with a linear backoff

    Only GameErrors flagged as retryable are retried; business failures such as
    InsufficientFunds are raised on the first attempt.

    Args:
        operation (Callable[[], Awaitable[T]]): Zero-argument coroutine factory
        max_retries (int): Total attempts
        delay (float): Base delay, attempt n waits delay * n seconds

    Returns:
        T: Result of the first successful attempt
    """
    last_error: GameError | None = None
    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except GameError as e:
            if not e.retryable:
                raise
            last_error = e
            logging.warning(f"{description} failed (attempt {attempt}/{max_retries}): {e}")
            if attempt < max_retries:
                await asyncio.sleep(delay * attempt)
    raise last_error
