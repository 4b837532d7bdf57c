"""
Retry mechanism for transient network failures.
"""

import asyncio
import random
from typing import Any, Optional, Callable, Awaitable

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 backoff_strategy: str = "exponential"):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""
    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


async def retry_async(func: Callable[[], Awaitable[Any]],
                      exceptions: tuple = (Exception,),
                      config: Optional[RetryConfig] = None,
                      name: Optional[str] = None) -> Any:
    """Await ``func()`` until it succeeds or the attempt budget is spent.

    ``func`` is a factory: a fresh coroutine is created for every attempt.
    Only exceptions listed in ``exceptions`` are retried; anything else
    propagates immediately. Exhaustion raises :class:`RetryError` carrying
    the last exception.
    """
    if config is None:
        config = RetryConfig()

    op_name = name or getattr(func, "__name__", "operation")
    logger = get_logger(f"retry.{op_name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func()

            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, function=op_name)

            return result

        except exceptions as e:
            if attempt == config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    function=op_name,
                    error=str(e)
                )
                raise RetryError(
                    f"Function {op_name} failed after {config.max_attempts} attempts",
                    last_exception=e,
                    attempts=config.max_attempts
                ) from e

            delay = _calculate_delay(attempt, config)

            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                function=op_name,
                error=str(e)
            )

            await asyncio.sleep(delay)

    # max_attempts >= 1 so the loop always returns or raises
    raise AssertionError("unreachable")


def retry_on_exception(exceptions: tuple = (Exception,),
                       config: Optional[RetryConfig] = None) -> Callable:
    """Decorator for retrying async functions on exceptions."""

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        async def wrapper(*args, **kwargs) -> Any:
            return await retry_async(
                lambda: func(*args, **kwargs),
                exceptions,
                config,
                name=func.__name__
            )

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper

    return decorator


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay between retry attempts."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
