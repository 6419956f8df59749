"""
Timeout and bounded retry for external calls.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from ..config import RetryPolicy
from .logging_service import get_logger

logger = get_logger("retry")

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "external call",
) -> T:
    """
    Run an async operation under a per-call timeout, retrying on failure.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        policy: Attempt count, per-call timeout and backoff base
        retry_on: Exception types that are worth another attempt; anything
            else propagates immediately
        description: Label used in log lines

    Returns:
        The operation's result

    Raises:
        The last exception once attempts are exhausted. Timeouts surface as
        asyncio.TimeoutError.
    """
    retryable = tuple(retry_on) + (asyncio.TimeoutError,)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout_seconds)
        except retryable as e:
            if attempt >= policy.attempts:
                logger.warning(
                    f"{description} failed after {attempt} attempt(s): {e!r}",
                    extra={"attempts": attempt},
                )
                raise
            delay = policy.backoff_seconds * (2 ** (attempt - 1))
            logger.log(
                logging.DEBUG,
                f"{description} attempt {attempt} failed, retrying in {delay}s: {e!r}",
            )
            await asyncio.sleep(delay)
