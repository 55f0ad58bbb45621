"""Bounded retry with exponential backoff for persistence calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from narrative_ledger.errors import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for PersistenceError.

    Args:
        max_attempts: Maximum number of attempts (including the initial attempt)
        backoff_factor: Base delay in seconds (delay = backoff_factor * 2^attempt)
        max_backoff: Maximum backoff delay in seconds
    """

    max_attempts: int = 3
    backoff_factor: float = 0.05
    max_backoff: float = 2.0


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    *,
    description: str = "persistence call",
) -> T:
    """Run ``operation``, retrying only on PersistenceError.

    Re-raises the last PersistenceError once attempts are exhausted; every
    other exception propagates immediately.
    """
    attempts = max(1, config.max_attempts)
    for attempt in range(attempts):
        try:
            return await operation()
        except PersistenceError:
            if attempt + 1 >= attempts:
                logger.error("%s failed after %d attempt(s)", description, attempts)
                raise
            delay = min(config.backoff_factor * (2**attempt), config.max_backoff)
            logger.warning(
                "%s failed, retrying in %.2fs (attempt %d/%d)",
                description,
                delay,
                attempt + 1,
                attempts,
                exc_info=True,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
