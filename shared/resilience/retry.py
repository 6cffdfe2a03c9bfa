"""
Retry With Backoff for Transient Store Failures

Re-runs a whole unit of work when the store reports a transient failure.
The unit is a zero-argument coroutine factory so every attempt starts from a
fresh read; nothing is resumed mid-sequence.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from shared.config import settings
from shared.domain.exceptions import StoreUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for store retries."""

    attempts: int = 3
    base_delay: float = 0.05  # Seconds; doubled after each failed attempt

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            attempts=settings.store_retry_attempts,
            base_delay=settings.store_retry_base_delay,
        )


async def run_with_retry(
    unit: Callable[[], Awaitable[T]],
    operation: str,
    config: RetryConfig | None = None,
) -> T:
    """
    Run ``unit`` and re-run it on StoreUnavailableError.

    Args:
        unit: Coroutine factory executing one complete atomic unit
        operation: Operation name for logging
        config: Retry configuration (defaults to settings)

    Returns:
        Result of the first successful attempt

    Raises:
        StoreUnavailableError: If every attempt failed
    """
    config = config or RetryConfig.from_settings()

    for attempt in range(config.attempts):
        try:
            return await unit()
        except StoreUnavailableError as e:
            if attempt + 1 >= config.attempts:
                logger.error(
                    "Store unavailable - giving up",
                    operation=operation,
                    attempts=config.attempts,
                    error=e.message,
                )
                raise
            wait_time = config.base_delay * (2 ** attempt)  # Exponential backoff
            logger.warning(
                "Store unavailable, retrying unit",
                operation=operation,
                attempt=attempt + 1,
                max_attempts=config.attempts,
                wait_seconds=wait_time,
                error=e.message,
            )
            await asyncio.sleep(wait_time)

    raise StoreUnavailableError(operation=operation)
