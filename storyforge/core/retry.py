"""
Retry utilities with exponential backoff.

Retries failed async operations, mainly the Gemini text calls.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from .exceptions import GenerationError
from .logging_config import get_logger

logger = get_logger("core.retry")

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # Base delay in seconds
    max_delay: float = 60.0  # Maximum delay in seconds
    exponential_base: float = 2.0  # Multiplier for exponential backoff
    jitter: bool = True  # Add random jitter to prevent thundering herd
    jitter_range: Tuple[float, float] = (0.5, 1.5)  # Jitter multiplier range
    retryable_exceptions: Tuple[Type[Exception], ...] = (
        Exception,  # Default: retry all exceptions
    )
    # Final say on whether a caught exception is retried
    should_retry: Optional[Callable[[Exception], bool]] = None


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_delay(
    attempt: int,
    config: RetryConfig
) -> float:
    """
    Calculate delay before next retry attempt.

    Uses exponential backoff with optional jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds before next attempt
    """
    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay *= random.uniform(*config.jitter_range)

    return delay


def is_transient_generation_error(error: Exception) -> bool:
    """
    Transient = server-side (5xx), timeout or transport failure.

    Quota errors are never transient: they surface to the caller unchanged.
    """
    if isinstance(error, GenerationError):
        if error.is_quota:
            return False
        return error.status_code is None or error.status_code >= 500
    return False


async def retry_async_call(
    func: Callable[..., T],
    *args: Any,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    **kwargs: Any
) -> T:
    """
    Retry an async function call with exponential backoff.

    Args:
        func: Async function to call
        *args: Positional arguments for the function
        config: Retry configuration (uses defaults if not provided)
        on_retry: Optional callback called on each retry
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function call

    Example:
        result = await retry_async_call(
            client.generate_content,
            model, body,
            config=TEXT_RETRY_CONFIG
        )
    """
    config = config or DEFAULT_RETRY_CONFIG

    for attempt in range(config.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if config.should_retry is not None and not config.should_retry(e):
                raise

            if attempt >= config.max_retries:
                logger.error(
                    f"All {config.max_retries + 1} attempts failed. "
                    f"Last error: {e}"
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                f"Attempt {attempt + 1}/{config.max_retries + 1} failed: {e}. "
                f"Retrying in {delay:.2f}s..."
            )

            if on_retry:
                on_retry(e, attempt)

            await asyncio.sleep(delay)

    raise RuntimeError("Retry logic failed unexpectedly")


# Text and translation calls: retry transient failures, never quota
TEXT_RETRY_CONFIG = RetryConfig(
    max_retries=3,
    base_delay=2.0,
    max_delay=30.0,
    exponential_base=2.0,
    jitter=True,
    retryable_exceptions=(GenerationError,),
    should_retry=is_transient_generation_error,
)
