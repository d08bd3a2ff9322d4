"""
EventNexus Autopilot - Retry Logic with Exponential Backoff
Retry decorator for async calls against the storage and social backends.
"""

import asyncio
import logging
import random
from functools import wraps
from typing import (
    Any,
    Callable,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Awaitable
)
from dataclasses import dataclass
from enum import Enum

from .exceptions import (
    AutopilotException,
    is_retryable_exception,
    get_retry_after,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryStrategy(Enum):
    """Retry backoff strategies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_JITTER = "exponential_jitter"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0

    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_JITTER
    exponential_base: float = 2.0
    jitter_factor: float = 0.5  # 0 to 1

    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)
    non_retryable_exceptions: Tuple[Type[Exception], ...] = ()

    log_retries: bool = True


class RetryExhausted(AutopilotException):
    """All retry attempts exhausted."""

    def __init__(
        self,
        function_name: str,
        attempts: int,
        last_exception: Exception,
        **kwargs
    ):
        super().__init__(
            message=f"Retry exhausted for '{function_name}' after {attempts} attempts",
            error_code="RETRY_001",
            cause=last_exception,
            **kwargs
        )
        self.details["function_name"] = function_name
        self.details["attempts"] = attempts
        self.details["last_exception_type"] = type(last_exception).__name__
        self.last_exception = last_exception


def calculate_delay(
    attempt: int,
    config: RetryConfig,
    exception: Optional[Exception] = None
) -> float:
    """
    Calculate delay before next retry attempt.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration
        exception: Exception that triggered the retry

    Returns:
        Delay in seconds
    """
    if exception:
        retry_after = get_retry_after(exception)
        if retry_after:
            return min(retry_after, config.max_delay)

    base = config.base_delay

    if config.strategy == RetryStrategy.FIXED:
        delay = base
    elif config.strategy == RetryStrategy.EXPONENTIAL:
        delay = base * (config.exponential_base ** attempt)
    else:
        exp_delay = base * (config.exponential_base ** attempt)
        delay = exp_delay + exp_delay * config.jitter_factor * random.random()

    return min(delay, config.max_delay)


def should_retry(
    exception: Exception,
    attempt: int,
    config: RetryConfig
) -> bool:
    """Determine if the exception type allows another attempt."""
    if config.non_retryable_exceptions:
        if isinstance(exception, config.non_retryable_exceptions):
            return False

    # Typed errors carry their own verdict
    if isinstance(exception, AutopilotException):
        return exception.is_retryable

    if isinstance(exception, config.retryable_exceptions):
        return True

    return is_retryable_exception(exception)


def retry_async(
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    non_retryable: Tuple[Type[Exception], ...] = (),
    log_retries: bool = True
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator for retrying async functions with exponential backoff.

    Example:
        @retry_async(
            exceptions=(httpx.TransportError,),
            max_retries=3,
            base_delay=0.5
        )
        async def fetch_rows():
            return await client.get("/rest/v1/campaigns")
    """
    config = RetryConfig(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
        strategy=RetryStrategy.EXPONENTIAL_JITTER if jitter else RetryStrategy.EXPONENTIAL,
        jitter_factor=0.5 if jitter else 0,
        retryable_exceptions=exceptions,
        non_retryable_exceptions=non_retryable,
        log_retries=log_retries
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Optional[Exception] = None

            for attempt in range(config.max_retries + 1):
                try:
                    result = await func(*args, **kwargs)

                    if config.log_retries and attempt > 0:
                        logger.info(
                            f"Retry succeeded for {func.__name__} on attempt {attempt + 1}"
                        )

                    return result

                except Exception as e:
                    last_exception = e

                    if not should_retry(e, attempt, config):
                        raise

                    if attempt >= config.max_retries:
                        break

                    delay = calculate_delay(attempt, config, e)

                    if config.log_retries:
                        logger.warning(
                            f"Retry {attempt + 1}/{config.max_retries} for {func.__name__} "
                            f"after {delay:.2f}s due to {type(e).__name__}: {e}"
                        )

                    await asyncio.sleep(delay)

            raise RetryExhausted(
                function_name=func.__name__,
                attempts=config.max_retries + 1,
                last_exception=last_exception
            ) from last_exception

        wrapper.get_retry_config = lambda: config
        return wrapper

    return decorator
