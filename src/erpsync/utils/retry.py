"""
Retry logic with exponential backoff for remote calls.

The transport never retries; callers wrap remote operations here so the
policy (which errors, how many attempts) stays in one place.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type


logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including first try)
        initial_delay_ms: Initial delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        backoff_multiplier: Multiplier for exponential backoff
        jitter: Whether to add random jitter to delay
        attempt_limits: Per-exception-type attempt caps, tighter than max_attempts
    """
    max_attempts: int = 3
    initial_delay_ms: float = 500.0
    max_delay_ms: float = 8000.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    attempt_limits: Dict[Type[BaseException], int] = field(default_factory=dict)

    def limit_for(self, error: BaseException) -> int:
        for error_type, limit in self.attempt_limits.items():
            if isinstance(error, error_type):
                return min(limit, self.max_attempts)
        return self.max_attempts


@dataclass
class RetryResult:
    """
    Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        result: The result value if successful
        attempts: Number of attempts made
        error: The final error if failed
        error_history: List of errors from each attempt
    """
    success: bool
    result: Any = None
    attempts: int = 0
    error: Optional[BaseException] = None
    error_history: List[str] = field(default_factory=list)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay for a given attempt with exponential backoff.

    Args:
        attempt: Attempt number (0-based)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay_ms = min(
        config.initial_delay_ms * (config.backoff_multiplier ** attempt),
        config.max_delay_ms
    )

    # ±25% random variation
    if config.jitter:
        delay_ms *= 0.75 + (random.random() * 0.5)

    return delay_ms / 1000.0


def retry_with_backoff(
    operation: Callable[[], Any],
    config: RetryConfig,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult:
    """
    Execute an operation with retry and exponential backoff.

    Args:
        operation: Callable to execute (should take no arguments)
        config: Retry configuration
        retry_on: Tuple of exception types to retry on
        operation_name: Name for logging
        sleep: Sleep function (injectable for tests)

    Returns:
        RetryResult with success/failure info; ``error`` holds the last
        exception raised by the operation
    """
    error_history: List[str] = []
    attempt = 0

    while True:
        try:
            logger.debug(f"{operation_name}: attempt {attempt + 1}/{config.max_attempts}")
            result = operation()

            if attempt > 0:
                logger.info(f"{operation_name} succeeded after {attempt + 1} attempts")

            return RetryResult(
                success=True,
                result=result,
                attempts=attempt + 1,
                error_history=error_history,
            )

        except retry_on as e:
            error_history.append(str(e))
            limit = config.limit_for(e)
            logger.warning(
                f"{operation_name} failed on attempt {attempt + 1}/{limit}: {e}"
            )

            if attempt + 1 >= limit:
                logger.error(f"{operation_name} exhausted {limit} attempts")
                return RetryResult(
                    success=False,
                    attempts=attempt + 1,
                    error=e,
                    error_history=error_history,
                )

            delay = calculate_delay(attempt, config)
            logger.debug(f"Backing off for {delay:.3f}s before retry")
            sleep(delay)
            attempt += 1

        except Exception as e:
            logger.error(f"{operation_name} failed with non-retryable error: {e}")
            error_history.append(str(e))
            return RetryResult(
                success=False,
                attempts=attempt + 1,
                error=e,
                error_history=error_history,
            )


def call_with_retry(
    operation: Callable[[], Any],
    config: RetryConfig,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Like retry_with_backoff, but returns the value or re-raises the final error."""
    outcome = retry_with_backoff(operation, config, retry_on, operation_name, sleep)
    if outcome.success:
        return outcome.result
    raise outcome.error
