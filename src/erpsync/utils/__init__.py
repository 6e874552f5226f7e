"""
Shared utilities.
"""

from .retry import RetryConfig, RetryResult, calculate_delay, retry_with_backoff, call_with_retry

__all__ = ["RetryConfig", "RetryResult", "calculate_delay", "retry_with_backoff", "call_with_retry"]
