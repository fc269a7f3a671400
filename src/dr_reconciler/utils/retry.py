"""Backoff policy and retry strategy for transient remote failures."""

import time
import random
from dataclasses import dataclass
from typing import Callable, TypeVar, Optional
from botocore.exceptions import ClientError
from dr_reconciler.utils.errors import CancelledError, ReconcileError
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: min(base_delay * multiplier ** attempt, max_delay)."""

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: bool = False

    def delay(self, attempt: int) -> float:
        """Calculate the delay after a failed attempt.

        Args:
            attempt: Failed attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)

        # Up to 10% random jitter
        if self.jitter and delay > 0:
            delay += random.uniform(0, delay * 0.1)

        return delay

    @classmethod
    def fixed(cls, interval: float) -> 'BackoffPolicy':
        """A policy that always waits the same interval."""
        return cls(base_delay=interval, multiplier=1.0, max_delay=interval, jitter=False)


class RetryStrategy:
    """Retries a callable on transient errors with backoff between attempts."""

    # AWS error codes that should trigger a retry
    RETRYABLE_ERROR_CODES = {
        'RequestTimeout',
        'ServiceUnavailable',
        'Throttling',
        'ThrottlingException',
        'RequestLimitExceeded',
        'InternalError',
        'InternalFailure',
    }

    # Network-related exceptions that should trigger a retry
    RETRYABLE_EXCEPTIONS = (
        ConnectionError,
        TimeoutError,
    )

    def __init__(
        self,
        max_retries: int = 5,
        backoff: Optional[BackoffPolicy] = None,
        sleep: Optional[Callable[[float], None]] = None,
        retry_all: bool = False
    ):
        """Initialize retry strategy.

        Args:
            max_retries: Maximum number of retry attempts
            backoff: Delay policy between attempts
            sleep: Sleep function (injectable for cancellation and tests)
            retry_all: Retry every non-terminal ReconcileError, not only transient ones
        """
        self.max_retries = max_retries
        self.backoff = backoff or BackoffPolicy()
        self.sleep = sleep or time.sleep
        self.retry_all = retry_all

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if an error should trigger a retry.

        Args:
            error: The exception that occurred
            attempt: Current attempt number (0-indexed)

        Returns:
            True if the error is retryable and max retries not exceeded
        """
        if attempt >= self.max_retries:
            return False

        if isinstance(error, CancelledError):
            return False

        if isinstance(error, ReconcileError):
            if error.is_terminal:
                return False
            return error.is_transient or self.retry_all

        if isinstance(error, self.RETRYABLE_EXCEPTIONS):
            return True

        if isinstance(error, ClientError):
            error_code = error.response.get('Error', {}).get('Code', '')
            return error_code in self.RETRYABLE_ERROR_CODES

        return False

    def execute_with_retry(
        self,
        func: Callable[..., T],
        *args,
        **kwargs
    ) -> T:
        """Execute a function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function call

        Raises:
            The last exception if all retries are exhausted or it is not retryable
        """
        attempt = 0
        while True:
            try:
                result = func(*args, **kwargs)
                if attempt > 0:
                    logger.info(f"Operation succeeded after {attempt} retries")
                return result

            except Exception as e:
                if not self.should_retry(e, attempt):
                    logger.debug(f"Error is not retryable or max retries exceeded: {e}")
                    raise

                delay = self.backoff.delay(attempt)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_retries + 1} failed: "
                    f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                )
                self.sleep(delay)
                attempt += 1

