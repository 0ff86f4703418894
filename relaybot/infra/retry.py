"""
Retry and backoff for outbound service calls.

Implements bounded retry with exponential backoff and jitter. Only errors
classified as transient are retried; everything else is raised on first
failure.
"""
import asyncio
import logging
import random
from enum import Enum
from typing import Optional, Dict, Any, Callable, List
from dataclasses import dataclass, field
from datetime import datetime


logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Classification of outbound call failures."""
    TIMEOUT = "timeout"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    AUTHENTICATION = "auth"
    SERVER_ERROR = "server"
    MALFORMED = "malformed"
    UNKNOWN = "unknown"


@dataclass
class RetryConfig:
    """Configuration for retry mechanisms."""
    max_attempts: int = 1
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_errors: List[ErrorKind] = field(default_factory=lambda: [
        ErrorKind.TIMEOUT,
        ErrorKind.NETWORK,
        ErrorKind.RATE_LIMIT,
        ErrorKind.SERVER_ERROR,
    ])


@dataclass
class ErrorMetrics:
    """Error tracking metrics."""
    total_errors: int = 0
    errors_by_kind: Dict[ErrorKind, int] = field(default_factory=dict)
    retry_attempts: int = 0
    exhausted: int = 0
    last_error_time: Optional[datetime] = None


def classify_error(error: BaseException) -> ErrorKind:
    """Classify an exception into an ErrorKind."""
    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    if isinstance(error, asyncio.TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


class RetryHandler:
    """
    Executes async callables with retry on transient failures.

    The last exception is re-raised unchanged once attempts are exhausted or
    a non-retryable error is seen.
    """

    def __init__(self, retry_config: Optional[RetryConfig] = None):
        self.retry_config = retry_config or RetryConfig()
        self.metrics = ErrorMetrics()

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a function with retry logic.

        Args:
            func: Async function to execute
            *args, **kwargs: Arguments for the function

        Returns:
            Function result
        """
        max_attempts = max(1, self.retry_config.max_attempts)

        for attempt in range(max_attempts):
            try:
                result = await func(*args, **kwargs)

                if attempt > 0:
                    logger.info(f"✅ Operation succeeded after {attempt + 1} attempts")

                return result

            except Exception as e:
                error_kind = classify_error(e)
                self._record_error(error_kind)

                if error_kind not in self.retry_config.retryable_errors:
                    logger.debug(f"Non-retryable error {error_kind.value}: {e}")
                    raise

                if attempt == max_attempts - 1:
                    if max_attempts > 1:
                        self.metrics.exhausted += 1
                        logger.warning(f"❌ Max retry attempts ({max_attempts}) exceeded")
                    raise

                delay = self.calculate_delay(attempt)
                self.metrics.retry_attempts += 1
                logger.warning(
                    f"🔄 {error_kind.value} error, retrying in {delay:.2f}s "
                    f"(attempt {attempt + 2}/{max_attempts})"
                )
                await asyncio.sleep(delay)

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt with exponential backoff."""
        delay = self.retry_config.base_delay * (self.retry_config.exponential_base ** attempt)
        delay = min(delay, self.retry_config.max_delay)

        if self.retry_config.jitter:
            delay += random.uniform(0.1, 0.3) * delay

        return delay

    def _record_error(self, error_kind: ErrorKind):
        self.metrics.total_errors += 1
        self.metrics.last_error_time = datetime.now()
        self.metrics.errors_by_kind[error_kind] = self.metrics.errors_by_kind.get(error_kind, 0) + 1

    def get_metrics(self) -> Dict[str, Any]:
        """Get error handling metrics."""
        return {
            'total_errors': self.metrics.total_errors,
            'retry_attempts': self.metrics.retry_attempts,
            'exhausted': self.metrics.exhausted,
            'errors_by_kind': {k.value: v for k, v in self.metrics.errors_by_kind.items()},
            'last_error_time': self.metrics.last_error_time.isoformat() if self.metrics.last_error_time else None,
        }

    def reset_metrics(self):
        """Reset error metrics."""
        self.metrics = ErrorMetrics()
        logger.info("📊 Error metrics reset")
