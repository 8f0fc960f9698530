"""
Error Handling Module

Exception types raised by the reachability engine and the service around it,
plus a retry decorator used to restart whole ordering runs after transient
range query failures.
"""

import functools
import random
import time
from typing import Any, Callable, Iterator, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field


logger = structlog.get_logger(__name__)


# =============================================================================
# Custom Exception Hierarchy
# =============================================================================


class ReachabilityError(Exception):
    """
    Base class of every error raised by this package.

    Attributes:
        message: Human readable description
        error_code: Stable identifier (defaults to the class name)
        details: JSON-friendly context (ids, parameter values)
        timestamp: Unix time the error was created
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or type(self).__name__
        self.details = dict(details or {})
        self.timestamp = time.time()

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for structured logs and CLI error output."""
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class ConfigurationError(ReachabilityError):
    """min_pts, epsilon, metric or backend rejected before a run starts."""


class OracleFailure(ReachabilityError):
    """
    A range query raised during a run.

    The engine attaches the partial, invalidated cluster order as
    `cluster_order` before re-raising.
    """


class InvariantError(ReachabilityError):
    """The engine's own bookkeeping is inconsistent (a programming error)."""


class EmptyQueueError(InvariantError):
    """peek() or extract_min() on an empty priority queue."""


class DuplicateCommitError(InvariantError):
    """An object id was appended to a cluster order a second time."""


class StorageError(ReachabilityError):
    """A cluster order could not be exported or read back."""


# =============================================================================
# Retry Decorator with Exponential Backoff
# =============================================================================


T = TypeVar("T")


class RetryConfig(BaseModel):
    """Backoff policy for retry()."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=60.0, ge=0.0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    jitter: bool = True
    retriable_exceptions: tuple[Type[Exception], ...] = (
        ConnectionError,
        TimeoutError,
        OracleFailure,
    )

    def delays(self) -> Iterator[float]:
        """Sleep before each retry; yields max_attempts - 1 values."""
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            capped = min(delay, self.max_delay)
            yield capped * (0.5 + random.random()) if self.jitter else capped
            delay *= self.backoff_factor


def retry(
    config: Optional[RetryConfig] = None,
    **overrides: Any,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry the decorated call with exponential backoff.

    Only exceptions listed in `retriable_exceptions` are retried; anything
    else propagates on the first attempt. When attempts run out, the last
    exception is re-raised unchanged.

    Args:
        config: Complete policy; individual keyword overrides are ignored when given
        **overrides: RetryConfig fields (max_attempts, initial_delay, max_delay,
            backoff_factor, jitter, retriable_exceptions)

    Example:
        @retry(max_attempts=2, retriable_exceptions=(OracleFailure,))
        def run_ordering():
            ...
    """
    policy = config or RetryConfig(**{k: v for k, v in overrides.items() if v is not None})

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            delays = policy.delays()
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except policy.retriable_exceptions as e:
                    delay = next(delays, None)
                    if delay is None:
                        logger.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e),
                            error_type=type(e).__name__,
                        )
                        raise

                    logger.warning(
                        "retry_scheduled",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=policy.max_attempts,
                        delay_seconds=round(delay, 3),
                        error_type=type(e).__name__,
                    )
                    time.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
