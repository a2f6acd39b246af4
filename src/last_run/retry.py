"""
Retrying remote caller.

Every list, download and upload against the artifact store goes through
``with_retry``: bounded attempts with exponential backoff, each failure
logged with its attempt index. Callers that prefer a value over an
exception use ``attempt_with_retry`` and inspect the ``RetryOutcome``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel, Field, model_validator
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from last_run.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Bounded retry policy with exponential backoff (delays in seconds)."""

    retries: int = Field(default=2, ge=0, description="Additional attempts after the first")
    factor: float = Field(default=2.0, ge=1.0, description="Exponential backoff factor")
    min_delay: float = Field(default=0.25, ge=0.0, description="Delay before the first retry")
    max_delay: float = Field(default=1.0, ge=0.0, description="Upper bound for any delay")

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "RetryPolicy":
        """Ensure max_delay is not below min_delay."""
        if self.max_delay < self.min_delay:
            raise ValueError("max_delay must be >= min_delay")
        return self

    @property
    def max_attempts(self) -> int:
        """Total number of attempts, including the first."""
        return self.retries + 1


@dataclass
class RetryOutcome(Generic[T]):
    """Either a success value or the last error of an exhausted retry."""

    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        """Return True if the operation eventually succeeded."""
        return self.error is None


def _log_failed_attempt(label: str, policy: RetryPolicy) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.debug(
            "%s: attempt %d/%d failed: %s",
            label,
            retry_state.attempt_number,
            policy.max_attempts,
            error,
        )

    return log


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async remote operation with bounded retries.

    Args:
        operation: Zero-argument coroutine function performing the remote call
        policy: Retry policy (attempt count and backoff bounds)
        label: Name used in attempt log messages
        sleep: Awaitable sleep used between attempts

    Returns:
        The operation's result from the first successful attempt

    Raises:
        Exception: The error of the final attempt once retries are exhausted
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.min_delay,
            exp_base=policy.factor,
            min=policy.min_delay,
            max=policy.max_delay,
        ),
        retry=retry_if_not_exception_type(ConfigurationError),
        after=_log_failed_attempt(label, policy),
        sleep=sleep,
        reraise=True,
    )
    return await retrying(operation)


async def attempt_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryOutcome[T]:
    """
    Like ``with_retry`` but capture exhaustion as a RetryOutcome.

    Returns:
        RetryOutcome holding the value, or the last error after all attempts
    """
    attempts = 0

    async def counted() -> T:
        nonlocal attempts
        attempts += 1
        return await operation()

    try:
        value = await with_retry(counted, policy, label=label, sleep=sleep)
    except Exception as e:
        logger.debug("%s: giving up after %d attempts", label, attempts)
        return RetryOutcome(error=e, attempts=attempts)
    return RetryOutcome(value=value, attempts=attempts)
