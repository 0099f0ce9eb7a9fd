"""Backoff policy and cancellation-aware retry helper."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, TypeVar

from shipyard.domain import ProbeError, RetryExhaustedError

from .context import DeploymentContext

ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class BackoffPolicy:
    """Immutable retry policy config and wait calculation.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        initial_wait_seconds: Wait after the first failed attempt.
        growth_factor: Multiplier applied to the wait after each further failure;
            `1.0` yields a constant interval.
    """

    max_attempts: int
    initial_wait_seconds: float
    growth_factor: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_wait_seconds < 0:
            raise ValueError("initial_wait_seconds must be >= 0")
        if self.growth_factor < 1.0:
            raise ValueError("growth_factor must be >= 1.0")

    def policy_wait_seconds(self, failed_attempt: int) -> float:
        """Return the wait that follows one failed attempt.

        Args:
            failed_attempt: One-based number of the attempt that just failed.

        Returns:
            float: Wait before the next attempt.

        Raises:
            ValueError: Raised when the attempt number is not positive.
        """

        if failed_attempt < 1:
            raise ValueError("failed_attempt must be >= 1")
        return self.initial_wait_seconds * (self.growth_factor ** (failed_attempt - 1))


def retry_call(
    context: DeploymentContext,
    operation: Callable[[int], ResultT],
    policy: BackoffPolicy,
    on_failure: Callable[[int, BaseException, float | None], None] | None = None,
    retryable: tuple[type[BaseException], ...] = (ProbeError,),
) -> ResultT:
    """Call `operation(attempt)` until it succeeds or the policy is exhausted.

    Cancellation is checked before every attempt and after every failure; waits
    between attempts go through the context so they end early on cancellation.
    No wait follows the last attempt. Errors outside `retryable` propagate
    immediately.

    Args:
        context: Cancellation context.
        operation: Callable receiving the one-based attempt number.
        policy: Backoff policy.
        on_failure: Optional callback receiving attempt, error and the upcoming
            wait (None after the last attempt).
        retryable: Error types that trigger another attempt.

    Returns:
        ResultT: Value returned by the first successful attempt.

    Raises:
        RetryExhaustedError: Raised when every attempt failed with a retryable error.
        DeploymentCancelledError: Raised when the context is cancelled.
    """

    last_error: BaseException | None = None
    for attempt in range(1, policy.max_attempts + 1):
        context.context_raise_if_cancelled()
        try:
            return operation(attempt)
        except retryable as error:
            last_error = error
            context.context_raise_if_cancelled()
            is_last_attempt = attempt == policy.max_attempts
            wait_seconds = None if is_last_attempt else policy.policy_wait_seconds(attempt)
            if on_failure is not None:
                on_failure(attempt, error, wait_seconds)
            if wait_seconds is not None:
                context.context_wait(wait_seconds)

    raise RetryExhaustedError(attempts=policy.max_attempts, last_error=last_error) from last_error
