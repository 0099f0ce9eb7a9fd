"""Cancellation signal and deadline shared by one deployment run."""

from __future__ import annotations

import threading
import time
from typing import Callable

from shipyard.domain import DeploymentCancelledError, DeploymentDeadlineExceededError


class _CancellationSignal:
    """Cancellation flag shared between a root context and its derived contexts."""

    def __init__(self) -> None:
        self.event = threading.Event()
        self.reason: str | None = None

    def signal_cancel(self, reason: str) -> None:
        if not self.event.is_set():
            self.reason = reason
            self.event.set()


class DeploymentContext:
    """Cancellation and deadline carrier passed through every blocking call.

    A context is cancelled explicitly (for example by a signal handler) or
    implicitly when its deadline passes. Derived contexts share the parent's
    cancellation signal but carry their own deadline, so a rollback context can
    outlive an expired deploy deadline while still honouring an interrupt.
    """

    def __init__(
        self,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        _signal: _CancellationSignal | None = None,
    ):
        """Initialize one context.

        Args:
            deadline: Absolute deadline on `clock`; None disables it.
            clock: Monotonic clock returning seconds.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when clock is missing.
        """

        if clock is None:
            raise ValueError("clock must not be None")

        self._deadline = deadline
        self._clock = clock
        self._signal = _signal or _CancellationSignal()

    @classmethod
    def context_background(cls, clock: Callable[[], float] = time.monotonic) -> DeploymentContext:
        """Return a root context without deadline."""

        return cls(deadline=None, clock=clock)

    def context_with_timeout(self, timeout_seconds: float | None) -> DeploymentContext:
        """Derive a context sharing this cancellation signal with a new deadline.

        Args:
            timeout_seconds: Seconds from now; None derives a context without deadline.

        Returns:
            DeploymentContext: Derived context.

        Raises:
            ValueError: Raised when timeout is negative.
        """

        if timeout_seconds is None:
            return DeploymentContext(deadline=None, clock=self._clock, _signal=self._signal)
        if timeout_seconds < 0:
            raise ValueError("timeout_seconds must be >= 0")
        return DeploymentContext(
            deadline=self._clock() + timeout_seconds,
            clock=self._clock,
            _signal=self._signal,
        )

    def context_cancel(self, reason: str = "deployment cancelled") -> None:
        """Cancel this context and every context sharing its signal."""

        self._signal.signal_cancel(reason)

    def context_deadline_exceeded(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def context_is_cancelled(self) -> bool:
        """Return whether the context was cancelled or its deadline passed."""

        return self._signal.event.is_set() or self.context_deadline_exceeded()

    def context_raise_if_cancelled(self) -> None:
        """Raise the matching cancellation error when the context is done.

        Raises:
            DeploymentCancelledError: Raised after explicit cancellation.
            DeploymentDeadlineExceededError: Raised after the deadline passed.
        """

        if self._signal.event.is_set():
            raise DeploymentCancelledError(self._signal.reason or "deployment cancelled")
        if self.context_deadline_exceeded():
            raise DeploymentDeadlineExceededError("deployment deadline exceeded")

    def context_remaining_seconds(self, upper_bound: float | None = None) -> float | None:
        """Return seconds left before the deadline, optionally capped.

        Args:
            upper_bound: Optional cap applied to the remaining time.

        Returns:
            float | None: Remaining seconds (never negative), or None when neither
            a deadline nor an upper bound applies.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        if self._deadline is None:
            return upper_bound
        remaining_seconds = max(0.0, self._deadline - self._clock())
        if upper_bound is None:
            return remaining_seconds
        return min(remaining_seconds, upper_bound)

    def context_wait(self, seconds: float) -> None:
        """Sleep for `seconds`, returning early with an error when cancelled.

        Args:
            seconds: Wait duration; non-positive values only check cancellation.

        Returns:
            None: Returns after the full wait elapsed.

        Raises:
            DeploymentCancelledError: Raised when cancelled during the wait.
            DeploymentDeadlineExceededError: Raised when the deadline passes during the wait.
        """

        self.context_raise_if_cancelled()
        wait_until = self._clock() + max(0.0, seconds)
        while True:
            remaining_wait = wait_until - self._clock()
            if remaining_wait <= 0:
                return
            slice_seconds = self.context_remaining_seconds(upper_bound=remaining_wait)
            self._signal.event.wait(slice_seconds if slice_seconds is not None else remaining_wait)
            self.context_raise_if_cancelled()
