"""Regression tests for health gate probing and retry behavior."""

from __future__ import annotations

import threading
import time

import httpx

import pytest

from shipyard.deployment import DeploymentContext, HealthGate
from shipyard.domain import (
    DeploymentCancelledError,
    HealthCheckFailedError,
    HealthCheckSpec,
    UnsupportedHealthCheckTypeError,
)


class _RecordingContext(DeploymentContext):
    """Context recording waits instead of sleeping."""

    def __init__(self):
        """Initialize recording context.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        super().__init__()
        self.waits: list[float] = []

    def context_wait(self, seconds: float) -> None:
        """Record one wait.

        Args:
            seconds: Requested wait.

        Returns:
            None: Waits are only recorded.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.waits.append(seconds)


class _ConnectionStub:
    """Socket stub tracking close calls."""

    def __init__(self):
        """Initialize connection stub.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.closed = False

    def close(self) -> None:
        """Mark connection closed.

        Returns:
            None: Close does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.closed = True


def _http_client_factory(statuses: list[int], requested_urls: list[str]):
    """Build an HTTP client factory replaying statuses in order.

    Args:
        statuses: Status codes returned per request.
        requested_urls: Sink collecting requested URLs.

    Returns:
        Callable[[], httpx.Client]: Client factory backed by a mock transport.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    remaining_statuses = list(statuses)

    def _handler(request: httpx.Request) -> httpx.Response:
        requested_urls.append(str(request.url))
        return httpx.Response(remaining_statuses.pop(0))

    return lambda: httpx.Client(transport=httpx.MockTransport(_handler))


def test_deployment_health_gate_http_probe_retries_until_success() -> None:
    """Retry failing HTTP probes and wait start period plus intervals.

    Returns:
        None: Assertions validate URL, attempts and waits.

    Raises:
        AssertionError: Raised when probing behavior differs.
    """

    requested_urls: list[str] = []
    context = _RecordingContext()
    health_gate = HealthGate(http_client_factory=_http_client_factory([503, 500, 204], requested_urls))

    health_gate.health_gate_check(
        context=context,
        name="api",
        options=HealthCheckSpec(type="http", port=8080, path="health", interval_seconds=5, retries=3, start_period_seconds=20),
    )

    assert requested_urls == ["http://api:8080/health"] * 3
    assert context.waits == [20, 5, 5]


def test_deployment_health_gate_accepts_redirect_status() -> None:
    """Treat 3xx responses as healthy.

    Returns:
        None: Assertions validate success range.

    Raises:
        AssertionError: Raised when redirects fail the gate.
    """

    requested_urls: list[str] = []
    health_gate = HealthGate(http_client_factory=_http_client_factory([302], requested_urls))

    health_gate.health_gate_check(
        context=_RecordingContext(),
        name="web",
        options=HealthCheckSpec(type="http", port=80, start_period_seconds=0),
    )

    assert requested_urls == ["http://web/"]


def test_deployment_health_gate_raises_after_exhausting_retries() -> None:
    """Raise health check failure carrying attempts after the last probe.

    Returns:
        None: Assertions validate failure reporting.

    Raises:
        AssertionError: Raised when failure details differ.
    """

    requested_urls: list[str] = []
    context = _RecordingContext()
    health_gate = HealthGate(http_client_factory=_http_client_factory([500, 500], requested_urls))

    with pytest.raises(HealthCheckFailedError, match="health check failed for api after 2 attempts") as error_info:
        health_gate.health_gate_check(
            context=context,
            name="api",
            options=HealthCheckSpec(type="http", port=8080, interval_seconds=1, retries=2, start_period_seconds=0),
        )

    assert error_info.value.unit_name == "api"
    assert error_info.value.attempts == 2
    assert "status 500" in str(error_info.value.last_error)
    assert context.waits == [1]


def test_deployment_health_gate_tcp_probe_connects_to_unit_host() -> None:
    """Open and close a TCP connection to the unit host.

    Returns:
        None: Assertions validate connector usage.

    Raises:
        AssertionError: Raised when connector is not used as expected.
    """

    connection = _ConnectionStub()
    connect_calls: list[tuple[tuple[str, int], float | None]] = []
    outcomes: list[object] = [ConnectionRefusedError("refused"), connection]

    def _connector(address: tuple[str, int], timeout: float | None = None) -> _ConnectionStub:
        connect_calls.append((address, timeout))
        outcome = outcomes.pop(0)
        if isinstance(outcome, OSError):
            raise outcome
        return outcome

    context = _RecordingContext()
    health_gate = HealthGate(tcp_connector=_connector)

    health_gate.health_gate_check(
        context=context,
        name="postgres",
        options=HealthCheckSpec(
            type="tcp",
            port=5432,
            interval_seconds=2,
            timeout_seconds=4,
            retries=3,
            start_period_seconds=0,
        ),
    )

    assert connect_calls == [(("postgres", 5432), 4), (("postgres", 5432), 4)]
    assert connection.closed
    assert context.waits == [2]


def test_deployment_health_gate_rejects_unsupported_type_before_waiting() -> None:
    """Reject unsupported probe types without waiting.

    Returns:
        None: Assertions validate immediate rejection.

    Raises:
        AssertionError: Raised when unsupported types are probed.
    """

    context = _RecordingContext()

    with pytest.raises(UnsupportedHealthCheckTypeError, match="grpc"):
        HealthGate().health_gate_check(context=context, name="api", options=HealthCheckSpec(type="grpc", port=9000))

    assert context.waits == []


def test_deployment_health_gate_cancel_during_start_period() -> None:
    """Raise cancellation, not a probe failure, when cancelled in the start period.

    Returns:
        None: Assertions validate prompt cancellation without probing.

    Raises:
        AssertionError: Raised when probes run or the wait is not interrupted.
    """

    requested_urls: list[str] = []
    context = DeploymentContext.context_background()
    health_gate = HealthGate(http_client_factory=_http_client_factory([], requested_urls))
    cancel_timer = threading.Timer(0.2, context.context_cancel)
    started_at = time.monotonic()
    cancel_timer.start()
    try:
        with pytest.raises(DeploymentCancelledError):
            health_gate.health_gate_check(
                context=context,
                name="api",
                options=HealthCheckSpec(type="http", port=8080, start_period_seconds=30),
            )
    finally:
        cancel_timer.cancel()

    assert time.monotonic() - started_at < 2.0
    assert requested_urls == []


def test_deployment_health_gate_cancel_between_retries() -> None:
    """Raise cancellation while waiting for the next probe attempt.

    Returns:
        None: Assertions validate cancellation during the retry interval.

    Raises:
        AssertionError: Raised when cancellation is reported as a health failure.
    """

    requested_urls: list[str] = []
    context = DeploymentContext.context_background()
    health_gate = HealthGate(http_client_factory=_http_client_factory([500, 500, 500], requested_urls))
    cancel_timer = threading.Timer(0.2, context.context_cancel)
    started_at = time.monotonic()
    cancel_timer.start()
    try:
        with pytest.raises(DeploymentCancelledError):
            health_gate.health_gate_check(
                context=context,
                name="api",
                options=HealthCheckSpec(
                    type="http",
                    port=8080,
                    path="/health",
                    interval_seconds=30,
                    retries=3,
                    start_period_seconds=0,
                ),
            )
    finally:
        cancel_timer.cancel()

    assert time.monotonic() - started_at < 2.0
    assert requested_urls == ["http://api:8080/health"]
