"""Health gate blocking until a started unit answers its probe."""

from __future__ import annotations

import socket
from typing import Callable, Final

import httpx
import structlog

from shipyard.domain import (
    HealthCheckFailedError,
    HealthCheckSpec,
    ProbeError,
    RetryExhaustedError,
    UnsupportedHealthCheckTypeError,
)

from .context import DeploymentContext
from .retry import BackoffPolicy, retry_call

logger = structlog.get_logger(__name__)

HTTP_SUCCESS_STATUS_RANGE: Final[range] = range(200, 400)


def _health_gate_default_http_client() -> httpx.Client:
    return httpx.Client(follow_redirects=False)


class HealthGate:
    """Probe runner for `http` and `tcp` health checks.

    The probe host is the unit name, resolved on the shared deployment network.
    """

    _SUPPORTED_TYPES: Final[frozenset[str]] = frozenset({"http", "tcp"})

    def __init__(
        self,
        http_client_factory: Callable[[], httpx.Client] = _health_gate_default_http_client,
        tcp_connector: Callable[..., socket.socket] = socket.create_connection,
    ):
        """Initialize probe collaborators.

        Args:
            http_client_factory: Factory for the HTTP client used by `http` probes.
            tcp_connector: `socket.create_connection`-compatible connector for `tcp` probes.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when a collaborator is missing.
        """

        if http_client_factory is None:
            raise ValueError("http_client_factory must not be None")
        if tcp_connector is None:
            raise ValueError("tcp_connector must not be None")

        self._http_client_factory = http_client_factory
        self._tcp_connector = tcp_connector

    def health_gate_check(self, context: DeploymentContext, name: str, options: HealthCheckSpec) -> None:
        """Wait for one unit to become healthy.

        Waits the start period, then performs up to `options.retries` probes with
        `options.interval_seconds` between them. All waits end early on cancellation.

        Args:
            context: Cancellation context.
            name: Unit name, used as probe host.
            options: Health check definition.

        Returns:
            None: Returns after the first successful probe.

        Raises:
            UnsupportedHealthCheckTypeError: Raised immediately for unknown probe types.
            HealthCheckFailedError: Raised when every probe attempt failed.
            DeploymentCancelledError: Raised when the context is cancelled.
        """

        check_type = options.type.strip().lower()
        if check_type not in self._SUPPORTED_TYPES:
            raise UnsupportedHealthCheckTypeError(check_type=options.type)

        logger.info(
            "health_check_started",
            unit=name,
            type=check_type,
            port=options.port,
            retries=options.retries,
            start_period_seconds=options.start_period_seconds,
        )
        if options.start_period_seconds > 0:
            context.context_wait(options.start_period_seconds)

        policy = BackoffPolicy(
            max_attempts=max(1, options.retries),
            initial_wait_seconds=options.interval_seconds,
        )

        def _on_failure(attempt: int, error: BaseException, wait_seconds: float | None) -> None:
            logger.warning(
                "health_check_attempt_failed",
                unit=name,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                error=str(error),
                next_wait_seconds=wait_seconds,
            )

        with self._http_client_factory() as http_client:

            def _probe(attempt: int) -> None:
                if check_type == "http":
                    self._health_gate_probe_http(context=context, http_client=http_client, name=name, options=options)
                else:
                    self._health_gate_probe_tcp(context=context, name=name, options=options)
                logger.info("health_check_passed", unit=name, attempt=attempt)

            try:
                retry_call(context=context, operation=_probe, policy=policy, on_failure=_on_failure)
            except RetryExhaustedError as error:
                raise HealthCheckFailedError(
                    unit_name=name,
                    attempts=error.attempts,
                    last_error=error.last_error,
                ) from error.last_error

    def _health_gate_probe_http(
        self,
        context: DeploymentContext,
        http_client: httpx.Client,
        name: str,
        options: HealthCheckSpec,
    ) -> None:
        """Run one HTTP probe.

        Raises:
            ProbeError: Raised on transport failure or a status outside 200-399.
        """

        path = options.path if options.path.startswith("/") else f"/{options.path}"
        url = f"http://{name}:{options.port}{path}"
        timeout_seconds = context.context_remaining_seconds(upper_bound=options.timeout_seconds)
        try:
            response = http_client.get(url, timeout=timeout_seconds)
        except httpx.HTTPError as error:
            raise ProbeError(f"HTTP probe to {url} failed: {error}") from error
        if response.status_code not in HTTP_SUCCESS_STATUS_RANGE:
            raise ProbeError(f"HTTP probe to {url} returned status {response.status_code}")

    def _health_gate_probe_tcp(self, context: DeploymentContext, name: str, options: HealthCheckSpec) -> None:
        """Run one TCP connect probe.

        Raises:
            ProbeError: Raised when the connection cannot be opened in time.
        """

        timeout_seconds = context.context_remaining_seconds(upper_bound=options.timeout_seconds)
        try:
            connection = self._tcp_connector((name, options.port), timeout=timeout_seconds)
        except OSError as error:
            raise ProbeError(f"TCP probe to {name}:{options.port} failed: {error}") from error
        connection.close()
