"""Post-deploy public reachability checks for apps. Advisory only."""

from __future__ import annotations

from typing import Callable, Final

import httpx
import structlog

from shipyard.domain import (
    ExternalVerificationError,
    ProbeError,
    RetryExhaustedError,
    Topology,
    domain_normalize_route_path,
    unit_public_url,
)

from .context import DeploymentContext
from .retry import BackoffPolicy, retry_call

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ATTEMPTS: Final[int] = 5
DEFAULT_INITIAL_WAIT_SECONDS: Final[float] = 3.0
BACKOFF_GROWTH_FACTOR: Final[float] = 1.5
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final[float] = 10.0


def _verifier_default_http_client(verify: bool) -> httpx.Client:
    return httpx.Client(verify=verify, follow_redirects=True)


class ExternalVerifier:
    """Probe every app's public URL with exponential backoff.

    TLS certificate verification is disabled only for self-signed deployments.
    """

    def __init__(
        self,
        topology: Topology,
        http_client_factory: Callable[[bool], httpx.Client] = _verifier_default_http_client,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_wait_seconds: float = DEFAULT_INITIAL_WAIT_SECONDS,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        """Initialize verifier dependencies.

        Args:
            topology: Deployed topology.
            http_client_factory: Factory receiving the TLS `verify` flag.
            max_attempts: Attempts per URL.
            initial_wait_seconds: Wait after the first failed attempt; grows by 1.5x.
            request_timeout_seconds: Per-request timeout.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies or limits are invalid.
        """

        if topology is None:
            raise ValueError("topology must not be None")
        if http_client_factory is None:
            raise ValueError("http_client_factory must not be None")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if initial_wait_seconds < 0:
            raise ValueError("initial_wait_seconds must be >= 0")
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")

        self._topology = topology
        self._http_client_factory = http_client_factory
        self._max_attempts = max_attempts
        self._initial_wait_seconds = initial_wait_seconds
        self._request_timeout_seconds = request_timeout_seconds

    def verifier_public_urls(self) -> tuple[str, ...]:
        """Return every URL probed during verification, in probe order."""

        urls: list[str] = []
        for app in self._topology.apps:
            url = unit_public_url(app, self._topology)
            urls.append(url)
            health_check = app.health_check
            if health_check is None or health_check.type != "http":
                continue
            health_path = domain_normalize_route_path(health_check.path)
            if health_path != "/":
                urls.append(f"{url.rstrip('/')}{health_path}")
        return tuple(urls)

    def verifier_verify_external_access(self, context: DeploymentContext) -> None:
        """Verify every app is reachable; stop at the first URL that never succeeds.

        Args:
            context: Cancellation context.

        Returns:
            None: Returns when every URL answered with a 2xx status.

        Raises:
            ExternalVerificationError: Raised for the first unreachable URL.
            DeploymentCancelledError: Raised when the context is cancelled.
        """

        urls = self.verifier_public_urls()
        logger.info("external_verification_started", url_count=len(urls))
        with self._http_client_factory(not self._topology.ssl.self_signed) as http_client:
            for url in urls:
                self.verifier_check_endpoint(context=context, http_client=http_client, url=url)
        logger.info("external_verification_completed", url_count=len(urls))

    def verifier_check_endpoint(
        self,
        context: DeploymentContext,
        http_client: httpx.Client,
        url: str,
        max_attempts: int | None = None,
        initial_wait_seconds: float | None = None,
    ) -> None:
        """Probe one URL until it answers with a 2xx status.

        A malformed request fails immediately. Transport errors and non-2xx
        statuses are retried with waits of 3, 4.5, 6.75 and 10.125 seconds for
        the default settings.

        Args:
            context: Cancellation context.
            http_client: HTTP client.
            url: URL to probe.
            max_attempts: Optional override of the configured attempts.
            initial_wait_seconds: Optional override of the configured first wait.

        Returns:
            None: Returns after the first 2xx response.

        Raises:
            ExternalVerificationError: Raised for malformed URLs or after exhausting attempts.
            DeploymentCancelledError: Raised when the context is cancelled.
        """

        policy = BackoffPolicy(
            max_attempts=max_attempts or self._max_attempts,
            initial_wait_seconds=self._initial_wait_seconds if initial_wait_seconds is None else initial_wait_seconds,
            growth_factor=BACKOFF_GROWTH_FACTOR,
        )

        def _probe(attempt: int) -> None:
            try:
                request = http_client.build_request(
                    "GET",
                    url,
                    timeout=context.context_remaining_seconds(upper_bound=self._request_timeout_seconds),
                )
            except (httpx.InvalidURL, ValueError) as error:
                raise ExternalVerificationError(url=url, attempts=attempt, detail=f"invalid request: {error}") from error
            try:
                response = http_client.send(request)
            except httpx.HTTPError as error:
                raise ProbeError(f"request failed: {error}") from error
            if not response.is_success:
                raise ProbeError(f"unexpected status code {response.status_code}")
            logger.info("endpoint_reachable", url=url, attempt=attempt, status_code=response.status_code)

        def _on_failure(attempt: int, error: BaseException, wait_seconds: float | None) -> None:
            logger.warning(
                "endpoint_check_failed",
                url=url,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                error=str(error),
                next_wait_seconds=wait_seconds,
            )

        try:
            retry_call(context=context, operation=_probe, policy=policy, on_failure=_on_failure)
        except RetryExhaustedError as error:
            raise ExternalVerificationError(
                url=url,
                attempts=error.attempts,
                detail=str(error.last_error) if error.last_error else None,
            ) from error.last_error
