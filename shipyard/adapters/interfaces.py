"""Typed interfaces for adapter-layer responsibilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping, Protocol, Sequence

from shipyard.domain import DeploymentRecord, HealthCheckSpec, VolumeSpec

if TYPE_CHECKING:
    from shipyard.deployment.context import DeploymentContext


@dataclass(frozen=True)
class ContainerSpec:
    """Runtime-neutral container creation request.

    Attributes:
        image: Container image reference.
        network: Network the container joins; its name becomes a network alias.
        environment: Container environment variables.
        labels: Container labels.
        ports: Port mappings in `host:container[/protocol]` form.
        volumes: Volume and bind mounts.
        restart_policy: Restart policy name; `no` disables restarts.
        health_check: Optional engine-level health check.
        command: Optional command override.
    """

    image: str
    network: str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)
    labels: Mapping[str, str] = field(default_factory=dict)
    ports: tuple[str, ...] = ()
    volumes: tuple[VolumeSpec, ...] = ()
    restart_policy: str = "unless-stopped"
    health_check: HealthCheckSpec | None = None
    command: tuple[str, ...] | None = None


@dataclass(frozen=True)
class ExecResult:
    """Result of one command executed inside a running container."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True)
class ImageScanResult:
    """Vulnerability counts reported for one image.

    Attributes:
        image: Scanned image reference.
        critical: Number of critical findings.
        high: Number of high findings.
        medium: Number of medium findings.
        low: Number of low findings.
    """

    image: str
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    def scan_result_has_serious_findings(self) -> bool:
        """Return whether critical or high findings were reported."""

        return self.critical > 0 or self.high > 0


class ContainerRuntimePort(Protocol):
    """Port definition for the container engine used to run units."""

    def runtime_setup_network(self, context: DeploymentContext) -> None:
        """Ensure the shared deployment network exists.

        Raises:
            ContainerRuntimeError: Raised when the network cannot be inspected or created.
        """

    def runtime_pull_image(self, context: DeploymentContext, image: str) -> None:
        """Pull one image, observing cancellation between progress updates.

        Raises:
            ContainerRuntimeError: Raised when the pull fails.
            DeploymentCancelledError: Raised when the context is cancelled mid-pull.
        """

    def runtime_create_container(self, context: DeploymentContext, name: str, spec: ContainerSpec) -> str:
        """Create one container and return its runtime handle.

        Raises:
            ContainerRuntimeError: Raised when creation fails.
        """

    def runtime_start_container(self, context: DeploymentContext, handle: str) -> None:
        """Start one created container.

        Raises:
            ContainerRuntimeError: Raised when start fails.
        """

    def runtime_stop_container(self, handle: str, grace_period_seconds: int) -> None:
        """Stop one container, killing it after the grace period.

        Raises:
            ContainerRuntimeError: Raised when stop fails.
        """

    def runtime_remove_container(self, handle: str, force: bool) -> None:
        """Remove one container.

        Raises:
            ContainerRuntimeError: Raised when removal fails.
        """

    def runtime_execute(self, handle: str, command: Sequence[str]) -> ExecResult:
        """Run one command inside a running container.

        Raises:
            ContainerRuntimeError: Raised when the exec call itself fails.
        """

    def runtime_wait_container(self, context: DeploymentContext, handle: str) -> int:
        """Block until a container exits and return its exit code.

        Raises:
            ContainerRuntimeError: Raised when the container state cannot be read.
            DeploymentCancelledError: Raised when the context is cancelled first.
        """

    def runtime_container_logs(self, handle: str) -> str:
        """Return combined container output.

        Raises:
            ContainerRuntimeError: Raised when logs cannot be read.
        """

    def runtime_close(self) -> None:
        """Release engine client resources. Idempotent."""


class ProxyProvisionerPort(Protocol):
    """Port definition for the reverse proxy in front of apps."""

    def proxy_setup(self, context: DeploymentContext, records: Sequence[DeploymentRecord]) -> None:
        """Write routing configuration for registered apps and start the proxy.

        Raises:
            ProxyProvisionError: Raised when configuration or startup fails.
        """

    def proxy_reload(self, context: DeploymentContext) -> None:
        """Apply rewritten configuration to the running proxy.

        Raises:
            ProxyProvisionError: Raised when reload fails.
        """

    def proxy_cleanup(self) -> None:
        """Stop and remove the proxy. Failures are logged, not raised."""


class CertificateProvisionerPort(Protocol):
    """Port definition for certificate provisioning. Implementations are idempotent."""

    def certificate_setup(self, context: DeploymentContext) -> None:
        """Ensure certificates for the topology domain exist.

        Raises:
            CertificateProvisionError: Raised when certificates cannot be produced.
        """


class ImageScannerPort(Protocol):
    """Port definition for advisory image vulnerability scanning."""

    def scanner_scan_image(self, context: DeploymentContext, image: str) -> ImageScanResult:
        """Scan one image and return severity counts.

        Raises:
            ImageScanError: Raised when the scan cannot run or its report is unusable.
        """
