"""Docker Engine adapter implementing the container runtime port."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final, Sequence

import docker
from docker.errors import DockerException, NotFound
from docker.types import Mount
import structlog

from .errors import ContainerNotFoundError, ContainerRuntimeError
from .interfaces import ContainerRuntimePort, ContainerSpec, ExecResult

if TYPE_CHECKING:
    from shipyard.deployment.context import DeploymentContext

logger = structlog.get_logger(__name__)

_NANOSECONDS_PER_SECOND: Final[int] = 1_000_000_000


class DockerContainerRuntime(ContainerRuntimePort):
    """Container runtime backed by the Docker SDK.

    Every unit joins one bridge network labelled as managed; container names
    double as network aliases so units reach each other by name.
    """

    MANAGED_LABEL: Final[str] = "shipyard.managed"

    def __init__(
        self,
        network_name: str = "shipyard",
        docker_host: str | None = None,
        client: docker.DockerClient | None = None,
        poll_interval_seconds: float = 1.0,
    ):
        """Initialize runtime configuration; the engine client is created lazily.

        Args:
            network_name: Shared bridge network name.
            docker_host: Optional daemon URL; None uses the Docker environment.
            client: Optional prebuilt Docker client.
            poll_interval_seconds: Poll interval used while waiting for container exit.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when configuration values are invalid.
        """

        if not network_name.strip():
            raise ValueError("network_name must not be blank")
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")

        self._network_name = network_name.strip()
        self._docker_host = docker_host
        self._client = client
        self._poll_interval_seconds = poll_interval_seconds
        self._closed = False

    def runtime_setup_network(self, context: DeploymentContext) -> None:
        """Create the shared bridge network unless it already exists.

        Raises:
            ContainerRuntimeError: Raised when the engine call fails.
        """

        context.context_raise_if_cancelled()
        client = self._runtime_client()
        try:
            existing_networks = client.networks.list(names=[self._network_name])
            if any(network.name == self._network_name for network in existing_networks):
                logger.debug("network_exists", network=self._network_name)
                return
            logger.info("network_creating", network=self._network_name)
            client.networks.create(
                self._network_name,
                driver="bridge",
                labels={self.MANAGED_LABEL: "true"},
            )
        except DockerException as error:
            raise ContainerRuntimeError(
                f"failed to set up network {self._network_name}: {error}",
                operation="setup_network",
            ) from error

    def runtime_pull_image(self, context: DeploymentContext, image: str) -> None:
        """Pull one image, checking cancellation between progress messages.

        Raises:
            ContainerRuntimeError: Raised when the pull fails or reports an error.
            DeploymentCancelledError: Raised when the context is cancelled mid-pull.
        """

        context.context_raise_if_cancelled()
        logger.info("image_pulling", image=image)
        client = self._runtime_client()
        try:
            for progress in client.api.pull(image, stream=True, decode=True):
                context.context_raise_if_cancelled()
                if isinstance(progress, dict) and progress.get("error"):
                    raise ContainerRuntimeError(
                        f"failed to pull image {image}: {progress['error']}",
                        operation="pull_image",
                    )
        except DockerException as error:
            raise ContainerRuntimeError(f"failed to pull image {image}: {error}", operation="pull_image") from error
        logger.debug("image_pulled", image=image)

    def runtime_create_container(self, context: DeploymentContext, name: str, spec: ContainerSpec) -> str:
        """Create one container, replacing a stale managed container of the same name.

        Raises:
            ContainerRuntimeError: Raised when the spec is invalid or creation fails.
        """

        context.context_raise_if_cancelled()
        client = self._runtime_client()
        create_arguments = self.runtime_build_create_arguments(name=name, spec=spec)
        try:
            self._runtime_remove_stale_container(client=client, name=name)
            container = client.containers.create(**create_arguments)
        except DockerException as error:
            raise ContainerRuntimeError(
                f"failed to create container {name}: {error}",
                operation="create_container",
            ) from error
        logger.info("container_created", name=name, container_id=container.id)
        return str(container.id)

    def runtime_start_container(self, context: DeploymentContext, handle: str) -> None:
        context.context_raise_if_cancelled()
        logger.info("container_starting", container_id=handle)
        self._runtime_container_call(handle, "start_container", lambda container: container.start())

    def runtime_stop_container(self, handle: str, grace_period_seconds: int) -> None:
        logger.info("container_stopping", container_id=handle, grace_period_seconds=grace_period_seconds)
        self._runtime_container_call(
            handle,
            "stop_container",
            lambda container: container.stop(timeout=grace_period_seconds),
        )

    def runtime_remove_container(self, handle: str, force: bool) -> None:
        logger.info("container_removing", container_id=handle, force=force)
        self._runtime_container_call(handle, "remove_container", lambda container: container.remove(force=force))

    def runtime_execute(self, handle: str, command: Sequence[str]) -> ExecResult:
        """Run one command in a running container and capture demuxed output.

        Raises:
            ContainerRuntimeError: Raised when the exec call fails.
        """

        logger.debug("container_exec", container_id=handle, command=" ".join(command))
        exec_result = self._runtime_container_call(
            handle,
            "execute",
            lambda container: container.exec_run(list(command), demux=True),
        )
        stdout_bytes, stderr_bytes = exec_result.output or (None, None)
        return ExecResult(
            exit_code=int(exec_result.exit_code if exec_result.exit_code is not None else -1),
            stdout=(stdout_bytes or b"").decode("utf-8", errors="replace"),
            stderr=(stderr_bytes or b"").decode("utf-8", errors="replace"),
        )

    def runtime_wait_container(self, context: DeploymentContext, handle: str) -> int:
        """Poll one container until it exits.

        Raises:
            ContainerRuntimeError: Raised when the container state cannot be read.
            DeploymentCancelledError: Raised when the context is cancelled first.
        """

        while True:
            context.context_raise_if_cancelled()
            state = self._runtime_container_call(handle, "wait_container", self._runtime_container_state)
            if state.get("Status") in {"exited", "dead"}:
                return int(state.get("ExitCode", -1))
            context.context_wait(self._poll_interval_seconds)

    def runtime_container_logs(self, handle: str) -> str:
        output = self._runtime_container_call(
            handle,
            "container_logs",
            lambda container: container.logs(stdout=True, stderr=True),
        )
        return output.decode("utf-8", errors="replace") if isinstance(output, bytes) else str(output)

    def runtime_close(self) -> None:
        """Close the engine client once; later calls are no-ops."""

        if self._closed:
            return
        self._closed = True
        if self._client is None:
            return
        try:
            self._client.close()
        except DockerException as error:
            raise ContainerRuntimeError(f"failed to close Docker client: {error}", operation="close") from error
        finally:
            self._client = None

    def runtime_build_create_arguments(self, name: str, spec: ContainerSpec) -> dict[str, Any]:
        """Translate a container spec into `containers.create` keyword arguments.

        Args:
            name: Container name.
            spec: Runtime-neutral container spec.

        Returns:
            dict[str, Any]: Keyword arguments for the Docker SDK.

        Raises:
            ContainerRuntimeError: Raised when a port mapping is malformed.
        """

        labels = {self.MANAGED_LABEL: "true", "shipyard.name": name}
        labels.update(spec.labels)
        create_arguments: dict[str, Any] = {
            "image": spec.image,
            "name": name,
            "environment": dict(spec.environment),
            "labels": labels,
            "ports": runtime_build_port_bindings(spec.ports),
            "mounts": [
                Mount(
                    target=volume.destination,
                    source=volume.source,
                    type="bind" if volume.type == "bind" else "volume",
                )
                for volume in spec.volumes
            ],
            "restart_policy": {"Name": spec.restart_policy or "no"},
            "network": spec.network or self._network_name,
            "detach": True,
        }
        if spec.command is not None:
            create_arguments["command"] = list(spec.command)
        healthcheck = runtime_build_healthcheck(spec)
        if healthcheck is not None:
            create_arguments["healthcheck"] = healthcheck
        return create_arguments

    def _runtime_client(self) -> docker.DockerClient:
        if self._closed:
            raise ContainerRuntimeError("Docker runtime is closed", operation="client")
        if self._client is None:
            try:
                if self._docker_host:
                    self._client = docker.DockerClient(base_url=self._docker_host)
                else:
                    self._client = docker.from_env()
            except DockerException as error:
                raise ContainerRuntimeError(f"failed to create Docker client: {error}", operation="client") from error
        return self._client

    def _runtime_container_call(self, handle: str, operation: str, action: Any) -> Any:
        client = self._runtime_client()
        try:
            container = client.containers.get(handle)
        except NotFound as error:
            raise ContainerNotFoundError(f"container {handle} not found", operation=operation) from error
        except DockerException as error:
            raise ContainerRuntimeError(f"failed to look up container {handle}: {error}", operation=operation) from error
        try:
            return action(container)
        except DockerException as error:
            raise ContainerRuntimeError(
                f"{operation} failed for container {handle}: {error}",
                operation=operation,
            ) from error

    @staticmethod
    def _runtime_container_state(container: Any) -> dict[str, Any]:
        container.reload()
        return dict(container.attrs.get("State") or {})

    def _runtime_remove_stale_container(self, client: docker.DockerClient, name: str) -> None:
        stale_containers = client.containers.list(
            all=True,
            filters={"name": name, "label": f"{self.MANAGED_LABEL}=true"},
        )
        for stale_container in stale_containers:
            if stale_container.name != name:
                continue
            logger.warning("stale_container_replaced", name=name, container_id=stale_container.id)
            stale_container.remove(force=True)


def runtime_build_port_bindings(port_mappings: Sequence[str]) -> dict[str, Any]:
    """Convert `[ip:]host:container[/protocol]` strings into Docker port bindings.

    Args:
        port_mappings: Port mapping strings.

    Returns:
        dict[str, Any]: Mapping of `container/protocol` to host binding.

    Raises:
        ContainerRuntimeError: Raised for malformed mappings.
    """

    port_bindings: dict[str, Any] = {}
    for port_mapping in port_mappings:
        parts = port_mapping.split(":")
        if len(parts) not in (2, 3) or not all(part.strip() for part in parts):
            raise ContainerRuntimeError(f"invalid port mapping format: {port_mapping}", operation="create_container")
        container_port = parts[-1]
        if "/" not in container_port:
            container_port = f"{container_port}/tcp"
        host_port = parts[-2]
        if not host_port.isdigit() or not container_port.split("/", maxsplit=1)[0].isdigit():
            raise ContainerRuntimeError(f"invalid port mapping format: {port_mapping}", operation="create_container")
        port_bindings[container_port] = (parts[0], int(host_port)) if len(parts) == 3 else int(host_port)
    return port_bindings


def runtime_build_healthcheck(spec: ContainerSpec) -> dict[str, Any] | None:
    """Build an engine-level healthcheck mirroring the unit probe.

    Returns:
        dict[str, Any] | None: Docker healthcheck config with nanosecond durations,
        or None when the spec has no health check.
    """

    health_check = spec.health_check
    if health_check is None:
        return None
    if health_check.type == "http":
        test = ["CMD-SHELL", f"curl -f http://localhost:{health_check.port}{health_check.path} || exit 1"]
    elif health_check.type == "tcp":
        test = ["CMD-SHELL", f"nc -z localhost {health_check.port} || exit 1"]
    else:
        return None
    return {
        "test": test,
        "interval": int(health_check.interval_seconds * _NANOSECONDS_PER_SECOND),
        "timeout": int(health_check.timeout_seconds * _NANOSECONDS_PER_SECOND),
        "retries": health_check.retries,
        "start_period": int(health_check.start_period_seconds * _NANOSECONDS_PER_SECOND),
    }
