"""Regression tests for the Docker runtime adapter."""

from __future__ import annotations

from unittest.mock import Mock

from docker.errors import APIError, NotFound

import pytest

from shipyard.adapters import (
    ContainerNotFoundError,
    ContainerRuntimeError,
    ContainerSpec,
    DockerContainerRuntime,
)
from shipyard.adapters.docker_runtime import runtime_build_port_bindings
from shipyard.deployment import DeploymentContext
from shipyard.domain import DeploymentCancelledError, HealthCheckSpec, VolumeSpec


def _runtime(client: Mock) -> DockerContainerRuntime:
    """Build runtime around a mocked Docker client.

    Args:
        client: Docker client mock.

    Returns:
        DockerContainerRuntime: Runtime under test.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return DockerContainerRuntime(network_name="shipyard", client=client, poll_interval_seconds=0.01)


def test_adapters_docker_port_bindings_support_ip_and_protocol() -> None:
    """Parse host, container, protocol and bind address parts.

    Returns:
        None: Assertions validate binding conversion.

    Raises:
        AssertionError: Raised when bindings differ.
    """

    bindings = runtime_build_port_bindings(["8080:80", "127.0.0.1:5432:5432", "53:53/udp"])

    assert bindings == {"80/tcp": 8080, "5432/tcp": ("127.0.0.1", 5432), "53/udp": 53}


@pytest.mark.parametrize("port_mapping", ["8080", "a:80", "1:2:3:4", ":80"])
def test_adapters_docker_port_bindings_reject_malformed_mappings(port_mapping: str) -> None:
    """Reject mappings without numeric host and container ports.

    Args:
        port_mapping: Malformed mapping.

    Returns:
        None: Assertions validate rejection.

    Raises:
        AssertionError: Raised when malformed mappings are accepted.
    """

    with pytest.raises(ContainerRuntimeError, match="invalid port mapping format"):
        runtime_build_port_bindings([port_mapping])


def test_adapters_docker_create_arguments_include_labels_mounts_and_healthcheck() -> None:
    """Translate container spec into Docker SDK keyword arguments.

    Returns:
        None: Assertions validate create arguments.

    Raises:
        AssertionError: Raised when arguments differ.
    """

    runtime = _runtime(Mock())
    spec = ContainerSpec(
        image="postgres:16",
        network="shipyard",
        environment={"POSTGRES_DB": "app"},
        labels={"shipyard.type": "service"},
        ports=("5432:5432",),
        volumes=(VolumeSpec(source="db-data", destination="/var/lib/postgresql/data"),),
        health_check=HealthCheckSpec(type="tcp", port=5432, interval_seconds=5, timeout_seconds=2, retries=4),
    )

    create_arguments = runtime.runtime_build_create_arguments(name="db", spec=spec)

    assert create_arguments["name"] == "db"
    assert create_arguments["labels"] == {
        "shipyard.managed": "true",
        "shipyard.name": "db",
        "shipyard.type": "service",
    }
    assert create_arguments["ports"] == {"5432/tcp": 5432}
    assert create_arguments["restart_policy"] == {"Name": "unless-stopped"}
    assert create_arguments["network"] == "shipyard"
    assert create_arguments["mounts"][0]["Target"] == "/var/lib/postgresql/data"
    assert create_arguments["mounts"][0]["Type"] == "volume"
    assert create_arguments["healthcheck"]["test"] == ["CMD-SHELL", "nc -z localhost 5432 || exit 1"]
    assert create_arguments["healthcheck"]["interval"] == 5_000_000_000
    assert create_arguments["healthcheck"]["retries"] == 4
    assert "command" not in create_arguments


def test_adapters_docker_setup_network_skips_existing_network() -> None:
    """Reuse an existing network with the configured name.

    Returns:
        None: Assertions validate idempotent network setup.

    Raises:
        AssertionError: Raised when a duplicate network is created.
    """

    client = Mock()
    existing_network = Mock()
    existing_network.name = "shipyard"
    client.networks.list.return_value = [existing_network]

    _runtime(client).runtime_setup_network(DeploymentContext.context_background())

    client.networks.create.assert_not_called()


def test_adapters_docker_setup_network_creates_bridge() -> None:
    """Create a labelled bridge network when none exists.

    Returns:
        None: Assertions validate network creation.

    Raises:
        AssertionError: Raised when creation arguments differ.
    """

    client = Mock()
    client.networks.list.return_value = []

    _runtime(client).runtime_setup_network(DeploymentContext.context_background())

    client.networks.create.assert_called_once_with("shipyard", driver="bridge", labels={"shipyard.managed": "true"})


def test_adapters_docker_pull_reports_stream_errors() -> None:
    """Raise runtime error when pull progress reports an error.

    Returns:
        None: Assertions validate pull error mapping.

    Raises:
        AssertionError: Raised when pull errors are ignored.
    """

    client = Mock()
    client.api.pull.return_value = iter([{"status": "Pulling"}, {"error": "manifest unknown"}])

    with pytest.raises(ContainerRuntimeError, match="manifest unknown"):
        _runtime(client).runtime_pull_image(DeploymentContext.context_background(), "acme/missing:1")


def test_adapters_docker_pull_observes_cancellation() -> None:
    """Stop pulling when the context is cancelled between progress messages.

    Returns:
        None: Assertions validate cancellation during pull.

    Raises:
        AssertionError: Raised when the pull continues.
    """

    context = DeploymentContext.context_background()

    def _progress():
        yield {"status": "Pulling"}
        context.context_cancel("received SIGTERM")
        yield {"status": "Downloading"}

    client = Mock()
    client.api.pull.return_value = _progress()

    with pytest.raises(DeploymentCancelledError, match="SIGTERM"):
        _runtime(client).runtime_pull_image(context, "postgres:16")


def test_adapters_docker_create_replaces_stale_managed_container() -> None:
    """Force-remove a managed container with the same name before creating.

    Returns:
        None: Assertions validate stale replacement.

    Raises:
        AssertionError: Raised when stale containers are kept.
    """

    client = Mock()
    stale_container = Mock()
    stale_container.name = "db"
    other_container = Mock()
    other_container.name = "db-backup"
    client.containers.list.return_value = [stale_container, other_container]
    client.containers.create.return_value = Mock(id="new-id")

    handle = _runtime(client).runtime_create_container(
        DeploymentContext.context_background(),
        "db",
        ContainerSpec(image="postgres:16"),
    )

    assert handle == "new-id"
    stale_container.remove.assert_called_once_with(force=True)
    other_container.remove.assert_not_called()


def test_adapters_docker_container_calls_map_engine_errors() -> None:
    """Map missing containers and engine failures to runtime errors.

    Returns:
        None: Assertions validate error mapping.

    Raises:
        AssertionError: Raised when errors are not mapped.
    """

    client = Mock()
    client.containers.get.side_effect = NotFound("no such container")

    with pytest.raises(ContainerNotFoundError, match="container abc not found"):
        _runtime(client).runtime_stop_container("abc", grace_period_seconds=10)

    container = Mock()
    container.remove.side_effect = APIError("removal in progress")
    client.containers.get.side_effect = None
    client.containers.get.return_value = container

    with pytest.raises(ContainerRuntimeError, match="remove_container failed for container abc"):
        _runtime(client).runtime_remove_container("abc", force=True)


def test_adapters_docker_execute_decodes_demuxed_output() -> None:
    """Decode stdout and stderr of exec results.

    Returns:
        None: Assertions validate exec result mapping.

    Raises:
        AssertionError: Raised when output differs.
    """

    container = Mock()
    container.exec_run.return_value = Mock(exit_code=1, output=(b"", b"nginx: [emerg] bad directive"))
    client = Mock()
    client.containers.get.return_value = container

    exec_result = _runtime(client).runtime_execute("proxy-id", ["nginx", "-s", "reload"])

    container.exec_run.assert_called_once_with(["nginx", "-s", "reload"], demux=True)
    assert exec_result.exit_code == 1
    assert exec_result.stderr == "nginx: [emerg] bad directive"


def test_adapters_docker_wait_polls_until_exit() -> None:
    """Poll container state until it reports exit.

    Returns:
        None: Assertions validate exit code propagation.

    Raises:
        AssertionError: Raised when polling result differs.
    """

    container = Mock()
    states = iter([{"Status": "running"}, {"Status": "exited", "ExitCode": 3}])
    container.reload.side_effect = lambda: setattr(container, "attrs", {"State": next(states)})
    client = Mock()
    client.containers.get.return_value = container

    exit_code = _runtime(client).runtime_wait_container(DeploymentContext.context_background(), "certbot-id")

    assert exit_code == 3
    assert container.reload.call_count == 2


def test_adapters_docker_close_is_idempotent_and_blocks_further_calls() -> None:
    """Close the client once and reject calls after close.

    Returns:
        None: Assertions validate close behavior.

    Raises:
        AssertionError: Raised when close is repeated or later calls succeed.
    """

    client = Mock()
    runtime = _runtime(client)

    runtime.runtime_close()
    runtime.runtime_close()

    client.close.assert_called_once()
    with pytest.raises(ContainerRuntimeError, match="closed"):
        runtime.runtime_setup_network(DeploymentContext.context_background())
