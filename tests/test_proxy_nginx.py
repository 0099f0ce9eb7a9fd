"""Regression tests for nginx proxy rendering and container lifecycle."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from shipyard.adapters import ContainerRuntimeError, ContainerSpec, ExecResult, ProxyProvisionError
from shipyard.deployment import DeploymentContext
from shipyard.domain import DeploymentRecord, ProxySettings, SslSettings, Topology, Unit, UnitKind
from shipyard.proxy import (
    PROXY_CONTAINER_NAME,
    NginxProxyProvisioner,
    ProxyPaths,
    proxy_build_routes,
    proxy_create_provisioner,
)


class _RuntimeStub:
    """Runtime stub recording proxy container calls."""

    def __init__(self, fail_start: bool = False, exec_exit_code: int = 0):
        """Initialize runtime stub.

        Args:
            fail_start: Whether container start fails.
            exec_exit_code: Exit code returned by exec calls.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.fail_start = fail_start
        self.exec_exit_code = exec_exit_code
        self.calls: list[tuple[str, object]] = []
        self.created_spec: ContainerSpec | None = None

    def runtime_pull_image(self, context: DeploymentContext, image: str) -> None:
        """Record image pull.

        Args:
            context: Cancellation context.
            image: Image reference.

        Returns:
            None: Pull does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        _ = context
        self.calls.append(("pull", image))

    def runtime_create_container(self, context: DeploymentContext, name: str, spec: ContainerSpec) -> str:
        """Record creation and return deterministic handle.

        Args:
            context: Cancellation context.
            name: Container name.
            spec: Container spec.

        Returns:
            str: Container handle.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        _ = context
        self.calls.append(("create", name))
        self.created_spec = spec
        return "proxy-id"

    def runtime_start_container(self, context: DeploymentContext, handle: str) -> None:
        """Record start call.

        Args:
            context: Cancellation context.
            handle: Container handle.

        Returns:
            None: Start does not return values.

        Raises:
            ContainerRuntimeError: Raised when configured to fail.
        """

        _ = context
        self.calls.append(("start", handle))
        if self.fail_start:
            raise ContainerRuntimeError("bind: address already in use")

    def runtime_stop_container(self, handle: str, grace_period_seconds: int) -> None:
        """Record stop call.

        Args:
            handle: Container handle.
            grace_period_seconds: Stop grace period.

        Returns:
            None: Stop does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        _ = grace_period_seconds
        self.calls.append(("stop", handle))

    def runtime_remove_container(self, handle: str, force: bool) -> None:
        """Record remove call.

        Args:
            handle: Container handle.
            force: Force flag.

        Returns:
            None: Removal does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        _ = force
        self.calls.append(("remove", handle))

    def runtime_execute(self, handle: str, command: list[str]) -> ExecResult:
        """Record exec call.

        Args:
            handle: Container handle.
            command: Command argv.

        Returns:
            ExecResult: Result with configured exit code.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.calls.append(("exec", (handle, tuple(command))))
        return ExecResult(exit_code=self.exec_exit_code, stderr="invalid directive" if self.exec_exit_code else "")


def _topology(ssl_enabled: bool = False) -> Topology:
    """Build topology with two apps on one host and one on a subdomain.

    Args:
        ssl_enabled: Whether SSL is enabled.

    Returns:
        Topology: Topology under test.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return Topology(
        domain="example.com",
        ssl=SslSettings(enabled=ssl_enabled, self_signed=ssl_enabled),
        proxy=ProxySettings(type="nginx", http_port=8080, https_port=8443),
        apps=(
            Unit(name="site", kind=UnitKind.APP, image="site:1", path="/", ports=("3000:3000",)),
            Unit(name="docs", kind=UnitKind.APP, image="docs:1", path="/docs/"),
            Unit(name="api", kind=UnitKind.APP, image="api:1", subdomain="api"),
        ),
    )


def _records(topology: Topology) -> list[DeploymentRecord]:
    """Build registry records for every unit of the topology.

    Args:
        topology: Topology under test.

    Returns:
        list[DeploymentRecord]: Records in declared order.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return [
        DeploymentRecord(
            unit_name=unit.name,
            runtime_handle=f"id-{unit.name}",
            kind=unit.kind,
            image=unit.image,
            created_at_utc=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        for unit in topology.topology_units()
    ]


def _provisioner(topology: Topology, runtime: _RuntimeStub, tmp_path: Path) -> NginxProxyProvisioner:
    """Build nginx provisioner writing into a temporary directory.

    Args:
        topology: Topology under test.
        runtime: Runtime stub.
        tmp_path: Temporary directory.

    Returns:
        NginxProxyProvisioner: Provisioner under test.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return NginxProxyProvisioner(
        topology=topology,
        runtime=runtime,
        paths=ProxyPaths(
            config_dir=str(tmp_path / "proxy"),
            ssl_cert_dir=str(tmp_path / "certs"),
            ssl_key_dir=str(tmp_path / "private"),
        ),
    )


def test_proxy_build_routes_uses_upstream_port_and_normalized_paths() -> None:
    """Build one route per registered app with resolved upstream ports.

    Returns:
        None: Assertions validate route fields.

    Raises:
        AssertionError: Raised when route fields differ.
    """

    topology = _topology()

    routes = proxy_build_routes(topology, _records(topology))

    assert [(route.host, route.path, route.upstream_url) for route in routes] == [
        ("example.com", "/", "http://site:3000"),
        ("example.com", "/docs", "http://docs:8080"),
        ("api.example.com", "/", "http://api:8080"),
    ]


def test_proxy_build_routes_rejects_undeclared_app() -> None:
    """Reject registered apps missing from the topology.

    Returns:
        None: Assertions validate consistency checks.

    Raises:
        AssertionError: Raised when unknown apps are routed.
    """

    record = DeploymentRecord(
        unit_name="ghost",
        runtime_handle="id-ghost",
        kind=UnitKind.APP,
        image="ghost:1",
        created_at_utc=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )

    with pytest.raises(ProxyProvisionError, match="ghost is not declared"):
        proxy_build_routes(_topology(), [record])


def test_proxy_nginx_setup_writes_config_and_starts_container(tmp_path: Path) -> None:
    """Render server blocks per host and start the proxy container.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate files and runtime calls.

    Raises:
        AssertionError: Raised when rendering or startup differs.
    """

    topology = _topology()
    runtime = _RuntimeStub()
    provisioner = _provisioner(topology, runtime, tmp_path)

    provisioner.proxy_setup(DeploymentContext.context_background(), _records(topology))

    servers_config = (tmp_path / "proxy" / "conf.d" / "default.conf").read_text(encoding="utf-8")
    assert servers_config.count("server_name example.com;") == 1
    assert "server_name api.example.com;" in servers_config
    assert "location /docs {" in servers_config
    assert "proxy_pass http://site:3000;" in servers_config
    assert "listen 443" not in servers_config
    assert (tmp_path / "proxy" / "nginx.conf").exists()

    assert runtime.calls == [("pull", "nginx:alpine"), ("create", PROXY_CONTAINER_NAME), ("start", "proxy-id")]
    assert runtime.created_spec is not None
    assert runtime.created_spec.ports == ("8080:80",)
    assert provisioner.container_handle == "proxy-id"


def test_proxy_nginx_ssl_adds_https_listener_and_redirect(tmp_path: Path) -> None:
    """Listen on 443 with domain certificates and redirect plain HTTP.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate SSL rendering and port mapping.

    Raises:
        AssertionError: Raised when SSL rendering differs.
    """

    topology = _topology(ssl_enabled=True)
    runtime = _RuntimeStub()
    provisioner = _provisioner(topology, runtime, tmp_path)

    provisioner.proxy_setup(DeploymentContext.context_background(), _records(topology))

    servers_config = (tmp_path / "proxy" / "conf.d" / "default.conf").read_text(encoding="utf-8")
    assert "listen 443 ssl;" in servers_config
    assert "ssl_certificate /etc/ssl/certs/example.com.crt;" in servers_config
    assert "return 301 https://$host$request_uri;" in servers_config
    assert runtime.created_spec is not None
    assert runtime.created_spec.ports == ("8080:80", "8443:443")
    assert str(tmp_path / "certs") in [volume.source for volume in runtime.created_spec.volumes]


def test_proxy_nginx_start_failure_removes_container(tmp_path: Path) -> None:
    """Remove the created proxy container when it fails to start.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate failure cleanup.

    Raises:
        AssertionError: Raised when the container is left behind.
    """

    topology = _topology()
    runtime = _RuntimeStub(fail_start=True)
    provisioner = _provisioner(topology, runtime, tmp_path)

    with pytest.raises(ProxyProvisionError, match="failed to start proxy container"):
        provisioner.proxy_setup(DeploymentContext.context_background(), _records(topology))

    assert runtime.calls[-1] == ("remove", "proxy-id")
    assert provisioner.container_handle is None


def test_proxy_nginx_reload_executes_reload_command(tmp_path: Path) -> None:
    """Run `nginx -s reload` in the running proxy container.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate reload command.

    Raises:
        AssertionError: Raised when reload differs.
    """

    topology = _topology()
    runtime = _RuntimeStub()
    provisioner = _provisioner(topology, runtime, tmp_path)
    context = DeploymentContext.context_background()
    provisioner.proxy_setup(context, _records(topology))

    provisioner.proxy_reload(context)

    assert runtime.calls[-1] == ("exec", ("proxy-id", ("nginx", "-s", "reload")))


def test_proxy_nginx_reload_failure_raises(tmp_path: Path) -> None:
    """Raise provision error when nginx rejects the reload.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate reload failure mapping.

    Raises:
        AssertionError: Raised when failure is ignored.
    """

    topology = _topology()
    runtime = _RuntimeStub(exec_exit_code=1)
    provisioner = _provisioner(topology, runtime, tmp_path)
    context = DeploymentContext.context_background()
    provisioner.proxy_setup(context, _records(topology))

    with pytest.raises(ProxyProvisionError, match="exit code 1: invalid directive"):
        provisioner.proxy_reload(context)


def test_proxy_nginx_reload_requires_running_proxy(tmp_path: Path) -> None:
    """Reject reloads before the proxy was started.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate reload precondition.

    Raises:
        AssertionError: Raised when reload proceeds without container.
    """

    provisioner = _provisioner(_topology(), _RuntimeStub(), tmp_path)

    with pytest.raises(ProxyProvisionError, match="not running"):
        provisioner.proxy_reload(DeploymentContext.context_background())


def test_proxy_nginx_cleanup_removes_container_and_config(tmp_path: Path) -> None:
    """Stop and remove the proxy container and delete rendered config.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate cleanup effects.

    Raises:
        AssertionError: Raised when cleanup leaves resources behind.
    """

    topology = _topology()
    runtime = _RuntimeStub()
    provisioner = _provisioner(topology, runtime, tmp_path)
    provisioner.proxy_setup(DeploymentContext.context_background(), _records(topology))

    provisioner.proxy_cleanup()
    provisioner.proxy_cleanup()

    assert runtime.calls[-2:] == [("stop", "proxy-id"), ("remove", "proxy-id")]
    assert not (tmp_path / "proxy").exists()
    assert provisioner.container_handle is None


def test_proxy_create_provisioner_rejects_unknown_type() -> None:
    """Reject unsupported proxy types.

    Returns:
        None: Assertions validate factory validation.

    Raises:
        AssertionError: Raised when unsupported types are accepted.
    """

    topology = Topology(domain="example.com", proxy=ProxySettings(type="haproxy"))

    with pytest.raises(ProxyProvisionError, match="unsupported proxy type: haproxy"):
        proxy_create_provisioner(topology=topology, runtime=_RuntimeStub())
