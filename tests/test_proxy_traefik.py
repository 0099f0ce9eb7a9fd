"""Regression tests for Traefik proxy configuration rendering."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock

from shipyard.deployment import DeploymentContext
from shipyard.domain import DeploymentRecord, ProxySettings, SslSettings, Topology, Unit, UnitKind
from shipyard.proxy import ProxyPaths, ProxyRoute, TraefikProxyProvisioner, proxy_create_provisioner, traefik_build_rule
from shipyard.proxy.traefik import ACME_VOLUME_NAME


def _topology(ssl: SslSettings) -> Topology:
    """Build traefik topology with two apps.

    Args:
        ssl: SSL settings.

    Returns:
        Topology: Topology under test.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return Topology(
        domain="example.com",
        ssl=ssl,
        proxy=ProxySettings(type="traefik"),
        apps=(
            Unit(name="api", kind=UnitKind.APP, image="api:1", subdomain="api", ports=("9000:9000",)),
            Unit(name="docs", kind=UnitKind.APP, image="docs:1", path="/docs"),
        ),
    )


def _records(topology: Topology) -> list[DeploymentRecord]:
    """Build registry records for the topology apps.

    Args:
        topology: Topology under test.

    Returns:
        list[DeploymentRecord]: Records in declared order.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return [
        DeploymentRecord(
            unit_name=app.name,
            runtime_handle=f"id-{app.name}",
            kind=app.kind,
            image=app.image,
            created_at_utc=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        for app in topology.apps
    ]


def _provisioner(topology: Topology, runtime: Mock, tmp_path: Path) -> TraefikProxyProvisioner:
    """Build traefik provisioner through the proxy factory.

    Args:
        topology: Topology under test.
        runtime: Runtime mock.
        tmp_path: Temporary directory.

    Returns:
        TraefikProxyProvisioner: Provisioner under test.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    provisioner = proxy_create_provisioner(
        topology=topology,
        runtime=runtime,
        paths=ProxyPaths(
            config_dir=str(tmp_path / "proxy"),
            ssl_cert_dir=str(tmp_path / "certs"),
            ssl_key_dir=str(tmp_path / "private"),
        ),
    )
    assert isinstance(provisioner, TraefikProxyProvisioner)
    return provisioner


def _runtime_mock() -> Mock:
    """Build runtime mock returning a fixed proxy handle.

    Returns:
        Mock: Runtime mock.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    runtime = Mock()
    runtime.runtime_create_container.return_value = "traefik-id"
    return runtime


def test_proxy_traefik_rule_adds_path_prefix_for_non_root_paths() -> None:
    """Combine host and path prefix matchers for non-root routes.

    Returns:
        None: Assertions validate rule strings.

    Raises:
        AssertionError: Raised when rules differ.
    """

    root_route = ProxyRoute(unit_name="api", host="api.example.com", path="/", upstream_host="api", upstream_port=80)
    docs_route = ProxyRoute(unit_name="docs", host="example.com", path="/docs", upstream_host="docs", upstream_port=80)

    assert traefik_build_rule(root_route) == "Host(`api.example.com`)"
    assert traefik_build_rule(docs_route) == "Host(`example.com`) && PathPrefix(`/docs`)"


def test_proxy_traefik_acme_dns_challenge_configuration(tmp_path: Path) -> None:
    """Render ACME DNS challenge and pass provider credentials to the container.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate static config and container spec.

    Raises:
        AssertionError: Raised when ACME settings are missing.
    """

    topology = _topology(
        SslSettings(
            enabled=True,
            email="ops@example.com",
            dns_challenge=True,
            dns_provider="cloudflare",
            dns_credentials={"CF_DNS_API_TOKEN": "token"},
        )
    )
    runtime = _runtime_mock()
    provisioner = _provisioner(topology, runtime, tmp_path)

    provisioner.proxy_setup(DeploymentContext.context_background(), _records(topology))

    static_config = (tmp_path / "proxy" / "traefik.toml").read_text(encoding="utf-8")
    routes_config = (tmp_path / "proxy" / "dynamic" / "routes.toml").read_text(encoding="utf-8")
    assert 'email = "ops@example.com"' in static_config
    assert 'provider = "cloudflare"' in static_config
    assert "httpChallenge" not in static_config
    assert 'to = "websecure"' in static_config
    assert 'certResolver = "shipyard"' in routes_config
    assert 'url = "http://api:9000"' in routes_config
    assert "Host(`example.com`) && PathPrefix(`/docs`)" in routes_config

    _, name, spec = runtime.runtime_create_container.call_args.args
    assert name == "shipyard-proxy"
    assert spec.environment == {"CF_DNS_API_TOKEN": "token"}
    assert ACME_VOLUME_NAME in [volume.source for volume in spec.volumes]
    assert spec.ports == ("80:80", "443:443")
    runtime.runtime_pull_image.assert_called_once()


def test_proxy_traefik_self_signed_mounts_certificate_files(tmp_path: Path) -> None:
    """Reference mounted certificate files instead of ACME for self-signed SSL.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate file-based TLS configuration.

    Raises:
        AssertionError: Raised when ACME is configured for self-signed SSL.
    """

    topology = _topology(SslSettings(enabled=True, self_signed=True))
    runtime = _runtime_mock()
    provisioner = _provisioner(topology, runtime, tmp_path)

    provisioner.proxy_setup(DeploymentContext.context_background(), _records(topology))

    static_config = (tmp_path / "proxy" / "traefik.toml").read_text(encoding="utf-8")
    routes_config = (tmp_path / "proxy" / "dynamic" / "routes.toml").read_text(encoding="utf-8")
    assert "certificatesResolvers" not in static_config
    assert 'certFile = "/etc/traefik/certs/example.com.crt"' in routes_config
    assert "certResolver" not in routes_config

    _, _, spec = runtime.runtime_create_container.call_args.args
    assert str(tmp_path / "certs") in [volume.source for volume in spec.volumes]
    assert ACME_VOLUME_NAME not in [volume.source for volume in spec.volumes]


def test_proxy_traefik_reload_rewrites_config_without_exec(tmp_path: Path) -> None:
    """Rewrite the watched dynamic config on reload without executing commands.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate reload behavior.

    Raises:
        AssertionError: Raised when reload executes commands or skips the rewrite.
    """

    topology = _topology(SslSettings())
    runtime = _runtime_mock()
    provisioner = _provisioner(topology, runtime, tmp_path)
    context = DeploymentContext.context_background()
    provisioner.proxy_setup(context, _records(topology))
    routes_path = tmp_path / "proxy" / "dynamic" / "routes.toml"
    routes_path.unlink()

    provisioner.proxy_reload(context)

    assert routes_path.exists()
    assert 'entryPoints = ["web"]' in routes_path.read_text(encoding="utf-8")
    runtime.runtime_execute.assert_not_called()
