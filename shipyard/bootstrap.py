"""Runtime bootstrap wiring for configuration loading and dependency assembly."""

from shipyard.adapters import DisabledImageScanner, DockerContainerRuntime, TrivyImageScanner
from shipyard.config import AppSettings, config_apply_settings_overrides, config_load_topology
from shipyard.deployment import DeploymentManager, DeploymentManagerConfig, ExternalVerifier
from shipyard.domain import Topology
from shipyard.proxy import ProxyPaths, proxy_create_provisioner
from shipyard.ssl import CertificatePaths, ssl_create_certificate_provisioner


def bootstrap_load_topology(settings: AppSettings) -> Topology:
    """Load the topology file named by settings and apply runtime overrides.

    Args:
        settings: Validated runtime settings.

    Returns:
        Topology: Validated topology with overrides applied.

    Raises:
        TopologyLoadError: Raised when the topology file is missing or invalid.
        UnresolvedDependencyError: Raised when a dependency does not resolve.
    """

    topology = config_load_topology(settings.config)
    return config_apply_settings_overrides(topology=topology, settings=settings)


def bootstrap_create_manager(settings: AppSettings, topology: Topology) -> DeploymentManager:
    """Build a deployment manager wired to Docker and the configured proxy.

    Args:
        settings: Validated runtime settings.
        topology: Topology to deploy.

    Returns:
        DeploymentManager: Fully wired deployment manager.

    Raises:
        ProxyProvisionError: Raised when the proxy type is unsupported.
        ValueError: Raised when certificate settings are incomplete.
    """

    runtime = DockerContainerRuntime(network_name=settings.network_name, docker_host=settings.docker_host)
    proxy = proxy_create_provisioner(
        topology=topology,
        runtime=runtime,
        paths=ProxyPaths(
            config_dir=settings.proxy_config_dir,
            ssl_cert_dir=settings.ssl_cert_dir,
            ssl_key_dir=settings.ssl_key_dir,
        ),
        network_name=settings.network_name,
        grace_period_seconds=settings.rollback_grace_period_seconds,
    )
    certificates = ssl_create_certificate_provisioner(
        topology=topology,
        runtime=runtime,
        paths=CertificatePaths(
            cert_dir=settings.ssl_cert_dir,
            key_dir=settings.ssl_key_dir,
            letsencrypt_dir=settings.letsencrypt_dir,
        ),
        network_name=settings.network_name,
    )
    scanner = DisabledImageScanner() if settings.skip_security_scan else TrivyImageScanner()
    return DeploymentManager(
        topology=topology,
        runtime=runtime,
        proxy=proxy,
        certificates=certificates,
        scanner=scanner,
        config=DeploymentManagerConfig(
            network_name=settings.network_name,
            environment=settings.environment,
            rollback_grace_period_seconds=settings.rollback_grace_period_seconds,
        ),
        verifier=ExternalVerifier(topology=topology),
    )
