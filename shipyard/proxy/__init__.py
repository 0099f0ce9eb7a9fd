"""Reverse proxy provisioning for deployed apps."""

from __future__ import annotations

from shipyard.adapters.errors import ProxyProvisionError
from shipyard.adapters.interfaces import ContainerRuntimePort
from shipyard.domain import Topology

from .nginx import NGINX_IMAGE, NginxProxyProvisioner, nginx_group_routes_by_host
from .provisioner import (
    PROXY_CONTAINER_NAME,
    ContainerProxyProvisioner,
    ProxyPaths,
    ProxyRoute,
    proxy_build_routes,
)
from .traefik import TRAEFIK_IMAGE, TraefikProxyProvisioner, traefik_build_rule

_PROVISIONERS_BY_TYPE: dict[str, type[ContainerProxyProvisioner]] = {
    NginxProxyProvisioner.proxy_type: NginxProxyProvisioner,
    TraefikProxyProvisioner.proxy_type: TraefikProxyProvisioner,
}


def proxy_create_provisioner(
    topology: Topology,
    runtime: ContainerRuntimePort,
    paths: ProxyPaths | None = None,
    network_name: str = "shipyard",
    grace_period_seconds: int = 10,
) -> ContainerProxyProvisioner:
    """Select the provisioner matching the topology proxy type.

    Raises:
        ProxyProvisionError: Raised for unsupported proxy types.
    """

    provisioner_class = _PROVISIONERS_BY_TYPE.get(topology.proxy.type.strip().lower())
    if provisioner_class is None:
        raise ProxyProvisionError(f"unsupported proxy type: {topology.proxy.type}", operation="proxy_create")
    return provisioner_class(
        topology=topology,
        runtime=runtime,
        paths=paths,
        network_name=network_name,
        grace_period_seconds=grace_period_seconds,
    )


__all__ = [
    "NGINX_IMAGE",
    "PROXY_CONTAINER_NAME",
    "TRAEFIK_IMAGE",
    "ContainerProxyProvisioner",
    "NginxProxyProvisioner",
    "ProxyPaths",
    "ProxyRoute",
    "TraefikProxyProvisioner",
    "nginx_group_routes_by_host",
    "proxy_build_routes",
    "proxy_create_provisioner",
    "traefik_build_rule",
]
