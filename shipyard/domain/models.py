"""Typed domain models shared across runtime layers.

Units and topology settings are immutable inputs produced by the configuration
layer. Deployment records are produced by the deployment manager and owned by the
deployment registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Final, Mapping

DEFAULT_UPSTREAM_PORT: Final[int] = 8080


class UnitKind(str, Enum):
    """Deployable unit category."""

    SERVICE = "service"
    APP = "app"


class UnitState(str, Enum):
    """Per-unit lifecycle state within one deployment run."""

    PENDING = "pending"
    CREATED = "created"
    STARTED = "started"
    HEALTH_CHECKING = "health_checking"
    HEALTHY = "healthy"
    FAILED = "failed"


@dataclass(frozen=True)
class HealthCheckSpec:
    """Health check definition for one unit.

    Attributes:
        type: Probe type (`http` or `tcp`).
        port: Container port probed on the deployment network.
        path: HTTP path for `http` probes.
        interval_seconds: Delay between probe attempts.
        timeout_seconds: Per-probe timeout.
        retries: Maximum number of probe attempts.
        start_period_seconds: Delay before the first probe attempt.
    """

    type: str
    port: int
    path: str = "/"
    interval_seconds: float = 30.0
    timeout_seconds: float = 10.0
    retries: int = 3
    start_period_seconds: float = 60.0


@dataclass(frozen=True)
class VolumeSpec:
    """Volume or bind mount for one unit container.

    Attributes:
        source: Named volume or host path.
        destination: Mount point inside the container.
        type: Mount type (`volume` or `bind`).
    """

    source: str
    destination: str
    type: str = "volume"


@dataclass(frozen=True)
class Unit:
    """Service or app declared by the deployment topology.

    Attributes:
        name: Unique unit name; also the container name and network hostname.
        kind: Unit category.
        image: Container image reference.
        depends_on: Names of units that must be live before this one.
        health_check: Optional health check; None disables the health gate.
        ports: Port mappings in `host:container` form.
        environment: Container environment variables.
        volumes: Volume mounts.
        restart_policy: Container restart policy name.
        subdomain: App routing subdomain.
        path: App routing path prefix.
    """

    name: str
    kind: UnitKind
    image: str
    depends_on: tuple[str, ...] = ()
    health_check: HealthCheckSpec | None = None
    ports: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    volumes: tuple[VolumeSpec, ...] = ()
    restart_policy: str = "unless-stopped"
    subdomain: str | None = None
    path: str | None = None


@dataclass(frozen=True)
class SslSettings:
    """Certificate settings for public endpoints."""

    enabled: bool = False
    provider: str = "letsencrypt"
    email: str | None = None
    self_signed: bool = False
    dns_challenge: bool = False
    dns_provider: str | None = None
    dns_credentials: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProxySettings:
    """Reverse proxy settings."""

    type: str = "nginx"
    http_port: int = 80
    https_port: int = 443


@dataclass(frozen=True)
class Topology:
    """Validated and defaulted deployment topology.

    Attributes:
        version: Topology schema version.
        domain: Public base domain.
        ssl: Certificate settings.
        proxy: Reverse proxy settings.
        services: Persistent backing services in declared order.
        apps: User-facing apps in declared order.
        timeout_minutes: Overall deployment timeout; None disables it.
        log_level: Requested log level.
    """

    domain: str
    services: tuple[Unit, ...] = ()
    apps: tuple[Unit, ...] = ()
    version: str = "1.0"
    ssl: SslSettings = field(default_factory=SslSettings)
    proxy: ProxySettings = field(default_factory=ProxySettings)
    timeout_minutes: float | None = 30
    log_level: str = "info"

    def topology_units(self) -> tuple[Unit, ...]:
        """Return services followed by apps, each in declared order."""

        return self.services + self.apps


@dataclass(frozen=True)
class DeploymentRecord:
    """Registry entry linking a unit to its live runtime handle.

    Attributes:
        unit_name: Deployed unit name.
        runtime_handle: Opaque container identifier returned by the runtime.
        kind: Unit category.
        image: Deployed image reference.
        created_at_utc: Record creation timestamp.
    """

    unit_name: str
    runtime_handle: str
    kind: UnitKind
    image: str
    created_at_utc: datetime


def domain_normalize_route_path(path: str | None) -> str:
    """Normalize one routing path to a leading-slash, no-trailing-slash form.

    Args:
        path: Raw routing path.

    Returns:
        str: Normalized path; `/` for empty input.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    normalized_path = (path or "").strip()
    if not normalized_path:
        return "/"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"
    if normalized_path != "/" and normalized_path.endswith("/"):
        normalized_path = normalized_path.rstrip("/") or "/"
    return normalized_path


def unit_public_host(unit: Unit, domain: str) -> str:
    """Return the public host name routed to one app."""

    if unit.subdomain:
        return f"{unit.subdomain}.{domain}"
    return domain


def unit_public_url(unit: Unit, topology: Topology) -> str:
    """Build the public URL of one app.

    Args:
        unit: App unit.
        topology: Topology supplying domain and SSL mode.

    Returns:
        str: Public URL with protocol, host and optional non-root path.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    protocol = "https" if topology.ssl.enabled else "http"
    url = f"{protocol}://{unit_public_host(unit, topology.domain)}"
    route_path = domain_normalize_route_path(unit.path)
    if route_path != "/":
        url = f"{url}{route_path}"
    return url


def unit_upstream_port(unit: Unit) -> int:
    """Return the container port that receives proxied traffic.

    The container side of the first `host:container` mapping wins, then the
    health check port, then the default upstream port.
    """

    for port_mapping in unit.ports:
        parts = port_mapping.split(":")
        if len(parts) < 2:
            continue
        container_port = parts[-1].split("/", maxsplit=1)[0]
        if container_port.isdigit():
            return int(container_port)
    if unit.health_check is not None and unit.health_check.port:
        return unit.health_check.port
    return DEFAULT_UPSTREAM_PORT
