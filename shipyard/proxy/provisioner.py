"""Container-hosted reverse proxy provisioning shared by proxy kinds."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import shutil
from typing import TYPE_CHECKING, Final, Sequence

import jinja2
import structlog

from shipyard.adapters.errors import ContainerRuntimeError, ProxyProvisionError
from shipyard.adapters.interfaces import ContainerRuntimePort, ContainerSpec, ProxyProvisionerPort
from shipyard.domain import (
    DeploymentRecord,
    Topology,
    UnitKind,
    domain_normalize_route_path,
    unit_public_host,
    unit_upstream_port,
)

if TYPE_CHECKING:
    from shipyard.deployment.context import DeploymentContext

logger = structlog.get_logger(__name__)

PROXY_CONTAINER_NAME: Final[str] = "shipyard-proxy"
DEFAULT_PROXY_CONFIG_DIR: Final[str] = "/tmp/proxy-config"


@dataclass(frozen=True)
class ProxyRoute:
    """One public route forwarded to an app container.

    Attributes:
        unit_name: App name; also the router/service identifier.
        host: Public host name.
        path: Normalized path prefix (`/` for the whole host).
        upstream_host: Container host name on the deployment network.
        upstream_port: Container port receiving traffic.
    """

    unit_name: str
    host: str
    path: str
    upstream_host: str
    upstream_port: int

    @property
    def upstream_url(self) -> str:
        return f"http://{self.upstream_host}:{self.upstream_port}"


@dataclass(frozen=True)
class ProxyPaths:
    """Host directories mounted into the proxy container.

    Attributes:
        config_dir: Directory receiving rendered configuration files.
        ssl_cert_dir: Directory holding certificates.
        ssl_key_dir: Directory holding private keys.
    """

    config_dir: str = DEFAULT_PROXY_CONFIG_DIR
    ssl_cert_dir: str = "/etc/shipyard/ssl/certs"
    ssl_key_dir: str = "/etc/shipyard/ssl/private"


def proxy_build_routes(topology: Topology, records: Sequence[DeploymentRecord]) -> tuple[ProxyRoute, ...]:
    """Build routes for registered apps in registry order.

    Args:
        topology: Topology supplying app definitions and domain.
        records: Registry snapshot.

    Returns:
        tuple[ProxyRoute, ...]: One route per registered app.

    Raises:
        ProxyProvisionError: Raised when a registered app is not declared in the topology.
    """

    apps_by_name = {app.name: app for app in topology.apps}
    routes: list[ProxyRoute] = []
    for record in records:
        if record.kind is not UnitKind.APP:
            continue
        app = apps_by_name.get(record.unit_name)
        if app is None:
            raise ProxyProvisionError(f"registered app {record.unit_name} is not declared", operation="proxy_setup")
        routes.append(
            ProxyRoute(
                unit_name=app.name,
                host=unit_public_host(app, topology.domain),
                path=domain_normalize_route_path(app.path),
                upstream_host=app.name,
                upstream_port=unit_upstream_port(app),
            )
        )
    return tuple(routes)


def proxy_create_template_environment() -> jinja2.Environment:
    """Return the jinja2 environment used to render proxy configuration."""

    return jinja2.Environment(
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=jinja2.StrictUndefined,
    )


class ContainerProxyProvisioner(ProxyProvisionerPort):
    """Base provisioner rendering config files and running one proxy container.

    Subclasses supply the image, the rendered files, the container spec and the
    reload strategy.
    """

    proxy_type: str = ""
    image: str = ""

    def __init__(
        self,
        topology: Topology,
        runtime: ContainerRuntimePort,
        paths: ProxyPaths | None = None,
        network_name: str = "shipyard",
        grace_period_seconds: int = 10,
    ):
        """Initialize proxy dependencies.

        Args:
            topology: Deployed topology.
            runtime: Container runtime used to run the proxy.
            paths: Host directories for configuration and certificates.
            network_name: Deployment network the proxy joins.
            grace_period_seconds: Stop grace period used by cleanup.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies are missing.
        """

        if topology is None:
            raise ValueError("topology must not be None")
        if runtime is None:
            raise ValueError("runtime must not be None")
        if not network_name.strip():
            raise ValueError("network_name must not be blank")

        self._topology = topology
        self._runtime = runtime
        self._paths = paths or ProxyPaths()
        self._network_name = network_name
        self._grace_period_seconds = grace_period_seconds
        self._templates = proxy_create_template_environment()
        self._container_handle: str | None = None
        self._routes: tuple[ProxyRoute, ...] = ()

    @property
    def container_handle(self) -> str | None:
        return self._container_handle

    @property
    def config_dir(self) -> Path:
        return Path(self._paths.config_dir)

    def proxy_render_files(self, routes: Sequence[ProxyRoute]) -> dict[str, str]:
        """Return rendered configuration keyed by path relative to the config dir."""

        raise NotImplementedError

    def proxy_container_spec(self) -> ContainerSpec:
        """Return the proxy container spec."""

        raise NotImplementedError

    def proxy_reload(self, context: DeploymentContext) -> None:
        raise NotImplementedError

    def proxy_setup(self, context: DeploymentContext, records: Sequence[DeploymentRecord]) -> None:
        """Render routing for registered apps and start the proxy container.

        Args:
            context: Cancellation context.
            records: Registry snapshot.

        Returns:
            None: Starts the proxy as side effect.

        Raises:
            ProxyProvisionError: Raised when rendering, writing or startup fails.
            DeploymentCancelledError: Raised when the context is cancelled.
        """

        self._routes = proxy_build_routes(self._topology, records)
        logger.info("proxy_setup_started", proxy_type=self.proxy_type, routes=len(self._routes))
        self.proxy_write_configuration()

        spec = self.proxy_container_spec()
        try:
            self._runtime.runtime_pull_image(context, spec.image)
            handle = self._runtime.runtime_create_container(context, PROXY_CONTAINER_NAME, spec)
        except ContainerRuntimeError as error:
            raise ProxyProvisionError(f"failed to create proxy container: {error}", operation="proxy_setup") from error

        try:
            self._runtime.runtime_start_container(context, handle)
        except ContainerRuntimeError as error:
            try:
                self._runtime.runtime_remove_container(handle=handle, force=True)
            except ContainerRuntimeError as removal_error:
                logger.error("proxy_container_removal_failed", container_id=handle, error=str(removal_error))
            raise ProxyProvisionError(f"failed to start proxy container: {error}", operation="proxy_setup") from error

        self._container_handle = handle
        logger.info("proxy_setup_completed", proxy_type=self.proxy_type, container_id=handle)

    def proxy_write_configuration(self) -> None:
        """Render and write configuration files for the current routes.

        Raises:
            ProxyProvisionError: Raised when rendering or writing fails.
        """

        try:
            rendered_files = self.proxy_render_files(self._routes)
        except jinja2.TemplateError as error:
            raise ProxyProvisionError(f"failed to render proxy configuration: {error}", operation="render") from error

        try:
            for relative_path, content in rendered_files.items():
                file_path = self.config_dir / relative_path
                file_path.parent.mkdir(parents=True, exist_ok=True)
                file_path.write_text(content, encoding="utf-8")
        except OSError as error:
            raise ProxyProvisionError(f"failed to write proxy configuration: {error}", operation="render") from error

    def proxy_cleanup(self) -> None:
        """Stop and remove the proxy container and its configuration; failures are logged."""

        if self._container_handle is not None:
            logger.info("proxy_cleanup_started", container_id=self._container_handle)
            try:
                self._runtime.runtime_stop_container(
                    handle=self._container_handle,
                    grace_period_seconds=self._grace_period_seconds,
                )
            except ContainerRuntimeError as error:
                logger.error("proxy_stop_failed", error=str(error))
            try:
                self._runtime.runtime_remove_container(handle=self._container_handle, force=True)
            except ContainerRuntimeError as error:
                logger.error("proxy_remove_failed", error=str(error))
            self._container_handle = None

        try:
            shutil.rmtree(self.config_dir)
        except FileNotFoundError:
            pass
        except OSError as error:
            logger.error("proxy_config_removal_failed", config_dir=str(self.config_dir), error=str(error))

    def _proxy_require_handle(self) -> str:
        if self._container_handle is None:
            raise ProxyProvisionError("proxy container is not running", operation="proxy_reload")
        return self._container_handle

    def _proxy_render(self, template_source: str, **template_values: object) -> str:
        return self._templates.from_string(template_source).render(**template_values)
