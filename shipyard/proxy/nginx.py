"""nginx proxy provisioner."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, Sequence

import structlog

from shipyard.adapters.errors import ContainerRuntimeError, ProxyProvisionError
from shipyard.adapters.interfaces import ContainerSpec
from shipyard.domain import VolumeSpec

from .provisioner import ContainerProxyProvisioner, ProxyRoute

if TYPE_CHECKING:
    from shipyard.deployment.context import DeploymentContext

logger = structlog.get_logger(__name__)

NGINX_IMAGE: Final[str] = "nginx:alpine"

_NGINX_MAIN_TEMPLATE: Final[str] = """user nginx;
worker_processes auto;
error_log /var/log/nginx/error.log notice;
pid /var/run/nginx.pid;

events {
    worker_connections 1024;
}

http {
    include /etc/nginx/mime.types;
    default_type application/octet-stream;
    log_format main '$remote_addr - $remote_user [$time_local] "$request" '
                    '$status $body_bytes_sent "$http_referer" '
                    '"$http_user_agent" "$http_x_forwarded_for"';
    access_log /var/log/nginx/access.log main;
    sendfile on;
    keepalive_timeout 65;
{% if ssl_enabled %}

    ssl_session_cache shared:SSL:10m;
    ssl_session_timeout 10m;
    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_prefer_server_ciphers on;
{% endif %}

    include /etc/nginx/conf.d/*.conf;
}
"""

_NGINX_SERVERS_TEMPLATE: Final[str] = """{% for host, host_routes in hosts %}
# {{ host }}
server {
{% if ssl_enabled %}
    listen 443 ssl;
    ssl_certificate {{ certificate_path }};
    ssl_certificate_key {{ key_path }};
{% else %}
    listen 80;
{% endif %}
    server_name {{ host }};
{% for route in host_routes %}

    location {{ route.path }} {
        proxy_pass {{ route.upstream_url }};
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
    }
{% endfor %}
}
{% if ssl_enabled %}

server {
    listen 80;
    server_name {{ host }};
    return 301 https://$host$request_uri;
}
{% endif %}

{% endfor %}
"""


def nginx_group_routes_by_host(routes: Sequence[ProxyRoute]) -> list[tuple[str, list[ProxyRoute]]]:
    """Group routes by host, keeping first-seen host order and route order."""

    grouped_routes: dict[str, list[ProxyRoute]] = {}
    for route in routes:
        grouped_routes.setdefault(route.host, []).append(route)
    return list(grouped_routes.items())


class NginxProxyProvisioner(ContainerProxyProvisioner):
    """nginx with one server block per host and one location per route."""

    proxy_type = "nginx"
    image = NGINX_IMAGE

    def proxy_render_files(self, routes: Sequence[ProxyRoute]) -> dict[str, str]:
        ssl_enabled = self._topology.ssl.enabled
        domain = self._topology.domain
        return {
            "nginx.conf": self._proxy_render(_NGINX_MAIN_TEMPLATE, ssl_enabled=ssl_enabled),
            "conf.d/default.conf": self._proxy_render(
                _NGINX_SERVERS_TEMPLATE,
                hosts=nginx_group_routes_by_host(routes),
                ssl_enabled=ssl_enabled,
                certificate_path=f"/etc/ssl/certs/{domain}.crt",
                key_path=f"/etc/ssl/private/{domain}.key",
            ),
        }

    def proxy_container_spec(self) -> ContainerSpec:
        proxy_settings = self._topology.proxy
        ports = [f"{proxy_settings.http_port}:80"]
        volumes = [
            VolumeSpec(source=str(self.config_dir / "nginx.conf"), destination="/etc/nginx/nginx.conf", type="bind"),
            VolumeSpec(source=str(self.config_dir / "conf.d"), destination="/etc/nginx/conf.d", type="bind"),
        ]
        if self._topology.ssl.enabled:
            ports.append(f"{proxy_settings.https_port}:443")
            volumes.extend(
                (
                    VolumeSpec(source=self._paths.ssl_cert_dir, destination="/etc/ssl/certs", type="bind"),
                    VolumeSpec(source=self._paths.ssl_key_dir, destination="/etc/ssl/private", type="bind"),
                )
            )
        return ContainerSpec(
            image=self.image,
            network=self._network_name,
            labels={"shipyard.type": "proxy"},
            ports=tuple(ports),
            volumes=tuple(volumes),
            restart_policy="unless-stopped",
        )

    def proxy_reload(self, context: DeploymentContext) -> None:
        """Rewrite configuration and run `nginx -s reload` in the proxy container.

        Raises:
            ProxyProvisionError: Raised when the proxy is not running or reload fails.
        """

        context.context_raise_if_cancelled()
        handle = self._proxy_require_handle()
        self.proxy_write_configuration()
        logger.info("proxy_reloading", proxy_type=self.proxy_type)
        try:
            exec_result = self._runtime.runtime_execute(handle, ["nginx", "-s", "reload"])
        except ContainerRuntimeError as error:
            raise ProxyProvisionError(f"failed to execute nginx reload: {error}", operation="proxy_reload") from error
        if exec_result.exit_code != 0:
            logger.error("proxy_reload_failed", exit_code=exec_result.exit_code, stderr=exec_result.stderr)
            raise ProxyProvisionError(
                f"nginx reload failed with exit code {exec_result.exit_code}: {exec_result.stderr.strip()}",
                operation="proxy_reload",
            )
        logger.debug("proxy_reloaded", stdout=exec_result.stdout)
