"""Traefik proxy provisioner using the file provider with watch."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, Sequence

import structlog

from shipyard.adapters.interfaces import ContainerSpec
from shipyard.domain import VolumeSpec

from .provisioner import ContainerProxyProvisioner, ProxyRoute

if TYPE_CHECKING:
    from shipyard.deployment.context import DeploymentContext

logger = structlog.get_logger(__name__)

TRAEFIK_IMAGE: Final[str] = "traefik:v2.9"
CERTIFICATE_RESOLVER_NAME: Final[str] = "shipyard"
ACME_VOLUME_NAME: Final[str] = "shipyard-traefik-acme"

_TRAEFIK_STATIC_TEMPLATE: Final[str] = """[global]
  checkNewVersion = false
  sendAnonymousUsage = false

[entryPoints]
  [entryPoints.web]
    address = ":80"
{% if ssl.enabled %}
    [entryPoints.web.http.redirections.entryPoint]
      to = "websecure"
      scheme = "https"

  [entryPoints.websecure]
    address = ":443"
{% endif %}

[api]
  dashboard = false

[providers]
  [providers.file]
    directory = "/etc/traefik/dynamic"
    watch = true
{% if use_acme %}

[certificatesResolvers.{{ resolver }}.acme]
  email = "{{ ssl.email }}"
  storage = "/etc/traefik/acme/acme.json"
{% if ssl.dns_challenge %}
  [certificatesResolvers.{{ resolver }}.acme.dnsChallenge]
    provider = "{{ ssl.dns_provider }}"
    delayBeforeCheck = 30
{% else %}
  [certificatesResolvers.{{ resolver }}.acme.httpChallenge]
    entryPoint = "web"
{% endif %}
{% endif %}

[log]
  level = "INFO"
"""

_TRAEFIK_ROUTES_TEMPLATE: Final[str] = """[http]
  [http.services]
{% for route in routes %}
    [http.services.{{ route.unit_name }}.loadBalancer]
      [[http.services.{{ route.unit_name }}.loadBalancer.servers]]
        url = "{{ route.upstream_url }}"
{% endfor %}

  [http.routers]
{% for route in routes %}
    [http.routers.{{ route.unit_name }}]
      rule = "{{ rule(route) }}"
      service = "{{ route.unit_name }}"
      entryPoints = ["{{ entry_point }}"]
{% if ssl.enabled %}
      [http.routers.{{ route.unit_name }}.tls]
{% if use_acme %}
        certResolver = "{{ resolver }}"
{% endif %}
{% endif %}
{% endfor %}
{% if ssl.enabled and not use_acme %}

[[tls.certificates]]
  certFile = "/etc/traefik/certs/{{ domain }}.crt"
  keyFile = "/etc/traefik/private/{{ domain }}.key"
{% endif %}
"""


def traefik_build_rule(route: ProxyRoute) -> str:
    """Return the router rule: host match plus a path prefix for non-root paths."""

    rule = f"Host(`{route.host}`)"
    if route.path != "/":
        rule = f"{rule} && PathPrefix(`{route.path}`)"
    return rule


class TraefikProxyProvisioner(ContainerProxyProvisioner):
    """Traefik with a static config and a watched dynamic routes file.

    With SSL enabled, certificates come from the ACME resolver unless the
    deployment uses self-signed certificates, which are mounted as files.
    """

    proxy_type = "traefik"
    image = TRAEFIK_IMAGE

    def _traefik_uses_acme(self) -> bool:
        return self._topology.ssl.enabled and not self._topology.ssl.self_signed

    def proxy_render_files(self, routes: Sequence[ProxyRoute]) -> dict[str, str]:
        ssl_settings = self._topology.ssl
        use_acme = self._traefik_uses_acme()
        return {
            "traefik.toml": self._proxy_render(
                _TRAEFIK_STATIC_TEMPLATE,
                ssl=ssl_settings,
                use_acme=use_acme,
                resolver=CERTIFICATE_RESOLVER_NAME,
            ),
            "dynamic/routes.toml": self._proxy_render(
                _TRAEFIK_ROUTES_TEMPLATE,
                routes=list(routes),
                rule=traefik_build_rule,
                ssl=ssl_settings,
                use_acme=use_acme,
                resolver=CERTIFICATE_RESOLVER_NAME,
                entry_point="websecure" if ssl_settings.enabled else "web",
                domain=self._topology.domain,
            ),
        }

    def proxy_container_spec(self) -> ContainerSpec:
        ssl_settings = self._topology.ssl
        proxy_settings = self._topology.proxy
        ports = [f"{proxy_settings.http_port}:80"]
        volumes = [
            VolumeSpec(
                source=str(self.config_dir / "traefik.toml"),
                destination="/etc/traefik/traefik.toml",
                type="bind",
            ),
            VolumeSpec(source=str(self.config_dir / "dynamic"), destination="/etc/traefik/dynamic", type="bind"),
        ]
        environment: dict[str, str] = {}
        if ssl_settings.enabled:
            ports.append(f"{proxy_settings.https_port}:443")
            if self._traefik_uses_acme():
                volumes.append(VolumeSpec(source=ACME_VOLUME_NAME, destination="/etc/traefik/acme", type="volume"))
                if ssl_settings.dns_challenge:
                    environment.update(ssl_settings.dns_credentials)
            else:
                volumes.extend(
                    (
                        VolumeSpec(source=self._paths.ssl_cert_dir, destination="/etc/traefik/certs", type="bind"),
                        VolumeSpec(source=self._paths.ssl_key_dir, destination="/etc/traefik/private", type="bind"),
                    )
                )
        return ContainerSpec(
            image=self.image,
            network=self._network_name,
            environment=environment,
            labels={"shipyard.type": "proxy"},
            ports=tuple(ports),
            volumes=tuple(volumes),
            restart_policy="unless-stopped",
        )

    def proxy_reload(self, context: DeploymentContext) -> None:
        """Rewrite the dynamic configuration; Traefik's file watcher applies it."""

        context.context_raise_if_cancelled()
        self._proxy_require_handle()
        self.proxy_write_configuration()
        logger.info("proxy_reload_delegated_to_watcher", proxy_type=self.proxy_type)
