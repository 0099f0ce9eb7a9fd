"""Topology file loading, validation and defaulting.

The topology file is YAML with camelCase keys. `${VAR}` references are expanded
from the process environment before parsing; unknown references are left as-is.
Parsed models are validated and converted into immutable domain units.
"""

from __future__ import annotations

from dataclasses import replace
import os
from pathlib import Path
import re
from typing import Any, Final, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
import yaml

from shipyard.domain import (
    HealthCheckSpec,
    ProxySettings,
    SslSettings,
    Topology,
    Unit,
    UnitKind,
    UnresolvedDependencyError,
    VolumeSpec,
    domain_normalize_route_path,
)

from .settings import AppSettings

SUPPORTED_PROXY_TYPES: Final[frozenset[str]] = frozenset({"nginx", "traefik"})
SUPPORTED_HEALTH_CHECK_TYPES: Final[frozenset[str]] = frozenset({"http", "tcp"})
DISABLED_HEALTH_CHECK_TYPE: Final[str] = "none"
DEFAULT_RESTART_POLICY: Final[str] = "unless-stopped"

_ENVIRONMENT_REFERENCE_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

# Image name fragments mapped to inferred (type, port, path) health checks.
_IMAGE_HEALTH_CHECK_DEFAULTS: Final[tuple[tuple[tuple[str, ...], str, int, str], ...]] = (
    (("postgres", "postgresql"), "tcp", 5432, "/"),
    (("mysql", "mariadb"), "tcp", 3306, "/"),
    (("mongo", "mongodb"), "tcp", 27017, "/"),
    (("redis",), "tcp", 6379, "/"),
    (("rabbitmq",), "tcp", 5672, "/"),
    (("nginx", "traefik"), "http", 80, "/health"),
)


class TopologyLoadError(ValueError):
    """Raised when the topology file cannot be read, parsed or validated."""


class _TopologyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class HealthCheckModel(_TopologyModel):
    """Health check section; every field except `type` has a default."""

    type: str | None = None
    path: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    interval: float = Field(default=30, ge=0)
    timeout: float = Field(default=10, gt=0)
    retries: int = Field(default=3, ge=1)
    start_period: float = Field(default=60, ge=0)


class VolumeModel(_TopologyModel):
    """Volume mount section."""

    source: str = Field(min_length=1)
    destination: str = Field(min_length=1)
    type: str = "volume"

    @field_validator("type")
    @classmethod
    def _validate_type(cls, value: str) -> str:
        normalized_value = value.strip().lower()
        if normalized_value not in {"volume", "bind"}:
            raise ValueError("volume type must be volume or bind")
        return normalized_value


class ServiceModel(_TopologyModel):
    """Service section."""

    name: str = ""
    image: str = ""
    volumes: list[VolumeModel] = Field(default_factory=list)
    environment: dict[str, Any] = Field(default_factory=dict)
    ports: list[str | int] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)
    health_check: HealthCheckModel | None = None
    restart_policy: str | None = None


class AppModel(ServiceModel):
    """App section with routing fields."""

    subdomain: str | None = None
    path: str | None = None


class SslModel(_TopologyModel):
    """SSL section."""

    enabled: bool = False
    provider: str = "letsencrypt"
    email: str | None = None
    self_signed: bool = False
    dns_challenge: bool = False
    dns_provider: str | None = None
    dns_credentials: dict[str, Any] = Field(default_factory=dict)


class ProxyModel(_TopologyModel):
    """Proxy section."""

    type: str = "nginx"
    port: int = Field(default=80, ge=1, le=65535)
    https_port: int = Field(default=443, ge=1, le=65535)


class EnvModel(_TopologyModel):
    """Global environment section."""

    global_variables: dict[str, Any] = Field(default_factory=dict, alias="global")


class TopologyModel(_TopologyModel):
    """Top-level topology document."""

    version: str = "1.0"
    domain: str = ""
    ssl: SslModel = Field(default_factory=SslModel)
    proxy: ProxyModel = Field(default_factory=ProxyModel)
    services: list[ServiceModel] = Field(default_factory=list)
    apps: list[AppModel] = Field(default_factory=list)
    env: EnvModel = Field(default_factory=EnvModel)
    timeout: float | None = Field(default=None, gt=0)
    log_level: str | None = None


def config_load_topology(path: str | Path, environ: Mapping[str, str] | None = None) -> Topology:
    """Read, validate and default one topology file.

    Args:
        path: Topology YAML path.
        environ: Variables used for `${VAR}` expansion; defaults to `os.environ`.

    Returns:
        Topology: Validated, defaulted topology.

    Raises:
        TopologyLoadError: Raised when the file cannot be read or is invalid.
        UnresolvedDependencyError: Raised when a dependency names an undeclared unit.
    """

    topology_path = Path(path).expanduser().resolve()
    try:
        raw_text = topology_path.read_text(encoding="utf-8")
    except OSError as error:
        raise TopologyLoadError(f"failed to read topology file {topology_path}: {error}") from error
    return config_parse_topology(raw_text, environ=environ)


def config_parse_topology(raw_text: str, environ: Mapping[str, str] | None = None) -> Topology:
    """Parse topology YAML text into a validated domain topology.

    Args:
        raw_text: YAML document text.
        environ: Variables used for `${VAR}` expansion; defaults to `os.environ`.

    Returns:
        Topology: Validated, defaulted topology.

    Raises:
        TopologyLoadError: Raised when the document is malformed or invalid.
        UnresolvedDependencyError: Raised when a dependency names an undeclared unit.
    """

    expanded_text = config_expand_environment_references(raw_text, environ=os.environ if environ is None else environ)
    try:
        document = yaml.safe_load(expanded_text)
    except yaml.YAMLError as error:
        raise TopologyLoadError(f"failed to parse topology YAML: {error}") from error
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise TopologyLoadError("topology document must be a mapping")

    try:
        model = TopologyModel.model_validate(document)
    except ValidationError as error:
        raise TopologyLoadError(f"topology validation failed: {error}") from error

    _config_validate_topology(model)
    return _config_build_topology(model)


def config_expand_environment_references(raw_text: str, environ: Mapping[str, str]) -> str:
    """Replace `${VAR}` references with environment values, leaving unknown ones intact."""

    def _replace(match: re.Match[str]) -> str:
        return environ.get(match.group(1), match.group(0))

    return _ENVIRONMENT_REFERENCE_PATTERN.sub(_replace, raw_text)


def config_infer_health_check(kind: UnitKind, image: str, section: HealthCheckModel | None) -> HealthCheckSpec | None:
    """Build a health check spec, inferring type and port from the image when absent.

    Args:
        kind: Unit category.
        image: Unit image reference.
        section: Parsed health check section, if any.

    Returns:
        HealthCheckSpec | None: Health check spec, or None when disabled with `type: none`.

    Raises:
        TopologyLoadError: Raised when the health check type is unsupported.
    """

    section = section or HealthCheckModel()
    check_type = (section.type or "").strip().lower()
    if check_type == DISABLED_HEALTH_CHECK_TYPE:
        return None

    inferred_type, inferred_port, inferred_path = _config_infer_probe_target(kind=kind, image=image)
    if not check_type:
        check_type = inferred_type
    elif check_type not in SUPPORTED_HEALTH_CHECK_TYPES:
        raise TopologyLoadError(f"unsupported health check type: {section.type}")

    return HealthCheckSpec(
        type=check_type,
        port=section.port or inferred_port,
        path=section.path or (inferred_path if check_type == "http" else "/"),
        interval_seconds=float(section.interval),
        timeout_seconds=float(section.timeout),
        retries=section.retries,
        start_period_seconds=float(section.start_period),
    )


def config_apply_settings_overrides(topology: Topology, settings: AppSettings) -> Topology:
    """Apply runtime input overrides on top of the topology file values.

    Args:
        topology: Topology loaded from file.
        settings: Runtime settings.

    Returns:
        Topology: Topology with timeout, log level and DNS provider overrides applied.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    overridden = topology
    if settings.timeout is not None:
        overridden = replace(overridden, timeout_minutes=settings.timeout)
    if settings.log_level is not None:
        overridden = replace(overridden, log_level=settings.log_level)
    if settings.dns_provider is not None:
        dns_credentials = dict(overridden.ssl.dns_credentials)
        if settings.dns_api_token:
            dns_credentials.setdefault(f"dns_{settings.dns_provider}_api_token", settings.dns_api_token)
        overridden = replace(
            overridden,
            ssl=replace(
                overridden.ssl,
                dns_provider=settings.dns_provider,
                dns_challenge=True,
                dns_credentials=dns_credentials,
            ),
        )
    return overridden


def _config_infer_probe_target(kind: UnitKind, image: str) -> tuple[str, int, str]:
    lowered_image = image.lower()
    for fragments, check_type, port, path in _IMAGE_HEALTH_CHECK_DEFAULTS:
        if any(fragment in lowered_image for fragment in fragments):
            return check_type, port, path
    if kind is UnitKind.APP:
        return "http", 8080, "/health"
    return "tcp", 8080, "/"


def _config_validate_topology(model: TopologyModel) -> None:
    """Validate cross-field topology rules.

    Args:
        model: Parsed topology document.

    Returns:
        None: Validation passes silently.

    Raises:
        TopologyLoadError: Raised for missing fields, duplicates or invalid SSL/proxy settings.
        UnresolvedDependencyError: Raised when a dependency names an undeclared unit.
    """

    if not model.version.strip():
        raise TopologyLoadError("config version is required")
    if not model.domain.strip():
        raise TopologyLoadError("domain is required")
    if model.proxy.type.strip().lower() not in SUPPORTED_PROXY_TYPES:
        raise TopologyLoadError(f"unsupported proxy type: {model.proxy.type}")

    unit_names: set[str] = set()
    service_names: set[str] = set()
    for label, sections in (("service", model.services), ("app", model.apps)):
        for index, section in enumerate(sections):
            name = section.name.strip()
            if not name:
                raise TopologyLoadError(f"{label} at index {index} is missing a name")
            if name in unit_names:
                raise TopologyLoadError(f"duplicate unit name: {name}")
            if not section.image.strip():
                raise TopologyLoadError(f"{label} {name} is missing an image")
            unit_names.add(name)
            if label == "service":
                service_names.add(name)

    for service in model.services:
        for dependency_name in service.depends_on:
            if dependency_name not in service_names:
                raise UnresolvedDependencyError(
                    unit_name=service.name.strip(),
                    dependency_name=dependency_name,
                    detail="services may only depend on services",
                )
    for app in model.apps:
        for dependency_name in app.depends_on:
            if dependency_name not in unit_names:
                raise UnresolvedDependencyError(unit_name=app.name.strip(), dependency_name=dependency_name)

    routes: set[tuple[str, str]] = set()
    for app in model.apps:
        route = (_config_app_subdomain(app) or "", domain_normalize_route_path(app.path))
        if route in routes:
            raise TopologyLoadError(f"duplicate route for app {app.name}: subdomain={route[0]!r} path={route[1]!r}")
        routes.add(route)

    if model.ssl.enabled:
        if not model.ssl.self_signed and not (model.ssl.email or "").strip():
            raise TopologyLoadError("SSL email is required when using Let's Encrypt")
        if model.ssl.dns_challenge and not (model.ssl.dns_provider or "").strip():
            raise TopologyLoadError("DNS provider is required when using DNS challenge")


def _config_app_subdomain(app: AppModel) -> str | None:
    subdomain = (app.subdomain or "").strip()
    if subdomain:
        return subdomain
    if not (app.path or "").strip():
        return app.name.strip()
    return None


def _config_build_topology(model: TopologyModel) -> Topology:
    """Convert a validated document into the immutable domain topology.

    Args:
        model: Validated topology document.

    Returns:
        Topology: Domain topology with defaults applied.

    Raises:
        TopologyLoadError: Raised when a health check section is invalid.
    """

    global_environment = _config_stringify_mapping(model.env.global_variables)
    services = tuple(
        _config_build_unit(section=section, kind=UnitKind.SERVICE, global_environment=global_environment)
        for section in model.services
    )
    apps = tuple(
        _config_build_unit(section=section, kind=UnitKind.APP, global_environment=global_environment)
        for section in model.apps
    )
    return Topology(
        version=model.version.strip(),
        domain=model.domain.strip(),
        ssl=SslSettings(
            enabled=model.ssl.enabled,
            provider=model.ssl.provider,
            email=(model.ssl.email or "").strip() or None,
            self_signed=model.ssl.self_signed,
            dns_challenge=model.ssl.dns_challenge,
            dns_provider=(model.ssl.dns_provider or "").strip() or None,
            dns_credentials=_config_stringify_mapping(model.ssl.dns_credentials),
        ),
        proxy=ProxySettings(
            type=model.proxy.type.strip().lower(),
            http_port=model.proxy.port,
            https_port=model.proxy.https_port,
        ),
        services=services,
        apps=apps,
        timeout_minutes=model.timeout if model.timeout is not None else 30,
        log_level=(model.log_level or "info").strip().lower(),
    )


def _config_build_unit(section: ServiceModel, kind: UnitKind, global_environment: dict[str, str]) -> Unit:
    name = section.name.strip()
    image = section.image.strip()
    environment = {**global_environment, **_config_stringify_mapping(section.environment)}
    subdomain = None
    path = None
    if isinstance(section, AppModel):
        subdomain = _config_app_subdomain(section)
        path = (section.path or "").strip() or None
    return Unit(
        name=name,
        kind=kind,
        image=image,
        depends_on=tuple(section.depends_on),
        health_check=config_infer_health_check(kind=kind, image=image, section=section.health_check),
        ports=tuple(str(port) for port in section.ports),
        environment=environment,
        volumes=tuple(
            VolumeSpec(source=volume.source, destination=volume.destination, type=volume.type)
            for volume in section.volumes
        ),
        restart_policy=(section.restart_policy or "").strip() or DEFAULT_RESTART_POLICY,
        subdomain=subdomain,
        path=path,
    )


def _config_stringify_mapping(values: Mapping[str, Any]) -> dict[str, str]:
    stringified: dict[str, str] = {}
    for key, value in values.items():
        if value is None:
            stringified[str(key)] = ""
        elif isinstance(value, bool):
            stringified[str(key)] = "true" if value else "false"
        else:
            stringified[str(key)] = str(value)
    return stringified
