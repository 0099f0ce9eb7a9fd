"""Domain models and errors used across orchestration layer boundaries."""

from .errors import (
    DependencyCycleError,
    DeploymentCancelledError,
    DeploymentDeadlineExceededError,
    DeploymentPhaseError,
    ExternalVerificationError,
    HealthCheckFailedError,
    InternalConsistencyError,
    ProbeError,
    RetryExhaustedError,
    RollbackAggregateError,
    RuntimeOperationError,
    ShipyardError,
    UnresolvedDependencyError,
    UnsupportedHealthCheckTypeError,
)
from .models import (
    DEFAULT_UPSTREAM_PORT,
    DeploymentRecord,
    HealthCheckSpec,
    ProxySettings,
    SslSettings,
    Topology,
    Unit,
    UnitKind,
    UnitState,
    VolumeSpec,
    domain_normalize_route_path,
    unit_public_host,
    unit_public_url,
    unit_upstream_port,
)
from .timeline import domain_build_stage_event, domain_timeline_failed_stages

__all__ = [
    "DEFAULT_UPSTREAM_PORT",
    "DependencyCycleError",
    "DeploymentCancelledError",
    "DeploymentDeadlineExceededError",
    "DeploymentPhaseError",
    "DeploymentRecord",
    "ExternalVerificationError",
    "HealthCheckFailedError",
    "HealthCheckSpec",
    "InternalConsistencyError",
    "ProbeError",
    "ProxySettings",
    "RetryExhaustedError",
    "RollbackAggregateError",
    "RuntimeOperationError",
    "ShipyardError",
    "SslSettings",
    "Topology",
    "Unit",
    "UnitKind",
    "UnitState",
    "UnresolvedDependencyError",
    "UnsupportedHealthCheckTypeError",
    "VolumeSpec",
    "domain_build_stage_event",
    "domain_normalize_route_path",
    "domain_timeline_failed_stages",
    "unit_public_host",
    "unit_public_url",
    "unit_upstream_port",
]
