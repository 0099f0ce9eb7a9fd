"""Deployment orchestration core: ordering, rollout, health gating, rollback and verification."""

from .context import DeploymentContext
from .external_verifier import ExternalVerifier
from .health_gate import HealthGate
from .manager import DeploymentManager, DeploymentManagerConfig
from .registry import DeploymentRegistry
from .resolver import (
    DeploymentPlan,
    deployment_resolve_dependency_order,
    deployment_resolve_plan,
    deployment_validate_dependencies,
)
from .retry import BackoffPolicy, retry_call
from .rollback import RollbackCoordinator, RollbackResult

__all__ = [
    "BackoffPolicy",
    "DeploymentContext",
    "DeploymentManager",
    "DeploymentManagerConfig",
    "DeploymentPlan",
    "DeploymentRegistry",
    "ExternalVerifier",
    "HealthGate",
    "RollbackCoordinator",
    "RollbackResult",
    "deployment_resolve_dependency_order",
    "deployment_resolve_plan",
    "deployment_validate_dependencies",
    "retry_call",
]
