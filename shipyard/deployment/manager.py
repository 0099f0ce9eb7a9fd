"""Deployment manager driving phased, health-gated rollout of one topology."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Final, TypeVar

import structlog

from shipyard.adapters.errors import ContainerRuntimeError
from shipyard.adapters.interfaces import (
    CertificateProvisionerPort,
    ContainerRuntimePort,
    ContainerSpec,
    ImageScannerPort,
    ProxyProvisionerPort,
)
from shipyard.domain import (
    DeploymentCancelledError,
    DeploymentPhaseError,
    DeploymentRecord,
    ExternalVerificationError,
    InternalConsistencyError,
    RollbackAggregateError,
    RuntimeOperationError,
    Topology,
    Unit,
    UnitState,
    domain_build_stage_event,
)

from .context import DeploymentContext
from .external_verifier import ExternalVerifier
from .health_gate import HealthGate
from .registry import DeploymentRegistry
from .resolver import DeploymentPlan, deployment_resolve_plan
from .rollback import DEFAULT_STOP_GRACE_PERIOD_SECONDS, RollbackCoordinator, RollbackResult

logger = structlog.get_logger(__name__)

ResultT = TypeVar("ResultT")

MANAGED_LABEL: Final[str] = "shipyard.managed"
NAME_LABEL: Final[str] = "shipyard.name"
TYPE_LABEL: Final[str] = "shipyard.type"
ENVIRONMENT_LABEL: Final[str] = "shipyard.environment"


@dataclass(frozen=True)
class DeploymentManagerConfig:
    """Configuration values for one deployment run.

    Attributes:
        network_name: Shared network joined by every unit container.
        environment: Deployment environment label stamped on containers.
        rollback_grace_period_seconds: Stop grace period used during rollback.
    """

    network_name: str = "shipyard"
    environment: str = "development"
    rollback_grace_period_seconds: int = DEFAULT_STOP_GRACE_PERIOD_SECONDS


class DeploymentManager:
    """Phased rollout driver owning the registry of one deployment run.

    Phases run in order and fail fast: `resolve`, `network`, `certificates`
    (SSL only), `services`, `apps`, `proxy`. The first failure is raised as
    `DeploymentPhaseError`; cancellation propagates unwrapped. Rollback is left
    to the caller.
    """

    def __init__(
        self,
        topology: Topology,
        runtime: ContainerRuntimePort,
        proxy: ProxyProvisionerPort,
        certificates: CertificateProvisionerPort | None = None,
        scanner: ImageScannerPort | None = None,
        config: DeploymentManagerConfig | None = None,
        health_gate: HealthGate | None = None,
        verifier: ExternalVerifier | None = None,
        registry: DeploymentRegistry | None = None,
        rollback_coordinator: RollbackCoordinator | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize deployment manager dependencies.

        Args:
            topology: Validated topology to deploy.
            runtime: Container runtime collaborator.
            proxy: Reverse proxy collaborator.
            certificates: Certificate collaborator; required when SSL is enabled.
            scanner: Optional image scanner; None skips scanning.
            config: Run configuration.
            health_gate: Health gate; defaults to HTTP/TCP probes on the network.
            verifier: External verifier; defaults to one built from the topology.
            registry: Registry of live units; defaults to an empty registry.
            rollback_coordinator: Rollback coordinator; defaults to one over `runtime`.
            clock: UTC clock used for record timestamps.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if topology is None:
            raise ValueError("topology must not be None")
        if runtime is None:
            raise ValueError("runtime must not be None")
        if proxy is None:
            raise ValueError("proxy must not be None")
        if topology.ssl.enabled and certificates is None:
            raise ValueError("certificates must not be None when SSL is enabled")
        config = config or DeploymentManagerConfig()
        if not config.network_name.strip():
            raise ValueError("config.network_name must not be blank")

        self._topology = topology
        self._runtime = runtime
        self._proxy = proxy
        self._certificates = certificates
        self._scanner = scanner
        self._config = config
        self._health_gate = health_gate or HealthGate()
        self._verifier = verifier or ExternalVerifier(topology=topology)
        self._registry = registry if registry is not None else DeploymentRegistry()
        self._rollback_coordinator = rollback_coordinator or RollbackCoordinator(
            runtime=runtime,
            grace_period_seconds=config.rollback_grace_period_seconds,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._timeline: list[dict[str, object]] = []
        self._unit_states: dict[str, UnitState] = {}
        self._closed = False

    @property
    def registry(self) -> DeploymentRegistry:
        return self._registry

    def manager_timeline(self) -> list[dict[str, object]]:
        """Return a copy of the structured stage timeline."""

        return list(self._timeline)

    def manager_unit_states(self) -> dict[str, UnitState]:
        """Return a copy of per-unit lifecycle states."""

        return dict(self._unit_states)

    def manager_deploy(self, context: DeploymentContext) -> DeploymentPlan:
        """Deploy the topology phase by phase.

        The topology timeout bounds the whole call through a derived context.

        Args:
            context: Caller cancellation context.

        Returns:
            DeploymentPlan: Resolved plan that was deployed.

        Raises:
            DeploymentPhaseError: Raised for the first phase failure, wrapping its cause.
            DeploymentCancelledError: Raised when the context is cancelled or times out.
        """

        timeout_minutes = self._topology.timeout_minutes
        deploy_context = context.context_with_timeout(timeout_minutes * 60 if timeout_minutes else None)
        self._timeline.append(
            domain_build_stage_event(
                stage="run",
                status="started",
                details={"domain": self._topology.domain, "timeout_minutes": timeout_minutes},
            )
        )
        logger.info(
            "deployment_started",
            domain=self._topology.domain,
            services=len(self._topology.services),
            apps=len(self._topology.apps),
        )

        try:
            plan = self._manager_run_phase(
                phase="resolve",
                context=deploy_context,
                action=lambda: deployment_resolve_plan(services=self._topology.services, apps=self._topology.apps),
            )
            for unit in plan.services + plan.apps:
                self._unit_states[unit.name] = UnitState.PENDING
            logger.info(
                "deployment_order_resolved",
                services=[unit.name for unit in plan.services],
                apps=[unit.name for unit in plan.apps],
            )

            self._manager_run_phase(
                phase="network",
                context=deploy_context,
                action=lambda: self._manager_call_runtime(
                    operation="setup_network",
                    unit_name=None,
                    action=lambda: self._runtime.runtime_setup_network(deploy_context),
                ),
            )

            if self._topology.ssl.enabled and self._certificates is not None:
                certificates = self._certificates
                self._manager_run_phase(
                    phase="certificates",
                    context=deploy_context,
                    action=lambda: certificates.certificate_setup(deploy_context),
                )
            else:
                self._timeline.append(domain_build_stage_event(stage="certificates", status="skipped"))

            self._manager_deploy_group(phase="services", context=deploy_context, units=plan.services)
            self._manager_deploy_group(phase="apps", context=deploy_context, units=plan.apps)

            self._manager_run_phase(
                phase="proxy",
                context=deploy_context,
                action=lambda: self._proxy.proxy_setup(deploy_context, self._registry.registry_records()),
            )
        except DeploymentCancelledError as error:
            self._timeline.append(
                domain_build_stage_event(
                    stage="run",
                    status="failed",
                    details={"error_type": type(error).__name__, "error_message": str(error)},
                )
            )
            logger.error("deployment_cancelled", reason=str(error))
            raise
        except DeploymentPhaseError as error:
            self._timeline.append(
                domain_build_stage_event(
                    stage="run",
                    status="failed",
                    unit_name=error.unit_name,
                    details={
                        "phase": error.phase,
                        "error_type": type(error.cause).__name__,
                        "error_message": str(error.cause),
                    },
                )
            )
            logger.error("deployment_failed", phase=error.phase, unit=error.unit_name, error=str(error.cause))
            raise

        self._timeline.append(
            domain_build_stage_event(
                stage="run",
                status="completed",
                details={"deployed_units": [record.unit_name for record in self._registry.registry_records()]},
            )
        )
        logger.info("deployment_completed", deployed_units=len(self._registry))
        return plan

    def manager_rollback(self, context: DeploymentContext) -> RollbackResult:
        """Clean up the proxy and tear down every registered unit.

        Rollback does not observe cancellation so it can run after an interrupt
        or an expired deploy deadline.

        Args:
            context: Caller context; kept for interface symmetry.

        Returns:
            RollbackResult: Removed unit names.

        Raises:
            RollbackAggregateError: Raised when at least one unit could not be removed.
        """

        _ = context
        self._timeline.append(domain_build_stage_event(stage="rollback", status="started"))
        logger.warning("rollback_requested", registered_units=len(self._registry))
        try:
            self._proxy.proxy_cleanup()
        except Exception as error:
            logger.warning("proxy_cleanup_failed", error=str(error))

        try:
            result = self._rollback_coordinator.rollback_execute(self._registry)
        except RollbackAggregateError as error:
            self._timeline.append(
                domain_build_stage_event(
                    stage="rollback",
                    status="failed",
                    details={
                        "failure_count": error.failure_count,
                        "failed_units": list(error.rollback_failed_unit_names()),
                    },
                )
            )
            raise
        self._timeline.append(
            domain_build_stage_event(
                stage="rollback",
                status="completed",
                details={"removed_units": list(result.removed_unit_names)},
            )
        )
        return result

    def manager_verify_external_access(self, context: DeploymentContext) -> None:
        """Verify public reachability of every app. Failures are advisory.

        Raises:
            ExternalVerificationError: Raised for the first unreachable URL.
            DeploymentCancelledError: Raised when the context is cancelled.
        """

        self._timeline.append(domain_build_stage_event(stage="verify", status="started"))
        try:
            self._verifier.verifier_verify_external_access(context)
        except ExternalVerificationError as error:
            logger.warning("external_verification_failed", url=error.url, attempts=error.attempts, error=str(error))
            self._timeline.append(
                domain_build_stage_event(
                    stage="verify",
                    status="failed",
                    details={"url": error.url, "attempts": error.attempts},
                )
            )
            raise
        self._timeline.append(domain_build_stage_event(stage="verify", status="completed"))

    def manager_close(self) -> None:
        """Release the runtime collaborator. Idempotent."""

        if self._closed:
            return
        self._closed = True
        try:
            self._runtime.runtime_close()
        except ContainerRuntimeError as error:
            logger.warning("runtime_close_failed", error=str(error))

    def manager_build_container_spec(self, unit: Unit) -> ContainerSpec:
        """Translate one unit into a runtime container spec.

        Args:
            unit: Unit to deploy.

        Returns:
            ContainerSpec: Container spec on the shared network with managed labels.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        return ContainerSpec(
            image=unit.image,
            network=self._config.network_name,
            environment=dict(unit.environment),
            labels={
                MANAGED_LABEL: "true",
                NAME_LABEL: unit.name,
                TYPE_LABEL: unit.kind.value,
                ENVIRONMENT_LABEL: self._config.environment,
            },
            ports=unit.ports,
            volumes=unit.volumes,
            restart_policy=unit.restart_policy,
            health_check=unit.health_check,
        )

    def _manager_deploy_group(self, phase: str, context: DeploymentContext, units: tuple[Unit, ...]) -> None:
        self._timeline.append(domain_build_stage_event(stage=phase, status="started"))
        for unit in units:
            self._manager_run_step(
                phase=phase,
                context=context,
                action=lambda unit=unit: self._manager_deploy_unit(context=context, unit=unit),
                unit_name=unit.name,
            )
        self._timeline.append(
            domain_build_stage_event(stage=phase, status="completed", details={"units": [unit.name for unit in units]})
        )

    def _manager_run_phase(self, phase: str, context: DeploymentContext, action: Callable[[], ResultT]) -> ResultT:
        self._timeline.append(domain_build_stage_event(stage=phase, status="started"))
        result = self._manager_run_step(phase=phase, context=context, action=action)
        self._timeline.append(domain_build_stage_event(stage=phase, status="completed"))
        return result

    def _manager_run_step(
        self,
        phase: str,
        context: DeploymentContext,
        action: Callable[[], ResultT],
        unit_name: str | None = None,
    ) -> ResultT:
        """Run one phase action, wrapping failures with phase context.

        Args:
            phase: Phase label.
            context: Deploy context checked before the action.
            action: Phase work.
            unit_name: Unit being deployed, if any.

        Returns:
            ResultT: Action result.

        Raises:
            DeploymentPhaseError: Raised when the action fails.
            DeploymentCancelledError: Raised unwrapped on cancellation.
        """

        try:
            context.context_raise_if_cancelled()
            return action()
        except DeploymentCancelledError:
            self._manager_mark_failed(phase=phase, unit_name=unit_name, error_label="cancelled")
            raise
        except Exception as error:
            self._manager_mark_failed(phase=phase, unit_name=unit_name, error_label=str(error))
            raise DeploymentPhaseError(phase=phase, cause=error, unit_name=unit_name) from error

    def _manager_mark_failed(self, phase: str, unit_name: str | None, error_label: str) -> None:
        if unit_name is not None and unit_name in self._unit_states:
            self._unit_states[unit_name] = UnitState.FAILED
        self._timeline.append(
            domain_build_stage_event(
                stage=phase,
                status="failed",
                unit_name=unit_name,
                details={"error_message": error_label},
            )
        )

    def _manager_deploy_unit(self, context: DeploymentContext, unit: Unit) -> None:
        """Deploy one unit and gate on its health check.

        Raises:
            InternalConsistencyError: Raised when a dependency has no registry record.
            RuntimeOperationError: Raised when a runtime call fails.
            HealthCheckFailedError: Raised when the unit never becomes healthy.
            DeploymentCancelledError: Raised when the context is cancelled.
        """

        unit_logger = logger.bind(unit=unit.name, kind=unit.kind.value)
        missing_dependencies = [name for name in unit.depends_on if not self._registry.registry_contains(name)]
        if missing_dependencies:
            unit_logger.error("dependencies_not_ready", missing=missing_dependencies)
            raise InternalConsistencyError(
                f"unit {unit.name} dependencies are not deployed: {', '.join(missing_dependencies)}"
            )

        unit_logger.info("unit_deploy_started", image=unit.image)
        self._manager_call_runtime(
            operation="pull_image",
            unit_name=unit.name,
            action=lambda: self._runtime.runtime_pull_image(context, unit.image),
        )
        self._manager_scan_image(context=context, unit=unit)

        container_spec = self.manager_build_container_spec(unit)
        handle = self._manager_call_runtime(
            operation="create_container",
            unit_name=unit.name,
            action=lambda: self._runtime.runtime_create_container(context, unit.name, container_spec),
        )
        self._unit_states[unit.name] = UnitState.CREATED

        try:
            self._manager_call_runtime(
                operation="start_container",
                unit_name=unit.name,
                action=lambda: self._runtime.runtime_start_container(context, handle),
            )
        except Exception:
            self._manager_discard_container(unit_name=unit.name, handle=handle)
            raise
        self._unit_states[unit.name] = UnitState.STARTED

        self._registry.registry_insert(
            DeploymentRecord(
                unit_name=unit.name,
                runtime_handle=handle,
                kind=unit.kind,
                image=unit.image,
                created_at_utc=self._clock(),
            )
        )
        self._timeline.append(
            domain_build_stage_event(
                stage="unit",
                status="started",
                unit_name=unit.name,
                details={"handle": handle, "image": unit.image},
            )
        )

        if unit.health_check is not None:
            self._unit_states[unit.name] = UnitState.HEALTH_CHECKING
            self._health_gate.health_gate_check(context=context, name=unit.name, options=unit.health_check)

        self._unit_states[unit.name] = UnitState.HEALTHY
        self._timeline.append(domain_build_stage_event(stage="unit", status="completed", unit_name=unit.name))
        unit_logger.info("unit_deploy_completed", handle=handle)

    def _manager_scan_image(self, context: DeploymentContext, unit: Unit) -> None:
        if self._scanner is None:
            return
        try:
            scan_result = self._scanner.scanner_scan_image(context, unit.image)
        except DeploymentCancelledError:
            raise
        except Exception as error:
            logger.warning("image_scan_failed", unit=unit.name, image=unit.image, error=str(error))
            return

        scan_details = {
            "critical": scan_result.critical,
            "high": scan_result.high,
            "medium": scan_result.medium,
            "low": scan_result.low,
        }
        self._timeline.append(
            domain_build_stage_event(stage="scan", status="completed", unit_name=unit.name, details=scan_details)
        )
        if scan_result.scan_result_has_serious_findings():
            logger.warning("image_vulnerabilities_found", unit=unit.name, image=unit.image, **scan_details)

    def _manager_discard_container(self, unit_name: str, handle: str) -> None:
        try:
            self._runtime.runtime_remove_container(handle=handle, force=True)
        except Exception as error:
            logger.error("unstarted_container_removal_failed", unit=unit_name, handle=handle, error=str(error))

    def _manager_call_runtime(self, operation: str, unit_name: str | None, action: Callable[[], ResultT]) -> ResultT:
        try:
            return action()
        except ContainerRuntimeError as error:
            raise RuntimeOperationError(operation=operation, unit_name=unit_name, message=str(error)) from error
