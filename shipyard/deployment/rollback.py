"""Best-effort teardown of units registered in one deployment run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

import structlog

from shipyard.adapters.interfaces import ContainerRuntimePort
from shipyard.domain import DeploymentRecord, RollbackAggregateError, UnitKind

from .registry import DeploymentRegistry

logger = structlog.get_logger(__name__)

DEFAULT_STOP_GRACE_PERIOD_SECONDS: Final[int] = 10


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of a rollback that removed every registered unit.

    Attributes:
        removed_unit_names: Units removed, in teardown order.
    """

    removed_unit_names: tuple[str, ...]


class RollbackCoordinator:
    """Tear down registered units: apps first, then services, each newest first."""

    def __init__(
        self,
        runtime: ContainerRuntimePort,
        grace_period_seconds: int = DEFAULT_STOP_GRACE_PERIOD_SECONDS,
    ):
        """Initialize rollback dependencies.

        Args:
            runtime: Container runtime used to stop and remove containers.
            grace_period_seconds: Stop grace period before the runtime kills a container.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when runtime is missing or the grace period is negative.
        """

        if runtime is None:
            raise ValueError("runtime must not be None")
        if grace_period_seconds < 0:
            raise ValueError("grace_period_seconds must be >= 0")

        self._runtime = runtime
        self._grace_period_seconds = grace_period_seconds

    def rollback_teardown_order(self, registry: DeploymentRegistry) -> tuple[DeploymentRecord, ...]:
        """Return records in teardown order without mutating the registry."""

        apps = registry.registry_records_by_kind(UnitKind.APP)
        services = registry.registry_records_by_kind(UnitKind.SERVICE)
        return tuple(reversed(apps)) + tuple(reversed(services))

    def rollback_execute(self, registry: DeploymentRegistry) -> RollbackResult:
        """Stop and force-remove every registered unit.

        Every record gets one removal attempt regardless of earlier failures.
        A stop failure is logged and removal is still attempted. Records whose
        removal succeeded are removed from the registry; failed ones stay.
        Cancellation is not observed.

        Args:
            registry: Registry of live units.

        Returns:
            RollbackResult: Removed unit names when every teardown succeeded.

        Raises:
            RollbackAggregateError: Raised when at least one removal failed.
        """

        teardown_records = self.rollback_teardown_order(registry)
        logger.info("rollback_started", unit_count=len(teardown_records))

        removed_unit_names: list[str] = []
        failures: list[tuple[str, BaseException]] = []
        for record in teardown_records:
            try:
                self._runtime.runtime_stop_container(
                    handle=record.runtime_handle,
                    grace_period_seconds=self._grace_period_seconds,
                )
            except Exception as error:
                logger.warning("rollback_stop_failed", unit=record.unit_name, error=str(error))

            try:
                self._runtime.runtime_remove_container(handle=record.runtime_handle, force=True)
            except Exception as error:
                logger.error("rollback_remove_failed", unit=record.unit_name, error=str(error))
                failures.append((record.unit_name, error))
                continue

            registry.registry_remove(record.unit_name)
            removed_unit_names.append(record.unit_name)
            logger.info("rollback_unit_removed", unit=record.unit_name)

        if failures:
            raise RollbackAggregateError(failures=tuple(failures))
        logger.info("rollback_completed", removed_units=removed_unit_names)
        return RollbackResult(removed_unit_names=tuple(removed_unit_names))
