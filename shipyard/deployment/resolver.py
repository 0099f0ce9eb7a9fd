"""Dependency ordering and validation for topology units."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Mapping, Sequence

from shipyard.domain import DependencyCycleError, Unit, UnresolvedDependencyError


class _VisitState(Enum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


@dataclass(frozen=True)
class DeploymentPlan:
    """Resolved deployment order for one topology.

    Attributes:
        services: Services in dependency order.
        apps: Apps in dependency order.
    """

    services: tuple[Unit, ...]
    apps: tuple[Unit, ...]

    def plan_unit_names(self) -> tuple[str, ...]:
        """Return all unit names in deployment order."""

        return tuple(unit.name for unit in self.services + self.apps)


def deployment_resolve_dependency_order(
    names: Sequence[str],
    dependencies: Mapping[str, Sequence[str]],
) -> tuple[str, ...]:
    """Order names so that every name follows all of its transitive dependencies.

    Names are visited in input order and each name's dependencies in declared
    order; a name is emitted once all its dependencies are emitted. Dependencies
    outside `names` are skipped.

    Args:
        names: Unit names to order.
        dependencies: Dependency names per unit name.

    Returns:
        tuple[str, ...]: Every input name exactly once, dependencies first.

    Raises:
        DependencyCycleError: Raised when the dependency graph contains a cycle.
    """

    known_names = set(names)
    visit_states = {name: _VisitState.UNVISITED for name in names}
    ordered_names: list[str] = []

    for root_name in names:
        if visit_states[root_name] is not _VisitState.UNVISITED:
            continue
        visit_states[root_name] = _VisitState.IN_PROGRESS
        visit_stack: list[tuple[str, Iterator[str]]] = [(root_name, iter(dependencies.get(root_name, ())))]
        while visit_stack:
            name, pending_dependencies = visit_stack[-1]
            dependency_name = next(
                (candidate for candidate in pending_dependencies if candidate in known_names),
                None,
            )
            if dependency_name is None:
                visit_stack.pop()
                visit_states[name] = _VisitState.DONE
                ordered_names.append(name)
                continue

            state = visit_states[dependency_name]
            if state is _VisitState.DONE:
                continue
            if state is _VisitState.IN_PROGRESS:
                stack_names = [frame_name for frame_name, _ in visit_stack]
                cycle_start_index = stack_names.index(dependency_name)
                raise DependencyCycleError(
                    unit_name=dependency_name,
                    cycle_path=tuple(stack_names[cycle_start_index:]) + (dependency_name,),
                )
            visit_states[dependency_name] = _VisitState.IN_PROGRESS
            visit_stack.append((dependency_name, iter(dependencies.get(dependency_name, ()))))
    return tuple(ordered_names)


def deployment_validate_dependencies(services: Sequence[Unit], apps: Sequence[Unit]) -> None:
    """Check that every dependency names a declared unit of an allowed kind.

    Services may depend only on services. Apps may depend on services or apps.

    Args:
        services: Declared services.
        apps: Declared apps.

    Returns:
        None: Validation passes silently.

    Raises:
        UnresolvedDependencyError: Raised for the first dependency that does not resolve.
    """

    service_names = {service.name for service in services}
    unit_names = service_names | {app.name for app in apps}
    for service in services:
        for dependency_name in service.depends_on:
            if dependency_name not in service_names:
                raise UnresolvedDependencyError(
                    unit_name=service.name,
                    dependency_name=dependency_name,
                    detail="services may only depend on services",
                )
    for app in apps:
        for dependency_name in app.depends_on:
            if dependency_name not in unit_names:
                raise UnresolvedDependencyError(unit_name=app.name, dependency_name=dependency_name)


def deployment_resolve_plan(services: Sequence[Unit], apps: Sequence[Unit]) -> DeploymentPlan:
    """Validate dependencies and order services and apps for deployment.

    Args:
        services: Declared services.
        apps: Declared apps.

    Returns:
        DeploymentPlan: Ordered services followed by ordered apps.

    Raises:
        UnresolvedDependencyError: Raised when a dependency does not resolve.
        DependencyCycleError: Raised when services or apps form a cycle.
    """

    deployment_validate_dependencies(services=services, apps=apps)
    return DeploymentPlan(
        services=_deployment_order_units(services),
        apps=_deployment_order_units(apps),
    )


def _deployment_order_units(units: Sequence[Unit]) -> tuple[Unit, ...]:
    units_by_name = {unit.name: unit for unit in units}
    ordered_names = deployment_resolve_dependency_order(
        names=[unit.name for unit in units],
        dependencies={unit.name: unit.depends_on for unit in units},
    )
    return tuple(units_by_name[name] for name in ordered_names)
