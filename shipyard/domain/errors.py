"""Project-native typed exceptions for deployment orchestration failures."""

from __future__ import annotations


class ShipyardError(Exception):
    """Base exception for orchestration-level failures."""


class DependencyCycleError(ShipyardError, ValueError):
    """Dependency graph contains a cycle.

    Attributes:
        unit_name: Unit at which the cycle was detected.
        cycle_path: Unit names along the detected cycle, first and last equal.
    """

    def __init__(self, unit_name: str, cycle_path: tuple[str, ...] = ()):
        path_label = " -> ".join(cycle_path) if cycle_path else unit_name
        super().__init__(f"cycle detected in dependencies involving {unit_name} ({path_label})")
        self.unit_name = unit_name
        self.cycle_path = cycle_path


class UnresolvedDependencyError(ShipyardError, ValueError):
    """Unit declares a dependency on a unit that is not declared.

    Attributes:
        unit_name: Unit declaring the dependency.
        dependency_name: Missing dependency name.
    """

    def __init__(self, unit_name: str, dependency_name: str, detail: str | None = None):
        message = f"unit {unit_name} depends on undefined unit: {dependency_name}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.unit_name = unit_name
        self.dependency_name = dependency_name


class RuntimeOperationError(ShipyardError, RuntimeError):
    """Container runtime collaborator failure tagged with operation and unit.

    Attributes:
        operation: Runtime operation label, for example `pull_image`.
        unit_name: Unit being processed, or None for run-level operations.
    """

    def __init__(self, operation: str, unit_name: str | None, message: str):
        target_label = f" for unit {unit_name}" if unit_name else ""
        super().__init__(f"runtime operation {operation} failed{target_label}: {message}")
        self.operation = operation
        self.unit_name = unit_name


class HealthCheckFailedError(ShipyardError, RuntimeError):
    """Unit never reported healthy within the configured probe attempts.

    Attributes:
        unit_name: Unit that failed its health gate.
        attempts: Number of probe attempts performed.
        last_error: Error raised by the last probe attempt.
    """

    def __init__(self, unit_name: str, attempts: int, last_error: BaseException | None):
        super().__init__(f"health check failed for {unit_name} after {attempts} attempts: {last_error}")
        self.unit_name = unit_name
        self.attempts = attempts
        self.last_error = last_error


class UnsupportedHealthCheckTypeError(ShipyardError, ValueError):
    """Health check type is neither `http` nor `tcp`."""

    def __init__(self, check_type: str):
        super().__init__(f"unsupported health check type: {check_type}")
        self.check_type = check_type


class InternalConsistencyError(ShipyardError, RuntimeError):
    """Orchestrator invariant violated; indicates a logic bug rather than a user error."""


class RollbackAggregateError(ShipyardError, RuntimeError):
    """One or more units could not be torn down during rollback.

    Attributes:
        failures: `(unit_name, error)` pairs in teardown order.
    """

    def __init__(self, failures: tuple[tuple[str, BaseException], ...]):
        super().__init__(f"rollback completed with {len(failures)} errors")
        self.failures = failures

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def rollback_failed_unit_names(self) -> tuple[str, ...]:
        """Return names of units whose teardown failed, in teardown order."""

        return tuple(unit_name for unit_name, _ in self.failures)


class ExternalVerificationError(ShipyardError, ConnectionError):
    """Public endpoint did not answer successfully. Advisory only.

    Attributes:
        url: Public URL that was probed.
        attempts: Number of attempts made before giving up.
    """

    def __init__(self, url: str, attempts: int, detail: str | None = None):
        message = f"endpoint verification failed for {url} after {attempts} attempts"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class DeploymentCancelledError(ShipyardError):
    """Deployment context was cancelled while work was pending."""

    def __init__(self, reason: str = "deployment cancelled"):
        super().__init__(reason)
        self.reason = reason


class DeploymentDeadlineExceededError(DeploymentCancelledError, TimeoutError):
    """Deployment context deadline passed while work was pending."""


class DeploymentPhaseError(ShipyardError, RuntimeError):
    """Deployment phase failure wrapping the first underlying error.

    Attributes:
        phase: Deployment phase label.
        unit_name: Unit being deployed when the failure happened, if any.
        cause: Underlying error.
    """

    def __init__(self, phase: str, cause: BaseException, unit_name: str | None = None):
        target_label = f" ({unit_name})" if unit_name else ""
        super().__init__(f"deployment phase {phase}{target_label} failed: {cause}")
        self.phase = phase
        self.unit_name = unit_name
        self.cause = cause


class ProbeError(ShipyardError, ConnectionError):
    """Single probe attempt failed; retried by callers."""


class RetryExhaustedError(ShipyardError, RuntimeError):
    """Retry policy exhausted without a successful attempt.

    Attributes:
        attempts: Number of attempts performed.
        last_error: Error raised by the last attempt.
    """

    def __init__(self, attempts: int, last_error: BaseException | None):
        super().__init__(f"operation failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
