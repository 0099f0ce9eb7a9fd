"""Main module entrypoint for one deployment run.

Exit status is non-zero when the deployment failed (after an attempted
rollback); external verification failures after a successful deploy are
reported as warnings only.
"""

from __future__ import annotations

import argparse
import signal
import sys
from typing import Any, Sequence

import structlog

from shipyard.adapters import AdapterError
from shipyard.bootstrap import bootstrap_create_manager, bootstrap_load_topology
from shipyard.config import AppSettings, SettingsLoadError, TopologyLoadError, config_load_settings
from shipyard.deployment import (
    DeploymentContext,
    DeploymentManager,
    ExternalVerifier,
    deployment_resolve_plan,
)
from shipyard.domain import (
    DeploymentCancelledError,
    DeploymentPhaseError,
    ExternalVerificationError,
    RollbackAggregateError,
    ShipyardError,
    Topology,
    domain_timeline_failed_stages,
    unit_public_url,
)
from shipyard.logging import logging_configure
from shipyard.reporting import GitHubActionsReporter

logger = structlog.get_logger(__name__)


def main(argv: Sequence[str] | None = None) -> None:
    """Run the selected command with validated configuration.

    Args:
        argv: Optional argument list; defaults to `sys.argv[1:]`.

    Returns:
        None: Returns on success.

    Raises:
        SystemExit: Raised with status 1 when configuration, deployment or
            stand-alone verification fails.
    """

    argument_parser = argparse.ArgumentParser(description="Shipyard container deployment runner")
    argument_parser.add_argument(
        "command",
        nargs="?",
        default="deploy",
        choices=("deploy", "plan", "verify"),
        help="Runtime command: `deploy` rolls out the topology, `plan` prints the resolved order, "
        "`verify` probes public app URLs",
        type=str,
    )
    argument_parser.add_argument(
        "--config",
        dest="config",
        type=str,
        help="Optional topology file path overriding INPUT_CONFIG",
    )
    parsed_arguments = argument_parser.parse_args(argv)

    reporter = GitHubActionsReporter()
    try:
        settings = config_load_settings()
    except SettingsLoadError as error:
        reporter.reporter_error(str(error))
        raise SystemExit(1) from error
    if parsed_arguments.config:
        settings = settings.model_copy(update={"config": parsed_arguments.config})

    logging_configure(settings.log_level or "info", settings.log_format)
    try:
        topology = bootstrap_load_topology(settings)
    except (TopologyLoadError, ShipyardError) as error:
        logger.error("topology_load_failed", config=settings.config, error=str(error))
        reporter.reporter_error(f"Failed to load configuration: {error}")
        raise SystemExit(1) from error
    logging_configure(topology.log_level, settings.log_format)

    if parsed_arguments.command == "plan":
        main_print_plan(topology)
        return

    root_context = DeploymentContext.context_background()
    previous_handlers = main_install_signal_handlers(root_context)
    try:
        if parsed_arguments.command == "verify":
            main_run_verify(topology=topology, context=root_context, reporter=reporter)
            return
        main_run_deploy(settings=settings, topology=topology, context=root_context, reporter=reporter)
    finally:
        main_restore_signal_handlers(previous_handlers)


def main_run_deploy(
    settings: AppSettings,
    topology: Topology,
    context: DeploymentContext,
    reporter: GitHubActionsReporter,
    manager: DeploymentManager | None = None,
) -> None:
    """Deploy, roll back on failure, then verify public access.

    Raises:
        SystemExit: Raised with status 1 when the deployment failed.
    """

    if manager is None:
        try:
            manager = bootstrap_create_manager(settings=settings, topology=topology)
        except (AdapterError, ValueError) as error:
            logger.error("deployment_setup_failed", error=str(error))
            reporter.reporter_error(f"Deployment setup failed: {error}")
            raise SystemExit(1) from error
    try:
        reporter.reporter_start_group("Deploy")
        timer = reporter.reporter_start_timer("Deployment")
        try:
            manager.manager_deploy(context)
        except (DeploymentPhaseError, DeploymentCancelledError) as error:
            failed_stages = domain_timeline_failed_stages(manager.manager_timeline())
            logger.error("deployment_failed", error=str(error), failed_stages=failed_stages)
            reporter.reporter_error(f"Deployment failed: {error}")
            if failed_stages:
                reporter.reporter_error(f"Failed stages: {', '.join(failed_stages)}")
            main_rollback(manager=manager, context=context, reporter=reporter)
            reporter.reporter_set_output("status", "failed")
            raise SystemExit(1) from error
        finally:
            timer.timer_stop()
            reporter.reporter_end_group()

        reporter.reporter_start_group("Verify external access")
        try:
            manager.manager_verify_external_access(context)
            logger.info("external_verification_succeeded")
        except (ExternalVerificationError, DeploymentCancelledError) as error:
            reporter.reporter_warning(f"External verification failed, but deployment was successful: {error}")
        finally:
            reporter.reporter_end_group()

        deployed_units = [record.unit_name for record in manager.registry.registry_records()]
        reporter.reporter_set_output("status", "success")
        reporter.reporter_set_output("deployed_units", ",".join(deployed_units))
        reporter.reporter_set_output("app_urls", "\n".join(unit_public_url(app, topology) for app in topology.apps))
        logger.info("deployment_run_completed", deployed_units=deployed_units)
    finally:
        manager.manager_close()


def main_rollback(manager: DeploymentManager, context: DeploymentContext, reporter: GitHubActionsReporter) -> None:
    """Roll back a failed deployment, reporting but not raising rollback failures."""

    reporter.reporter_start_group("Rollback")
    try:
        manager.manager_rollback(context)
    except RollbackAggregateError as error:
        logger.error("rollback_failed", failed_units=list(error.rollback_failed_unit_names()))
        reporter.reporter_error(f"Rollback failed: {error}")
    finally:
        reporter.reporter_end_group()


def main_run_verify(topology: Topology, context: DeploymentContext, reporter: GitHubActionsReporter) -> None:
    """Probe public app URLs without deploying.

    Raises:
        SystemExit: Raised with status 1 when an app is unreachable.
    """

    try:
        ExternalVerifier(topology=topology).verifier_verify_external_access(context)
    except (ExternalVerificationError, DeploymentCancelledError) as error:
        reporter.reporter_error(f"External verification failed: {error}")
        raise SystemExit(1) from error


def main_print_plan(topology: Topology) -> None:
    """Print the resolved deployment order to stdout.

    Raises:
        SystemExit: Raised with status 1 when dependencies cannot be resolved.
    """

    try:
        plan = deployment_resolve_plan(services=topology.services, apps=topology.apps)
    except ShipyardError as error:
        print(f"ERROR: {error}", file=sys.stderr)
        raise SystemExit(1) from error
    for index, unit in enumerate(plan.services + plan.apps, start=1):
        print(f"{index}. {unit.kind.value} {unit.name} ({unit.image})")


def main_install_signal_handlers(context: DeploymentContext) -> dict[int, Any]:
    """Cancel the context on SIGINT and SIGTERM; return the previous handlers."""

    def _handle_signal(signal_number: int, frame: object) -> None:
        _ = frame
        signal_name = signal.Signals(signal_number).name
        logger.warning("signal_received", signal=signal_name)
        context.context_cancel(f"received {signal_name}")

    previous_handlers: dict[int, Any] = {}
    for signal_number in (signal.SIGINT, signal.SIGTERM):
        previous_handlers[signal_number] = signal.signal(signal_number, _handle_signal)
    return previous_handlers


def main_restore_signal_handlers(previous_handlers: dict[int, Any]) -> None:
    for signal_number, handler in previous_handlers.items():
        signal.signal(signal_number, handler)


if __name__ == "__main__":
    main()
