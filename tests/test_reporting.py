"""Regression tests for GitHub Actions status reporting."""

from __future__ import annotations

import io
from pathlib import Path

from shipyard.reporting import GitHubActionsReporter, reporting_escape_command_value


def test_reporting_emits_workflow_commands_under_actions(tmp_path: Path) -> None:
    """Emit group markers and escaped annotations when running in Actions.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate workflow command output.

    Raises:
        AssertionError: Raised when output differs.
    """

    stream = io.StringIO()
    reporter = GitHubActionsReporter(environ={"GITHUB_ACTIONS": "true"}, stream=stream)

    reporter.reporter_start_group("Deploy")
    reporter.reporter_error("health check failed\nafter 3 attempts")
    reporter.reporter_end_group()

    assert stream.getvalue().splitlines() == [
        "::group::Deploy",
        "::error::health check failed%0Aafter 3 attempts",
        "::endgroup::",
    ]


def test_reporting_falls_back_to_plain_text_outside_actions() -> None:
    """Print plain markers when not running in Actions.

    Returns:
        None: Assertions validate plain output.

    Raises:
        AssertionError: Raised when workflow commands leak.
    """

    stream = io.StringIO()
    reporter = GitHubActionsReporter(environ={}, stream=stream)

    reporter.reporter_start_group("Deploy")
    reporter.reporter_warning("slow start")

    assert stream.getvalue().splitlines() == ["=== Deploy ===", "[WARNING] slow start"]
    assert reporter.reporter_set_output("status", "success") is False


def test_reporting_writes_single_and_multiline_outputs(tmp_path: Path) -> None:
    """Append outputs, using a heredoc delimiter for multi-line values.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        None: Assertions validate output file content.

    Raises:
        AssertionError: Raised when output entries differ.
    """

    output_path = tmp_path / "github_output"
    reporter = GitHubActionsReporter(
        environ={"GITHUB_ACTIONS": "true", "GITHUB_OUTPUT": str(output_path)},
        stream=io.StringIO(),
    )

    assert reporter.reporter_set_output("status", "success")
    assert reporter.reporter_set_output("app_urls", "https://a.example.com\nhttps://b.example.com")

    lines = output_path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "status=success"
    assert lines[1].startswith("app_urls<<ghadelimiter_")
    delimiter = lines[1].split("<<", maxsplit=1)[1]
    assert lines[2:] == ["https://a.example.com", "https://b.example.com", delimiter]


def test_reporting_timer_reports_elapsed_seconds() -> None:
    """Report elapsed time measured with the injected clock.

    Returns:
        None: Assertions validate elapsed time.

    Raises:
        AssertionError: Raised when elapsed time differs.
    """

    ticks = iter([10.0, 12.5])
    stream = io.StringIO()
    reporter = GitHubActionsReporter(environ={"GITHUB_ACTIONS": "true"}, stream=stream, clock=lambda: next(ticks))

    elapsed_seconds = reporter.reporter_start_timer("Deployment").timer_stop()

    assert elapsed_seconds == 2.5
    assert stream.getvalue() == "::debug::Deployment completed in 2.50s\n"


def test_reporting_escape_command_value_escapes_percent_first() -> None:
    """Escape percent signs before line breaks.

    Returns:
        None: Assertions validate escaping order.

    Raises:
        AssertionError: Raised when escaping differs.
    """

    assert reporting_escape_command_value("100%\r\n") == "100%25%0D%0A"
