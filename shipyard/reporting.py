"""GitHub Actions workflow-command status reporting."""

from __future__ import annotations

import os
import sys
import time
import uuid
from typing import Callable, Mapping, TextIO


def reporting_escape_command_value(value: str) -> str:
    """Escape a workflow command value so it stays on one line."""

    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class StepTimer:
    """Elapsed-time tracker for one named step."""

    def __init__(self, name: str, reporter: GitHubActionsReporter, clock: Callable[[], float]):
        self._name = name
        self._reporter = reporter
        self._clock = clock
        self._started_at = clock()

    def timer_stop(self) -> float:
        """Report and return elapsed seconds."""

        elapsed_seconds = self._clock() - self._started_at
        self._reporter.reporter_debug(f"{self._name} completed in {elapsed_seconds:.2f}s")
        return elapsed_seconds


class GitHubActionsReporter:
    """Status reporter emitting workflow commands when running under GitHub Actions.

    Outside Actions, groups and annotations fall back to plain text markers and
    outputs are not written.
    """

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        stream: TextIO | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._environ = os.environ if environ is None else environ
        self._stream = stream
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self._environ.get("GITHUB_ACTIONS") == "true"

    def reporter_start_group(self, name: str) -> None:
        self._reporter_write(f"::group::{name}" if self.enabled else f"=== {name} ===")

    def reporter_end_group(self) -> None:
        self._reporter_write("::endgroup::" if self.enabled else "===========")

    def reporter_debug(self, message: str) -> None:
        self._reporter_annotation("debug", message)

    def reporter_warning(self, message: str) -> None:
        self._reporter_annotation("warning", message)

    def reporter_error(self, message: str) -> None:
        self._reporter_annotation("error", message)

    def reporter_set_output(self, name: str, value: str) -> bool:
        """Append one step output to the `$GITHUB_OUTPUT` file.

        Args:
            name: Output name.
            value: Output value; multi-line values use a heredoc delimiter.

        Returns:
            bool: True when the output was written.

        Raises:
            OSError: Raised when the output file cannot be appended.
        """

        output_path = self._environ.get("GITHUB_OUTPUT")
        if not self.enabled or not output_path:
            return False
        if "\n" in value:
            delimiter = f"ghadelimiter_{uuid.uuid4().hex}"
            entry = f"{name}<<{delimiter}\n{value}\n{delimiter}\n"
        else:
            entry = f"{name}={value}\n"
        with open(output_path, "a", encoding="utf-8") as output_file:
            output_file.write(entry)
        return True

    def reporter_start_timer(self, name: str) -> StepTimer:
        return StepTimer(name=name, reporter=self, clock=self._clock)

    def _reporter_annotation(self, level: str, message: str) -> None:
        if self.enabled:
            self._reporter_write(f"::{level}::{reporting_escape_command_value(message)}")
        else:
            self._reporter_write(f"[{level.upper()}] {message}")

    def _reporter_write(self, line: str) -> None:
        stream = self._stream or sys.stdout
        stream.write(f"{line}\n")
        stream.flush()
