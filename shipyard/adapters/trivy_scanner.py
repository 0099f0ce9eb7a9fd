"""Trivy-backed image vulnerability scanner."""

from __future__ import annotations

import json
import shutil
import subprocess
from typing import TYPE_CHECKING, Any, Callable, Final

import structlog

from .errors import ImageScanError
from .interfaces import ImageScanResult, ImageScannerPort

if TYPE_CHECKING:
    from shipyard.deployment.context import DeploymentContext

logger = structlog.get_logger(__name__)


class TrivyImageScanner(ImageScannerPort):
    """Scanner running `trivy image --format json --quiet <image>`.

    The binary must already be on PATH; it is never installed on demand.
    """

    _SEVERITIES: Final[tuple[str, ...]] = ("critical", "high", "medium", "low")

    def __init__(
        self,
        executable: str = "trivy",
        command_runner: Callable[..., subprocess.CompletedProcess[str]] = subprocess.run,
        executable_finder: Callable[[str], str | None] = shutil.which,
    ):
        if not executable.strip():
            raise ValueError("executable must not be blank")

        self._executable = executable.strip()
        self._command_runner = command_runner
        self._executable_finder = executable_finder

    def scanner_scan_image(self, context: DeploymentContext, image: str) -> ImageScanResult:
        """Scan one image and count findings per severity.

        Args:
            context: Cancellation context; its remaining time bounds the scan.
            image: Image reference.

        Returns:
            ImageScanResult: Severity counts.

        Raises:
            ImageScanError: Raised when Trivy is missing, fails, times out or emits invalid JSON.
            DeploymentCancelledError: Raised when the context is already cancelled.
        """

        context.context_raise_if_cancelled()
        executable_path = self._executable_finder(self._executable)
        if executable_path is None:
            raise ImageScanError(f"{self._executable} executable not found on PATH", operation="scan_image")

        logger.info("image_scan_started", image=image)
        try:
            completed = self._command_runner(
                [executable_path, "image", "--format", "json", "--quiet", image],
                capture_output=True,
                text=True,
                timeout=context.context_remaining_seconds(),
                check=False,
            )
        except subprocess.TimeoutExpired as error:
            raise ImageScanError(f"image scan timed out for {image}", operation="scan_image") from error
        except OSError as error:
            raise ImageScanError(f"failed to run {self._executable}: {error}", operation="scan_image") from error

        if completed.returncode != 0:
            raise ImageScanError(
                f"trivy scan failed with exit code {completed.returncode}: {(completed.stderr or '').strip()}",
                operation="scan_image",
            )

        try:
            report = json.loads(completed.stdout or "{}")
        except json.JSONDecodeError as error:
            raise ImageScanError(f"failed to parse trivy output: {error}", operation="scan_image") from error

        severity_counts = scanner_count_severities(report)
        scan_result = ImageScanResult(image=image, **severity_counts)
        logger.info("image_scan_completed", image=image, **severity_counts)
        return scan_result


class DisabledImageScanner(ImageScannerPort):
    """Scanner used when security scanning is switched off; reports no findings."""

    def scanner_scan_image(self, context: DeploymentContext, image: str) -> ImageScanResult:
        _ = context
        logger.info("image_scan_skipped", image=image)
        return ImageScanResult(image=image)


def scanner_count_severities(report: Any) -> dict[str, int]:
    """Count vulnerabilities per severity in a Trivy JSON report.

    Args:
        report: Decoded Trivy report.

    Returns:
        dict[str, int]: Counts keyed by `critical`, `high`, `medium`, `low`.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    severity_counts = {severity: 0 for severity in TrivyImageScanner._SEVERITIES}
    if not isinstance(report, dict):
        return severity_counts
    for result in report.get("Results") or []:
        for vulnerability in result.get("Vulnerabilities") or []:
            severity = str(vulnerability.get("Severity", "")).lower()
            if severity in severity_counts:
                severity_counts[severity] += 1
    return severity_counts
