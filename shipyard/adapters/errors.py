"""Project-native typed exceptions for adapter-layer collaborator failures."""

from __future__ import annotations


class AdapterError(Exception):
    """Base exception for adapter-level failures.

    Attributes:
        operation: Optional operation label the failure belongs to.
    """

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class ContainerRuntimeError(AdapterError, RuntimeError):
    """Container engine call failed or returned an unusable result."""


class ContainerNotFoundError(ContainerRuntimeError, LookupError):
    """Container engine has no container for the given handle."""


class ImageScanError(AdapterError, RuntimeError):
    """Vulnerability scanner is unavailable or produced no usable report."""


class ProxyProvisionError(AdapterError, RuntimeError):
    """Reverse proxy configuration, startup or reload failed."""


class CertificateProvisionError(AdapterError, RuntimeError):
    """Certificate generation or retrieval failed."""
