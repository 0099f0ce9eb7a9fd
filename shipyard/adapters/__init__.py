"""Adapter layer package for container engine and scanner boundaries."""

from .docker_runtime import DockerContainerRuntime, runtime_build_healthcheck, runtime_build_port_bindings
from .errors import (
    AdapterError,
    CertificateProvisionError,
    ContainerNotFoundError,
    ContainerRuntimeError,
    ImageScanError,
    ProxyProvisionError,
)
from .interfaces import (
    CertificateProvisionerPort,
    ContainerRuntimePort,
    ContainerSpec,
    ExecResult,
    ImageScannerPort,
    ImageScanResult,
    ProxyProvisionerPort,
)
from .trivy_scanner import DisabledImageScanner, TrivyImageScanner, scanner_count_severities

__all__ = [
    "AdapterError",
    "CertificateProvisionError",
    "CertificateProvisionerPort",
    "ContainerNotFoundError",
    "ContainerRuntimeError",
    "ContainerRuntimePort",
    "ContainerSpec",
    "DisabledImageScanner",
    "DockerContainerRuntime",
    "ExecResult",
    "ImageScanError",
    "ImageScanResult",
    "ImageScannerPort",
    "ProxyProvisionError",
    "ProxyProvisionerPort",
    "TrivyImageScanner",
    "runtime_build_healthcheck",
    "runtime_build_port_bindings",
    "scanner_count_severities",
]
