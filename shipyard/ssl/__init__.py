"""Certificate provisioning for public endpoints."""

from .certificates import (
    CertbotCertificateProvisioner,
    CertificatePaths,
    ProxyManagedCertificateProvisioner,
    SelfSignedCertificateProvisioner,
    certificate_files_valid,
    certificate_write_private_file,
    ssl_create_certificate_provisioner,
)

__all__ = [
    "CertbotCertificateProvisioner",
    "CertificatePaths",
    "ProxyManagedCertificateProvisioner",
    "SelfSignedCertificateProvisioner",
    "certificate_files_valid",
    "certificate_write_private_file",
    "ssl_create_certificate_provisioner",
]
