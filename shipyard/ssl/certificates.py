"""Certificate provisioning: self-signed, certbot and proxy-managed strategies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import os
from pathlib import Path
import shutil
from typing import TYPE_CHECKING, Callable, Final

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
import structlog

from shipyard.adapters.errors import CertificateProvisionError, ContainerNotFoundError, ContainerRuntimeError
from shipyard.adapters.interfaces import CertificateProvisionerPort, ContainerRuntimePort, ContainerSpec
from shipyard.domain import Topology, VolumeSpec
from shipyard.proxy.provisioner import PROXY_CONTAINER_NAME

if TYPE_CHECKING:
    from shipyard.deployment.context import DeploymentContext

logger = structlog.get_logger(__name__)

MIN_REMAINING_VALIDITY_DAYS: Final[int] = 30
SELF_SIGNED_VALIDITY_DAYS: Final[int] = 365
SELF_SIGNED_KEY_SIZE: Final[int] = 2048
CERTBOT_CONTAINER_NAME: Final[str] = "shipyard-certbot"
CERTBOT_HTTP_IMAGE: Final[str] = "certbot/certbot"


@dataclass(frozen=True)
class CertificatePaths:
    """Host directories used for certificate material.

    Attributes:
        cert_dir: Directory receiving `<domain>.crt`.
        key_dir: Directory receiving `<domain>.key`.
        letsencrypt_dir: certbot state directory mounted at `/etc/letsencrypt`.
    """

    cert_dir: str = "/etc/shipyard/ssl/certs"
    key_dir: str = "/etc/shipyard/ssl/private"
    letsencrypt_dir: str = "/etc/shipyard/letsencrypt"

    def certificate_file(self, domain: str) -> Path:
        return Path(self.cert_dir) / f"{domain}.crt"

    def key_file(self, domain: str) -> Path:
        return Path(self.key_dir) / f"{domain}.key"


def certificate_files_valid(
    certificate_path: Path,
    key_path: Path,
    min_remaining_days: int = MIN_REMAINING_VALIDITY_DAYS,
    now: datetime | None = None,
) -> bool:
    """Return whether a certificate/key pair exists and stays valid long enough.

    Args:
        certificate_path: PEM certificate path.
        key_path: PEM private key path.
        min_remaining_days: Minimum remaining validity.
        now: Optional current time for deterministic checks.

    Returns:
        bool: True when both files are non-empty and the certificate parses and
        expires after `now + min_remaining_days`.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    try:
        if certificate_path.stat().st_size == 0 or key_path.stat().st_size == 0:
            return False
        certificate = x509.load_pem_x509_certificate(certificate_path.read_bytes())
    except (OSError, ValueError):
        return False

    reference_time = now or datetime.now(timezone.utc)
    return certificate.not_valid_after_utc > reference_time + timedelta(days=min_remaining_days)


class _FileCertificateProvisioner(CertificateProvisionerPort):
    """Shared directory handling and validity short-circuit."""

    def __init__(self, topology: Topology, paths: CertificatePaths | None = None):
        if topology is None:
            raise ValueError("topology must not be None")
        if not topology.domain.strip():
            raise ValueError("topology.domain must not be blank")

        self._topology = topology
        self._paths = paths or CertificatePaths()

    @property
    def certificate_path(self) -> Path:
        return self._paths.certificate_file(self._topology.domain)

    @property
    def key_path(self) -> Path:
        return self._paths.key_file(self._topology.domain)

    def certificate_setup(self, context: DeploymentContext) -> None:
        """Ensure a valid certificate/key pair exists for the topology domain.

        Raises:
            CertificateProvisionError: Raised when certificates cannot be produced.
            DeploymentCancelledError: Raised when the context is cancelled.
        """

        context.context_raise_if_cancelled()
        try:
            Path(self._paths.cert_dir).mkdir(parents=True, exist_ok=True)
            Path(self._paths.key_dir).mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise CertificateProvisionError(
                f"failed to create certificate directories: {error}",
                operation="certificate_setup",
            ) from error

        if certificate_files_valid(self.certificate_path, self.key_path):
            logger.info("certificates_valid", domain=self._topology.domain)
            return
        self._certificate_obtain(context)

    def _certificate_obtain(self, context: DeploymentContext) -> None:
        raise NotImplementedError


class SelfSignedCertificateProvisioner(_FileCertificateProvisioner):
    """Generate an RSA self-signed certificate covering the domain and its subdomains."""

    def __init__(
        self,
        topology: Topology,
        paths: CertificatePaths | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(topology=topology, paths=paths)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _certificate_obtain(self, context: DeploymentContext) -> None:
        domain = self._topology.domain
        logger.info("self_signed_certificate_creating", domain=domain)
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=SELF_SIGNED_KEY_SIZE)
        subject = issuer = x509.Name(
            [
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Shipyard Deployment"),
                x509.NameAttribute(NameOID.COMMON_NAME, domain),
            ]
        )
        not_before = self._clock()
        certificate = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_before + timedelta(days=SELF_SIGNED_VALIDITY_DAYS))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(domain), x509.DNSName(f"*.{domain}")]),
                critical=False,
            )
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .sign(private_key, hashes.SHA256())
        )

        try:
            self.certificate_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
            certificate_write_private_file(
                self.key_path,
                private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.TraditionalOpenSSL,
                    encryption_algorithm=serialization.NoEncryption(),
                ),
            )
        except OSError as error:
            raise CertificateProvisionError(
                f"failed to write self-signed certificate: {error}",
                operation="certificate_setup",
            ) from error
        logger.info("self_signed_certificate_created", domain=domain)


class CertbotCertificateProvisioner(_FileCertificateProvisioner):
    """Obtain Let's Encrypt certificates by running certbot in a one-shot container.

    HTTP-01 uses the standalone authenticator on host port 80, so it must run
    before the proxy binds that port. A proxy left running by an earlier run is
    removed first; the proxy phase recreates it. DNS-01 uses the provider plugin image and
    also covers the wildcard subdomain.
    """

    def __init__(
        self,
        topology: Topology,
        runtime: ContainerRuntimePort,
        paths: CertificatePaths | None = None,
        network_name: str = "shipyard",
        proxy_container_name: str = PROXY_CONTAINER_NAME,
    ):
        super().__init__(topology=topology, paths=paths)
        if runtime is None:
            raise ValueError("runtime must not be None")
        if not (topology.ssl.email or "").strip():
            raise ValueError("topology.ssl.email must not be blank")
        if topology.ssl.dns_challenge and not (topology.ssl.dns_provider or "").strip():
            raise ValueError("topology.ssl.dns_provider must not be blank for DNS challenges")

        self._runtime = runtime
        self._network_name = network_name
        self._proxy_container_name = proxy_container_name

    @property
    def credentials_path(self) -> Path:
        return Path(self._paths.letsencrypt_dir) / "credentials.ini"

    def certbot_container_spec(self) -> ContainerSpec:
        """Return the certbot container spec for the configured challenge."""

        ssl_settings = self._topology.ssl
        domain = self._topology.domain
        command = ["certonly", "--non-interactive", "--agree-tos", "--email", str(ssl_settings.email)]
        ports: tuple[str, ...] = ()
        if ssl_settings.dns_challenge:
            provider = str(ssl_settings.dns_provider)
            image = f"certbot/dns-{provider}"
            command += [
                f"--dns-{provider}",
                f"--dns-{provider}-credentials",
                "/etc/letsencrypt/credentials.ini",
                "-d",
                domain,
                "-d",
                f"*.{domain}",
            ]
        else:
            image = CERTBOT_HTTP_IMAGE
            command += ["--standalone", "-d", domain]
            ports = ("80:80",)
        return ContainerSpec(
            image=image,
            network=self._network_name,
            labels={"shipyard.type": "certbot"},
            ports=ports,
            volumes=(VolumeSpec(source=self._paths.letsencrypt_dir, destination="/etc/letsencrypt", type="bind"),),
            restart_policy="no",
            command=tuple(command),
        )

    def _certificate_obtain(self, context: DeploymentContext) -> None:
        domain = self._topology.domain
        logger.info(
            "certbot_certificate_requesting",
            domain=domain,
            dns_challenge=self._topology.ssl.dns_challenge,
        )
        try:
            Path(self._paths.letsencrypt_dir).mkdir(parents=True, exist_ok=True)
            if self._topology.ssl.dns_challenge:
                credentials = "".join(
                    f"{key} = {value}\n" for key, value in sorted(self._topology.ssl.dns_credentials.items())
                )
                certificate_write_private_file(self.credentials_path, credentials.encode("utf-8"))
        except OSError as error:
            raise CertificateProvisionError(
                f"failed to prepare certbot directory: {error}",
                operation="certificate_setup",
            ) from error

        self._certbot_run(context)
        self._certbot_copy_certificates()
        logger.info("certbot_certificate_obtained", domain=domain)

    def _certbot_run(self, context: DeploymentContext) -> None:
        spec = self.certbot_container_spec()
        if not self._topology.ssl.dns_challenge:
            self._certbot_release_http_port()
        handle: str | None = None
        try:
            self._runtime.runtime_pull_image(context, spec.image)
            handle = self._runtime.runtime_create_container(context, CERTBOT_CONTAINER_NAME, spec)
            self._runtime.runtime_start_container(context, handle)
            exit_code = self._runtime.runtime_wait_container(context, handle)
            if exit_code != 0:
                output = self._runtime.runtime_container_logs(handle)
                raise CertificateProvisionError(
                    f"certbot exited with code {exit_code}: {output.strip()[-2000:]}",
                    operation="certificate_setup",
                )
        except ContainerRuntimeError as error:
            raise CertificateProvisionError(f"certbot run failed: {error}", operation="certificate_setup") from error
        finally:
            if handle is not None:
                try:
                    self._runtime.runtime_remove_container(handle=handle, force=True)
                except ContainerRuntimeError as error:
                    logger.warning("certbot_container_removal_failed", container_id=handle, error=str(error))

    def _certbot_release_http_port(self) -> None:
        try:
            self._runtime.runtime_remove_container(handle=self._proxy_container_name, force=True)
        except ContainerNotFoundError:
            return
        except ContainerRuntimeError as error:
            raise CertificateProvisionError(
                f"failed to free port 80 held by {self._proxy_container_name}: {error}",
                operation="certificate_setup",
            ) from error
        logger.info("stale_proxy_removed_for_http_challenge", container=self._proxy_container_name)

    def _certbot_copy_certificates(self) -> None:
        live_dir = Path(self._paths.letsencrypt_dir) / "live" / self._topology.domain
        try:
            shutil.copyfile(live_dir / "fullchain.pem", self.certificate_path)
            certificate_write_private_file(self.key_path, (live_dir / "privkey.pem").read_bytes())
        except OSError as error:
            raise CertificateProvisionError(
                f"failed to copy certbot certificates from {live_dir}: {error}",
                operation="certificate_setup",
            ) from error


class ProxyManagedCertificateProvisioner(CertificateProvisionerPort):
    """No-op provisioner for proxies that obtain certificates themselves."""

    def __init__(self, topology: Topology):
        if topology is None:
            raise ValueError("topology must not be None")
        self._topology = topology

    def certificate_setup(self, context: DeploymentContext) -> None:
        context.context_raise_if_cancelled()
        logger.info("certificates_managed_by_proxy", domain=self._topology.domain, proxy=self._topology.proxy.type)


def certificate_write_private_file(path: Path, content: bytes) -> None:
    """Write a file readable only by its owner.

    Raises:
        OSError: Raised when the file cannot be written.
    """

    file_descriptor = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(file_descriptor, "wb") as file_handle:
        file_handle.write(content)
    os.chmod(path, 0o600)


def ssl_create_certificate_provisioner(
    topology: Topology,
    runtime: ContainerRuntimePort,
    paths: CertificatePaths | None = None,
    network_name: str = "shipyard",
) -> CertificateProvisionerPort | None:
    """Select the certificate strategy for the topology.

    Returns:
        CertificateProvisionerPort | None: None when SSL is disabled; a self-signed
        provisioner for self-signed mode; a proxy-managed no-op for Traefik; certbot otherwise.

    Raises:
        ValueError: Raised when certbot settings are incomplete.
    """

    if not topology.ssl.enabled:
        return None
    if topology.ssl.self_signed:
        return SelfSignedCertificateProvisioner(topology=topology, paths=paths)
    if topology.proxy.type == "traefik":
        return ProxyManagedCertificateProvisioner(topology=topology)
    return CertbotCertificateProvisioner(topology=topology, runtime=runtime, paths=paths, network_name=network_name)
