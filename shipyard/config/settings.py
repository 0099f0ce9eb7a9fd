"""Typed runtime settings with dotenv support and startup validation."""

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SettingsLoadError(RuntimeError):
    """Raised when runtime settings cannot be loaded or validated."""


class AppSettings(BaseSettings):
    """Runtime settings for one deployment run.

    Environment variable names use the GitHub Actions input convention:
    field names in uppercase with an `INPUT_` prefix.
    Example: `docker_host` reads from `INPUT_DOCKER_HOST`.

    Attributes:
        config: Path of the topology YAML file.
        docker_host: Docker daemon URL; None uses the Docker environment defaults.
        log_level: Optional log level overriding the topology `logLevel`.
        log_format: Log renderer (`console` or `json`).
        timeout: Optional deployment timeout in minutes overriding the topology.
        skip_security_scan: Disable image vulnerability scanning.
        dns_provider: Optional DNS provider enabling DNS-01 certificate challenges.
        dns_api_token: Optional API token passed to the DNS provider.
        environment: Deployment environment label.
        network_name: Shared container network for all units.
        proxy_config_dir: Host directory for generated proxy configuration.
        ssl_cert_dir: Host directory holding certificates.
        ssl_key_dir: Host directory holding private keys.
        letsencrypt_dir: Host directory used as certbot state directory.
        rollback_grace_period_seconds: Stop grace period used during rollback.
    """

    model_config = SettingsConfigDict(
        env_prefix="INPUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    config: str = Field(default=".shipyard/config.yml", min_length=1)
    docker_host: str | None = Field(default=None)
    log_level: str | None = Field(default=None)
    log_format: str = Field(default="console")
    timeout: float | None = Field(default=None, gt=0)
    skip_security_scan: bool = Field(default=False)
    dns_provider: str | None = Field(default=None)
    dns_api_token: str | None = Field(default=None)
    environment: str = Field(default="development")
    network_name: str = Field(default="shipyard", min_length=1)
    proxy_config_dir: str = Field(default="/tmp/proxy-config", min_length=1)
    ssl_cert_dir: str = Field(default="/etc/shipyard/ssl/certs", min_length=1)
    ssl_key_dir: str = Field(default="/etc/shipyard/ssl/private", min_length=1)
    letsencrypt_dir: str = Field(default="/etc/shipyard/letsencrypt", min_length=1)
    rollback_grace_period_seconds: int = Field(default=10, ge=0)

    @field_validator("docker_host", "log_level", "dns_provider", "dns_api_token", mode="before")
    @classmethod
    def _validate_optional_text(cls, value: object) -> object:
        if isinstance(value, str):
            stripped_value = value.strip()
            if not stripped_value or stripped_value.lower() == "none":
                return None
            return stripped_value
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized_value = value.lower()
        if normalized_value not in {"debug", "info", "warn", "warning", "error"}:
            raise ValueError("log_level must be one of debug, info, warn, error")
        return normalized_value

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str) -> str:
        normalized_value = value.strip().lower()
        if normalized_value not in {"console", "json"}:
            raise ValueError("log_format must be console or json")
        return normalized_value


def config_load_settings() -> AppSettings:
    """Load and validate runtime settings from environment and dotenv.

    Returns:
        AppSettings: Validated runtime settings object.

    Raises:
        SettingsLoadError: Raised when settings are missing or invalid.
    """

    try:
        return AppSettings()
    except ValidationError as error:
        raise SettingsLoadError(
            f"Startup configuration validation failed. Update .env or INPUT_* variables. Details: {error}"
        ) from error
