"""
Configuration management for LaraHarbor

Handles configuration loading from environment variables, files,
and command-line arguments using Pydantic settings.
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

PROXY_DIR = "proxy"
MAIL_DIR = "mailhog"
SCHEDULER_DIR = "scheduler"
BACKUPS_DIR = "backups"

RESERVED_NAMES = frozenset({PROXY_DIR, MAIL_DIR, SCHEDULER_DIR, BACKUPS_DIR})


class HarborConfig(BaseSettings):
    """
    Main configuration class for LaraHarbor.

    Configuration is loaded from:
    1. Environment variables (highest priority)
    2. .env file
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="HARBOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Store layout
    root_dir: str = Field(
        default="~/LaraHarbor",
        description="Directory holding every site and the shared services",
    )

    # Networking
    network_name: str = Field(
        default="laraharbor-network",
        description="Shared container network joined by every site and the proxy",
    )
    domain_suffix: str = Field(
        default="local",
        description="Top-level suffix appended to site names",
    )
    mail_host: str = Field(
        default="mail.local",
        description="Host name of the shared mail-capture UI",
    )
    hosts_file: str = Field(
        default="/etc/hosts",
        description="Static name-resolution table to register site host names in",
    )
    hosts_use_sudo: bool = Field(
        default=True,
        description="Write the hosts file through sudo when it is not writable",
    )

    # Container configuration
    container_runtime: str = Field(
        default="docker",
        description="Container runtime (docker or podman)",
    )
    project_container_prefix: str = Field(
        default="laraharbor",
        description="Prefix for the shared service container names",
    )

    # Secrets and certificates
    credential_length: int = Field(
        default=16,
        description="Length of generated passwords",
    )
    cert_days: int = Field(
        default=365,
        description="Validity of self-signed certificates in days",
    )
    cert_key_size: int = Field(
        default=2048,
        description="RSA key size for self-signed certificates",
    )
    openssl_binary: str = Field(
        default="openssl",
        description="OpenSSL executable used to issue certificates",
    )

    # Readiness polling after create
    readiness_attempts: int = Field(
        default=30,
        description="Number of HTTPS probes before giving up on a new site",
    )
    readiness_interval: float = Field(
        default=2.0,
        description="Seconds between readiness probes",
    )

    # Backups
    backup_retention_days: int = Field(
        default=7,
        description="Days to keep database dumps",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for log files (defaults to <root>/.logs)",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose console output",
    )

    @validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @validator("container_runtime")
    def validate_container_runtime(cls, v: str) -> str:
        """Validate container runtime is supported."""
        valid_runtimes = ["docker", "podman"]
        if v.lower() not in valid_runtimes:
            raise ValueError(
                f"container_runtime must be one of: {', '.join(valid_runtimes)}"
            )
        return v.lower()

    @validator("domain_suffix")
    def validate_domain_suffix(cls, v: str) -> str:
        """Strip leading dots so both 'local' and '.local' work."""
        v = v.strip().lstrip(".").lower()
        if not v:
            raise ValueError("domain_suffix must not be empty")
        return v

    @validator("credential_length", "readiness_attempts")
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @validator("cert_key_size")
    def validate_key_size(cls, v: int) -> int:
        if v < 2048:
            raise ValueError("cert_key_size must be at least 2048")
        return v

    @property
    def root_path(self) -> Path:
        """Get the store root as an expanded Path."""
        return Path(self.root_dir).expanduser()

    def get_log_dir_path(self) -> Path:
        """Get log directory as Path object."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return self.root_path / ".logs"

    @property
    def proxy_dir(self) -> Path:
        return self.root_path / PROXY_DIR

    @property
    def cert_dir(self) -> Path:
        return self.proxy_dir / "certs"

    @property
    def mail_dir(self) -> Path:
        return self.root_path / MAIL_DIR

    @property
    def scheduler_dir(self) -> Path:
        return self.root_path / SCHEDULER_DIR

    @property
    def backups_dir(self) -> Path:
        return self.root_path / BACKUPS_DIR

    def shared_container_name(self, service: str) -> str:
        """Get the container name of a shared service (proxy, mailhog, ...)."""
        return f"{self.project_container_prefix}-{service}"

    def create_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        log_path = self.get_log_dir_path()
        log_path.mkdir(parents=True, exist_ok=True)
        (log_path / "fleet").mkdir(exist_ok=True)

    def mask_sensitive_values(self) -> dict:
        """Get configuration dict for display. No field holds a secret today."""
        return self.model_dump()


def load_config(
    config_file: Optional[str] = None,
    cli_overrides: Optional[dict] = None,
) -> HarborConfig:
    """
    Load configuration with optional file and CLI overrides.

    Args:
        config_file: Optional configuration file path
        cli_overrides: CLI argument overrides

    Returns:
        Loaded configuration
    """
    if config_file and Path(config_file).exists():
        config = HarborConfig(_env_file=config_file)
    else:
        config = HarborConfig()

    if cli_overrides:
        config_data = config.model_dump()
        config_data.update(cli_overrides)
        config = HarborConfig(**config_data)

    config.create_directories()
    logger.debug(f"Loaded configuration with root {config.root_path}")

    return config
