import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import colorlog
from dotenv import load_dotenv

from .constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_POLL_MAX_ATTEMPTS,
    DEFAULT_SECRET_LIFETIME_DAYS,
)
from .exceptions import ConfigurationError

# Load environment variables
load_dotenv()

"""
Configuration Management for Lighthouse Onboarding

This module provides centralized configuration management with validation
and environment variable handling.
"""


def _set_azure_http_log_level(log_level: str) -> None:
    """Set log levels for HTTP-related loggers to reduce noise."""
    http_loggers = [
        "azure.core.pipeline.policies.http_logging_policy",
        "azure.core.pipeline",
        "azure.identity",
        "azure.mgmt",
        "azure",
        "msgraph",
        "kiota_http",
        "urllib3",
        "httpx",
        "httpcore",
    ]
    # HTTP logging should only appear at DEBUG level
    target_level = logging.DEBUG if log_level == "DEBUG" else logging.WARNING
    for name in http_loggers:
        logging.getLogger(name).setLevel(target_level)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be an integer, got {value!r}", error_code="INVALID_CONFIG"
        ) from e


logger = logging.getLogger(__name__)


@dataclass
class PollingConfig:
    """Fixed-interval polling used while directory objects replicate."""

    interval_seconds: float = field(
        default_factory=lambda: _env_int(
            "ONBOARD_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS
        )
    )
    max_attempts: int = field(
        default_factory=lambda: _env_int(
            "ONBOARD_POLL_MAX_ATTEMPTS", DEFAULT_POLL_MAX_ATTEMPTS
        )
    )

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ConfigurationError("Poll interval must be non-negative")
        if self.max_attempts < 1:
            raise ConfigurationError("Poll max attempts must be at least 1")

    @property
    def ceiling_seconds(self) -> float:
        return self.interval_seconds * self.max_attempts


@dataclass
class SecretConfig:
    """Bootstrap client secret issued on every run."""

    lifetime_days: int = field(
        default_factory=lambda: _env_int(
            "ONBOARD_SECRET_LIFETIME_DAYS", DEFAULT_SECRET_LIFETIME_DAYS
        )
    )
    display_name: str = field(
        default_factory=lambda: os.getenv("ONBOARD_SECRET_DISPLAY_NAME", "bootstrap")
    )

    def __post_init__(self) -> None:
        if not 1 <= self.lifetime_days <= 30:
            raise ConfigurationError(
                "Secret lifetime must be between 1 and 30 days",
                error_code="INVALID_CONFIG",
            )
        if not self.display_name:
            raise ConfigurationError("Secret display name is required")


@dataclass
class AzureConfig:
    """Settings for the Azure session."""

    tenant_id: Optional[str] = field(default_factory=lambda: os.getenv("AZURE_TENANT_ID"))
    authority_host: Optional[str] = field(
        default_factory=lambda: os.getenv("AZURE_AUTHORITY_HOST")
    )
    module_install_timeout: int = field(
        default_factory=lambda: _env_int("ONBOARD_MODULE_INSTALL_TIMEOUT", 300)
    )

    def __post_init__(self) -> None:
        if self.module_install_timeout < 1:
            raise ConfigurationError("Module install timeout must be at least 1 second")
        if self.authority_host and not self.authority_host.startswith("https://"):
            raise ConfigurationError("Azure authority host must use HTTPS")

    def get_safe_tenant_id(self) -> str:
        """Get tenant id for logging (masked)."""
        if not self.tenant_id:
            return "from credential"
        return self.tenant_id[:8] + "..."


@dataclass
class LoggingConfig:
    """Configuration for logging behavior."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = field(
        default_factory=lambda: os.getenv(
            "LOG_FORMAT", "%(log_color)s%(levelname)s:%(name)s:%(message)s"
        )
    )
    file_output: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))
    json_output: bool = field(default_factory=lambda: _env_bool("LOG_JSON"))

    def __post_init__(self) -> None:
        """Validate logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level.upper() not in valid_levels:
            raise ConfigurationError(f"Log level must be one of: {valid_levels}")
        self.level = self.level.upper()

    def get_log_level(self) -> int:
        """Convert string log level to logging constant."""
        return int(getattr(logging, self.level))


@dataclass
class OnboardingConfig:
    """Main configuration class that aggregates all configuration sections."""

    polling: PollingConfig = field(default_factory=PollingConfig)
    secret: SecretConfig = field(default_factory=SecretConfig)
    azure: AzureConfig = field(default_factory=AzureConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_environment(
        cls,
        log_level: Optional[str] = None,
        json_output: Optional[bool] = None,
        poll_interval: Optional[float] = None,
        poll_max_attempts: Optional[int] = None,
    ) -> "OnboardingConfig":
        """
        Create configuration from environment variables.

        Args:
            log_level: Optional log level override
            json_output: Optional override for JSON log rendering
            poll_interval: Optional polling interval override (seconds)
            poll_max_attempts: Optional polling attempt limit override

        Returns:
            OnboardingConfig: Configured instance
        """
        config = cls()
        if log_level is not None:
            config.logging.level = log_level
        if json_output is not None:
            config.logging.json_output = json_output
        if poll_interval is not None:
            config.polling.interval_seconds = poll_interval
        if poll_max_attempts is not None:
            config.polling.max_attempts = poll_max_attempts
        return config

    def validate_all(self) -> None:
        """Validate all configuration sections."""
        try:
            self.polling.__post_init__()
            self.secret.__post_init__()
            self.azure.__post_init__()
            self.logging.__post_init__()
            logger.debug("Configuration validation successful")
        except ConfigurationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

    def log_configuration_summary(self) -> None:
        """Log a summary of the current configuration (without sensitive data)."""
        logger.info("=" * 60)
        logger.info("LIGHTHOUSE ONBOARDING CONFIGURATION")
        logger.info("=" * 60)
        logger.info(f"Tenant: {self.azure.get_safe_tenant_id()}")
        logger.info(
            f"Polling: every {self.polling.interval_seconds}s, "
            f"up to {self.polling.max_attempts} attempts"
        )
        logger.info(
            f"Bootstrap secret: '{self.secret.display_name}', "
            f"expires after {self.secret.lifetime_days} day(s)"
        )
        logger.info(f"Logging Level: {self.logging.level}")
        if self.logging.file_output:
            logger.info(f"Log File: {self.logging.file_output}")
        logger.info("=" * 60)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "polling": {
                "interval_seconds": self.polling.interval_seconds,
                "max_attempts": self.polling.max_attempts,
            },
            "secret": {
                "lifetime_days": self.secret.lifetime_days,
                "display_name": self.secret.display_name,
            },
            "azure": {
                "tenant_id": self.azure.get_safe_tenant_id(),
                "authority_host": self.azure.authority_host,
                "module_install_timeout": self.azure.module_install_timeout,
            },
            "logging": {
                "level": self.logging.level,
                "file_output": self.logging.file_output,
                "json_output": self.logging.json_output,
            },
        }


def setup_logging(config: LoggingConfig) -> None:
    """
    Setup logging configuration based on config.
    """
    _set_azure_http_log_level(config.level.upper())

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()  # Remove any existing handlers
    root_logger.setLevel(config.get_log_level())

    console_handler = colorlog.StreamHandler(sys.stderr)
    console_handler.setFormatter(colorlog.ColoredFormatter(config.format))
    root_logger.addHandler(console_handler)

    # Add file handler if file output is configured
    if config.file_output:
        file_handler = logging.FileHandler(config.file_output)
        file_formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s:%(name)s:%(message)s"
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    logger.debug(
        f"Logging configured: level={config.level}, file={config.file_output or 'console'}"
    )


def create_config_from_env(
    log_level: Optional[str] = None,
    json_output: Optional[bool] = None,
) -> OnboardingConfig:
    """
    Factory function to create and validate configuration from environment.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    config = OnboardingConfig.from_environment(
        log_level=log_level, json_output=json_output
    )
    config.validate_all()
    return config
