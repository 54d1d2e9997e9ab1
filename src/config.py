"""
Configuration module for the Machine Controller.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from scheme import DEFAULT_GROUPS


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "machine_controller"
    user: str = "machine_controller"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 5
    max_pool_size: int = 20

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "machine_controller"),
            user=os.getenv("DB_USER", "machine_controller"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "5")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "20")),
        )


@dataclass
class ControllerConfig:
    """Reconcile loop configuration. All durations are in seconds."""

    resync_interval: float = 300.0
    max_concurrent_reconciles: int = 5

    # Exponential backoff for failed passes
    backoff_base_delay: float = 1.0
    backoff_max_delay: float = 300.0
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    # Deadline for each store call made during a pass
    call_timeout: float = 10.0

    # Requeue delays for passes that end waiting on other objects
    not_found_requeue_after: float = 30.0
    deletion_requeue_after: float = 20.0

    def __post_init__(self):
        if self.max_concurrent_reconciles < 1:
            raise ValueError("max_concurrent_reconciles must be at least 1")
        if self.call_timeout <= 0:
            raise ValueError("call_timeout must be positive")
        if self.not_found_requeue_after <= 0 or self.deletion_requeue_after <= 0:
            raise ValueError("requeue delays must be positive")

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            resync_interval=float(os.getenv("RESYNC_INTERVAL", "300")),
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            backoff_base_delay=float(os.getenv("BACKOFF_BASE_DELAY", "1")),
            backoff_max_delay=float(os.getenv("BACKOFF_MAX_DELAY", "300")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
            call_timeout=float(os.getenv("CALL_TIMEOUT", "10")),
            not_found_requeue_after=float(os.getenv("NOT_FOUND_REQUEUE_AFTER", "30")),
            deletion_requeue_after=float(os.getenv("DELETION_REQUEUE_AFTER", "20")),
        )


@dataclass
class APIConfig:
    """API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_enabled: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        cors_origins = (
            os.getenv("CORS_ORIGINS", "").split(",")
            if os.getenv("CORS_ORIGINS")
            else ["*"]
        )
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cors_enabled=os.getenv("CORS_ENABLED", "false").lower() == "true",
            cors_origins=cors_origins,
        )


@dataclass
class SchemeConfig:
    """API groups (``group`` or ``group/Kind``) Machines may reference."""

    groups: List[str] = field(default_factory=lambda: list(DEFAULT_GROUPS))

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        groups_str = os.getenv("SCHEME_GROUPS", "")
        groups = (
            [g.strip() for g in groups_str.split(",") if g.strip()]
            if groups_str
            else list(DEFAULT_GROUPS)
        )
        return cls(groups=groups)


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    controller: ControllerConfig
    api: APIConfig
    scheme: SchemeConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            controller=ControllerConfig.from_env(),
            api=APIConfig.from_env(),
            scheme=SchemeConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            controller=ControllerConfig(),
            api=APIConfig(),
            scheme=SchemeConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
