"""Application settings using pydantic-settings.

Settings are loaded from environment variables with sensible defaults
for development. Production deployments should set all values explicitly.
"""

import secrets
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings.

    Environment variables:
        CONNECTOR_DB_HOST: Database host (default: postgres)
        CONNECTOR_DB_PORT: Database port (default: 5432)
        CONNECTOR_DB_DATABASE: Database name (default: health_tables)
        CONNECTOR_DB_USERNAME: Database user (default: postgres)
        CONNECTOR_DB_PASSWORD: Database password (required in production)
        CONNECTOR_DB_POOL_SIZE: Connections in the engine pool (default: 5)
    """

    model_config = SettingsConfigDict(
        env_prefix="CONNECTOR_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(default="postgres", description="Database host")
    port: int = Field(default=5432, description="Database port")
    database: str = Field(default="health_tables", description="Database name")
    username: str = Field(default="postgres", description="Database username")
    password: SecretStr = Field(
        default=SecretStr(""),
        description="Database password",
    )
    pool_size: int = Field(
        default=5,
        description="Connections in the engine pool",
        ge=1,
        le=100,
    )

    @property
    def connection_string(self) -> str:
        """Generate a connection string (without password for logging)."""
        return f"postgresql://{self.username}@{self.host}:{self.port}/{self.database}"


class FhirSettings(BaseSettings):
    """Downstream FHIR server settings.

    Environment variables:
        CONNECTOR_FHIR_BASE_URL: FHIR server base URL
        CONNECTOR_FHIR_TIMEOUT_SECONDS: Per-request timeout (default: 15)
    """

    model_config = SettingsConfigDict(
        env_prefix="CONNECTOR_FHIR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = Field(
        default="https://fhir-bootcamp.medblocks.com/fhir/",
        description="FHIR server base URL",
    )
    # Must stay below the 30 second claim lease; leases are never renewed.
    timeout_seconds: float = Field(
        default=15.0,
        description="Per-request timeout in seconds",
        gt=0,
        lt=30,
    )

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        """Ensure exactly one trailing slash so relative paths resolve."""
        return value.rstrip("/") + "/"


class OutboxWorkerSettings(BaseSettings):
    """Outbox worker settings.

    Environment variables:
        CONNECTOR_OUTBOX_WORKER_ID: Lease holder identity (default: worker-<random>)
        CONNECTOR_OUTBOX_CHANNEL: NOTIFY channel name (default: fhir_outbox_event)
        CONNECTOR_OUTBOX_POLL_INTERVAL_SECONDS: Fallback poll interval (default: 2)
        CONNECTOR_OUTBOX_BURST_LIMIT: Cycles drained per notification (default: 5)
        CONNECTOR_OUTBOX_MAX_RETRIES: Reserved; not consulted by retry decisions
    """

    model_config = SettingsConfigDict(
        env_prefix="CONNECTOR_OUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    worker_id: str = Field(
        default_factory=lambda: f"worker-{secrets.randbelow(10000)}",
        description="Lease holder identity",
    )
    channel: str = Field(
        default="fhir_outbox_event",
        description="PostgreSQL NOTIFY channel",
        pattern=r"^[A-Za-z_][A-Za-z0-9_]*$",
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        description="Seconds between fallback poll cycles",
        gt=0,
    )
    burst_limit: int = Field(
        default=5,
        description="Maximum cycles drained per notification",
        ge=1,
    )
    max_retries: int = Field(
        default=5,
        description="Reserved; retry decisions are status-based",
        ge=0,
    )


class Settings(BaseSettings):
    """Main application settings aggregating all configuration sections."""

    model_config = SettingsConfigDict(
        env_prefix="CONNECTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="fhir-connector", description="Service name")
    log_level: str = Field(default="info", description="Minimum log level")

    @property
    def database(self) -> DatabaseSettings:
        """Get database settings."""
        return get_database_settings()

    @property
    def fhir(self) -> FhirSettings:
        """Get FHIR server settings."""
        return get_fhir_settings()

    @property
    def outbox(self) -> OutboxWorkerSettings:
        """Get outbox worker settings."""
        return get_outbox_worker_settings()


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """Get cached database settings."""
    return DatabaseSettings()


@lru_cache
def get_fhir_settings() -> FhirSettings:
    """Get cached FHIR server settings."""
    return FhirSettings()


@lru_cache
def get_outbox_worker_settings() -> OutboxWorkerSettings:
    """Get cached outbox worker settings.

    The worker id is generated once per process when not configured.
    """
    return OutboxWorkerSettings()
