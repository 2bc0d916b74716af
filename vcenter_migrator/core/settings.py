"""Timeout settings for vCenter Migrator operations.

Provides centralized timeout configuration using Pydantic BaseSettings
with environment variable support for operational tuning.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MigratorTimeoutSettings(BaseSettings):
    """Session, command and workflow timeout configuration."""

    connect_timeout: float = Field(
        120, alias="CONNECT_TIMEOUT", description="Connect-VIServer timeout in seconds"
    )

    disconnect_timeout: float = Field(
        15, alias="DISCONNECT_TIMEOUT", description="Best-effort disconnect timeout in seconds"
    )

    probe_timeout: float = Field(
        5, alias="PROBE_TIMEOUT", description="Liveness probe timeout in seconds"
    )

    command_timeout: float = Field(
        300, alias="COMMAND_TIMEOUT", description="Default command timeout in seconds"
    )

    inventory_phase_timeout: float = Field(
        180, alias="INVENTORY_PHASE_TIMEOUT", description="Timeout per inventory enumeration phase"
    )

    migration_item_timeout: float = Field(
        600, alias="MIGRATION_ITEM_TIMEOUT", description="Timeout per migrated or backed-up item"
    )

    health_cache_ttl: float = Field(
        30, alias="HEALTH_CACHE_TTL", description="Seconds a liveness result is trusted without probing"
    )

    inventory_stale_minutes: int = Field(
        30, alias="INVENTORY_STALE_MINUTES", description="Age after which a snapshot counts as stale"
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


# Global settings instance
timeout_settings = MigratorTimeoutSettings()

# Timeout constants for easy import
CONNECT_TIMEOUT: float = timeout_settings.connect_timeout
DISCONNECT_TIMEOUT: float = timeout_settings.disconnect_timeout
PROBE_TIMEOUT: float = timeout_settings.probe_timeout
COMMAND_TIMEOUT: float = timeout_settings.command_timeout
INVENTORY_PHASE_TIMEOUT: float = timeout_settings.inventory_phase_timeout
MIGRATION_ITEM_TIMEOUT: float = timeout_settings.migration_item_timeout
