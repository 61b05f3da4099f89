"""
Delivery Controlling Engine
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Dict
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HierarchySettings(BaseSettings):
    """Hierarchy Aggregation Configuration"""

    model_config = SettingsConfigDict(env_prefix="HIERARCHY_")

    # Upstream portal ids -> channel ids. Glovo was migrated to a second portal id.
    portal_channel_map: Dict[str, str] = Field(
        default={
            "E22BC362": "glovo",
            "E22BC362-2": "glovo",
            "3CCD6861": "ubereats",
        },
        description="Portal id to channel id mapping",
    )

    # Multi-platform grouping
    group_addresses: bool = Field(default=True, description="Merge addresses registered on several platforms")
    normalize_address_names: bool = Field(default=True, description="Group addresses by normalized street name")
    group_brands: bool = Field(default=True, description="Merge brands sharing a name within a company")

    # Delivery time window for raw order rows (minutes)
    delivery_time_min_minutes: float = Field(default=1, description="Shortest valid delivery time")
    delivery_time_max_minutes: float = Field(default=179, description="Longest valid delivery time")

    # Output validation
    validate_output: bool = Field(default=True, description="Run hierarchy validation checks")
    strict_validation: bool = Field(default=False, description="Raise when validation fails")
    rollup_tolerance: float = Field(default=0.01, description="Absolute tolerance for rollup checks")

    @model_validator(mode="after")
    def validate_delivery_window(self) -> "HierarchySettings":
        """Validate delivery time window"""
        if self.delivery_time_min_minutes > self.delivery_time_max_minutes:
            raise ValueError("delivery_time_min_minutes must not exceed delivery_time_max_minutes")
        return self


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format value"""
        allowed = ["json", "text"]
        if v.lower() not in allowed:
            raise ValueError(f"Log format must be one of: {allowed}")
        return v.lower()


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="delivery-controlling", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    hierarchy: HierarchySettings = Field(default_factory=HierarchySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
