"""
Site Analytics Rollup Service
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class RollupMode(str, Enum):
    """How a fold is written onto an existing (site, date) rollup row"""
    MERGE = "merge"
    REPLACE = "replace"


class DatabaseSettings(BaseSettings):
    """Event store database configuration"""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: Optional[str] = Field(default=None, description="Full SQLAlchemy URL (overrides host/port)")
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="site_analytics", description="Database name")
    user: str = Field(default="analytics", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    create_tables: bool = Field(default=False, description="Create missing tables on startup")

    @property
    def async_url(self) -> str:
        """Async database URL, asyncpg unless overridden"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.name}"


class RedisSettings(BaseSettings):
    """Redis stats cache configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = Field(default=False, description="Cache stats responses in Redis")
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=50, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    stats_ttl_seconds: int = Field(default=300, description="TTL of cached stats responses")
    url: Optional[str] = Field(default=None, description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class AggregationSettings(BaseSettings):
    """Batch aggregator configuration"""

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_")

    batch_size: int = Field(default=1000, ge=1, description="Max queue entries drained per pass")
    rollup_mode: RollupMode = Field(default=RollupMode.MERGE, description="merge or replace existing rollups")
    use_claims: bool = Field(default=True, description="Claim entries atomically before folding")
    claim_lease_seconds: int = Field(default=300, ge=1, description="Lease after which a claim expires")
    top_paths_limit: int = Field(default=10, ge=1, description="Paths returned by the merged stats query")
    max_passes: int = Field(default=20, ge=1, description="Max passes per scheduled drain")
    schedule_interval_seconds: int = Field(default=60, ge=1, description="Scheduled drain interval")


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")

    enable_metrics: bool = Field(default=True, alias="ENABLE_METRICS", description="Expose /metrics")


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
    app_name: str = Field(default="site-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    # CORS
    cors_origins: List[str] = Field(default=["*"], alias="CORS_ORIGINS", description="Allowed CORS origins")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
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
