"""
Sales Data Warehouse
Centralized Configuration Management

Pydantic settings for the warehouse refresh pipeline. Every section reads its
own environment prefix and the aggregate ``Settings`` object is cached by
``get_settings()``.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database backing the table store when ``store_backend=database``"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="data_warehouse", description="Database name")
    user: str = Field(default="dwh", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, description="Full SQLAlchemy URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL - uses POSTGRES_URL if set, otherwise asyncpg from host/port"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class DataLakeSettings(BaseSettings):
    """Data Lake Storage Configuration"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    lake_path: str = Field(default="./data/lake", description="Root of the parquet table store")
    source_path: str = Field(default="./data/source", description="Directory holding the CRM/ERP CSV feeds")
    compression: str = Field(default="snappy", description="Parquet compression codec")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")


class PipelineSettings(BaseSettings):
    """Refresh pipeline behaviour"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    store_backend: str = Field(default="parquet", description="Table store: parquet or database")
    on_table_error: str = Field(default="abort", description="abort or continue after a failed table")
    customer_attr_id_prefix: str = Field(default="NAS", description="Prefix stripped from ERP customer ids")
    enable_quality_checks: bool = Field(default=True, description="Run validators after each refresh")

    @field_validator("store_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        allowed = ["parquet", "database"]
        if v.lower() not in allowed:
            raise ValueError(f"Store backend must be one of: {allowed}")
        return v.lower()

    @field_validator("on_table_error")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        allowed = ["abort", "continue"]
        if v.lower() not in allowed:
            raise ValueError(f"Error policy must be one of: {allowed}")
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
    )

    app_name: str = Field(default="sales-data-warehouse", description="Application name")
    app_env: str = Field(default="development", description="Environment")
    version: str = Field(default="1.0.0", description="Application version")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)

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


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
