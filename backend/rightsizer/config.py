"""
Application configuration using Pydantic Settings.
All configuration is loaded from environment variables.
"""
from functools import lru_cache
from typing import Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_env: str = Field(default="development", alias="APP_ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./rightsizer.db",
        alias="DATABASE_URL"
    )
    database_url_sync: str = Field(
        default="sqlite:///./rightsizer.db",
        alias="DATABASE_URL_SYNC"
    )

    # Catalog refresh
    catalog_refresh_enabled: bool = Field(default=True, alias="CATALOG_REFRESH_ENABLED")
    catalog_refresh_interval_seconds: int = Field(
        default=120, alias="CATALOG_REFRESH_INTERVAL_SECONDS"
    )
    catalog_refresh_cooldown_seconds: int = Field(
        default=900, alias="CATALOG_REFRESH_COOLDOWN_SECONDS"
    )
    catalog_insert_batch_size: int = Field(default=1000, alias="CATALOG_INSERT_BATCH_SIZE")
    csv_header_skip_lines: int = Field(default=5, alias="CSV_HEADER_SKIP_LINES")
    http_timeout_seconds: float = Field(default=60.0, alias="HTTP_TIMEOUT_SECONDS")

    # Freshness thresholds per catalog, in days
    ec2_instance_freshness_days: int = Field(default=365, alias="EC2_INSTANCE_FRESHNESS_DAYS")
    ebs_volume_freshness_days: int = Field(default=365, alias="EBS_VOLUME_FRESHNESS_DAYS")
    rds_storage_freshness_days: int = Field(default=30, alias="RDS_STORAGE_FRESHNESS_DAYS")

    # Upstream bulk pricing CSVs
    aws_bulk_pricing_base: str = "https://pricing.us-east-1.amazonaws.com"
    ec2_pricing_source: str = Field(
        default="/offers/v1.0/aws/AmazonEC2/current/index.csv",
        alias="EC2_PRICING_SOURCE"
    )
    rds_pricing_source: str = Field(
        default="/offers/v1.0/aws/AmazonRDS/current/index.csv",
        alias="RDS_PRICING_SOURCE"
    )

    # Recommendation engine
    hours_per_month: int = Field(default=730, alias="HOURS_PER_MONTH")
    default_breathing_rooms: Dict[str, float] = Field(
        default={
            "CPUBreathingRoom": 10,
            "MemoryBreathingRoom": 10,
            "NetworkBreathingRoom": 10,
            "IOPSBreathingRoom": 10,
            "ThroughputBreathingRoom": 10,
            "SizeBreathingRoom": 10,
        },
        alias="DEFAULT_BREATHING_ROOMS"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept log levels in any case."""
        return v.upper()

    def source_url(self, path: str) -> str:
        """Resolve a pricing source path against the bulk pricing endpoint."""
        if path.startswith("/offers/"):
            return f"{self.aws_bulk_pricing_base}{path}"
        return path


@lru_cache
def get_settings() -> Settings:
    """Build the settings once per process."""
    return Settings()
