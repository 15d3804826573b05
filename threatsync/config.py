"""Application configuration using pydantic-settings for 12-factor app compliance."""

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from threatsync.utils.retry import RetryPolicy

MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    api_prefix: str = Field(default="")
    allowed_hosts: list[str] = Field(default=["localhost", "127.0.0.1"])

    # Redis (indicator store)
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Redis URL for the indicator store"
    )
    redis_max_connections: int = Field(default=20, description="Redis max connections")
    store_max_value_bytes: int = Field(
        default=25 * MIB, description="Per-value size ceiling of the backing store"
    )
    store_chunk_threshold_bytes: int = Field(
        default=20 * MIB, description="Blobs above this size are split into chunks"
    )
    store_max_concurrency: int = Field(
        default=100, description="Parallel operations per store batch"
    )

    # Celery
    celery_broker_url: str = Field(
        default="redis://localhost:6379/1", description="Celery broker URL"
    )
    celery_result_backend: str = Field(
        default="redis://localhost:6379/1", description="Celery result backend URL"
    )
    celery_task_serializer: str = Field(default="json")
    celery_result_serializer: str = Field(default="json")
    scheduler_check_minutes: int = Field(
        default=60, description="How often the beat schedule asks whether an update is due"
    )

    # Cloudflare Gateway lists
    cloudflare_api_token: str = Field(default="")
    cloudflare_account_id: str = Field(default="")
    cloudflare_api_base: str = Field(default="https://api.cloudflare.com/client/v4")

    # Feed
    feed_name: str = Field(default="ThreatSync Feed")
    feed_description: str = Field(
        default="Aggregated malicious IPs and domains from public threat feeds"
    )
    feed_update_interval_hours: float = Field(default=24)
    indicator_ttl_hours: float = Field(default=24)
    list_type: str = Field(default="IP", description="Gateway list type (IP, DOMAIN)")
    max_items_per_list: int = Field(default=4500)
    max_items_per_batch: int = Field(default=1000)
    batch_delay_seconds: float = Field(default=1.0)
    list_creation_delay_seconds: float = Field(default=2.0)
    partition_name_prefix: str = Field(
        default="ThreatSync", description="Reserved prefix of partition list names"
    )

    # Downstream retry policy
    retry_max_attempts: int = Field(default=5)
    retry_base_delay: float = Field(default=1.0)
    retry_multiplier: float = Field(default=2.0)
    retry_max_delay: float = Field(default=60.0)

    # Sources
    threat_sources_config: str = Field(
        default="", description="JSON list of threat sources (overrides the YAML file)"
    )
    sources_config_path: str = Field(
        default="configs/sources.yaml", description="YAML file with threat sources"
    )

    # Network Configuration
    http_timeout: int = Field(default=30)
    user_agent: str = Field(default="ThreatSync/1.0 (+https://github.com/threatsync)")

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v: Any) -> list[str]:
        """Parse allowed hosts from string or list."""
        if isinstance(v, str):
            v = v.strip('[]"')
            return [host.strip(" \"'") for host in v.split(",") if host.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("list_type")
    @classmethod
    def validate_list_type(cls, v: str) -> str:
        """Validate Gateway list type."""
        if v.upper() not in ("IP", "DOMAIN"):
            raise ValueError("List type must be IP or DOMAIN")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def retry_policy(self) -> RetryPolicy:
        """Retry policy shared by every downstream call."""
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            multiplier=self.retry_multiplier,
            max_delay=self.retry_max_delay,
        )

    @property
    def update_frequency(self) -> str:
        """Human readable update cadence stored in feed metadata."""
        hours = self.feed_update_interval_hours
        return f"{int(hours)}h" if float(hours).is_integer() else f"{hours}h"

    @property
    def celery_config(self) -> dict[str, Any]:
        """Get Celery configuration dictionary."""
        return {
            "broker_url": self.celery_broker_url,
            "result_backend": self.celery_result_backend,
            "task_serializer": self.celery_task_serializer,
            "result_serializer": self.celery_result_serializer,
            "accept_content": ["json"],
            "timezone": "UTC",
            "enable_utc": True,
            "task_track_started": True,
            "task_time_limit": 3600,  # large multi-list publishes are slow
            "task_soft_time_limit": 3300,
            "worker_prefetch_multiplier": 1,
            "task_acks_late": True,
            "worker_max_tasks_per_child": 100,
        }


# Global settings instance
settings = Settings()
