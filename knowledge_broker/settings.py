import os
from datetime import timedelta
from enum import Enum

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field


class ChannelMode(str, Enum):
    """Which upstream channels a query may use."""

    PRIMARY_ONLY = "primary_only"
    PRIMARY_THEN_SECONDARY = "primary_then_secondary"


class CircuitBreakerConfig(BaseModel):
    """Configuration for circuit breaker."""

    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1)  # Failures before opening
    recovery_timeout: timedelta = timedelta(seconds=60)  # Time before half-open
    monitoring_period: timedelta = timedelta(seconds=10)  # Max gap inside a streak


class RetryConfig(BaseModel):
    """Exponential backoff parameters. Delays are in seconds."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)


class BrokerConfig(BaseModel):
    """Everything the broker needs, built once at startup."""

    model_config = ConfigDict(frozen=True)

    cache_max_entries: int = Field(default=1000, ge=1)
    cache_ttl: timedelta = timedelta(days=30)
    library_id_ttl: timedelta = timedelta(days=7)
    enable_cache: bool = True
    cache_file: str | None = "./cache/knowledge-cache.json"
    library_id_cache_file: str | None = None
    cache_flush_every: int = Field(default=10, ge=1)
    cache_flush_interval_minutes: int = Field(default=5, ge=1)

    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    fallback_enabled: bool = True
    channel_mode: ChannelMode = ChannelMode.PRIMARY_THEN_SECONDARY
    request_timeout: float = Field(default=5.0, gt=0)  # Per channel call
    query_timeout: float | None = Field(default=30.0, gt=0)  # Per waiting caller


class Settings(BaseModel):
    # Upstream endpoints
    base_url: str = Field(default="https://context7.com/api/v1", alias="KNOWLEDGE_BASE_URL")
    rpc_url: str = Field(default="https://mcp.context7.com/mcp", alias="KNOWLEDGE_RPC_URL")
    api_key: str = Field(default="", alias="KNOWLEDGE_API_KEY")
    request_timeout: float = Field(default=5.0, alias="KNOWLEDGE_REQUEST_TIMEOUT")
    query_timeout: float = Field(default=30.0, alias="KNOWLEDGE_QUERY_TIMEOUT")
    channel_mode: ChannelMode = Field(
        default=ChannelMode.PRIMARY_THEN_SECONDARY, alias="KNOWLEDGE_CHANNEL_MODE"
    )

    # Cache Configuration
    cache_max_entries: int = Field(default=1000, alias="KNOWLEDGE_CACHE_MAX_ENTRIES")
    cache_ttl_hours: float = Field(default=30 * 24, alias="KNOWLEDGE_CACHE_TTL_HOURS")
    library_id_ttl_hours: float = Field(
        default=7 * 24, alias="KNOWLEDGE_LIBRARY_ID_TTL_HOURS"
    )
    cache_file: str = Field(
        default="./cache/knowledge-cache.json", alias="KNOWLEDGE_CACHE_FILE"
    )
    cache_flush_every: int = Field(default=10, alias="KNOWLEDGE_CACHE_FLUSH_EVERY")
    cache_flush_interval_minutes: int = Field(
        default=5, alias="KNOWLEDGE_CACHE_FLUSH_INTERVAL"
    )

    # Circuit Breaker Configuration
    cb_failure_threshold: int = Field(default=5, alias="KNOWLEDGE_CB_FAILURE_THRESHOLD")
    cb_recovery_timeout: float = Field(default=60.0, alias="KNOWLEDGE_CB_RECOVERY_TIMEOUT")
    cb_monitoring_period: float = Field(
        default=10.0, alias="KNOWLEDGE_CB_MONITORING_PERIOD"
    )

    # Retry Configuration
    max_retries: int = Field(default=3, alias="KNOWLEDGE_MAX_RETRIES")
    retry_base_delay: float = Field(default=1.0, alias="KNOWLEDGE_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=10.0, alias="KNOWLEDGE_RETRY_MAX_DELAY")
    retry_multiplier: float = Field(default=2.0, alias="KNOWLEDGE_RETRY_MULTIPLIER")

    fallback_enabled: bool = Field(default=True, alias="KNOWLEDGE_FALLBACK_ENABLED")

    def to_broker_config(self) -> BrokerConfig:
        """Build the immutable broker configuration from these settings."""
        return BrokerConfig(
            cache_max_entries=self.cache_max_entries,
            cache_ttl=timedelta(hours=self.cache_ttl_hours),
            library_id_ttl=timedelta(hours=self.library_id_ttl_hours),
            cache_file=self.cache_file or None,
            cache_flush_every=self.cache_flush_every,
            cache_flush_interval_minutes=self.cache_flush_interval_minutes,
            circuit_breaker=CircuitBreakerConfig(
                failure_threshold=self.cb_failure_threshold,
                recovery_timeout=timedelta(seconds=self.cb_recovery_timeout),
                monitoring_period=timedelta(seconds=self.cb_monitoring_period),
            ),
            retry=RetryConfig(
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
                backoff_multiplier=self.retry_multiplier,
            ),
            fallback_enabled=self.fallback_enabled,
            channel_mode=self.channel_mode,
            request_timeout=self.request_timeout,
            query_timeout=self.query_timeout,
        )


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """Read settings from the environment (and .env) once."""
    if env is None:
        load_dotenv()
        env = dict(os.environ)
    return Settings.model_validate(env)
