"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    CLAUDE = "claude"
    OLLAMA = "ollama"


class PipelineMode(str, Enum):
    """What happens after the Collector captures changed evidence."""

    PIPELINE = "pipeline"  # chain extractor -> ... -> releaser
    COLLECT_ONLY = "collect_only"  # stop after evidence capture


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    host: str = "localhost"
    port: int = 5432
    user: str = "regtruth"
    password: SecretStr = SecretStr("regtruth_dev_password")
    db: str = "regtruth"

    # Overrides host/port/user/db when set (e.g. sqlite+aiosqlite:///./local.db)
    url: str | None = None

    pool_size: int = 10
    max_overflow: int = 20
    echo: bool = False

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        if self.url:
            return self.url
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis configuration (stage queues and concept locks)."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("regtruth_redis_password")
    db: int = 0

    @property
    def url(self) -> str:
        """Generate Redis connection URL."""
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.db}"


class KafkaSettings(BaseSettings):
    """Kafka event streaming configuration."""

    model_config = SettingsConfigDict(env_prefix="KAFKA_")

    bootstrap_servers: str = "localhost:9092"
    security_protocol: str = "PLAINTEXT"
    events_enabled: bool = False


class ClaudeSettings(BaseSettings):
    """Anthropic Claude API configuration."""

    model_config = SettingsConfigDict(env_prefix="CLAUDE_")

    api_key: SecretStr = Field(
        default=SecretStr(""),
        alias="ANTHROPIC_API_KEY",
    )
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096


class OllamaSettings(BaseSettings):
    """Ollama local LLM configuration."""

    model_config = SettingsConfigDict(env_prefix="OLLAMA_")

    host: str = "http://localhost:11434"
    model: str = "llama3.3:70b"


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    model_config = SettingsConfigDict(env_prefix="LLM_")

    provider: LLMProvider = LLMProvider.CLAUDE
    temperature: float = 0.0
    max_retries: int = 3
    timeout_seconds: int = 120

    # Provider-specific settings
    claude: ClaudeSettings = Field(default_factory=ClaudeSettings)
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)


class CollectorSettings(BaseSettings):
    """Per-domain politeness and circuit breaker configuration."""

    model_config = SettingsConfigDict(env_prefix="COLLECTOR_")

    request_delay_seconds: float = 2.0
    max_requests_per_minute: int = 20
    max_concurrent_requests: int = 1

    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown_seconds: int = 3600

    fetch_timeout_seconds: float = 30.0
    user_agent: str = "RegTruthBot/1.0 (regulatory-monitoring)"


class QueueSettings(BaseSettings):
    """Stage queue, retry and worker pool configuration."""

    model_config = SettingsConfigDict(env_prefix="QUEUE_")

    key_prefix: str = "regtruth:queue"
    max_attempts: int = 3
    base_retry_delay_seconds: float = 1.0
    max_retry_delay_seconds: float = 30.0
    poll_interval_seconds: float = 1.0

    # Hard timeouts per stage (seconds)
    collector_timeout: float = 60.0
    extractor_timeout: float = 180.0
    composer_timeout: float = 60.0
    reviewer_timeout: float = 60.0
    arbiter_timeout: float = 60.0
    releaser_timeout: float = 120.0

    # Worker pool sizes per stage
    collector_concurrency: int = 4
    extractor_concurrency: int = 2
    composer_concurrency: int = 4
    reviewer_concurrency: int = 4
    arbiter_concurrency: int = 1
    releaser_concurrency: int = 1

    concept_lock_ttl_seconds: int = 120


class SchedulerSettings(BaseSettings):
    """Scheduler/orchestrator configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    mode: PipelineMode = PipelineMode.PIPELINE
    max_sources_per_run: int = 50
    loop_interval_seconds: int = 300
    stale_claim_minutes: int = 30
    registry_file: Path | None = None


class HealthSettings(BaseSettings):
    """Operational health score configuration."""

    model_config = SettingsConfigDict(env_prefix="HEALTH_")

    window_hours: int = 24
    pending_review_ceiling: int = 50
    degraded_below: float = 80.0
    critical_below: float = 60.0


class CORSSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class ServicePorts(BaseSettings):
    """Service port configuration."""

    regulatory_truth: int = Field(default=8010, alias="REGULATORY_TRUTH_PORT")


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO

    # Project paths
    project_root: Path = Field(default_factory=lambda: Path(__file__).parent.parent.parent)

    # Service ports
    ports: ServicePorts = Field(default_factory=ServicePorts)

    # Infrastructure
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    kafka: KafkaSettings = Field(default_factory=KafkaSettings)

    # LLM configuration
    llm: LLMSettings = Field(default_factory=LLMSettings)

    # Pipeline
    collector: CollectorSettings = Field(default_factory=CollectorSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)

    # Security
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
