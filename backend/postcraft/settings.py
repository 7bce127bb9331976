from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    app_name: str = "postcraft"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "POSTCRAFT_ENVIRONMENT"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/postcraft",
        validation_alias=AliasChoices("DATABASE_URL", "POSTCRAFT_DATABASE_URL"),
    )
    db_echo: bool = Field(default=False, validation_alias=AliasChoices("DB_ECHO", "POSTCRAFT_DB_ECHO"))
    db_pool_size: int = Field(default=10, validation_alias=AliasChoices("DB_POOL_SIZE", "POSTCRAFT_DB_POOL_SIZE"))
    db_max_overflow: int = Field(default=20, validation_alias=AliasChoices("DB_MAX_OVERFLOW", "POSTCRAFT_DB_MAX_OVERFLOW"))
    redis_url: str = Field(default="redis://redis:6379/0", validation_alias=AliasChoices("REDIS_URL", "POSTCRAFT_REDIS_URL"))
    encryption_key: str = Field(
        default="postcraft-local-development-key",
        validation_alias=AliasChoices("ENCRYPTION_KEY", "POSTCRAFT_ENCRYPTION_KEY"),
    )

    # AI providers
    primary_ai_provider: str = Field(default="gemini", validation_alias=AliasChoices("PRIMARY_AI_PROVIDER", "POSTCRAFT_PRIMARY_AI_PROVIDER"))
    secondary_ai_provider: str = Field(default="openai", validation_alias=AliasChoices("SECONDARY_AI_PROVIDER", "POSTCRAFT_SECONDARY_AI_PROVIDER"))
    gemini_model: str = Field(default="gemini-pro", validation_alias=AliasChoices("GEMINI_MODEL", "POSTCRAFT_GEMINI_MODEL"))
    openai_model: str = Field(default="gpt-4o-mini", validation_alias=AliasChoices("OPENAI_MODEL", "POSTCRAFT_OPENAI_MODEL"))
    ai_timeout_sec: int = Field(default=60, validation_alias=AliasChoices("AI_TIMEOUT_SEC", "POSTCRAFT_AI_TIMEOUT_SEC"))

    # Research sources
    serpapi_key: str | None = Field(default=None, validation_alias=AliasChoices("SERPAPI_KEY", "POSTCRAFT_SERPAPI_KEY"))
    reddit_user_agent: str = Field(
        default="postcraft-research/1.0",
        validation_alias=AliasChoices("REDDIT_USER_AGENT", "POSTCRAFT_REDDIT_USER_AGENT"),
    )
    research_timeout_sec: int = Field(default=20, validation_alias=AliasChoices("RESEARCH_TIMEOUT_SEC", "POSTCRAFT_RESEARCH_TIMEOUT_SEC"))
    research_cache_ttl_sec: int = Field(default=3600, validation_alias=AliasChoices("RESEARCH_CACHE_TTL_SEC", "POSTCRAFT_RESEARCH_CACHE_TTL_SEC"))
    research_cache_max_size: int = Field(default=256, validation_alias=AliasChoices("RESEARCH_CACHE_MAX_SIZE", "POSTCRAFT_RESEARCH_CACHE_MAX_SIZE"))

    # Publishing
    max_active_publish_jobs_per_user: int = Field(
        default=10,
        validation_alias=AliasChoices("MAX_ACTIVE_PUBLISH_JOBS_PER_USER", "POSTCRAFT_MAX_ACTIVE_PUBLISH_JOBS_PER_USER"),
    )
    publish_timeout_sec: int = Field(default=60, validation_alias=AliasChoices("PUBLISH_TIMEOUT_SEC", "POSTCRAFT_PUBLISH_TIMEOUT_SEC"))

    # Media generation
    media_dir: str = Field(default="generated-audio", validation_alias=AliasChoices("MEDIA_DIR", "POSTCRAFT_MEDIA_DIR"))
    media_poll_interval_sec: float = Field(default=10, validation_alias=AliasChoices("MEDIA_POLL_INTERVAL_SEC", "POSTCRAFT_MEDIA_POLL_INTERVAL_SEC"))
    media_poll_max_attempts: int = Field(default=60, validation_alias=AliasChoices("MEDIA_POLL_MAX_ATTEMPTS", "POSTCRAFT_MEDIA_POLL_MAX_ATTEMPTS"))

    # Background execution
    scheduler_enabled: bool = Field(default=True, validation_alias=AliasChoices("SCHEDULER_ENABLED", "POSTCRAFT_SCHEDULER_ENABLED"))
    publish_sweep_interval_sec: int = Field(
        default=60,
        validation_alias=AliasChoices("PUBLISH_SWEEP_INTERVAL_SEC", "POSTCRAFT_PUBLISH_SWEEP_INTERVAL_SEC"),
    )
    celery_enabled: bool = Field(default=False, validation_alias=AliasChoices("CELERY_ENABLED", "POSTCRAFT_CELERY_ENABLED"))
    task_history_size: int = Field(default=500, validation_alias=AliasChoices("TASK_HISTORY_SIZE", "POSTCRAFT_TASK_HISTORY_SIZE"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url

    @property
    def is_postgres(self) -> bool:
        return self.async_database_url.startswith("postgresql")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
