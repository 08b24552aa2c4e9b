from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FISKALNI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str
    redis_url: str | None = None
    app_env: str = "development"
    cors_allowed_origins: str = "http://localhost:5173"
    sync_batch_window_size: int = 5
    sync_batch_max_errors: int = 10
    sync_batch_max_items: int = 500
    session_ttl_days: int = 30
    tombstone_retention_days: int = 90
    sync_pull_overlap_seconds: int = 120
    queue_name: str = "fiskalni:jobs"
    realtime_channel_prefix: str = "fiskalni:sync"
    rate_limit_sync_per_minute: int = 30
    rate_limit_global_per_minute: int = 300


settings = Settings()
