from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Callbook API"
    app_env: str = "local"
    app_debug: bool = True
    api_port: int = 8000
    database_url: str = "sqlite+pysqlite:///./callbook.db"
    jwt_secret: str = "replace-me"
    jwt_algorithm: str = "HS256"
    report_timezone: str = "UTC"
    default_trend_days: int = 7
    default_telecaller_stats_days: int = 30
    default_connected_calls_limit: int = 10
    user_stats_window_days: int = 7
    recent_activity_limit: int = 5
    rate_limit_disabled: bool = False
    rate_limit_mutations_per_minute: int = 60
    metrics_enabled: bool = False
    otel_enabled: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
