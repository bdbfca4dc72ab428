from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "development"
    log_level: str = "INFO"

    database_url: str = "postgresql+psycopg2://cinetrack:cinetrack@db:5432/cinetrack"
    redis_url: str = "redis://redis:6379/0"
    rate_limit_enabled: bool = True

    # TMDB accepts either a v3 query key or a v4 bearer token
    tmdb_api_key: Optional[str] = None
    tmdb_access_token: Optional[str] = None
    tmdb_base_url: str = "https://api.themoviedb.org/3"
    tmdb_language: str = "ru-RU"
    tmdb_timeout_seconds: float = 5.0
    tmdb_cache_ttl: int = 86400  # 24h
    tmdb_search_cache_ttl: int = 3600

    # Auth
    secret_key: Optional[str] = None
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 30
    invite_expiry_days: int = 7

    app_url: str = "http://localhost:3000"
    cache_clear_secret: str = "dev-secret"

    # Aggregations
    stats_batch_size: int = 10
    stats_batch_pause: float = 0.02

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()
