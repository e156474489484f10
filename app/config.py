from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized runtime configuration loaded from environment variables.
    """

    SUPABASE_URL: str
    SUPABASE_SERVICE_ROLE_KEY: str
    SUPABASE_ANON_KEY: str | None = None
    API_PREFIX: str = "/api"
    APP_NAME: str = "AutoTrackr API"
    ALLOWED_ORIGINS: list[str] = ["*"]
    SITE_URL: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Supabase requests
    BACKEND_REQUEST_TIMEOUT_SECONDS: float = 10.0
    BACKEND_MAX_RETRIES: int = 2
    BACKEND_RETRY_BACKOFF_SECONDS: float = 0.5

    # Session initialization
    AUTH_INIT_TIMEOUT_SECONDS: float = 10.0
    AUTH_INIT_MAX_RETRIES: int = 3
    AUTH_RETRY_BACKOFF_SECONDS: float = 1.0
    PROFILE_CACHE_PATH: str = ".cache/profile_cache.json"

    # FIPE reference data
    FIPE_BASE_URL: str = "https://parallelum.com.br/fipe/api/v1"
    FIPE_TIMEOUT_SECONDS: float = 10.0

    DASHBOARD_UPCOMING_LIMIT: int = 5

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
