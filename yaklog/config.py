from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3100

    # Storage - SQLite file, parent directory is created on startup
    YAKLOG_DB_PATH: str = "data/yaklog.db"

    # Comma-separated shared-secret tokens accepted as Bearer or X-API-Key
    YAKLOG_API_KEYS: str = ""

    # "*" or comma-separated list of allowed origins
    CORS_ORIGIN: str = "*"

    MAX_BODY_BYTES: int = 1_000_000

    # "production" switches logging to JSON
    YAKLOG_ENV: str = "development"

    LOG_LEVEL: str = "INFO"

    @property
    def api_keys(self) -> frozenset[str]:
        """Parsed allow-set of API keys. Blank entries are dropped."""
        return frozenset(
            key.strip() for key in self.YAKLOG_API_KEYS.split(",") if key.strip()
        )

    @property
    def cors_origins(self) -> list[str]:
        if self.CORS_ORIGIN.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGIN.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.YAKLOG_ENV.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
