import warnings
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ── Passwords that must never reach production ──
_INSECURE_PASSWORDS = {
    "",
    "postgres",
    "change_this",
}


class Settings(BaseSettings):
    APP_NAME: str = "featurerev"
    APP_ENV: str = "development"

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "featurerev"
    SQLALCHEMY_DATABASE_URI: Optional[str] = None   # explicit URL wins over POSTGRES_*
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 1800                      # 30 min
    DB_ECHO: bool = False
    SLOW_QUERY_THRESHOLD_MS: int = 500

    # Redis (SDK payload cache)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    PAYLOAD_CACHE_DB: int = 1
    PAYLOAD_CACHE_PREFIX: str = "sdk-payload"

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    SCHEDULED_UPDATE_INTERVAL_SECONDS: int = 60

    # Safe rollouts
    SAFE_ROLLOUT_SNAPSHOT_INTERVAL_HOURS: float = 6.0

    # Third-party experimentation sync
    THIRD_PARTY_SYNC_URL: str = ""
    THIRD_PARTY_SYNC_TOKEN: str = ""
    THIRD_PARTY_SYNC_TIMEOUT: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @model_validator(mode="after")
    def _validate_production_security(self) -> "Settings":
        """Block startup if the database is left on default credentials outside development."""
        if self.APP_ENV in ("production", "staging"):
            if self.SQLALCHEMY_DATABASE_URI is None and self.POSTGRES_PASSWORD in _INSECURE_PASSWORDS:
                raise ValueError(
                    "POSTGRES_PASSWORD is set to an insecure default. "
                    "Set a strong password in .env or environment."
                )
            if self.THIRD_PARTY_SYNC_URL and not self.THIRD_PARTY_SYNC_TOKEN:
                warnings.warn(
                    "THIRD_PARTY_SYNC_URL is configured without THIRD_PARTY_SYNC_TOKEN.",
                    UserWarning,
                    stacklevel=2,
                )
        return self

    @property
    def database_url(self) -> str:
        if self.SQLALCHEMY_DATABASE_URI:
            return self.SQLALCHEMY_DATABASE_URI
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"
        )

    @property
    def payload_cache_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.PAYLOAD_CACHE_DB}"

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_staging(self) -> bool:
        return self.APP_ENV == "staging"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

settings = Settings()
