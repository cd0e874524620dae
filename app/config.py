from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Gmail OAuth settings (required)
    GOOGLE_CLIENT_ID: str
    GOOGLE_CLIENT_SECRET: str
    GOOGLE_REDIRECT_URI: str

    # Persisted store location (required)
    DATABASE_URL: str

    # Signs session tokens and OAuth state, and derives the token encryption key (required)
    SESSION_SECRET: str

    # =================================================================
    # TOKEN LIFECYCLE
    # =================================================================
    TOKEN_EXPIRY_MARGIN_SECONDS: int = 60
    OAUTH_STATE_TTL_SECONDS: int = 900  # 15 minutes

    # =================================================================
    # SYNC SETTINGS
    # =================================================================
    SYNC_DEFAULT_MAX_RESULTS: int = 100
    SYNC_MAX_RESULTS_LIMIT: int = 500
    SYNC_DEFAULT_LOOKBACK_DAYS: int = 30
    SYNC_FETCH_CONCURRENCY: int = 5
    SYNC_FETCH_TIMEOUT_SECONDS: float = 30.0
    SYNC_WORKER_CONCURRENCY: int = 3
    SYNC_JOB_INTERVAL_MINUTES: int = 30

    # =================================================================
    # DATABASE POOL SETTINGS - Simple and configurable
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def gmail_redirect_uri(self) -> str:
        """Gmail OAuth redirect URI, stripped of stray whitespace."""
        return self.GOOGLE_REDIRECT_URI.strip()

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
