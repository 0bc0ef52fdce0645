"""
Application configuration using Pydantic Settings.
"""

from typing import List
from pydantic import PostgresDsn, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="allow"
    )

    # Environment
    ENVIRONMENT: str = "development"
    SECRET_KEY: str
    API_V1_PREFIX: str = "/api/v1"

    # Database
    DATABASE_URL: PostgresDsn

    # Redis
    REDIS_URL: RedisDsn

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Auth
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    AUTH_COOKIE_NAME: str = "token"
    AUTH_COOKIE_SECURE: bool = False

    # Issues
    MAX_MEDIA_FILES: int = 5
    MEDIA_MAX_BYTES: int = 25 * 1024 * 1024
    MEDIA_FOLDER: str = "issues"
    ISSUE_PAGE_SIZE_DEFAULT: int = 10
    ISSUE_PAGE_SIZE_MAX: int = 100

    # Rewards
    REWARD_COINS_PER_ACKNOWLEDGMENT: int = 1
    REWARD_DESCRIPTION: str = "Reward for reporting an acknowledged civic issue"

    # Notifications
    NOTIFICATION_FEED_LIMIT: int = 50
    REALTIME_REDIS_FANOUT: bool = False
    REALTIME_REDIS_CHANNEL: str = "civictrack:realtime"
    REALTIME_RECONNECT_SECONDS: float = 5.0

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_DEFAULT: str = "100/minute"
    ISSUE_CREATE_RATE_LIMIT: str = "10/minute"

    # Observability
    LOG_LEVEL: str = "INFO"

    # AWS / media store
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    S3_BUCKET_NAME: str = ""
    MEDIA_PUBLIC_BASE_URL: str = ""

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):
        if isinstance(v, str):
            return [i.strip() for i in v.split(",")]
        return v


settings = Settings()
