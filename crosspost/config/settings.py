"""
Centralized Configuration Management

Provides type-safe configuration with environment variable validation.
All configuration should flow through this module for consistency.

Usage:
    from crosspost.config.settings import settings

    chunk_size = settings.TWITTER_CHUNK_SIZE_BYTES
    timeout = settings.HTTP_TIMEOUT_SECONDS
"""
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine Settings

    All settings are loaded from environment variables.
    Default values are provided for development.
    """

    # ========================================================================
    # ENVIRONMENT
    # ========================================================================
    ENVIRONMENT: str = Field(default="development", description="Environment: development, staging, production")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")
    LOG_FILE: Optional[str] = Field(default=None, description="Optional rotating log file path")

    # ========================================================================
    # STORAGE
    # ========================================================================
    DATABASE_URL: str = Field(
        default="sqlite:///./crosspost.db",
        description="Database connection URL for the SQLAlchemy credential store"
    )
    ENCRYPTION_KEY: Optional[str] = Field(
        default=None,
        description="Fernet key used to encrypt stored tokens"
    )

    # ========================================================================
    # PUBLISHING
    # ========================================================================
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, description="Timeout for ordinary API calls")
    UPLOAD_TIMEOUT_SECONDS: float = Field(default=120.0, description="Timeout for media byte uploads")
    MAX_CONCURRENT_PUBLISHES: int = Field(default=5, description="Accounts published to in parallel")
    PUBLISH_TIMEOUT_SECONDS: Optional[float] = Field(
        default=600.0,
        description="Default per-account deadline for a publish batch"
    )
    TOKEN_REFRESH_BUFFER_SECONDS: int = Field(
        default=300,
        description="Refresh tokens this many seconds before they expire"
    )

    # ========================================================================
    # TWITTER / X
    # ========================================================================
    TWITTER_API_BASE: str = Field(default="https://api.twitter.com/2")
    TWITTER_UPLOAD_URL: str = Field(default="https://upload.twitter.com/1.1/media/upload.json")
    TWITTER_TOKEN_URL: str = Field(default="https://api.twitter.com/2/oauth2/token")
    TWITTER_CLIENT_ID: Optional[str] = Field(default=None, description="OAuth 2.0 client id")
    TWITTER_CLIENT_SECRET: Optional[str] = Field(default=None, description="OAuth 2.0 client secret")
    TWITTER_API_KEY: Optional[str] = Field(default=None, description="OAuth 1.0a consumer key")
    TWITTER_API_SECRET: Optional[str] = Field(default=None, description="OAuth 1.0a consumer secret")
    TWITTER_CHUNK_SIZE_BYTES: int = Field(default=5 * 1024 * 1024, description="Chunk size for APPEND")
    TWITTER_STATUS_MAX_ATTEMPTS: int = Field(default=30)
    TWITTER_STATUS_DEFAULT_WAIT_SECONDS: float = Field(default=5.0)

    # ========================================================================
    # LINKEDIN
    # ========================================================================
    LINKEDIN_API_BASE: str = Field(default="https://api.linkedin.com/v2")
    LINKEDIN_TOKEN_URL: str = Field(default="https://www.linkedin.com/oauth/v2/accessToken")
    LINKEDIN_CLIENT_ID: Optional[str] = Field(default=None)
    LINKEDIN_CLIENT_SECRET: Optional[str] = Field(default=None)

    # ========================================================================
    # INSTAGRAM
    # ========================================================================
    INSTAGRAM_API_BASE: str = Field(default="https://graph.instagram.com")
    INSTAGRAM_REFRESH_URL: str = Field(default="https://graph.instagram.com/refresh_access_token")
    INSTAGRAM_POLL_INTERVAL_SECONDS: float = Field(default=10.0)
    INSTAGRAM_POLL_MAX_ATTEMPTS: int = Field(default=12)

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "test"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v

    @field_validator("MAX_CONCURRENT_PUBLISHES", "TWITTER_CHUNK_SIZE_BYTES")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be positive")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Allow extra fields from .env file
    )


# Global settings instance
settings = Settings()


# ========================================================================
# HELPER FUNCTIONS
# ========================================================================

def get_settings() -> Settings:
    """
    Get settings instance (for dependency injection)

    Usage:
        service = PublishingService(store, settings=get_settings())
    """
    return settings
