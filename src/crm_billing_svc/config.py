from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Stripe. The secret key is required: the service refuses to start without it.
    stripe_secret_key: str
    # Checked lazily by the webhook route so the rest of the API can run without it
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance: int = 300

    # Default redirect targets for checkout and portal sessions
    frontend_url: str = "http://localhost:5173"

    database_url: str = "sqlite:///./billing.db"

    # Bearer tokens issued by the hosted auth provider
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = None

    log_level: str = "INFO"
    debug: bool = False


@lru_cache()
def get_settings() -> Settings:
    """
    Build the settings once per process.

    Raises a pydantic ``ValidationError`` when a required value is missing.
    """
    return Settings()
