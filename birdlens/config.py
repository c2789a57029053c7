from __future__ import annotations

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    api_key: str = "test-api-key"

    trusted_proxies: list[str] = Field(
        default_factory=lambda: ["127.0.0.1", "testclient"]
    )
    rate_limit_ip_per_minute: int = Field(30, alias="RATE_LIMIT_IP_PER_MINUTE")
    rate_limit_user_per_minute: int = Field(120, alias="RATE_LIMIT_USER_PER_MINUTE")

    database_url: str = Field("sqlite:////tmp/birdlens_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    redis_url: str = Field("redis://localhost:6379", alias="REDIS_URL")

    max_upload_bytes: int = Field(50 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    openai_model: str = Field("gpt-4o-mini", alias="OPENAI_MODEL")
    openai_audio_model: str = Field(
        "gpt-4o-audio-preview", alias="OPENAI_AUDIO_MODEL"
    )

    s3_bucket: str = "birdlens"
    s3_endpoint: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_public_url: str | None = None

    stripe_secret_key: str | None = Field(None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = Field(None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_price_id: str | None = Field(
        None,
        alias="STRIPE_PRICE_ID",
        description="Recurring Stripe price used for the premium plan",
    )
    premium_price_usd: float = Field(2.99, alias="PREMIUM_PRICE_USD")
    premium_period_days: int = Field(30, alias="PREMIUM_PERIOD_DAYS")

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
    )
