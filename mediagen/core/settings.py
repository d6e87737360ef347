"""
Application settings and configuration management.
"""
from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str

    # JWT Configuration (issued by the external auth provider)
    jwt_secret: str
    jwt_algorithm: str = "HS256"

    # Redis Configuration (Celery broker / result backend)
    redis_url: str = "redis://localhost:6379"

    # Rate Limiting
    enable_rate_limiting: bool = True
    rate_limit_storage_uri: str = "memory://"

    # Application Settings
    app_version: str = "1.0.0"
    environment: str = "development"
    public_app_url: str = "http://localhost:3000"

    # CORS Settings
    allowed_origins: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    # Monitoring & Observability
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.1
    enable_metrics: bool = True

    # PiAPI / GoAPI task API (Suno, Diffrhythm, image models)
    piapi_api_key: str = ""
    piapi_task_url: str = "https://api.piapi.ai/api/v1/task"
    diffrhythm_api_key: str = ""
    diffrhythm_task_url: str = "https://api.goapi.ai/api/v1/task"

    # OpenAI video API
    openai_api_key: str = ""
    openai_video_url: str = "https://api.openai.com/v1/videos"
    openai_video_model: str = "sora-2"

    # Provider HTTP behaviour
    provider_timeout_seconds: int = 30
    provider_poll_timeout_seconds: int = 10

    # Provider webhook authentication
    provider_webhook_secret: str = ""

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Pricing (credits)
    diffrhythm_base_credits: int = 15
    diffrhythm_credits_per_pack: int = 4
    suno_base_credits: int = 24
    suno_credits_per_pack: int = 5
    image_generation_credits: int = 10
    video_generation_credits: int = 40

    # Settlement
    settlement_debit_policy: str = "clamp"  # "clamp" or "strict"

    # Reconciliation sweep
    reconcile_window_hours: int = 24
    reconcile_interval_seconds: int = 120
    reconcile_batch_size: int = 50

    # Submission queue
    submission_queue_size: int = 100
    submission_pacing_seconds: float = 1.0

    @field_validator("allowed_origins")
    def validate_origins(cls, v):
        """Convert comma-separated origins string to list."""
        return [origin.strip() for origin in v.split(",")]

    @field_validator("settlement_debit_policy")
    def validate_debit_policy(cls, v):
        """Only the two ledger policies are accepted."""
        if v not in ("clamp", "strict"):
            raise ValueError("settlement_debit_policy must be 'clamp' or 'strict'")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def provider_webhook_url(self) -> str:
        """Base URL providers call back on task state changes."""
        return f"{self.public_app_url.rstrip('/')}/api/v1/webhooks/providers"

    def validate_production_config(self) -> List[str]:
        """Validate production configuration and return list of issues."""
        issues = []

        if self.is_production:
            if "localhost" in str(self.allowed_origins):
                issues.append("Localhost origins should be removed in production")

            if not self.stripe_webhook_secret:
                issues.append("Stripe webhook secret must be configured in production")

            if not self.provider_webhook_secret:
                issues.append("Provider webhook secret must be configured in production")

            if len(self.jwt_secret) < 32:
                issues.append("JWT secret should be at least 32 characters long")

        return issues

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
