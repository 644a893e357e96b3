"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"
    allowed_origins: str = ""  # Comma-separated CORS origins (auto-includes localhost in dev)

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Tenancy - partners live at {subdomain}.{platform_base_domain} or on a custom domain
    platform_base_domain: str = ""

    # Twilio Verify (phone OTP)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_verify_service_sid: str = ""

    # OTP sub-flow
    otp_code_length: int = 6
    otp_resend_cooldown_seconds: int = 30
    otp_session_ttl_seconds: int = 600
    otp_send_lock_seconds: int = 15

    # Funnel sessions
    funnel_session_ttl_seconds: int = 86400

    # Encryption (Fernet key for partner SMTP settings and CRM API keys)
    encryption_key: str = ""

    # Partner SMTP
    smtp_timeout_seconds: int = 15

    # Object storage for roof-mapping images (Supabase Storage)
    storage_url: str = ""
    storage_service_key: str = ""
    roof_image_bucket: str = "roof-mappings"

    # Sentry
    sentry_dsn: str = ""

    # Background side effects still running at shutdown get this long to finish
    background_drain_timeout_seconds: float = 10.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
