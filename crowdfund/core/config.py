from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal, Optional
import os
from pathlib import Path


class Settings(BaseSettings):
    # App
    app_name: str = "Crowdfund API"
    service_name: str = "crowdfund-backend"
    debug: bool = False
    log_level: str = "INFO"
    port: int = 8000

    # Database
    database_url: str = "sqlite:///./crowdfund.db"

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    default_currency: str = "MYR"

    # Cloudinary
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_root_folder: str = "fundizen"
    max_upload_bytes: int = 10 * 1024 * 1024

    # Identity tokens
    auth_jwt_secret: str = "change-me"
    auth_jwt_algorithm: str = "HS256"
    auth_jwt_audience: Optional[str] = None
    access_token_expire_seconds: int = 3600
    bcrypt_rounds: int = 12

    # "open" lets every request through, "role" enforces creator/admin checks
    authorization_mode: Literal["open", "role"] = "open"

    # Donation rules
    min_donation_amount: float = 1.0
    max_donation_amount: float = 100000.0
    large_donation_threshold: float = 10000.0
    max_donations_per_ip: int = 5
    ip_window_minutes: int = 60

    # Maintenance
    scheduler_enabled: bool = True
    stale_donation_hours: int = 24
    stale_sweep_interval_minutes: int = 60

    # Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://localhost:4318/v1/traces"

    model_config = SettingsConfigDict(
        env_file=os.path.join(Path(__file__).parent.parent.parent, ".env.local"),
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    return Settings()
