"""Application configuration."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App settings
    app_name: str = "Shopify Smart Pricing API"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./smart_pricing.db"

    # Shopify
    shopify_api_version: str = "2026-01"
    shopify_request_timeout_seconds: float = 30.0
    shopify_min_request_interval_ms: int = 500  # 2 req/sec per store
    shopify_webhook_secret: str = ""

    # Default pricing rules for newly created configs
    default_increment_percent: float = 5.0
    default_period_hours: int = 24
    default_revenue_drop_threshold_percent: float = 1.0
    default_wait_hours_after_revert: int = 24
    default_max_increase_percent: float = 100.0

    # One-time bump applied when smart pricing is switched on
    enable_bump_percent: float = 5.0

    # Pause after a price was edited outside the app
    manual_edit_cooldown_hours: int = 48

    # Scheduler
    scheduler_enabled: bool = True
    pricing_run_hour_utc: int = 2

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
