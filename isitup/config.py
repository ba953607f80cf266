from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Storage
    db_path: str = "data/isitup.db"
    sites_file: str = "sites.yaml"  # seed registry, see `isitup seed`

    # Scheduler (cron expressions, UTC)
    scheduler_enabled: bool = True
    check_interval_cron: str = "*/5 * * * *"
    cleanup_cron: str = "0 3 * * *"
    initial_delay_ms: int = 10_000
    retention_days: int = 30
    check_concurrency: int = 4  # sites probed in parallel within one cycle

    # Probe
    http_timeout_s: float = 30.0
    tls_timeout_s: float = 10.0
    dns_timeout_s: float = 10.0
    user_agent: str = "IsItUp/1.0 (Uptime Monitor)"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"

    # Notifications: fallback webhook when the site owner has none configured
    discord_webhook_url: str = ""


settings = Settings()
