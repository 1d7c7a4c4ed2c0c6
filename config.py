import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    database_url: str = "sqlite:///./shop.db"
    db_timeout_seconds: float = 10.0
    mailersend_api_key: Optional[str] = None
    mailersend_sender: str = "no-reply@jetecommerce.com"
    mailersend_base_url: str = "https://api.mailersend.com/v1"
    log_level: str = "INFO"
    log_json: bool = False
    port: int = 8000


def get_settings() -> Settings:
    """Read settings from the environment, falling back to local defaults."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        db_timeout_seconds=float(os.getenv("DB_TIMEOUT_SECONDS", Settings.db_timeout_seconds)),
        mailersend_api_key=os.getenv("MAILERSEND_API_KEY") or None,
        mailersend_sender=os.getenv("MAILERSEND_SENDER", Settings.mailersend_sender),
        mailersend_base_url=os.getenv("MAILERSEND_BASE_URL", Settings.mailersend_base_url),
        log_level=os.getenv("LOG_LEVEL", Settings.log_level).upper(),
        log_json=os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes"),
        port=int(os.getenv("PORT", Settings.port)),
    )
