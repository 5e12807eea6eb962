"""
API configuration and settings management.
"""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration."""

    # Database
    DB_PATH: str = os.getenv("MONITOR_DB", "./data/sitemonitor.db")
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")

    # API settings
    API_TITLE: str = os.getenv("API_TITLE", "Site Monitor API")
    API_VERSION: str = os.getenv("API_VERSION", "1.0.0")
    API_DESCRIPTION: str = "Change monitor for classifieds result pages"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    # Browser and scheduler
    HEADLESS: bool = _flag("HEADLESS", "true")
    SCHEDULER_ENABLED: bool = _flag("SCHEDULER_ENABLED", "true")
    SCHEDULER_TICK_SECONDS: float = float(os.getenv("SCHEDULER_TICK_SECONDS", "1.0"))
    DEFAULT_SCHEDULE: str = os.getenv("DEFAULT_SCHEDULE", "*/10 * * * *")
    SCREENSHOTS: bool = _flag("SCREENSHOTS", "false")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[str] = os.getenv("LOG_FILE") or None

    @classmethod
    def validate(cls) -> None:
        """Validate configuration on startup."""
        os.makedirs(cls.DATA_DIR, exist_ok=True)
        db_dir = os.path.dirname(cls.DB_PATH)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    @classmethod
    def screenshot_dir(cls) -> Optional[str]:
        return cls.DATA_DIR if cls.SCREENSHOTS else None


# Global config instance
config = Config()
