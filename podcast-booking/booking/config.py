"""
Configuration module for the podcast booking backend.
Loads environment variables and stores application settings.
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when a required credential or setting is missing."""


class Settings:
    """Application settings and configuration."""

    # Base Directory
    BASE_DIR: str = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    # API Keys
    PODSCAN_API_KEY: str = os.getenv("PODSCAN_API_KEY", "")
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    GOOGLE_SERVICE_ACCOUNT_JSON: str = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON", "")

    # Podscan directory API
    PODSCAN_BASE_URL: str = os.getenv("PODSCAN_BASE_URL", "https://podscan.fm/api/v1")
    REQUEST_TIMEOUT: int = 30  # seconds

    # Scoring oracle
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_EMBEDDING_MODEL: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_DIMENSIONS: int = 1536

    # Application Settings
    APP_NAME: str = "Podcast Booking Cache"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"

    # CORS Settings
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",  # Vite default port
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    # Central cache
    CACHE_STALE_DAYS: int = int(os.getenv("CACHE_STALE_DAYS", "7"))
    CACHE_CLEANUP_DAYS: int = int(os.getenv("CACHE_CLEANUP_DAYS", "30"))

    # Bounded-time loops (hosting platform kills invocations at ~60s)
    MAX_RUNTIME_SECONDS: float = float(os.getenv("MAX_RUNTIME_SECONDS", "50"))
    FETCH_BATCH_SIZE: int = 5  # Podscan allows ~120 req/min
    FETCH_CONCURRENT_BATCHES: int = 3
    AI_BATCH_SIZE: int = 10
    AI_CONCURRENT_BATCHES: int = 3

    # Google Sheets layout: Podscan id lives in column E
    SHEET_ID_COLUMN: str = "E"
    OUTREACH_MAX_ROWS: int = 1000

    @classmethod
    def validate(cls) -> bool:
        """
        Validate that required settings are present.

        Returns:
            bool: True if all required settings are valid
        """
        valid = True
        if not cls.PODSCAN_API_KEY:
            logger.warning("PODSCAN_API_KEY not set in environment variables")
            valid = False
        if not cls.GOOGLE_SERVICE_ACCOUNT_JSON:
            logger.warning("GOOGLE_SERVICE_ACCOUNT_JSON not set in environment variables")
            valid = False
        if not cls.OPENAI_API_KEY:
            logger.warning("OPENAI_API_KEY not set - AI fit analysis and embeddings will be skipped")
        return valid

    def require(self, name: str) -> str:
        """Return a credential or raise ConfigurationError if it is empty."""
        value = getattr(self, name, "")
        if not value:
            raise ConfigurationError(f"{name} not configured")
        return value


settings = Settings()
