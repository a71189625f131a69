"""
Configuration settings for the exam engine.
"""

import os
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parents[2] / ".env")


class Settings:
    """Application settings loaded from environment."""

    # Database
    MONGODB_URL: str = os.environ.get("MONGODB_URI", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.environ.get("DATABASE_NAME", "examgate")

    # Repository backend: "mongo" or "memory"
    REPOSITORY_BACKEND: str = os.environ.get("REPOSITORY_BACKEND", "mongo").lower()

    # Exam scheduling
    EXAM_TIMEZONE: str = os.environ.get("EXAM_TIMEZONE", "UTC")
    FLAGSHIP_TITLE_KEYWORD: str = os.environ.get("FLAGSHIP_TITLE_KEYWORD", "tega")

    # Server
    PORT: int = int(os.environ.get("PORT", 8001))
    HOST: str = os.environ.get("HOST", "0.0.0.0")
    DEBUG: bool = os.environ.get("DEBUG", "False").lower() == "true"
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.environ.get("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    @property
    def timezone(self) -> ZoneInfo:
        """Timezone used to combine exam dates with slot times."""
        return ZoneInfo(self.EXAM_TIMEZONE)

    def validate(self):
        """Validate critical settings."""
        if self.REPOSITORY_BACKEND not in ("mongo", "memory"):
            raise ValueError(
                f"REPOSITORY_BACKEND must be 'mongo' or 'memory', got '{self.REPOSITORY_BACKEND}'"
            )
        if self.REPOSITORY_BACKEND == "mongo" and not self.MONGODB_URL:
            raise ValueError("MONGODB_URI environment variable not set")
        # Raises ZoneInfoNotFoundError for unknown zones
        self.timezone
        return True


# Global settings instance
settings = Settings()
