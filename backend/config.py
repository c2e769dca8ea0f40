"""
Configuration module for the notification service.
Loads environment variables and provides centralized config access.
"""

from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache

# ============================================================
# Centralized Data Paths
# ============================================================
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite document store
SQLITE_DB_PATH = DATA_DIR / "carenotify.db"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ============================================================
    # Storage
    # ============================================================
    sqlite_db_path: str = str(SQLITE_DB_PATH)

    # ============================================================
    # JWT Authentication (tokens are issued by the auth service)
    # ============================================================
    jwt_secret_key: str = "your-super-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"

    # Shared secret for cron / appointment-workflow triggers
    internal_api_key: Optional[str] = None

    # ============================================================
    # Email (SMTP)
    # ============================================================
    email_enabled: bool = True
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from_address: str = "noreply@patientcare.com"
    smtp_from_name: str = "PatientCare"
    smtp_timeout_seconds: float = 30.0

    # ============================================================
    # Scheduling
    # ============================================================
    # In-process poll loop. Leave off when an external cron calls
    # process_jobs.py or the /process-* endpoints instead.
    scheduler_enabled: bool = False
    scheduler_interval_seconds: int = 60
    cleanup_interval_hours: int = 24
    job_retention_days: int = 30

    # Reminder offsets before the appointment, in minutes
    reminder_offsets_minutes: List[int] = [60, 10]

    # A job left in "processing" this long is considered abandoned
    claim_timeout_minutes: int = 15

    # ============================================================
    # Server Configuration
    # ============================================================
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Comma-separated origins
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse the comma-separated CORS origins.

        Returns:
            List of allowed origin strings.
        """
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def smtp_configured(self) -> bool:
        """True when SMTP credentials are present."""
        return bool(self.smtp_host and self.smtp_username and self.smtp_password)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reloading env vars on every call.
    """
    return Settings()
