"""
Configuration module for the salon booking engine.
Loads environment variables and provides typed configuration.
"""

from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.constants import (
    BOOKING_ID_DIGITS,
    BOOKING_ID_MAX_SEQUENCE_DIGITS,
    BOOKING_ID_PREFIX,
    MANUAL_RELEASE_MIN_AGE_MINUTES,
    PENDING_FORM_TIMEOUT_MINUTES,
    RELEASE_INTERVAL_MINUTES,
    SLOT_TIMES,
    TRANSACTION_MAX_ATTEMPTS,
)

# Load .env file
env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Datastore: "memory" for local runs and tests, "supabase" in production
    store_backend: str = "memory"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Booking identifiers
    booking_id_prefix: str = BOOKING_ID_PREFIX
    booking_id_digits: int = BOOKING_ID_DIGITS
    booking_id_max_sequence_digits: int = BOOKING_ID_MAX_SEQUENCE_DIGITS

    # Reservation lifecycle
    pending_form_timeout_minutes: int = PENDING_FORM_TIMEOUT_MINUTES
    release_interval_minutes: int = RELEASE_INTERVAL_MINUTES
    manual_release_min_age_minutes: int = MANUAL_RELEASE_MIN_AGE_MINUTES
    transaction_max_attempts: int = TRANSACTION_MAX_ATTEMPTS

    # Canonical ordered slot start times, comma-separated
    slot_times: str = ",".join(SLOT_TIMES)

    # Customer details form (prefilled link handed out after reservation)
    form_base_url: Optional[str] = None
    form_booking_id_entry: Optional[str] = None
    form_date_entry: Optional[str] = None
    form_time_entry: Optional[str] = None

    # Cron endpoint protection
    cron_secret: Optional[str] = None

    # Telegram admin notifications
    bot_token: Optional[str] = None
    admin_chat_ids: str = ""  # Comma-separated Telegram chat IDs

    # Redis Configuration (for APScheduler cluster support)
    redis_url: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    environment: str = "development"  # development, staging, production

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("store_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("memory", "supabase"):
            raise ValueError(f"Unknown store backend: {value!r}")
        return value

    @property
    def slot_time_list(self) -> List[str]:
        """Canonical slot times in order."""
        return [t.strip() for t in self.slot_times.split(",") if t.strip()]

    @property
    def admin_chat_id_list(self) -> List[int]:
        """Telegram chat IDs that receive booking notifications."""
        if not self.admin_chat_ids:
            return []
        return [
            int(chat_id.strip())
            for chat_id in self.admin_chat_ids.split(",")
            if chat_id.strip()
        ]

    def validate_all_required(self) -> None:
        """
        Validate that all settings needed by the selected backend are present.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        missing = []
        if self.store_backend == "supabase":
            for field in ("supabase_url", "supabase_key"):
                value = getattr(self, field, None)
                if not value or str(value).lower().startswith("your_"):
                    missing.append(field)

        if self.environment == "production" and not self.cron_secret:
            missing.append("cron_secret")

        if missing:
            raise ValueError(
                f"Missing or invalid required configuration: "
                f"{', '.join(missing)}. "
                f"Please check your .env file."
            )

        if self.pending_form_timeout_minutes < 1:
            raise ValueError(
                "PENDING_FORM_TIMEOUT_MINUTES must be >= 1, "
                f"got {self.pending_form_timeout_minutes}"
            )
        if self.transaction_max_attempts < 1:
            raise ValueError(
                "TRANSACTION_MAX_ATTEMPTS must be >= 1, "
                f"got {self.transaction_max_attempts}"
            )
        if len(set(self.slot_time_list)) != len(self.slot_time_list):
            raise ValueError("SLOT_TIMES must not contain duplicates")


# Global settings instance
settings = Settings()
