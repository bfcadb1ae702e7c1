"""
Configuration management for the clinic booking client.

This module provides centralized configuration using Pydantic settings
for type-safe environment variable management.
"""

import sys
from functools import lru_cache
from typing import List

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Backend API Configuration
    api_url: str = Field(default="http://localhost:8080", alias="CLINIC_API_URL")
    api_timeout: int = Field(default=10, alias="CLINIC_API_TIMEOUT")
    connection_pool_size: int = Field(default=20, alias="CONNECTION_POOL_SIZE")

    # Push Channel Configuration
    channel_path: str = Field(default="/ws/websocket", alias="CHANNEL_PATH")
    channel_reconnect_delay: float = Field(default=5.0, alias="CHANNEL_RECONNECT_DELAY")

    # Booking Configuration
    booking_horizon_days: int = Field(default=56, alias="BOOKING_HORIZON_DAYS")
    directory_limit: int = Field(default=100, alias="DIRECTORY_LIMIT")
    queue_poll_interval: float = Field(default=15.0, alias="QUEUE_POLL_INTERVAL")

    # Sandbox Backend Configuration
    sandbox_host: str = Field(default="0.0.0.0", alias="SANDBOX_HOST")
    sandbox_port: int = Field(default=8080, alias="SANDBOX_PORT")

    # Application Configuration
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def channel_url(self) -> str:
        """WebSocket URL of the push broker, derived from the API base URL."""
        base = self.api_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return base + self.channel_path


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once,
    improving performance for repeated access.
    """
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Replace the default loguru sink with one at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


# Clinic types as presented to users
GENERAL_PRACTICE = "General Practice"
SPECIALIST_CLINIC = "Specialist Clinic"
CLINIC_TYPES: List[str] = [GENERAL_PRACTICE, SPECIALIST_CLINIC]

# Speciality key sent to the availability endpoint for general practice
GENERAL_PRACTICE_SPECIALITY = "General Practice"
GENERAL_PRACTICE_MARKER = "GENERAL PRACTICE"

# Push channel topics
SLOTS_TOPIC = "/topic/slots"
APPOINTMENT_STATUS_TOPIC = "/topic/appointments/status"
TREATMENT_NOTES_TOPIC = "/topic/appointments/treatment-notes"

# User-facing messages (centralized to keep wording consistent)
MSG_SIGN_IN_REQUIRED = "Please sign in to book an appointment."
MSG_SELECT_CLINIC_TYPE = "Please select a clinic type."
MSG_SELECT_SPECIALTY = "Please select a specialist type."
MSG_SELECT_CLINIC = "Please select a clinic name."
MSG_SELECT_DATE = "Please select a date."
MSG_SELECT_SLOT = "Please select a time slot."
MSG_SELECT_VALID_SLOT = "Please select a valid time slot with doctor and clinic information."
MSG_SLOT_TAKEN = "This slot may already be taken."
MSG_SLOT_REJECTED = "This slot was just taken. Please pick another slot."
MSG_GENERIC_FAILURE = "Something went wrong. Please try again."
MSG_WALK_IN_STAFF_ONLY = "Walk-in appointments can only be created by clinic staff."
