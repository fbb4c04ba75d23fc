"""
Allergy Scan - Configuration and settings.

Values come from the environment or a local .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class ScanSettings(BaseSettings):
    """Settings for the scan client, wizard and CLI."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend (allergen store + scanning service share one base URL)
    allergy_api_url: str = "http://localhost:8000"
    allergy_request_timeout: float = 30.0

    # Application
    allergy_env: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Cosmetic progress pacing while a scan is in flight
    allergy_progress_steps: list[int] = [25, 50, 75, 100]
    allergy_progress_interval: float = 0.4  # seconds between steps
    allergy_report_settle: float = 0.5  # hold at 100% before showing the report

    # Client-side input limits
    allergy_max_text_length: int = 5000
    allergy_max_photo_bytes: int = 5 * 1024 * 1024
    allergy_max_document_bytes: int = 10 * 1024 * 1024

    @property
    def is_development(self) -> bool:
        return self.allergy_env == "development"

    @property
    def is_production(self) -> bool:
        return self.allergy_env == "production"


@lru_cache
def get_settings() -> ScanSettings:
    """Get cached settings instance."""
    return ScanSettings()


class _SettingsProxy:
    """Lazy proxy for settings to avoid loading .env at import time."""

    _instance: ScanSettings | None = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = get_settings()
        return getattr(self._instance, name)


settings = _SettingsProxy()
