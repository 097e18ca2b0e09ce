"""
Configuration and settings for the donation backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080)
    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Directory store. Firestore wins over DATABASE_URL when both are set.
    use_firestore: bool = Field(default=False)
    database_url: Optional[str] = Field(default=None)

    # Firebase project (Auth, Firestore, Cloud Messaging, Storage)
    firebase_project_id: Optional[str] = Field(default=None)
    firebase_storage_bucket: Optional[str] = Field(default=None)

    # S3-compatible image storage (Tencent COS)
    cos_endpoint: Optional[str] = Field(default=None)
    cos_region: Optional[str] = Field(default=None)
    cos_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    # S3 v4 presigned URLs are capped at 7 days.
    image_url_expires_in: int = Field(default=7 * 24 * 3600)

    # Notification delivery
    push_timeout_seconds: float = Field(default=10.0, gt=0)
    push_max_workers: int = Field(default=8, ge=1)

    # Run change triggers in-process after each route mutation. Turn this off
    # when the Cloud Functions in main.py are deployed against the same
    # Firestore project, otherwise every change event fires twice.
    inline_triggers: bool = Field(default=True)

    @property
    def firebase_configured(self) -> bool:
        return self.use_firestore or bool(self.firebase_project_id)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
