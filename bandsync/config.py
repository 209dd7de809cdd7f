"""
Configuration and settings for the BandSync backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "BANDSYNC_USE_IN_MEMORY_BACKENDS", "use_in_memory_backends"
        ),
    )

    # Firebase
    firebase_project_id: Optional[str] = Field(default=None)
    firebase_credentials_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "GOOGLE_APPLICATION_CREDENTIALS", "firebase_credentials_path"
        ),
    )
    # Web API key, needed for password sign-in through Identity Toolkit.
    firebase_web_api_key: Optional[str] = Field(default=None)

    # Membership engine
    invite_code_length: int = Field(default=6, ge=4, le=12)
    invite_code_max_attempts: int = Field(default=5, ge=1)
    allow_self_demotion: bool = Field(default=False)

    # Document store
    transaction_max_attempts: int = Field(default=5, ge=1)
    lookup_batch_size: int = Field(default=10, ge=1, le=30)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
