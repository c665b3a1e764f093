"""Application settings loaded from environment variables."""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Halochat configuration. All values come from environment variables."""

    # Remote inference webhook
    chat_endpoint_url: str = Field(default="")
    response_mode: Literal["simple", "memory"] = Field(default="memory")
    # None disables the client-side timeout; the call runs to completion or failure.
    request_timeout_seconds: float | None = Field(default=None)
    fallback_reply: str = Field(default="Sorry, no response received.")

    # Session
    session_timeout_minutes: int = Field(default=30, ge=1)
    activity_check_interval_seconds: int = Field(default=30, ge=1)

    # Local persistence (empty path keeps everything in memory)
    storage_path: str = Field(default="data/halochat.json")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def session_timeout_seconds(self) -> int:
        return self.session_timeout_minutes * 60

    def get_storage_path(self) -> Path | None:
        """Parse STORAGE_PATH into a Path, or None for in-memory storage."""
        if not self.storage_path.strip():
            return None
        return Path(self.storage_path.strip())


settings = Settings()
