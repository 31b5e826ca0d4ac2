from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    data_dir: Path = Path("./data")
    backup_dir: Path = Path("./data/backups")
    db_url: str = "sqlite:///./data/knowledge_base.db"
    # Bearer token for the local API; empty disables the check
    api_token: str = ""
    cors_origins: list[str] = [
        "http://localhost:1420",
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    log_level: str = "INFO"
    backup_history_limit: int = 20

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown LOG_LEVEL: {value!r}")
        return level

    @field_validator("backup_history_limit")
    @classmethod
    def _check_history_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"BACKUP_HISTORY_LIMIT must be > 0, got {value}")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
