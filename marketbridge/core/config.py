from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


# project root (the directory holding marketbridge/)
BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    app_name: str = "MarketBridge"
    app_env: str = "dev"

    # relational store
    database_url: str = f"sqlite:///{BASE_DIR / 'data' / 'marketbridge.db'}"

    # image files
    media_root: Path = BASE_DIR / "data" / "uploads"
    media_url: str = "/uploads"

    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
