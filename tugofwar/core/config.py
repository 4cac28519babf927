from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # app
    app_name: str = "Tug of War"
    log_level: str = "INFO"
    app_env: str = "dev"
    host: str = "0.0.0.0"
    port: int = 8000

    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    # store
    store_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379/0"
    transaction_max_retries: int = 25

    # game rules
    win_score: int = 100
    key_alphabet: str = "DFKJ"
    key_queue_size: int = 4
    key_history_size: int = 2
    max_hearts: int = 3

    # timers (ms)
    short_lockout_ms: int = 1000
    long_lockout_ms: int = 2500
    bump_ms: int = 100
    wrong_key_ms: int = 200


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
