from enum import StrEnum
from functools import lru_cache
from pathlib import Path

from pydantic import PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

from warden.core.classifier import Principal
from warden.core.enforcer import FailureMode


class StorageType(StrEnum):
    REDIS = "redis"
    MEMORY = "memory"


class Settings(BaseSettings):
    app_name: str = "Warden API"
    redis_url: str = "redis://localhost:6379/0"
    storage_backend: StorageType = StorageType.REDIS

    decay_minutes: PositiveInt = 1
    log_violations: bool = True
    add_headers: bool = True
    store_failure_mode: FailureMode = FailureMode.OPEN
    rate_limits_file: Path | None = None

    # API key -> principal, e.g. API_KEYS='{"k1": {"id": "7", "role": "premium"}}'
    api_keys: dict[str, Principal] = {}

    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def decay_seconds(self) -> int:
        return self.decay_minutes * 60


@lru_cache
def get_settings() -> Settings:
    return Settings()
