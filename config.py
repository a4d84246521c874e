import os
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Settings(BaseSettings):
    """Runtime configuration, read from the environment and an optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Service identity, reported by /health and /status
    service_name: str = "excel-service"
    service_version: str = "0.1.0"

    # Server
    host: str = "0.0.0.0"
    port: int = 3333

    # Logging
    log_level: str = "INFO"
    log_dir: str = os.path.join(BASE_DIR, "logs")

    # Requests above this size are rejected before the body is read
    excel_max_body_size_mb: int = 100

    @property
    def max_body_size_bytes(self) -> int:
        return self.excel_max_body_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()
