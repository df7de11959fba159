"""
Fleet Registry - Configuration
All settings loaded from environment variables (or a local .env file)
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage: "memory" keeps everything in-process, "sql" uses database_url
    storage_backend: str = "memory"
    database_url: str = "sqlite+aiosqlite:///./fleet_registry.db"

    # Logging
    log_level: str = "INFO"

    # MQTT bridge
    mqtt_broker: str = "localhost"
    mqtt_port: int = 1883
    mqtt_notify_ota: bool = False  # Push new OTA campaigns to devices/{id}/commands

    # API
    api_title: str = "Device Fleet Registry API"
    api_version: str = "1.0.0"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    class Config:
        env_file = ".env"  # Fallback for local development
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
