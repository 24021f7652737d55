"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass
class Config:
    database_url: str
    access_key: str
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.environ.get("PM_DATABASE_URL", "").strip()
        if not database_url:
            raise ConfigError("PM_DATABASE_URL is not set")

        access_key = os.environ.get("PM_ACCESS_KEY", "").strip()
        if not access_key:
            raise ConfigError("PM_ACCESS_KEY is not set")

        config = cls(database_url=database_url, access_key=access_key)

        if level := os.environ.get("PM_LOG_LEVEL"):
            config.log_level = level.upper()

        return config


def get_config() -> Config:
    return Config.from_env()
