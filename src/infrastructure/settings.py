"""Application Settings and Configuration.

This module provides application-wide settings that combine configuration
from the configuration manager with application-specific defaults.
"""

import os
from typing import Optional

from src.infrastructure.config_manager import ConfigManager, DatabaseConfig, EngineConfig

# Application metadata
APP_NAME = "Lab-Verdict"
APP_VERSION = "1.0.0"


class Settings:
    """Application settings loaded from the configuration manager and environment.

    Storage and engine sections are loaded lazily on first access so that
    tests can set ``LV_*`` variables before anything is read.
    """

    def __init__(self):
        self._config_manager: Optional[ConfigManager] = None

        self.app_name = os.getenv("LV_APP_NAME", APP_NAME)
        self.log_level = os.getenv("LV_LOG_LEVEL", "INFO")
        self.json_logs = os.getenv("LV_JSON_LOGS", "false").lower() == "true"

        # HTTP API
        self.api_host = os.getenv("LV_API_HOST", "127.0.0.1")
        self.api_port = int(os.getenv("LV_API_PORT", "8000"))
        self.cors_origins = [
            origin.strip()
            for origin in os.getenv("LV_CORS_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ]

    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def db_config(self) -> DatabaseConfig:
        return self.config_manager.get_database_config()

    @property
    def engine(self) -> EngineConfig:
        return self.config_manager.get_engine_config()

    def get_db_path(self) -> str:
        """Database path, or ':memory:' for an in-memory database."""
        return self.db_config.get_connection_string()

    def reload(self) -> None:
        """Drop cached configuration so the next access re-reads the environment."""
        self._config_manager = None


# Global settings instance
settings = Settings()
