"""Configuration Manager.

This module loads the engine's configuration from environment variables
(``LV_*``, optionally from a ``.env`` file) or from a JSON file, and validates
it with Pydantic models before any adapter is constructed.

Security Impact:
    - Configuration is validated before use (fail fast on a bad DB path)
    - No configuration values are logged beyond their source

Architecture:
    - Follows Hexagonal Architecture: Infrastructure layer isolated from domain
    - Type-safe configuration using Pydantic models
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "LV_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


class DatabaseConfig(BaseModel):
    """DuckDB storage configuration.

    Parameters:
        db_type: Database type (only ``duckdb`` is supported)
        db_path: Path to the database file, or ``:memory:``
        read_only: Open the database read-only
    """

    db_type: str = Field("duckdb", description="Database type")
    db_path: Optional[str] = Field(None, description="Path to database file (None = in-memory)")
    read_only: bool = Field(False, description="Open the database read-only")

    @field_validator("db_type")
    @classmethod
    def validate_db_type(cls, v: str) -> str:
        """Validate database type."""
        if v.lower() != "duckdb":
            raise ValueError(f"Unsupported database type: {v}. Supported: ['duckdb']")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Validate that the database directory exists (the file may not yet)."""
        if v is None or v == ":memory:":
            return v

        db_path_obj = Path(v)
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")
        return str(db_path_obj)

    def get_connection_string(self) -> str:
        """Path handed to ``duckdb.connect``."""
        return self.db_path or ":memory:"


class EngineConfig(BaseModel):
    """Validation engine behaviour.

    Parameters:
        default_tenant_id: Tenant used when a caller does not name one
        reference_range_fallback: Derive low/high from the result's reference
            range text when no rule produced a flag
        escalation_minutes: Minutes before a pending critical notification is
            overdue
        batch_chunk_size: Rows per chunk when reading result files
        batch_failure_threshold: Percentage of unreadable rows that aborts a batch
    """

    default_tenant_id: str = Field("default", min_length=1)
    reference_range_fallback: bool = False
    escalation_minutes: int = Field(15, gt=0)
    batch_chunk_size: int = Field(10000, gt=0)
    batch_failure_threshold: float = Field(50.0, gt=0, le=100)


class ConfigManager:
    """Configuration manager for storage and engine settings.

    Example Usage:
        ```python
        # Load from environment variables
        config = ConfigManager.from_environment()
        db_config = config.get_database_config()

        # Load from file
        config = ConfigManager.from_file("labverdict.json")
        engine_config = config.get_engine_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        """Initialize configuration manager.

        Parameters:
            config_data: Configuration dictionary with ``database`` and
                ``engine`` sections
        """
        self._config_data = config_data
        self._database_config: Optional[DatabaseConfig] = None
        self._engine_config: Optional[EngineConfig] = None

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> 'ConfigManager':
        """Load configuration from environment variables.

        Environment Variables:
            - LV_DB_PATH: Path to DuckDB database file
            - LV_DB_READ_ONLY: Open the database read-only
            - LV_DEFAULT_TENANT: Default tenant id
            - LV_REFERENCE_RANGE_FALLBACK: Enable reference-range flags
            - LV_ESCALATION_MINUTES: Critical notification escalation window
            - LV_CHUNK_SIZE: Rows per chunk for batch files
            - LV_BATCH_FAILURE_THRESHOLD: Percent of bad rows that aborts a batch

        A ``.env`` file in the project root (or ``env_file``) is loaded first;
        variables already set in the environment take precedence.
        """
        env_path = Path(env_file) if env_file else Path(__file__).parent.parent.parent / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        engine: Dict[str, Any] = {
            "reference_range_fallback": _env_bool("REFERENCE_RANGE_FALLBACK", False),
        }
        if _env("DEFAULT_TENANT"):
            engine["default_tenant_id"] = _env("DEFAULT_TENANT")
        if _env("ESCALATION_MINUTES"):
            engine["escalation_minutes"] = int(_env("ESCALATION_MINUTES"))
        if _env("CHUNK_SIZE"):
            engine["batch_chunk_size"] = int(_env("CHUNK_SIZE"))
        if _env("BATCH_FAILURE_THRESHOLD"):
            engine["batch_failure_threshold"] = float(_env("BATCH_FAILURE_THRESHOLD"))

        config_data = {
            "database": {
                "db_type": _env("DB_TYPE", "duckdb"),
                "db_path": _env("DB_PATH"),
                "read_only": _env_bool("DB_READ_ONLY", False),
            },
            "engine": engine,
        }
        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> 'ConfigManager':
        """Load configuration from a JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a JSON object")
        return cls(config_data)

    def get_database_config(self) -> DatabaseConfig:
        if self._database_config is None:
            self._database_config = DatabaseConfig(**self._config_data.get("database", {}))
        return self._database_config

    def get_engine_config(self) -> EngineConfig:
        if self._engine_config is None:
            self._engine_config = EngineConfig(**self._config_data.get("engine", {}))
        return self._engine_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Parameters:
            key: Configuration key (supports dot notation, e.g., "engine.escalation_minutes")
            default: Default value if key not found
        """
        value: Any = self._config_data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default


# ============================================================================
# Convenience Functions
# ============================================================================

def get_database_config() -> DatabaseConfig:
    """Database configuration from the environment (in-memory DuckDB by default)."""
    return ConfigManager.from_environment().get_database_config()
