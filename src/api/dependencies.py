"""Dependency injection for the API.

This module provides dependency injection functions for FastAPI, following
Hexagonal Architecture principles by reusing the existing storage adapter and
domain services.
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from src.adapters.storage import DuckDBAdapter
from src.domain.services import ResultValidationService
from src.infrastructure.config_manager import get_database_config
from src.main import build_validation_service

logger = logging.getLogger(__name__)


@lru_cache()
def get_storage_adapter() -> DuckDBAdapter:
    """Get storage adapter instance (cached).

    The adapter is created once from environment configuration and reused
    for every request. The schema is created lazily on first use.

    Returns:
        DuckDBAdapter: Configured storage adapter instance
    """
    db_config = get_database_config()
    logger.debug(f"Creating DuckDB adapter with path: {db_config.get_connection_string()}")
    return DuckDBAdapter(db_config=db_config)


# Type alias for dependency injection
StorageDep = Annotated[DuckDBAdapter, Depends(get_storage_adapter)]


def get_validation_service(storage: StorageDep) -> ResultValidationService:
    """Validation workflow wired to the storage adapter."""
    return build_validation_service(storage)


ValidationServiceDep = Annotated[ResultValidationService, Depends(get_validation_service)]
