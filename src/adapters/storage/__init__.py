"""Storage adapters for Lab-Verdict.

This module contains storage adapters that implement the rule repository,
result store, notification and audit ports.
"""

from src.adapters.storage.duckdb_adapter import DuckDBAdapter

__all__ = ["DuckDBAdapter"]
