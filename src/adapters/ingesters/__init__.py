"""Ingestion adapters for Lab-Verdict.

This module contains ingestion adapters that implement the IngestionPort
interface for reading rule documents (JSON) and test results (CSV/TSV).
"""

from pathlib import Path

from src.adapters.ingesters.csv_result_ingester import CSVResultIngester
from src.adapters.ingesters.json_rule_loader import JSONRuleLoader
from src.domain.ports import IngestionPort, UnsupportedSourceError

__all__ = ["CSVResultIngester", "JSONRuleLoader", "get_adapter"]


def get_adapter(source: str, **kwargs) -> IngestionPort:
    """Factory function to get the appropriate ingestion adapter for a source.

    Parameters:
        source: Source identifier (file path)
        **kwargs: Additional arguments passed to the adapter constructor
            - For CSV: column_mapping, default_tenant_id, chunk_size

    Returns:
        IngestionPort: Appropriate adapter instance

    Raises:
        UnsupportedSourceError: If no adapter can handle the source

    Example Usage:
        ```python
        adapter = get_adapter("results.csv", default_tenant_id="lab-1")
        rules = get_adapter("rules.json")
        ```
    """
    extension = Path(source).suffix.lower()

    adapters = [
        ((".csv", ".tsv"), CSVResultIngester),
        ((".json",), JSONRuleLoader),
    ]

    for extensions, adapter_class in adapters:
        if extension in extensions:
            try:
                return adapter_class(**kwargs)
            except TypeError as e:
                raise UnsupportedSourceError(
                    f"Failed to create {adapter_class.__name__}: {str(e)}",
                    source=source,
                    adapter=adapter_class.__name__
                )

    raise UnsupportedSourceError(
        f"No adapter found for source: {source}. Supported formats: CSV, TSV, JSON",
        source=source
    )
