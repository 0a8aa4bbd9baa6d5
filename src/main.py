"""Main entry point for the Lab-Verdict validation engine.

This module wires the domain services to the configured adapters and provides
the batch pipeline used by the CLI: read results from a file, store them as
pending, validate each one and summarize the outcome.

Security Impact:
    - Every result is validated against the tenant's stored rule set
    - Configuration is loaded via the configuration manager
    - Audit trail is maintained for all validation decisions

Architecture:
    - Follows Hexagonal Architecture principles
    - Ingestion adapters are selected automatically based on source format
    - Storage adapter is configured via configuration manager
"""

import argparse
import logging
import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from src.adapters.ingesters import CSVResultIngester, JSONRuleLoader, get_adapter
from src.adapters.storage import DuckDBAdapter
from src.domain.guardrails import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerOpenError
from src.domain.services import ResultValidationService
from src.infrastructure.audit import ValidationAuditLogger
from src.infrastructure.config_manager import DatabaseConfig, EngineConfig, get_database_config
from src.infrastructure.logging_config import setup_logging
from src.infrastructure.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    """Counts produced by one batch run."""

    total_rows: int = 0
    rejected_rows: int = 0
    statuses: Counter = field(default_factory=Counter)
    critical: int = 0
    errors: list[str] = field(default_factory=list)
    aborted: bool = False

    @property
    def validated_rows(self) -> int:
        return sum(self.statuses.values())


def create_storage_adapter(db_config: Optional[DatabaseConfig] = None) -> DuckDBAdapter:
    """Create and initialize the storage adapter from configuration.

    Raises:
        RuntimeError: If the schema cannot be initialized
    """
    db_config = db_config or get_database_config()
    logger.info(f"Initializing DuckDB adapter with path: {db_config.get_connection_string()}")
    storage = DuckDBAdapter(db_config=db_config)
    schema_result = storage.initialize_schema()
    if schema_result.is_failure():
        raise RuntimeError(f"Schema initialization failed: {schema_result.error}")
    return storage


def build_validation_service(
    storage: DuckDBAdapter,
    engine_config: Optional[EngineConfig] = None
) -> ResultValidationService:
    """Validation workflow backed by a single storage adapter."""
    engine_config = engine_config or settings.engine
    return ResultValidationService(
        rule_repository=storage,
        verdict_store=storage,
        notification_port=storage,
        audit_log=ValidationAuditLogger(sink=storage.flush_audit_logs),
        previous_result_port=storage,
        reference_range_fallback=engine_config.reference_range_fallback,
    )


def import_rules(source: str, storage: DuckDBAdapter, tenant_id: str) -> tuple[int, int]:
    """Load a JSON rule file into storage.

    Returns:
        tuple[int, int]: (saved_count, rejected_count)
    """
    saved = 0
    rejected = 0
    for parsed in JSONRuleLoader().ingest(source):
        if parsed.is_failure():
            rejected += 1
            continue
        if storage.save_rule(parsed.value, tenant_id=tenant_id).is_success():
            saved += 1
        else:
            rejected += 1
    logger.info(f"Imported {saved} rule(s) from {source} ({rejected} rejected)")
    return saved, rejected


def process_batch(
    source: str,
    storage: DuckDBAdapter,
    service: ResultValidationService,
    tenant_id: Optional[str] = None,
    engine_config: Optional[EngineConfig] = None
) -> BatchSummary:
    """Ingest a result file, store each row as pending and validate it.

    Parameters:
        source: CSV/TSV result file
        storage: Storage adapter (results are saved before validation)
        service: Validation workflow
        tenant_id: Tenant for rows without a tenant column
        engine_config: Chunk size and failure threshold

    Returns:
        BatchSummary: Row counts, status histogram, errors
    """
    engine_config = engine_config or settings.engine
    adapter = get_adapter(
        source,
        default_tenant_id=tenant_id or engine_config.default_tenant_id,
        chunk_size=engine_config.batch_chunk_size,
    )
    if not isinstance(adapter, CSVResultIngester):
        raise ValueError(f"Result batches must be CSV or TSV files, got {source}")

    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold_percent=engine_config.batch_failure_threshold))
    summary = BatchSummary()

    try:
        for row in adapter.ingest(source):
            summary.total_rows += 1
            breaker.record_result(row)
            if row.is_failure():
                summary.rejected_rows += 1
                summary.errors.append(row.error)
                continue

            result = row.value.as_submission()
            saved = storage.save_result(result)
            if saved.is_failure():
                summary.errors.append(saved.error)
                continue

            validated = service.validate_result(result)
            if validated.is_success():
                summary.statuses[validated.value.status.value] += 1
                if validated.value.is_critical:
                    summary.critical += 1
            else:
                summary.errors.append(f"{result.id}: {validated.error}")
    except CircuitBreakerOpenError as e:
        logger.error(f"Batch aborted: {str(e)}")
        summary.aborted = True
        summary.errors.append(str(e))

    logger.info(
        f"Batch {source}: {summary.total_rows} row(s), {summary.rejected_rows} rejected, "
        f"statuses={dict(summary.statuses)}"
    )
    return summary


def main(argv: Optional[list[str]] = None) -> int:
    """Validate a result file against stored (or supplied) rules.

    Usage:
        python -m src.main results.csv --rules rules.json --tenant lab-1
    """
    parser = argparse.ArgumentParser(description="Lab-Verdict batch validation")
    parser.add_argument("source", help="CSV/TSV result file")
    parser.add_argument("--rules", help="JSON rule file imported before validation")
    parser.add_argument("--tenant", help="Tenant id for rows without one")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    setup_logging(use_json=settings.json_logs, log_level="DEBUG" if args.verbose else settings.log_level)

    storage = create_storage_adapter()
    try:
        tenant_id = args.tenant or settings.engine.default_tenant_id
        if args.rules:
            import_rules(args.rules, storage, tenant_id)
        summary = process_batch(args.source, storage, build_validation_service(storage), tenant_id=tenant_id)
    finally:
        storage.close()

    print(
        f"Rows: {summary.total_rows}, rejected: {summary.rejected_rows}, "
        f"statuses: {dict(summary.statuses)}, critical: {summary.critical}"
    )
    return 1 if summary.aborted or summary.errors else 0


if __name__ == "__main__":
    sys.exit(main())
