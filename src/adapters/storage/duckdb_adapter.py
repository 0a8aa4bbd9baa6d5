"""DuckDB Storage Adapter.

This adapter implements every storage-facing port of the validation engine on
top of DuckDB, an in-process database:

    - RuleRepositoryPort: ``validation_rules``
    - PreviousResultPort / VerdictStorePort: ``test_results``
    - NotificationPort: ``critical_notifications`` (primary key result_id)
    - AuditLogPort: ``audit_log`` (append-only)

Security Impact:
    - Notification inserts are keyed by result_id, so a critical value can
      never produce two notification records
    - The audit trail is append-only
    - Rule documents are re-validated on read; a corrupt row is skipped, never
      evaluated

Architecture:
    - Implements domain ports (Hexagonal Architecture)
    - Isolated from domain services - only depends on ports and models
    - Connection is opened lazily and the schema is created on first use
"""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import duckdb
import pandas as pd

from src.domain.enums import AuditAction, NotificationStatus, ResultStatus
from src.domain.guardrails import RuleSetGuardrail
from src.domain.ports import (
    AuditLogPort,
    NotificationPort,
    PreviousResultLookupError,
    PreviousResultPort,
    Result,
    RuleRepositoryError,
    RuleRepositoryPort,
    StorageError,
    VerdictStorePort,
)
from src.domain.results import (
    AuditLogEntry,
    CriticalResultNotification,
    TestResult,
    ValidationOutcome,
    ValidationVerdict,
)
from src.domain.rules import RuleBase, parse_rule
from src.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)

DEFAULT_TENANT = "default"

_RESULT_COLUMNS = (
    "id, tenant_id, patient_id, test_order_id, test_code, test_name, value, unit, "
    "reference_range, result_type, status, flag, is_critical, validation_errors, performed_at"
)

_NOTIFICATION_COLUMNS = (
    "result_id, tenant_id, patient_id, test_order_id, test_code, test_name, value, unit, flag, "
    "message, notification_status, created_at, acknowledged_at, acknowledged_by, notified_to, "
    "notification_method"
)


def _load_json(raw: Any) -> Any:
    if raw is None or not isinstance(raw, str):
        return raw
    return json.loads(raw)


class DuckDBAdapter(RuleRepositoryPort, PreviousResultPort, VerdictStorePort, NotificationPort, AuditLogPort):
    """DuckDB implementation of the engine's storage ports.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)

    Example Usage:
        ```python
        from src.infrastructure.config_manager import get_database_config

        adapter = DuckDBAdapter(db_config=get_database_config())
        adapter.initialize_schema()
        adapter.save_rule(rule, tenant_id="lab-1")
        rules = adapter.fetch_rules("lab-1", "GLU")
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        db_path: Optional[str] = None,
        guardrail: Optional[RuleSetGuardrail] = None
    ):
        """Initialize DuckDB adapter.

        Note:
            If both db_config and db_path are provided, db_config takes precedence.
            If neither is provided, defaults to in-memory database.
        """
        self.read_only = False
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.get_connection_string()
            self.read_only = db_config.read_only
        elif db_path:
            self.db_path = db_path
        else:
            self.db_path = ":memory:"

        self.guardrail = guardrail or RuleSetGuardrail()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create DuckDB connection."""
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path, read_only=self.read_only)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except Exception as e:
                raise StorageError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                )
        return self._connection

    def _ensure_schema(self) -> duckdb.DuckDBPyConnection:
        if not self._initialized:
            init_result = self.initialize_schema()
            if init_result.is_failure():
                raise StorageError(init_result.error, operation="initialize_schema")
        return self._get_connection()

    def initialize_schema(self) -> Result[None]:
        """Initialize database schema (tables and indexes).

        Creates tables for:
        - validation_rules: Rule documents per tenant and test code
        - test_results: Submitted and historical results
        - critical_notifications: One record per critical result
        - audit_log: Immutable audit trail of validation decisions

        Returns:
            Result[None]: Success or failure result
        """
        try:
            conn = self._get_connection()

            conn.execute("""
                CREATE TABLE IF NOT EXISTS validation_rules (
                    tenant_id VARCHAR NOT NULL,
                    id VARCHAR NOT NULL,
                    test_code VARCHAR NOT NULL,
                    rule_type VARCHAR NOT NULL,
                    priority INTEGER NOT NULL,
                    enabled BOOLEAN NOT NULL,
                    document JSON NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (tenant_id, id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS test_results (
                    id VARCHAR PRIMARY KEY,
                    tenant_id VARCHAR NOT NULL,
                    patient_id VARCHAR NOT NULL,
                    test_order_id VARCHAR,
                    test_code VARCHAR NOT NULL,
                    test_name VARCHAR,
                    value JSON,
                    unit VARCHAR,
                    reference_range VARCHAR,
                    result_type VARCHAR,
                    status VARCHAR NOT NULL,
                    flag VARCHAR,
                    is_critical BOOLEAN NOT NULL DEFAULT FALSE,
                    validation_errors JSON,
                    performed_at TIMESTAMP,
                    validated_at TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS critical_notifications (
                    result_id VARCHAR PRIMARY KEY,
                    tenant_id VARCHAR,
                    patient_id VARCHAR,
                    test_order_id VARCHAR,
                    test_code VARCHAR,
                    test_name VARCHAR,
                    value JSON,
                    unit VARCHAR,
                    flag VARCHAR,
                    message VARCHAR,
                    notification_status VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    acknowledged_at TIMESTAMP,
                    acknowledged_by VARCHAR,
                    notified_to VARCHAR,
                    notification_method VARCHAR
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    audit_id VARCHAR PRIMARY KEY,
                    result_id VARCHAR NOT NULL,
                    action VARCHAR NOT NULL,
                    applied_rule_ids JSON,
                    verdict JSON,
                    final_status VARCHAR,
                    performed_by VARCHAR NOT NULL,
                    performed_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    details JSON
                )
            """)

            # Secondary indexes on append-only tables only
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_result_id ON audit_log(result_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action)")

            self._initialized = True
            logger.info("Database schema initialized successfully")
            return Result.success_result(None)

        except Exception as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def save_rule(self, rule: RuleBase, tenant_id: Optional[str] = None) -> Result[str]:
        """Insert or replace a rule and lint the resulting rule set.

        Guardrail findings are logged as warnings; they never block the save.

        Returns:
            Result[str]: Rule id or error
        """
        tenant = tenant_id or rule.tenant_id or DEFAULT_TENANT
        try:
            conn = self._ensure_schema()
            conn.execute("""
                INSERT OR REPLACE INTO validation_rules (
                    tenant_id, id, test_code, rule_type, priority, enabled, document, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                tenant,
                rule.id,
                rule.test_code,
                rule.rule_type,
                rule.priority,
                rule.enabled,
                json.dumps(rule.to_document()),
                datetime.now(),
            ])
            logger.debug(f"Saved {rule.rule_type} rule {rule.id} for {tenant}/{rule.test_code}")
        except Exception as e:
            error_msg = f"Failed to save rule {rule.id}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="save_rule", details={"rule_id": rule.id}),
                error_type="StorageError"
            )

        for issue in self.guardrail.check(self.list_rules(tenant, rule.test_code), test_code=rule.test_code):
            logger.warning(f"Rule set {tenant}/{rule.test_code}: {issue.message}")
        return Result.success_result(rule.id)

    def list_rules(self, tenant_id: str, test_code: Optional[str] = None, include_disabled: bool = True) -> list[RuleBase]:
        """All parseable rules for a tenant (optionally one test code), in priority order."""
        conn = self._ensure_schema()
        sql = "SELECT document FROM validation_rules WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if test_code is not None:
            sql += " AND test_code = ?"
            params.append(test_code)
        if not include_disabled:
            sql += " AND enabled"
        sql += " ORDER BY test_code, priority, id"

        rules = []
        for (document,) in conn.execute(sql, params).fetchall():
            parsed = parse_rule(_load_json(document))
            if parsed.is_success():
                rules.append(parsed.value)
            else:
                logger.warning(f"Skipping stored rule: {parsed.error}")
        return rules

    def fetch_rules(self, tenant_id: str, test_code: str) -> list[RuleBase]:
        try:
            return self.list_rules(tenant_id, test_code, include_disabled=False)
        except Exception as e:
            raise RuleRepositoryError(
                f"Failed to fetch rules for {tenant_id}/{test_code}: {str(e)}",
                tenant_id=tenant_id,
                test_code=test_code
            ) from e

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def save_result(self, result: TestResult) -> Result[str]:
        """Insert a new test result exactly as given.

        Results are never overwritten: an id that already exists fails with
        ``DuplicateResult`` and the stored row is left untouched. Submission
        paths pass ``result.as_submission()``; importing historical final
        results calls this directly.

        Returns:
            Result[str]: Result id or error
        """
        try:
            conn = self._ensure_schema()
            conn.execute(f"""
                INSERT INTO test_results ({_RESULT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                result.id,
                result.tenant_id,
                result.patient_id,
                result.test_order_id,
                result.test_code,
                result.test_name,
                json.dumps(result.value),
                result.unit,
                result.reference_range,
                result.result_type.value if result.result_type else None,
                result.status.value,
                result.flag,
                result.is_critical,
                json.dumps(list(result.validation_errors)),
                result.performed_at,
            ])
            return Result.success_result(result.id)
        except duckdb.ConstraintException:
            logger.warning(f"Rejected duplicate result id {result.id}")
            return Result.failure_result(
                StorageError(f"Result {result.id} already exists", operation="save_result", details={"result_id": result.id}),
                error_type="DuplicateResult",
                error_details={"result_id": result.id}
            )
        except Exception as e:
            error_msg = f"Failed to save result {result.id}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="save_result", details={"result_id": result.id}),
                error_type="StorageError"
            )

    @staticmethod
    def _row_to_result(row: tuple) -> TestResult:
        (
            result_id, tenant_id, patient_id, test_order_id, test_code, test_name, value, unit,
            reference_range, result_type, status, flag, is_critical, validation_errors, performed_at
        ) = row
        return TestResult(
            id=result_id,
            tenant_id=tenant_id,
            patient_id=patient_id,
            test_order_id=test_order_id,
            test_code=test_code,
            test_name=test_name,
            value=_load_json(value),
            unit=unit,
            reference_range=reference_range,
            result_type=result_type,
            status=status,
            flag=flag,
            is_critical=bool(is_critical),
            validation_errors=_load_json(validation_errors) or [],
            performed_at=performed_at,
        )

    def get_result(self, result_id: str) -> Optional[TestResult]:
        conn = self._ensure_schema()
        row = conn.execute(
            f"SELECT {_RESULT_COLUMNS} FROM test_results WHERE id = ?", [result_id]
        ).fetchone()
        return self._row_to_result(row) if row else None

    def list_results(self, tenant_id: Optional[str] = None, status: Optional[ResultStatus] = None) -> list[TestResult]:
        conn = self._ensure_schema()
        sql = f"SELECT {_RESULT_COLUMNS} FROM test_results WHERE 1 = 1"
        params: list[Any] = []
        if tenant_id is not None:
            sql += " AND tenant_id = ?"
            params.append(tenant_id)
        if status is not None:
            sql += " AND status = ?"
            params.append(ResultStatus(status).value)
        sql += " ORDER BY performed_at NULLS LAST, id"
        return [self._row_to_result(row) for row in conn.execute(sql, params).fetchall()]

    def fetch_previous_final_result(self, tenant_id: str, test_code: str, patient_id: str) -> Optional[TestResult]:
        try:
            conn = self._ensure_schema()
            row = conn.execute(f"""
                SELECT {_RESULT_COLUMNS} FROM test_results
                WHERE tenant_id = ? AND test_code = ? AND patient_id = ? AND status = ?
                ORDER BY performed_at DESC NULLS LAST
                LIMIT 1
            """, [tenant_id, test_code, patient_id, ResultStatus.FINAL.value]).fetchone()
        except Exception as e:
            raise PreviousResultLookupError(
                f"Failed to fetch previous result for {test_code}/{patient_id}: {str(e)}"
            ) from e
        return self._row_to_result(row) if row else None

    def persist_verdict(self, result_id: str, outcome: ValidationOutcome) -> Result[str]:
        try:
            conn = self._ensure_schema()
            updated = conn.execute("""
                UPDATE test_results
                SET status = ?, flag = ?, is_critical = ?, validation_errors = ?,
                    validated_at = COALESCE(validated_at, ?)
                WHERE id = ?
                RETURNING id
            """, [
                outcome.status.value,
                outcome.flag,
                outcome.is_critical,
                json.dumps(list(outcome.validation_errors)),
                datetime.now(),
                result_id,
            ]).fetchall()
        except Exception as e:
            error_msg = f"Failed to persist verdict for result {result_id}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="persist_verdict", details={"result_id": result_id}),
                error_type="StorageError"
            )

        if not updated:
            return Result.failure_result(
                StorageError(f"Result {result_id} not found", operation="persist_verdict"),
                error_type="StorageError",
                error_details={"result_id": result_id}
            )
        logger.debug(f"Persisted verdict for result {result_id}: {outcome.status.value}")
        return Result.success_result(result_id)

    # ------------------------------------------------------------------
    # Critical notifications
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_notification(row: tuple) -> CriticalResultNotification:
        columns = [c.strip() for c in _NOTIFICATION_COLUMNS.split(",")]
        data = dict(zip(columns, row))
        data["value"] = _load_json(data["value"])
        return CriticalResultNotification(**data)

    def get_notification(self, result_id: str) -> Optional[CriticalResultNotification]:
        conn = self._ensure_schema()
        row = conn.execute(
            f"SELECT {_NOTIFICATION_COLUMNS} FROM critical_notifications WHERE result_id = ?", [result_id]
        ).fetchone()
        return self._row_to_notification(row) if row else None

    def emit_critical_notification(self, notification: CriticalResultNotification) -> Result[CriticalResultNotification]:
        try:
            conn = self._ensure_schema()
            conn.execute(f"""
                INSERT INTO critical_notifications ({_NOTIFICATION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (result_id) DO NOTHING
            """, [
                notification.result_id,
                notification.tenant_id,
                notification.patient_id,
                notification.test_order_id,
                notification.test_code,
                notification.test_name,
                json.dumps(notification.value),
                notification.unit,
                notification.flag,
                notification.message,
                notification.notification_status.value,
                notification.created_at,
                notification.acknowledged_at,
                notification.acknowledged_by,
                notification.notified_to,
                notification.notification_method,
            ])
            stored = self.get_notification(notification.result_id)
        except Exception as e:
            error_msg = f"Failed to create critical notification for result {notification.result_id}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="emit_critical_notification"),
                error_type="StorageError",
                error_details={"result_id": notification.result_id}
            )
        return Result.success_result(stored)

    def acknowledge_notification(
        self,
        result_id: str,
        acknowledged_by: str,
        notified_to: Optional[str] = None,
        notification_method: Optional[str] = None
    ) -> Result[CriticalResultNotification]:
        try:
            conn = self._ensure_schema()
            updated = conn.execute("""
                UPDATE critical_notifications
                SET notification_status = ?, acknowledged_at = ?, acknowledged_by = ?,
                    notified_to = ?, notification_method = ?
                WHERE result_id = ? AND notification_status = ?
                RETURNING result_id
            """, [
                NotificationStatus.ACKNOWLEDGED.value,
                datetime.now(),
                acknowledged_by,
                notified_to,
                notification_method,
                result_id,
                NotificationStatus.PENDING.value,
            ]).fetchall()
        except Exception as e:
            error_msg = f"Failed to acknowledge notification for result {result_id}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="acknowledge_notification"),
                error_type="StorageError",
                error_details={"result_id": result_id}
            )

        if not updated:
            return Result.failure_result(
                f"No pending notification for result {result_id}",
                error_type="NotificationError",
                error_details={"result_id": result_id}
            )

        self.write_audit_log(
            result_id,
            [],
            None,
            action=AuditAction.NOTIFICATION_ACKNOWLEDGED.value,
            details={"acknowledged_by": acknowledged_by, "notified_to": notified_to, "method": notification_method},
            performed_by=acknowledged_by,
        )
        return Result.success_result(self.get_notification(result_id))

    def list_pending_notifications(self, tenant_id: Optional[str] = None) -> list[CriticalResultNotification]:
        conn = self._ensure_schema()
        sql = f"SELECT {_NOTIFICATION_COLUMNS} FROM critical_notifications WHERE notification_status = ?"
        params: list[Any] = [NotificationStatus.PENDING.value]
        if tenant_id is not None:
            sql += " AND tenant_id = ?"
            params.append(tenant_id)
        sql += " ORDER BY created_at"
        return [self._row_to_notification(row) for row in conn.execute(sql, params).fetchall()]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def write_audit_log(
        self,
        result_id: str,
        applied_rule_ids: list[str],
        verdict: Optional[ValidationVerdict],
        action: str = AuditAction.VALIDATION.value,
        final_status: Optional[str] = None,
        details: Optional[dict] = None,
        performed_by: str = "system"
    ) -> Result[str]:
        entry = AuditLogEntry(
            audit_id=str(uuid.uuid4()),
            result_id=str(result_id),
            action=AuditAction(action),
            applied_rule_ids=list(applied_rule_ids),
            verdict=verdict.model_dump(mode="json") if verdict is not None else None,
            final_status=final_status,
            performed_by=performed_by,
            details=details or {},
        )
        flushed = self.flush_audit_logs([entry])
        if flushed.is_failure():
            return Result.failure_result(flushed.error, error_type=flushed.error_type)
        return Result.success_result(entry.audit_id)

    def flush_audit_logs(self, entries: list[AuditLogEntry]) -> Result[int]:
        """Append buffered audit entries in a single transaction.

        Returns:
            Result[int]: Number of entries persisted or error
        """
        if not entries:
            return Result.success_result(0)

        try:
            conn = self._ensure_schema()
            conn.execute("BEGIN TRANSACTION")
            try:
                conn.executemany("""
                    INSERT INTO audit_log (
                        audit_id, result_id, action, applied_rule_ids, verdict,
                        final_status, performed_by, performed_at, details
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, [
                    [
                        entry.audit_id,
                        entry.result_id,
                        entry.action.value,
                        json.dumps(entry.applied_rule_ids),
                        json.dumps(entry.verdict) if entry.verdict is not None else None,
                        entry.final_status,
                        entry.performed_by,
                        entry.performed_at,
                        json.dumps(entry.details, default=str),
                    ]
                    for entry in entries
                ])
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

            logger.debug(f"Flushed {len(entries)} audit entries to database")
            return Result.success_result(len(entries))

        except Exception as e:
            error_msg = f"Failed to flush audit logs: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="flush_audit_logs"),
                error_type="StorageError"
            )

    def get_audit_logs(self, result_id: str) -> list[AuditLogEntry]:
        """Audit entries for a result, oldest first."""
        conn = self._ensure_schema()
        rows = conn.execute("""
            SELECT audit_id, result_id, action, applied_rule_ids, verdict,
                   final_status, performed_by, performed_at, details
            FROM audit_log WHERE result_id = ?
            ORDER BY performed_at, audit_id
        """, [result_id]).fetchall()
        return [
            AuditLogEntry(
                audit_id=audit_id,
                result_id=rid,
                action=action,
                applied_rule_ids=_load_json(applied) or [],
                verdict=_load_json(verdict),
                final_status=final_status,
                performed_by=performed_by,
                performed_at=performed_at,
                details=_load_json(details) or {},
            )
            for audit_id, rid, action, applied, verdict, final_status, performed_by, performed_at, details in rows
        ]

    # ------------------------------------------------------------------
    # Ad-hoc queries
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Optional[list] = None) -> Result[pd.DataFrame]:
        """Run a read query and return the rows as a DataFrame."""
        try:
            conn = self._ensure_schema()
            return Result.success_result(conn.execute(sql, params or []).df())
        except Exception as e:
            error_msg = f"Query failed: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(StorageError(error_msg, operation="query"), error_type="StorageError")

    def close(self) -> None:
        """Close storage connection and release resources."""
        if self._connection is not None:
            try:
                self._connection.close()
                self._connection = None
                self._initialized = False
                logger.info("Closed DuckDB connection")
            except Exception as e:
                logger.warning(f"Error closing connection: {str(e)}")
