"""CSV Result Ingestion Adapter.

This adapter reads test results from a CSV (or TSV) file exported by an
analyzer middleware or LIS, in chunks, and yields one TestResult per row.

Column names are matched case-insensitively against a set of common aliases
(``testCode``, ``test_code``, ``code``...), or an explicit column mapping can
be supplied.

Security Impact:
    - Each row is validated independently; a bad row is logged and yielded as
      a failure, never validated against rules
    - Values are read as text so nothing is coerced before normalization

Architecture:
    - Implements IngestionPort (Hexagonal Architecture)
    - Streaming pattern (pandas chunked reader) prevents memory exhaustion
    - Fail-safe design: bad rows don't crash the batch
"""

import logging
from pathlib import Path
from typing import Dict, Iterator, Optional

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from src.domain.ports import (
    IngestionPort,
    Result,
    SourceNotFoundError,
    UnsupportedSourceError,
)
from src.domain.results import TestResult

logger = logging.getLogger(__name__)

_COLUMN_ALIASES: Dict[str, tuple[str, ...]] = {
    "id": ("id", "result_id", "resultid"),
    "tenant_id": ("tenant_id", "tenantid", "tenant"),
    "patient_id": ("patient_id", "patientid", "mrn"),
    "test_order_id": ("test_order_id", "testorderid", "order_id", "orderid"),
    "test_code": ("test_code", "testcode", "code"),
    "test_name": ("test_name", "testname", "name"),
    "value": ("value", "result", "result_value"),
    "unit": ("unit", "units"),
    "reference_range": ("reference_range", "referencerange", "ref_range", "range"),
    "result_type": ("result_type", "resulttype", "type"),
    "status": ("status",),
    "performed_at": ("performed_at", "performedat", "performed", "result_time"),
}

REQUIRED_FIELDS = ("id", "patient_id", "test_code", "value")


class CSVResultIngester(IngestionPort):
    """CSV ingestion adapter producing TestResult records.

    Example Usage:
        ```python
        ingester = CSVResultIngester(default_tenant_id="lab-1", chunk_size=5000)
        for result in ingester.ingest("results.csv"):
            if result.is_success():
                service.validate_result(result.value)
            else:
                print(result.error_details["row_number"], result.error)
        ```
    """

    def __init__(
        self,
        column_mapping: Optional[Dict[str, str]] = None,
        default_tenant_id: str = "default",
        delimiter: str = ',',
        chunk_size: int = 10000
    ):
        """Initialize CSV ingester.

        Parameters:
            column_mapping: Dictionary mapping TestResult fields to CSV column
                names. If None, columns are detected from the header row.
            default_tenant_id: Tenant assigned to rows without a tenant column
            delimiter: CSV delimiter (TSV files always use a tab)
            chunk_size: Rows read per chunk
        """
        self.column_mapping = column_mapping or {}
        self.default_tenant_id = default_tenant_id
        self.delimiter = delimiter
        self.chunk_size = chunk_size
        self.adapter_name = "csv_result_ingester"

    def can_ingest(self, source: str) -> bool:
        if not source:
            return False
        return Path(source).suffix.lower() in ('.csv', '.tsv')

    def get_source_info(self, source: str) -> Optional[dict]:
        try:
            source_path = Path(source)
            if source_path.exists():
                return {
                    'format': 'csv',
                    'size': source_path.stat().st_size,
                    'encoding': 'utf-8',
                    'exists': True,
                    'delimiter': '\t' if source_path.suffix.lower() == '.tsv' else self.delimiter,
                }
        except (OSError, ValueError):
            pass
        return None

    def detect_column_mapping(self, columns: list[str]) -> Dict[str, str]:
        """Map TestResult fields to header columns.

        An explicit column mapping wins; remaining fields are matched against
        known aliases, ignoring case and surrounding whitespace.
        """
        header_map = {str(col).strip().lower(): col for col in columns}
        mapping: Dict[str, str] = {}
        for field, csv_col in self.column_mapping.items():
            mapping[field] = header_map.get(csv_col.strip().lower(), csv_col)

        for field, aliases in _COLUMN_ALIASES.items():
            if field in mapping:
                continue
            for alias in aliases:
                if alias in header_map:
                    mapping[field] = header_map[alias]
                    break
        return mapping

    def ingest(self, source: str) -> Iterator[Result[TestResult]]:
        """Ingest results and yield one Result per row.

        Yields:
            Result[TestResult]: Parsed result, or a failure carrying the row
            number and validation messages

        Raises:
            SourceNotFoundError: If source file doesn't exist
            UnsupportedSourceError: If required columns are missing
        """
        source_path = Path(source)
        if not source_path.exists():
            raise SourceNotFoundError(f"CSV source not found: {source}", source=source)

        delimiter = '\t' if source_path.suffix.lower() == '.tsv' else self.delimiter

        try:
            chunk_iterator = pd.read_csv(
                source_path,
                chunksize=self.chunk_size,
                delimiter=delimiter,
                dtype=str,
                keep_default_na=False,
                encoding='utf-8',
            )
        except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
            raise UnsupportedSourceError(
                f"Cannot parse CSV source {source}: {str(e)}",
                source=source,
                adapter=self.adapter_name
            )

        mapping: Optional[Dict[str, str]] = None
        total_processed = 0
        total_rejected = 0

        for chunk_df in chunk_iterator:
            if mapping is None:
                mapping = self.detect_column_mapping(chunk_df.columns.tolist())
                missing = [field for field in REQUIRED_FIELDS if field not in mapping]
                if missing:
                    raise UnsupportedSourceError(
                        f"CSV source {source} is missing required columns: {missing}",
                        source=source,
                        adapter=self.adapter_name
                    )
                logger.info(f"Detected column mapping for {source}: {mapping}")

            for offset, row in enumerate(chunk_df.to_dict(orient="records")):
                # header is line 1
                row_number = total_processed + offset + 2
                result = self._row_to_result(row, mapping, source, row_number)
                if result.is_failure():
                    total_rejected += 1
                yield result
            total_processed += len(chunk_df)

        logger.info(f"Ingested {total_processed} row(s) from {source} ({total_rejected} rejected)")

    def _row_to_result(
        self,
        row: dict,
        mapping: Dict[str, str],
        source: str,
        row_number: int
    ) -> Result[TestResult]:
        record = {}
        for field, column in mapping.items():
            raw = row.get(column)
            if raw is None:
                continue
            text = str(raw).strip()
            if text == "":
                continue
            record[field] = text

        record.setdefault("tenant_id", self.default_tenant_id)

        try:
            return Result.success_result(TestResult.model_validate(record))
        except PydanticValidationError as e:
            messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            logger.warning(f"Rejected row {row_number} from {source}: {'; '.join(messages)}")
            return Result.failure_result(
                f"Invalid result row {row_number}: {'; '.join(messages)}",
                error_type="ValidationError",
                error_details={"row_number": row_number, "source": source, "errors": messages}
            )
