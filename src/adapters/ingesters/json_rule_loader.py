"""JSON Rule Loader.

This adapter reads validation rule documents from a JSON file and serves them
as a rule repository, so the engine can run against a file-based rule set
without a database (CLI, tests, ad-hoc API evaluation).

Supported structures:
    - Array of rule documents: ``[{"id": ..., "ruleType": ...}, ...]``
    - Object with a ``rules`` (or ``data``) array
    - Single rule document

Security Impact:
    - Each rule document is validated independently; a malformed rule is
      logged and rejected, never evaluated
    - Invalid regular expressions are rejected at load time

Architecture:
    - Implements IngestionPort and RuleRepositoryPort (Hexagonal Architecture)
    - Isolated from domain services - only depends on ports and models
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterator, Optional

from src.domain.ports import (
    IngestionPort,
    Result,
    RuleRepositoryError,
    RuleRepositoryPort,
    SourceNotFoundError,
    UnsupportedSourceError,
)
from src.domain.rules import RuleBase, parse_rule

logger = logging.getLogger(__name__)


class JSONRuleLoader(IngestionPort, RuleRepositoryPort):
    """File-backed rule repository.

    Example Usage:
        ```python
        loader = JSONRuleLoader("rules/glucose.json")
        rules = loader.fetch_rules("lab-1", "GLU")

        # Or inspect every document, including the rejected ones
        for result in JSONRuleLoader().ingest("rules/glucose.json"):
            if result.is_failure():
                print(result.error_details["rule_id"], result.error)
        ```
    """

    def __init__(self, source: Optional[str] = None):
        """Initialize rule loader.

        Parameters:
            source: Rule file served by fetch_rules (loaded lazily)
        """
        self.source = source
        self.adapter_name = "json_rule_loader"
        self._rules: Optional[list[RuleBase]] = None

    def can_ingest(self, source: str) -> bool:
        if not source:
            return False
        return Path(source).suffix.lower() == '.json'

    def get_source_info(self, source: str) -> Optional[dict]:
        try:
            source_path = Path(source)
            if source_path.exists():
                return {
                    'format': 'json',
                    'size': source_path.stat().st_size,
                    'encoding': 'utf-8',
                    'exists': True,
                }
        except (OSError, ValueError):
            pass
        return None

    def ingest(self, source: str) -> Iterator[Result[RuleBase]]:
        """Parse every rule document in the file.

        Yields:
            Result[RuleBase]: Typed rule, or a RuleDefinitionError failure

        Raises:
            SourceNotFoundError: If source file doesn't exist
            UnsupportedSourceError: If source is not valid JSON
        """
        for index, document in enumerate(self._read_documents(source)):
            if not isinstance(document, dict):
                yield Result.failure_result(
                    f"Rule document {index} in {source} is not an object",
                    error_type="RuleDefinitionError",
                    error_details={"rule_id": None, "index": index, "source": source}
                )
                continue
            result = parse_rule(document)
            if result.is_failure():
                logger.warning(f"Rejected rule document {index} from {source}: {result.error}")
            yield result

    def _read_documents(self, source: str) -> list[Any]:
        source_path = Path(source)
        if not source_path.exists():
            raise SourceNotFoundError(f"Rule source not found: {source}", source=source)

        try:
            with open(source_path, 'r', encoding='utf-8') as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise UnsupportedSourceError(
                f"Invalid JSON format in {source}: {str(e)}",
                source=source,
                adapter=self.adapter_name
            )
        except OSError as e:
            raise SourceNotFoundError(f"Cannot read rule source {source}: {str(e)}", source=source)

        if isinstance(raw_data, list):
            return raw_data
        if isinstance(raw_data, dict):
            for key in ('rules', 'data'):
                if isinstance(raw_data.get(key), list):
                    return raw_data[key]
            return [raw_data]
        raise UnsupportedSourceError(
            f"Unsupported JSON structure: expected array or object, got {type(raw_data).__name__}",
            source=source,
            adapter=self.adapter_name
        )

    def load(self, source: Optional[str] = None) -> list[RuleBase]:
        """Load (and cache) every valid rule from the file."""
        source = source or self.source
        if source is None:
            raise SourceNotFoundError("No rule source configured")
        self.source = source
        self._rules = [result.value for result in self.ingest(source) if result.is_success()]
        logger.info(f"Loaded {len(self._rules)} rule(s) from {source}")
        return list(self._rules)

    def fetch_rules(self, tenant_id: str, test_code: str) -> list[RuleBase]:
        """Enabled rules for the test code, in priority order.

        Rules without a tenant apply to every tenant.
        """
        try:
            rules = self._rules if self._rules is not None else self.load()
        except (SourceNotFoundError, UnsupportedSourceError) as e:
            raise RuleRepositoryError(str(e), tenant_id=tenant_id, test_code=test_code) from e

        selected = [
            rule for rule in rules
            if rule.test_code == test_code
            and rule.enabled
            and (rule.tenant_id is None or rule.tenant_id == tenant_id)
        ]
        return sorted(selected, key=lambda rule: rule.priority)
