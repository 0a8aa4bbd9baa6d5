"""Logging setup shared by the CLI, the batch entry point and the API.

Plain text goes to stderr for people; ``LV_JSON_LOGS=true`` switches to one
JSON object per line on stdout for log shippers.

Security Impact:
    - Validation decisions are logged with result and tenant ids only, never
      with patient identifiers or values beyond what the message states
    - JSON records keep request ids so API calls can be joined to audit entries
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# Attributes passed through ``extra=`` that are copied into JSON records
CONTEXT_FIELDS = ("request_id", "client_ip", "endpoint", "result_id", "tenant_id", "test_code", "rule_id")

NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "fastapi", "httpx")

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(use_json: bool = False, log_level: str = "INFO") -> None:
    """Replace root handlers with a single configured handler.

    Parameters:
        use_json: Emit JSON lines on stdout instead of text on stderr
        log_level: Level name; unknown names fall back to INFO
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout if use_json else sys.stderr)
    handler.setFormatter(StructuredFormatter() if use_json else logging.Formatter(TEXT_FORMAT, "%H:%M:%S"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
