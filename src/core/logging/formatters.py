"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from core.logging.context import get_log_context


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Credential-bearing fields are never emitted.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Errors
        "error_category",
        "error_kind",
        "error_message",
        "http_status",
        "request_id",
        # HTTP
        "http_method",
        "path",
        "attempt",
        "delay_seconds",
        "duration_ms",
        "timeout_seconds",
        # Circuit breaker
        "circuit_name",
        "circuit_state",
        "failure_count",
        "success_count",
        "old_state",
        "new_state",
        # Credentials
        "refresh_source",
        "expires_in",
        # Worker
        "worker_state",
        "event_type",
        "active_jobs",
        "capacity",
        "claimed",
        "concurrency",
        "lease_duration",
        "retry_count",
        "max_retries",
        "progress",
    ]

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Inject context variables, explicit extras win
        ctx = get_log_context()
        for key in ("worker_id", "queue_name", "job_id"):
            value = getattr(record, key, None) or ctx[key]
            if value:
                log_entry[key] = value

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Includes context when available.
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
            record.name,
        ]

        worker_id = getattr(record, "worker_id", None) or ctx["worker_id"]
        if worker_id:
            parts.append(f"[{worker_id}]")

        prefix = " - ".join(parts)

        job_id = getattr(record, "job_id", None) or ctx["job_id"]
        text = f"{prefix} - {record.getMessage()}"
        if job_id:
            text = f"{prefix} - [{job_id[:8]}] {record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text
