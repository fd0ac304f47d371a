"""
Structured logging for batch operations, validation outcomes and progress.
"""

import logging
import os
from typing import Any, Dict, List

DEFAULT_SENSITIVE_FIELDS = ['content', 'metadata', 'item_data', 'embedding', 'value', 'secret', 'password']


class StructuredLogger:
    """Structured logger for batch create/update/deprecate workflows."""

    def __init__(self, name: str = "memory_batch"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_batch_started(self, operation: str, batch_id: str, total_count: int):
        """Log the start of a batch operation."""
        self.log_operation(f"batch.{operation}", "started", {
            "batch_id": batch_id,
            "total_count": total_count
        })

    def log_batch_item_failed(self, operation: str, batch_id: str, item_index: int, message: str):
        """Log a single failed item inside a batch."""
        self.log_operation(f"batch.{operation}.item", "failed", {
            "batch_id": batch_id,
            "item_index": item_index,
            "error": message[:100] if message else ""
        }, level=logging.WARNING)

    def log_batch_completed(self, operation: str, batch_id: str, success_count: int, failure_count: int,
                            duration_ms: float):
        """Log batch completion with counters."""
        self.log_operation(f"batch.{operation}", "completed", {
            "batch_id": batch_id,
            "success_count": success_count,
            "failure_count": failure_count,
            "duration_ms": round(duration_ms, 2)
        })

    def log_batch_rolled_back(self, operation: str, batch_id: str, reason: str):
        """Log a transaction rollback."""
        self.log_operation(f"batch.{operation}", "rolled_back", {
            "batch_id": batch_id,
            "reason": reason[:200] if reason else ""
        }, level=logging.ERROR)

    def log_batch_cancelled(self, operation: str, batch_id: str, processed_count: int):
        """Log a caller-initiated cancellation."""
        self.log_operation(f"batch.{operation}", "cancelled", {
            "batch_id": batch_id,
            "processed_count": processed_count
        }, level=logging.WARNING)

    def log_progress(self, batch_id: str, processed_count: int, total_count: int, percentage: int):
        """Log a progress update (debug only)."""
        self.log_operation("batch.progress", "running", {
            "batch_id": batch_id,
            "processed": processed_count,
            "total": total_count,
            "percentage": percentage
        }, level=logging.DEBUG)

    def log_validation_error(self, operation: str, errors: List[Any], source_record: Dict[str, Any] = None):
        """Log validation errors by field name and message; record content is never logged."""
        sanitized_errors = []
        for error in errors:
            if isinstance(error, dict):
                # Field -> messages maps carry rule text only
                sanitized_errors.append({
                    str(field): [str(message)[:100] for message in (messages if isinstance(messages, list) else [messages])]
                    for field, messages in error.items()
                })
            else:
                sanitized_errors.append(str(error)[:100])

        log_details = {
            "operation": operation,
            "errors": sanitized_errors,
            "error_count": len(sanitized_errors)
        }

        if source_record:
            # Only log identifiers, never content
            if "project_id" in source_record:
                log_details["project_id"] = source_record["project_id"]
            if "item_index" in source_record:
                log_details["item_index"] = source_record["item_index"]

        self.log_operation("validation.error", "rejected", log_details, level=logging.WARNING)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
