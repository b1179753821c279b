"""
Logging configuration for MedLedger.

Provides structured JSON logging for audit trails and debugging.
Encrypted keys are never passed to the logger; identities are
masked unless debug mode is on.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from .config import is_debug
from .util import mask_sensitive

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def _identity(value: Optional[str]) -> Optional[str]:
    if value is None or is_debug():
        return value
    return mask_sensitive(value, visible_chars=6)


class RegistryAuditLogger:
    """
    Specialized logger for registry actions.

    One method per domain action. These are operational logs; the
    authoritative audit trail is the hash-chained audit table.
    """

    def __init__(self, name: str = "medledger.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def record_created(self, record_id: int, patient: str, provider_count: int) -> None:
        self._log(
            logging.INFO,
            "RECORD_CREATED",
            record_id=record_id,
            patient=_identity(patient),
            provider_count=provider_count,
            message=f"Record {record_id} created"
        )

    def provider_authorized(self, record_id: int, provider: str) -> None:
        self._log(
            logging.INFO,
            "PROVIDER_AUTHORIZED",
            record_id=record_id,
            provider=_identity(provider),
            message=f"Provider authorized on record {record_id}"
        )

    def provider_revoked(self, record_id: int, provider: str, was_authorized: bool) -> None:
        self._log(
            logging.INFO,
            "PROVIDER_REVOKED",
            record_id=record_id,
            provider=_identity(provider),
            was_authorized=was_authorized,
            message=f"Provider revoked on record {record_id}"
        )

    def record_deleted(self, record_id: int, already_inactive: bool) -> None:
        level = logging.WARNING if already_inactive else logging.INFO
        self._log(
            level,
            "RECORD_DELETED",
            record_id=record_id,
            already_inactive=already_inactive,
            message=f"Record {record_id} marked inactive"
        )

    def key_lookup(self, record_id: int, caller: str, found: bool) -> None:
        self._log(
            logging.DEBUG,
            "KEY_LOOKUP",
            record_id=record_id,
            caller=_identity(caller),
            found=found,
            message=f"Key lookup on record {record_id}"
        )

    def access_denied(self, record_id: int, caller: str, operation: str) -> None:
        """Log an owner-gated operation attempted by a non-owner."""
        self._log(
            logging.WARNING,
            "ACCESS_DENIED",
            record_id=record_id,
            caller=_identity(caller),
            operation=operation,
            message=f"{operation} denied on record {record_id}"
        )

    def operation_aborted(self, operation: str, code: str, reason: str) -> None:
        self._log(
            logging.WARNING,
            "OPERATION_ABORTED",
            operation=operation,
            code=code,
            reason=reason,
            message=f"{operation} aborted: {code}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


# Global audit logger instance
audit_log = RegistryAuditLogger()
