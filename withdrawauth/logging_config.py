"""
Logging configuration for withdrawauth.

Provides structured JSON logging and an audit logger for the withdrawal
authorization flow.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

# Context variable correlating all records of one withdrawal attempt
attempt_id_var: ContextVar[str] = ContextVar('attempt_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per record, suitable for log aggregation.
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

        attempt_id = attempt_id_var.get()
        if attempt_id:
            log_data["attempt_id"] = attempt_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Logger for withdrawal authorization events.

    Every state transition of a withdrawal attempt is recorded with the
    addresses involved, so an attempt can be reconstructed from the log.
    """

    def __init__(self, name: str = "withdrawauth.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "attempt_id": attempt_id_var.get(),
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

    def withdrawal_started(self, collateral: str, sender: str, recipient: str, amount: int) -> None:
        self._log(
            logging.INFO,
            "WITHDRAWAL_STARTED",
            collateral=collateral,
            sender=sender,
            recipient=recipient,
            amount=amount,
            message=f"Withdrawal of {amount} from {collateral} requested"
        )

    def approval_checked(self, approval_record: str, already_approved: bool) -> None:
        self._log(
            logging.INFO,
            "APPROVAL_CHECKED",
            approval_record=approval_record,
            already_approved=already_approved,
            message=f"Custody approval {'present' if already_approved else 'absent'}"
        )

    def approval_submitted(self, approval_record: str, signature: str) -> None:
        self._log(
            logging.INFO,
            "APPROVAL_SUBMITTED",
            approval_record=approval_record,
            signature=signature,
            message=f"Custody approval submitted in {signature}"
        )

    def duplicate_approval(self, approval_record: str, reason: str) -> None:
        self._log(
            logging.WARNING,
            "DUPLICATE_APPROVAL",
            approval_record=approval_record,
            reason=reason,
            message="Custody approval already recorded by a concurrent submission"
        )

    def coordinator_resolved(self, coordinator: str, approver: str) -> None:
        self._log(
            logging.INFO,
            "COORDINATOR_RESOLVED",
            coordinator=coordinator,
            approver=approver,
            message=f"Coordinator approver {approver}"
        )

    def withdrawal_submitted(self, signature: str) -> None:
        self._log(
            logging.INFO,
            "WITHDRAWAL_SUBMITTED",
            signature=signature,
            message=f"Withdrawal submitted in {signature}"
        )

    def withdrawal_confirmed(self, signature: str) -> None:
        self._log(
            logging.INFO,
            "WITHDRAWAL_CONFIRMED",
            signature=signature,
            message=f"Withdrawal {signature} confirmed"
        )

    def withdrawal_failed(self, state: str, error: Exception) -> None:
        self._log(
            logging.ERROR,
            "WITHDRAWAL_FAILED",
            state=state,
            error_type=type(error).__name__,
            error=str(error),
            message=f"Withdrawal failed after {state}: {error}"
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
        json_format: Use JSON formatting
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

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_attempt_id(attempt_id: Optional[str] = None) -> str:
    """
    Set the attempt ID for the current context.

    Returns:
        The attempt ID that was set
    """
    if attempt_id is None:
        attempt_id = str(uuid.uuid4())
    attempt_id_var.set(attempt_id)
    return attempt_id


def get_attempt_id() -> str:
    return attempt_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
