"""
Logging configuration for PetitionSeal.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from .util import mask_email

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
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


class AuditLogger:
    """
    Specialized logger for audit events.

    One method per event of the signature pipeline. Emails are masked,
    codes and tokens are never passed in.
    """

    def __init__(self, name: str = "petitionseal.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
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

    def otp_requested(self, email: str, ip: str, expires_at: int) -> None:
        self._log(
            logging.INFO,
            "OTP_REQUESTED",
            email=mask_email(email),
            ip=ip,
            expires_at=expires_at,
            message="Verification code issued"
        )

    def otp_delivery_failed(self, email: str, provider: str, error: str) -> None:
        self._log(
            logging.ERROR,
            "OTP_DELIVERY_FAILED",
            email=mask_email(email),
            provider=provider,
            error=error,
            message="Verification code could not be delivered"
        )

    def otp_verified(self, email: str, otp_id: int) -> None:
        self._log(
            logging.INFO,
            "OTP_VERIFIED",
            email=mask_email(email),
            otp_id=otp_id,
            message="Verification code accepted"
        )

    def otp_rejected(self, email: str, reason: str) -> None:
        self._log(
            logging.WARNING,
            "OTP_REJECTED",
            email=mask_email(email),
            reason=reason,
            message=f"Verification code rejected: {reason}"
        )

    def signature_recorded(
        self,
        signature_id: str,
        petition_id: str,
        audit_hash: str,
        method: str
    ) -> None:
        self._log(
            logging.INFO,
            "SIGNATURE_RECORDED",
            signature_id=signature_id,
            petition_id=petition_id,
            audit_hash=audit_hash,
            method=method,
            message=f"Signature {signature_id} recorded"
        )

    def signature_rejected(self, reason: str, petition_slug: Optional[str] = None) -> None:
        self._log(
            logging.WARNING,
            "SIGNATURE_REJECTED",
            reason=reason,
            petition_slug=petition_slug,
            message=f"Signature rejected: {reason}"
        )

    def receipt_failed(self, signature_id: str, error: str) -> None:
        """Receipt rendering failed; the signature stands and the receipt can be retried."""
        self._log(
            logging.ERROR,
            "RECEIPT_FAILED",
            signature_id=signature_id,
            error=error,
            retry=True,
            message=f"Receipt generation failed for {signature_id}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )

    def rate_limit_exceeded(self, key: str, endpoint: str) -> None:
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=key,
            endpoint=endpoint,
            message=f"Rate limit exceeded on {endpoint}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
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
audit_log = AuditLogger()
