"""Structured JSON logging for the order audit trail"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from debt_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_order_event(
    request_id: str,
    order_id: str,
    event: str,
    kind: Optional[str] = None,
    status: Optional[str] = None,
    receipt: Optional[str] = None,
    duration_ms: Optional[float] = None,
) -> None:
    """Log a lifecycle transition: created, fill_submitted, cancel_submitted, cancel_noop"""
    logging.info(
        "Order event",
        extra={
            "request_id": request_id,
            "order_id": order_id,
            "event": event,
            "kind": kind,
            "status": status,
            "receipt": receipt,
            "duration_ms": duration_ms,
        },
    )


def log_signature_event(
    request_id: str,
    order_id: str,
    role: str,
    outcome: str,
    signer: Optional[str] = None,
    reason: Optional[str] = None,
) -> None:
    """Log a signature attachment attempt and its outcome"""
    level = logging.WARNING if outcome == "rejected" else logging.INFO
    logging.log(
        level,
        "Signature event",
        extra={
            "request_id": request_id,
            "order_id": order_id,
            "event": f"signature_{outcome}",
            "role": role,
            "signer": signer,
            "reason": reason,
        },
    )
