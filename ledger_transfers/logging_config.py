"""
Structured Logging Configuration Module

Provides JSON-formatted structured logging for ledger operations. Transfer
context travels as named record attributes (see LEDGER_FIELDS), so every line
about a transfer can be filtered by account, reason code or amount.
"""

import logging
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict


# Record attributes emitted by both formatters, in output order
LEDGER_FIELDS = (
    "action", "code", "account_id", "source_id", "destination_id",
    "amount", "balance", "source_balance", "destination_balance",
)

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def ledger_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Ledger context attached to a record, skipping unset fields"""
    fields = {}
    for name in LEDGER_FIELDS:
        value = getattr(record, name, None)
        if value is None:
            continue
        # Decimals render as their exact string, never as floats
        fields[name] = str(value) if isinstance(value, Decimal) else value
    return fields


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(ledger_fields(record))

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain log lines with the ledger context appended as key=value pairs"""

    def __init__(self):
        super().__init__(TEXT_FORMAT)

    def formatMessage(self, record):
        line = super().formatMessage(record)
        fields = ledger_fields(record)
        if fields:
            line += " " + " ".join(f"{name}={value}" for name, value in fields.items())
        return line


def setup_logging(level: str = "INFO", log_format: str = "json",
                  logger_name: str = "ledger") -> logging.Logger:
    """
    Setup logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "json" for structured output, "text" for plain lines
        logger_name: Name of the root application logger

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(TextFormatter() if log_format == "text" else JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "ledger") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str, action: str,
               exc_info: bool = False, **fields: Any) -> None:
    """
    Log a ledger action together with its transfer context.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        action: Ledger operation being performed, e.g. "apply_transfer"
        exc_info: Attach the exception currently being handled
        **fields: Values for LEDGER_FIELDS; None values are dropped

    Raises:
        TypeError: If a field name is not one of LEDGER_FIELDS
    """
    unknown = sorted(set(fields) - set(LEDGER_FIELDS))
    if unknown:
        raise TypeError(f"unknown ledger log fields: {', '.join(unknown)}")

    context = {name: value for name, value in fields.items() if value is not None}
    context["action"] = action

    logger.log(getattr(logging, level.upper()), message, extra=context, exc_info=exc_info)
