"""Structured logging for the contact center service."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


def configure_logging(
    service_name: str = "contact-center",
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure root logging once at application start."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if root.handlers:
        root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(root.level)

    if json_format:
        handler.setFormatter(StructuredFormatter(service_name=service_name))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )

    root.addHandler(handler)


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter."""

    def __init__(self, service_name: str = "contact-center", *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "request_id": getattr(record, "request_id", None),
            "message": record.getMessage(),
            "context": getattr(record, "context", {}),
        }
        if record.exc_info:
            log_obj["stack_trace"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    request_id: str | None = None,
    exc_info: bool = False,
    **context: Any,
) -> None:
    """Log with structured context."""
    extra = {"request_id": request_id, "context": context}
    logger.log(level, message, extra=extra, exc_info=exc_info)
