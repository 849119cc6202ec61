"""Gateway audit trail as JSON lines.

One record per event: startup, each forwarded or rejected request, each
completed or aborted relay. Per-request fields travel in
`extra={"audit_data": {...}}`; the request id comes from a context var so
records from one proxied exchange can be joined.

Secrets are masked before they are logged (see `mask_token`).
"""

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from contextvars import ContextVar

from maxmux.config.settings import Settings

LOGGER_NAME = "maxmux.audit"

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class JSONFormatter(logging.Formatter):
    """Renders a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(),
            **getattr(record, "audit_data", {}),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(settings: Settings) -> None:
    """Point the audit logger at stdout, plus `audit_log_file` when configured."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.audit_log_file:
        handlers.append(logging.FileHandler(settings.audit_log_file))

    logger = get_audit_logger()
    logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    # JSON only; uvicorn's root handlers would print each record a second time
    logger.propagate = False


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


def mask_token(token: str) -> str:
    """Keep a short prefix and suffix of a credential, hide the rest."""
    if len(token) <= 16:
        return "***"
    return f"{token[:12]}...{token[-6:]}"


class RequestTimer:
    """Wall-clock duration of one proxied exchange, in milliseconds.

    Starts on construction (or on entering a `with` block). A streamed
    response outlives the handler that created it, so the relay calls
    `stop()` itself when the last byte is sent.
    """

    def __init__(self):
        self.start_time: float = time.perf_counter()
        self.elapsed_ms: float = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.stop()

    def stop(self) -> float:
        self.elapsed_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        return self.elapsed_ms
