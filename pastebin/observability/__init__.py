from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from flask import Flask, Response, g, has_request_context, request


CORRELATION_HEADER = "X-Correlation-ID"

# ``extra=`` keys copied into every JSON line when present on the record.
STRUCTURED_FIELDS = (
    "event",
    "correlation_id",
    "http_method",
    "http_path",
    "http_status",
    "duration_ms",
    "paste_id",
    "storage",
    "error_type",
)

access_logger = logging.getLogger("pastebin.access")


class RequestContextFilter(logging.Filter):
    """Stamp records emitted while serving a request with that request's details."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if has_request_context():
            if getattr(record, "correlation_id", None) is None:
                record.correlation_id = g.get("correlation_id")
            record.http_method = request.method
            record.http_path = request.path
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, timestamped with the record's creation time."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                line[key] = value
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


def get_correlation_id() -> str | None:
    """Correlation id of the request being served, or None outside a request."""
    if not has_request_context():
        return None
    return g.get("correlation_id")


def _install_json_handler(level: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers = [handler]


def init_observability(app: Flask) -> None:
    """
    Wire structured logging and request tracing into ``app``.

    Outside of testing the root logger is switched to JSON lines at
    ``LOG_LEVEL``. Every request gets a correlation id, taken from the
    ``X-Correlation-ID`` header when the caller sends one and echoed back on
    the response, and one ``request_completed`` access line with its status
    and duration.
    """

    if not app.config.get("TESTING", False):
        _install_json_handler(app.config.get("LOG_LEVEL", "INFO"))

    @app.before_request
    def _start_request() -> None:  # type: ignore[unused-variable]
        g.correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        g.request_started = time.perf_counter()

    @app.after_request
    def _finish_request(response: Response) -> Response:  # type: ignore[unused-variable]
        correlation_id = get_correlation_id()
        if correlation_id:
            response.headers[CORRELATION_HEADER] = correlation_id

        started = g.get("request_started")
        elapsed = None if started is None else round((time.perf_counter() - started) * 1000, 2)
        access_logger.info(
            "%s %s -> %d",
            request.method,
            request.path,
            response.status_code,
            extra={
                "event": "request_completed",
                "http_status": response.status_code,
                "duration_ms": elapsed,
            },
        )
        return response
