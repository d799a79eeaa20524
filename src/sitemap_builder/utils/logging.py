"""Logging setup with structured output and request middleware."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from time import perf_counter
from typing import Any, Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.responses import Response

from sitemap_builder.config import Settings

REDACTED = "[REDACTED]"
REQUEST_ID_HEADER = "X-Request-ID"
SENSITIVE_FIELD_MARKERS = (
    "password",
    "secret",
    "token",
    "credential",
    "authorization",
    "api_key",
)

_RESERVED_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=None, exc_info=None
    ).__dict__
) | {"message", "asctime"}


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELD_MARKERS)


def _redact(value: Any) -> Any:
    """Return ``value`` with sensitive keys masked at any nesting depth."""

    if isinstance(value, dict):
        return {
            key: REDACTED if _is_sensitive_key(str(key)) else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(item) for item in value)
    return value


def _extra_keys(record: logging.LogRecord) -> list[str]:
    return [key for key in record.__dict__ if key not in _RESERVED_RECORD_ATTRIBUTES]


class SensitiveDataFilter(logging.Filter):
    """Mask secrets in dict messages, dict args, and ``extra`` fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, dict):
            record.msg = _redact(record.msg)
        if isinstance(record.args, dict):
            record.args = _redact(record.args)

        for key in _extra_keys(record):
            value = getattr(record, key)
            setattr(record, key, REDACTED if _is_sensitive_key(key) else _redact(value))
        return True


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record, carrying every ``extra`` field."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update((key, getattr(record, key)) for key in _extra_keys(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_handler(settings: Settings) -> logging.Handler:
    if settings.LOG_FILE is None:
        return logging.StreamHandler()

    settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        filename=settings.LOG_FILE,
        maxBytes=settings.LOG_FILE_MAX_BYTES,
        backupCount=settings.LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )


def setup_logging(settings: Settings) -> None:
    """Configure the root logger from runtime settings."""

    handler = _build_handler(settings)
    if settings.LOG_FORMAT == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S%z",
            )
        )
    handler.addFilter(SensitiveDataFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))
    root_logger.addHandler(handler)
    logging.captureWarnings(True)


def _route_template(request: Request) -> str:
    # Download URLs embed the token, so log the matched template instead.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def add_request_logging_middleware(app: FastAPI) -> None:
    """Log one timed record per request and echo an ``X-Request-ID`` header."""

    logger = logging.getLogger("sitemap_builder.request")

    @app.middleware("http")
    async def log_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        started_at = perf_counter()

        def _fields(status_code: int) -> dict[str, Any]:
            return {
                "request_id": request_id,
                "method": request.method,
                "path": _route_template(request),
                "path_params": _redact(dict(request.path_params)),
                "status_code": status_code,
                "duration_ms": round((perf_counter() - started_at) * 1000, 2),
                "client_ip": request.client.host if request.client else "unknown",
            }

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed", extra=_fields(500))
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info("request_completed", extra=_fields(response.status_code))
        return response


__all__ = [
    "JsonLogFormatter",
    "REQUEST_ID_HEADER",
    "SensitiveDataFilter",
    "add_request_logging_middleware",
    "setup_logging",
]
