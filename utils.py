"""Logging and error helpers for the storefront chat relay."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Union

LOGGER = logging.getLogger("storefront_relay")

_LOG_RECORD_SKIP_FIELDS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "message",
    "module",
    "msecs",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message and extras."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": now_iso(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info

        for key, value in record.__dict__.items():
            if key in _LOG_RECORD_SKIP_FIELDS or key.startswith("_"):
                continue
            if isinstance(value, (str, int, float, bool)) or value is None:
                payload.setdefault("extra", {})[key] = value
            else:
                payload.setdefault("extra", {})[key] = repr(value)

        return json.dumps(payload, ensure_ascii=False)


def _normalize_log_level(level: Union[str, int, None]) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        candidate = level.strip()
        if candidate.isdigit():
            return int(candidate)
        resolved = logging.getLevelName(candidate.upper())
        if isinstance(resolved, int):
            return resolved
    return logging.INFO


_UVICORN_LEVELS = {"critical", "error", "warning", "info", "debug", "trace"}


def uvicorn_log_level(level: Union[str, int, None]) -> str:
    """Map ``"10"``, ``20`` or ``"Debug"`` to a level name uvicorn accepts."""

    if isinstance(level, str) and level.strip().lower() in _UVICORN_LEVELS:
        return level.strip().lower()
    name = logging.getLevelName(_normalize_log_level(level))
    if isinstance(name, str) and name.lower() in _UVICORN_LEVELS:
        return name.lower()
    return "info"


def configure_logging(
    *,
    level: Union[str, int, None] = None,
    log_dir: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure root logger with JSON formatter and optional rotating file handler."""

    logging.captureWarnings(True)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    root.setLevel(_normalize_log_level(level))
    formatter = JsonLogFormatter()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_dir:
        path = Path(log_dir).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path / "storefront_relay.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 (millisecond precision)."""

    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised at startup when the process configuration is unusable."""


class RelayError(Exception):
    """Request-terminating error rendered as ``{"error": ..., "detail": ...}``."""

    error = "server_error"

    def __init__(self, message: str, status_code: int = 500, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error}
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


class ClientInputError(RelayError):
    def __init__(self, message: str = "message required") -> None:
        super().__init__(message, status_code=400)
        self.error = message


class UpstreamError(RelayError):
    """Non-success (or unreachable) generation service. Carries the upstream diagnostics."""

    error = "genai_error"

    def __init__(self, body: str, upstream_status: Optional[int] = None) -> None:
        super().__init__(
            f"Generation service failed (status={upstream_status})",
            status_code=502,
            detail=body,
        )
        self.upstream_status = upstream_status
        self.body = body


class InternalError(RelayError):
    error = "server_error"

    def __init__(self, summary: str) -> None:
        super().__init__(summary, status_code=500, detail=summary)
