"""Logging setup for the CLI and library: a data-aware formatter plus a dictConfig builder."""

from __future__ import annotations

import json
import logging
import os
import time
import traceback
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace

LOG_FORMAT_ENV = "MITM_DIND_LOG_FORMAT"
REDACTED = "***"
_SECRET_KEY_MARKERS = ("password", "secret", "token", "auth_config")
_MAX_DEPTH = 6
_MAX_ITEMS = 100


def _level(env_var: str, default: str) -> str:
    return os.getenv(env_var, default).strip().upper() or default


def _json_lines_enabled() -> bool:
    return os.getenv(LOG_FORMAT_ENV, "").strip().lower() == "json"


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_KEY_MARKERS)


def loggable(value: Any, depth: int = _MAX_DEPTH) -> Any:
    """Return a JSON-serializable copy of ``value`` with secret-looking keys masked."""

    if depth <= 0:
        return "<nested>"
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes len={len(value)}>"
    if is_dataclass(value) and not isinstance(value, type):
        return loggable(asdict(value), depth)
    if isinstance(value, Mapping):
        masked: dict[str, Any] = {}
        for index, (key, item) in enumerate(value.items()):
            if index >= _MAX_ITEMS:
                masked["<truncated>"] = len(value) - index
                break
            name = str(key)
            masked[name] = REDACTED if _is_secret_key(name) and item else loggable(item, depth - 1)
        return masked
    if isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
        rendered = [loggable(item, depth - 1) for item in items[:_MAX_ITEMS]]
        if len(items) > _MAX_ITEMS:
            rendered.append(f"<{len(items) - _MAX_ITEMS} more>")
        return rendered
    return str(value)


class ExtrasFormatter(logging.Formatter):
    """Render ``extra={"data": {...}}`` next to the message, or the whole record as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        data = record.__dict__.get("data")
        if _json_lines_enabled():
            return json.dumps(self._payload(record, data), sort_keys=True, separators=(",", ":"))

        formatted = super().format(record)
        if data:
            return f"{formatted} | data={json.dumps(loggable(data), sort_keys=True, separators=(',', ':'))}"
        return formatted

    def _payload(self, record: logging.LogRecord, data: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": record.getMessage(),
            "severity": record.levelname,
            "logger": record.name,
            "timestamp": (
                f"{time.strftime('%Y-%m-%dT%H:%M:%S', time.gmtime(record.created))}"
                f".{int(record.msecs):03d}Z"
            ),
        }
        if data:
            payload["data"] = loggable(data)
        for key in ("trace_id", "span_id"):
            value = record.__dict__.get(key)
            if value:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info)).rstrip("\n")
        return payload


class OtelContextLogFilter(logging.Filter):
    """Stamp records emitted inside a span with its trace and span ids."""

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = f"{span_context.trace_id:032x}"
            record.span_id = f"{span_context.span_id:016x}"
        return True


def build_log_config(
    *,
    root_level_env: str = "LOG_LEVEL",
    root_default: str = "INFO",
) -> dict[str, Any]:
    """Return a dictConfig-compatible logging configuration writing to stderr."""

    sdk_level = _level("DOCKER_LOG_LEVEL", "WARNING")
    app_level = _level(root_level_env, root_default)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "()": ExtrasFormatter,
                "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            }
        },
        "filters": {"otel_context": {"()": OtelContextLogFilter}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "stream": "ext://sys.stderr",
                "filters": ["otel_context"],
            }
        },
        "root": {"level": app_level, "handlers": ["console"]},
        "loggers": {
            "mitm_dind": {"level": app_level, "handlers": ["console"], "propagate": False},
            "docker": {"level": sdk_level, "handlers": ["console"], "propagate": False},
            "urllib3": {"level": sdk_level, "handlers": ["console"], "propagate": False},
        },
    }


def configure_logging(*, root_level_env: str = "LOG_LEVEL", root_default: str = "INFO") -> None:
    dictConfig(build_log_config(root_level_env=root_level_env, root_default=root_default))


__all__ = [
    "ExtrasFormatter",
    "LOG_FORMAT_ENV",
    "OtelContextLogFilter",
    "build_log_config",
    "configure_logging",
    "loggable",
]
