from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Mapping

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)


_LOG_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)

_LOG_FORMAT = "json"
_LOG_LEVEL = logging.INFO

_SENSITIVE_KEYS = (
    "secret",
    "token",
    "authorization",
    "password",
    "apikey",
    "api_key",
)

_CONTEXT_KEYS = (
    "generation",
    "owner_id",
    "table",
    "offset",
    "limit",
    "status",
    "duration_ms",
    "url",
    "apple_id",
)

_HEADER_RE = re.compile(
    r"(?i)(apikey|secret|token|authorization)([:=]\s*)(bearer\s+)?([^\s,;]+)"
)
_JSON_RE = re.compile(
    r"(?i)(\"(?:secret|token|apikey|authorization)\"\s*:\s*)\"[^\"]*\""
)


def _redact_value(key: str | None, value: Any) -> Any:
    if key and any(token in key.lower() for token in _SENSITIVE_KEYS):
        return "***"
    if isinstance(value, str):
        redacted = value
        redacted = _HEADER_RE.sub(
            lambda match: f"{match.group(1)}{match.group(2)}***",
            redacted,
        )
        redacted = _JSON_RE.sub(
            lambda match: f"{match.group(1)}\"***\"",
            redacted,
        )
        return redacted
    if isinstance(value, Mapping):
        return {k: _redact_value(k, v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        iterable = list(value)
        return type(value)(_redact_value(None, item) for item in iterable)  # type: ignore[call-arg]
    return value


def _current_context() -> dict[str, Any]:
    return dict(_LOG_CONTEXT.get({}))


def bind_context(**updates: Any) -> contextvars.Token[dict[str, Any]]:
    ctx = _current_context()
    for key, value in updates.items():
        if value is None:
            ctx.pop(key, None)
        else:
            ctx[key] = value
    return _LOG_CONTEXT.set(ctx)


@contextlib.contextmanager
def context(**updates: Any):
    token = bind_context(**updates)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        context = _current_context()
        for key, value in context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        for key in _CONTEXT_KEYS:
            if not hasattr(record, key):
                setattr(record, key, None)
        return True


_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
        }
        message = record.getMessage()
        base["msg"] = _redact_value("msg", message)
        for key in _CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                base[key] = _redact_value(key, value)
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_") or key in base:
                continue
            if value is None:
                continue
            base[key] = _redact_value(key, value)
        if record.exc_info:
            base["error_type"] = getattr(record.exc_info[0], "__name__", "Exception")
            if _LOG_FORMAT == "pretty":
                base["stack"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%fZ")
        message = _redact_value("msg", record.getMessage())
        parts = [f"[{ts}]", record.levelname.ljust(5), str(message)]
        extras: list[str] = []
        for key in _CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                extras.append(f"{key}={_redact_value(key, value)}")
        if extras:
            parts.append("(" + " ".join(extras) + ")")
        if record.exc_info:
            parts.append("\n" + self.formatException(record.exc_info))
        return " ".join(parts)


def setup_logging(*, stream: Any | None = None) -> None:
    global _LOG_FORMAT, _LOG_LEVEL
    format_name = os.getenv("LOG_FORMAT", "json").strip().lower()
    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    formatter: logging.Formatter
    if format_name == "pretty":
        formatter = PrettyFormatter()
    else:
        format_name = "json"
        formatter = JsonFormatter()
    _LOG_FORMAT = format_name
    _LOG_LEVEL = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_LOG_LEVEL)
    # httpx logs every request at INFO, including the full URL.
    logging.getLogger("httpx").setLevel(max(_LOG_LEVEL, logging.WARNING))


def is_pretty_format() -> bool:
    return _LOG_FORMAT == "pretty"


def log_exc(ctx: str, err: BaseException) -> None:
    logger = logging.getLogger("observability")
    extra = {"error_type": type(err).__name__, "error": str(err)}
    if is_pretty_format():
        logger.error(ctx, exc_info=err, extra=extra)
    else:
        logger.error(ctx, extra=extra)


_SUPABASE_REQUESTS_TOTAL = Counter(
    "supabase_requests_total",
    "Requests issued against the Supabase REST API",
    labelnames=("table", "outcome"),
)
_SUPABASE_REQUEST_DURATION = Histogram(
    "supabase_request_duration_seconds",
    "Supabase REST request duration in seconds",
    labelnames=("table",),
)
_GALLERY_PAGES_APPLIED_TOTAL = Counter(
    "gallery_pages_applied_total",
    "Pages applied to the gallery collection",
    labelnames=("kind",),
)
_GALLERY_STALE_RESULTS_TOTAL = Counter(
    "gallery_stale_results_total",
    "Fetch results discarded because a newer generation superseded them",
)
_IMAGE_CACHE_REQUESTS_TOTAL = Counter(
    "image_cache_requests_total",
    "Image resolutions by cache outcome",
    labelnames=("result",),
)


def record_supabase_request(table: str, outcome: str, seconds: float) -> None:
    _SUPABASE_REQUESTS_TOTAL.labels(table=table, outcome=outcome).inc()
    if seconds >= 0:
        _SUPABASE_REQUEST_DURATION.labels(table=table).observe(seconds)


def record_page_applied(kind: str) -> None:
    _GALLERY_PAGES_APPLIED_TOTAL.labels(kind=kind).inc()


def record_stale_result() -> None:
    _GALLERY_STALE_RESULTS_TOTAL.inc()


def record_image_cache(result: str) -> None:
    _IMAGE_CACHE_REQUESTS_TOTAL.labels(result=result).inc()


def metric_value(name: str, labels: Mapping[str, str] | None = None) -> float:
    value = REGISTRY.get_sample_value(name, dict(labels or {}))
    return float(value or 0.0)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST


__all__ = [
    "bind_context",
    "context",
    "log_exc",
    "metric_value",
    "record_image_cache",
    "record_page_applied",
    "record_stale_result",
    "record_supabase_request",
    "render_metrics",
    "setup_logging",
]
