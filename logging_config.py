"""Logging setup shared by every module of the API."""

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI, Request

from config import Settings

logger = logging.getLogger("expense_tracker.requests")

SLOW_THRESHOLD_MS = 1000
_EXTRA_FIELDS = ("component", "method", "route", "status", "latency_ms", "request_id")


class StructuredFormatter(logging.Formatter):
    """Emit either one JSON object per record or a compact key=value line."""

    def __init__(self, as_json: bool = False) -> None:
        super().__init__()
        self.as_json = as_json

    def format(self, record: logging.LogRecord) -> str:
        payload = _record_payload(record)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if self.as_json:
            return json.dumps(payload, ensure_ascii=True, default=str)
        return _format_plain(payload)


def _record_payload(record: logging.LogRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": record.levelname,
        "logger": record.name,
        "msg": record.getMessage(),
    }
    for attr in _EXTRA_FIELDS:
        value = getattr(record, attr, None)
        if value is not None:
            payload[attr] = value
    return payload


def _format_plain(payload: Dict[str, Any]) -> str:
    parts = [f"[{payload['level']}]", payload["logger"] + ":", payload["msg"].strip()]
    for attr in _EXTRA_FIELDS:
        if attr in payload:
            parts.append(f"{attr}={payload[attr]}")
    line = " ".join(parts)
    if "exception" in payload:
        line += "\n" + payload["exception"]
    return line


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(as_json=settings.log_format == "json"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def install_request_logging(app: FastAPI) -> None:
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = uuid.uuid4().hex
        started = time.perf_counter()
        response = await call_next(request)
        latency_ms = int((time.perf_counter() - started) * 1000)
        response.headers["X-Request-ID"] = request_id

        extra = {
            "component": "http",
            "method": request.method,
            "route": request.url.path,
            "status": response.status_code,
            "latency_ms": latency_ms,
            "request_id": request_id,
        }
        if latency_ms > SLOW_THRESHOLD_MS:
            logger.warning("slow request", extra=extra)
        else:
            logger.info("request completed", extra=extra)
        return response
