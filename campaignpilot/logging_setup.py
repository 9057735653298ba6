"""Logging configuration.

Goals:
- Structured JSON logs by default (Cloud Logging friendly)
- Automatically include request_id, user_id and wizard session correlation when available
- Minimal dependencies (stdlib only)

Correlation:
- HTTP requests carry `X-Request-ID` (generated when absent, see middleware).
- Wizard routes additionally bind the wizard session id so every transition
  logged while serving that request can be grouped per session.
"""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Context vars set by middleware / wizard routes
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
wizard_session_var: ContextVar[Optional[str]] = ContextVar("wizard_session_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        rid = request_id_var.get()
        if rid:
            setattr(record, "request_id", rid)

        sid = wizard_session_var.get()
        if sid and getattr(record, "session_id", None) is None:
            setattr(record, "session_id", sid)

        uid = user_id_var.get()
        if uid and getattr(record, "user_id", None) is None:
            setattr(record, "user_id", uid)

        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Common structured fields (set by filter / extra)
        for key in (
            "request_id",
            "session_id",
            "step",
            "platform_id",
            "campaign_id",
            "user_id",
            "error",
        ):
            v = getattr(record, key, None)
            if v is not None:
                payload[key] = v

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def setup_logging(*, log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure root logging.

    Idempotent: safe to call multiple times.
    """

    level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicate logs when Uvicorn config runs.
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler()
    if (log_format or "json").lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    handler.addFilter(_ContextFilter())

    root.addHandler(handler)
