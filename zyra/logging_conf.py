# zyra/logging_conf.py
from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from logging.config import dictConfig
from typing import Any

# Optional attributes copied from a record into the JSON line,
# e.g. logger.warning("...", extra={"resource": "protocols"})
EXTRA_FIELDS = ("module", "funcName", "resource")

# Loggers that get their own handler (no propagation to root)
SERVICE_LOGGERS = ("uvicorn", "uvicorn.error", "fastapi", "starlette", "zyra", "request")

# uvicorn access lines are replaced by the timing middleware; client libraries
# log every outbound call at INFO and zyra logs upstream outcomes itself
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "openai", "telegram")


class JsonFormatter(logging.Formatter):
    """One JSON object per line on stdout."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "time": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val:
                payload[key] = val
        return json.dumps(payload, ensure_ascii=False, default=str)


def build_logging_config(level: str, fmt: str = "json") -> dict[str, Any]:
    """dictConfig for the service; fmt="plain" gives human-readable lines for local runs."""
    handler = {"class": "logging.StreamHandler", "formatter": fmt, "stream": "ext://sys.stdout"}
    loggers: dict[str, Any] = {
        name: {"level": level, "handlers": ["console"], "propagate": False} for name in SERVICE_LOGGERS
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING", "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter},
            "plain": {"format": "%(asctime)s %(levelname)-7s %(name)s: %(message)s"},
        },
        "handlers": {"console": handler},
        "root": {"level": level, "handlers": ["console"]},
        "loggers": loggers,
    }


def setup_logging() -> None:
    """Configure logging from LOG_LEVEL and ZYRA_LOG_FORMAT (json | plain)."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    fmt = os.getenv("ZYRA_LOG_FORMAT", "json").lower()
    dictConfig(build_logging_config(level, "plain" if fmt == "plain" else "json"))
