# notes_pipeline/logging_config.py
"""
Stderr-only JSON logging configuration.

stdout is left to the CLI's own output (tables, summaries), so every log
record goes to stderr.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Chatty HTTP client loggers, kept at WARNING unless running at DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "openai")

# Pipeline context passed through `extra=`, copied into each JSON line when present
RECORD_CONTEXT = ("stage", "item_id")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Records logged with extra={"stage": ..., "item_id": ...} carry those
    fields as top-level keys, so a run's log can be filtered per stage or
    per note.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key in RECORD_CONTEXT:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        if record.exc_info:
            log_data["exc"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: str | int = logging.INFO) -> None:
    """
    Configure logging to output JSON to stderr only.

    Clears existing root handlers so repeated calls don't double-log.

    Args:
        level: Root level name ("INFO") or number
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(level, logging.WARNING))
