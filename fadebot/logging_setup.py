from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

_configured = False


def _build_json_formatter() -> logging.Formatter:
    class JsonFormatter(logging.Formatter):
        def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
            payload: dict[str, Any] = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "name": record.name,
                "message": record.getMessage(),
            }
            event = getattr(record, "event", None)
            if event:
                payload["event"] = event
            if record.exc_info:
                payload["exc_info"] = self.formatException(record.exc_info)
            return json.dumps(payload, ensure_ascii=False)

    return JsonFormatter()


class _EventTextFormatter(logging.Formatter):
    """Plain formatter that tags lifecycle events with their name."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = super().format(record)
        event = getattr(record, "event", None)
        if event:
            return f"{line} [{event}]"
        return line


def setup_logging(json_logs: bool = False, level: int | str = logging.INFO) -> None:
    global _configured
    if _configured:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    formatter: logging.Formatter
    if json_logs:
        formatter = _build_json_formatter()
    else:
        formatter = _EventTextFormatter(fmt="%(levelname)s | %(name)s | %(message)s")
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    # httpx/openai log every request at INFO
    for noisy in ("httpx", "httpcore", "openai", "apscheduler"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_event(logger: logging.Logger, event: str, msg: str, *args: Any, level: int = logging.INFO) -> None:
    """Log a lifecycle milestone tagged with ``event`` (selection, repair, round, delivery...)."""
    logger.log(level, msg, *args, extra={"event": event})
