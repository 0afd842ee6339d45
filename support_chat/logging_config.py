"""JSON logging for the support chat service.

Records carry structured fields under ``context`` (pass ``extra={"context": {...}}``).
A ``conversation_id`` found there is lifted to the top level so one
conversation's history can be pulled out of the log stream with a single filter.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "sse_starlette", "broadcaster")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            if "conversation_id" in context:
                entry["conversation_id"] = str(context["conversation_id"])
            entry["context"] = {key: value for key, value in context.items() if key != "conversation_id"}

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send every record to stdout as one JSON line."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"support_chat.{name}")


class ConversationLoggerAdapter(logging.LoggerAdapter):
    """
    Logger bound to one conversation.

    Every record gets ``conversation_id`` plus the bound fields; a per-call
    ``context={...}`` is merged over them.
    """

    def __init__(self, logger: logging.Logger, conversation_id, **fields: Any):
        super().__init__(logger, {"conversation_id": str(conversation_id), **fields})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**self.extra, **(kwargs.pop("context", None) or {})}
        kwargs["extra"] = {**kwargs.get("extra", {}), "context": context}
        return msg, kwargs
