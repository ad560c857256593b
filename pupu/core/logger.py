import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Final

from pupu.core.config import Settings, get_settings
from pupu.core.trace import get_trace_id

CATEGORIES: Final[tuple[str, ...]] = ("server", "chat", "providers", "speech", "audit")

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_STANDARD_FIELDS: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with the request trace id and any ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "category": record.name.removeprefix("pupu."),
            "message": record.getMessage(),
            "trace_id": get_trace_id() or None,
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_FIELDS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class SizeAndTimeRotatingFileHandler(TimedRotatingFileHandler):
    """Daily rotation that also rolls over early once the file reaches ``max_bytes``."""

    def __init__(self, filename: str | Path, *, max_bytes: int = 0, backup_count: int = 0) -> None:
        super().__init__(
            str(filename),
            when="midnight",
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        self.max_bytes = max_bytes

    def shouldRollover(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if self.max_bytes > 0:
            if self.stream is None:
                self.stream = self._open()
            pending = len(f"{self.format(record)}\n".encode("utf-8"))
            if self.stream.tell() + pending >= self.max_bytes:
                return True
        return super().shouldRollover(record)


def _handler_for(category: str, settings: Settings) -> logging.Handler:
    directory = Path(settings.log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    handler = SizeAndTimeRotatingFileHandler(
        directory / f"{category}.jsonl",
        max_bytes=settings.log_rotate_mb * 1024 * 1024,
        backup_count=settings.log_retention_days,
    )
    handler.setFormatter(JsonFormatter())
    return handler


def get_logger(category: str) -> logging.Logger:
    """Return the logger writing ``<log_dir>/<category>.jsonl``."""
    if category not in CATEGORIES:
        raise ValueError(f"unknown log category: {category}")
    logger = logging.getLogger(f"pupu.{category}")
    if not logger.handlers:
        logger.addHandler(_handler_for(category, get_settings()))
        logger.setLevel(logging.INFO)
    return logger
