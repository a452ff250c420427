"""
JSONL log handler for TaskDeck.

Every record becomes one JSON object per line. Entries produced by the
dataclasses in entries.py are written as-is; anything else is wrapped.
Values of secret configuration fields are masked on the way out.
"""

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

REDACTED = "***"


def redact(data: Any, fields: frozenset[str]) -> Any:
    """Recursively mask values stored under any of ``fields``."""
    if isinstance(data, dict):
        return {
            key: (REDACTED if key in fields and value else redact(value, fields))
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item, fields) for item in data]
    return data


class JSONLRotatingHandler(RotatingFileHandler):
    """Size-rotated file handler that writes one JSON object per record."""

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int = 10_000_000,
        backup_count: int = 5,
        redact_fields: Iterable[str] = (),
    ):
        """
        Initialize JSONL handler.

        Args:
            filename: Path to log file
            max_bytes: Max file size before rotation
            backup_count: Number of rotated files to keep
            redact_fields: Field names whose values are masked
        """
        filepath = Path(filename)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            str(filepath),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        self.redact_fields = frozenset(redact_fields)

    def to_payload(self, record: logging.LogRecord) -> dict[str, Any]:
        """Build the JSON object for a record."""
        msg = record.getMessage()
        try:
            data = json.loads(msg)
        except json.JSONDecodeError:
            data = None

        if not isinstance(data, dict):
            data = {
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "message": msg,
                "logger": record.name,
            }

        if self.redact_fields:
            data = redact(data, self.redact_fields)
        return data

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if self.shouldRollover(record):
                self.doRollover()
            self.stream.write(json.dumps(self.to_payload(record), default=str) + "\n")
            self.flush()
        except Exception:
            self.handleError(record)


def create_jsonl_logger(
    name: str,
    filepath: Path,
    level: str = "INFO",
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
    redact_fields: Iterable[str] = (),
) -> logging.Logger:
    """
    Create a non-propagating logger that writes JSONL to ``filepath``.

    Args:
        name: Logger name
        filepath: Path to log file
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        max_bytes: Max file size before rotation
        backup_count: Number of backup files
        redact_fields: Field names whose values are masked

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(
        JSONLRotatingHandler(
            filepath,
            max_bytes=max_bytes,
            backup_count=backup_count,
            redact_fields=redact_fields,
        )
    )
    logger.propagate = False
    return logger
