"""
TaskDeck structured logging.

Three JSONL streams under ~/.config/taskdeck/logs/:
    - session.jsonl: task lifecycle (start, resume, cancel, delete, reset)
    - executor.jsonl: model turns driven by task executors
    - catalog.jsonl: registry fetches and local-registry probes

Usage:
    from taskdeck.logging import session_logger, SessionLogEntry, now_iso

    session_logger.info(
        SessionLogEntry(
            timestamp=now_iso(),
            session_id=get_session_id(),
            event_type="start",
            task_id=task_id,
        ).to_json()
    )

Module-level diagnostics still go through ``logging.getLogger(__name__)``.
"""

import threading
from contextvars import ContextVar
from typing import Any

from .config import LogConfig, get_config, set_config
from .entries import (
    CatalogLogEntry,
    ExecutorLogEntry,
    SessionLogEntry,
    now_iso,
)
from .handlers import create_jsonl_logger

# Session id is per asyncio context, so concurrent surfaces don't clobber it
_session_id: ContextVar[str] = ContextVar("taskdeck_session_id", default="unknown")


def set_session_id(session_id: str) -> None:
    """Set the current session ID for log correlation."""
    _session_id.set(session_id)


def get_session_id() -> str:
    """Get the current session ID, or 'unknown' if not set."""
    return _session_id.get()


_loggers: dict[str, Any] = {}
_init_lock = threading.Lock()


def _ensure_loggers() -> None:
    """Create the JSONL loggers on first use."""
    if _loggers:
        return

    with _init_lock:
        if _loggers:
            return

        config = get_config()
        streams = {
            "session": (config.session_log_path, config.session_level),
            "executor": (config.executor_log_path, config.executor_level),
            "catalog": (config.catalog_log_path, config.catalog_level),
        }
        for name, (path, level) in streams.items():
            _loggers[name] = create_jsonl_logger(
                f"taskdeck.{name}",
                path,
                level=level,
                max_bytes=config.max_file_size_bytes,
                backup_count=config.backup_count,
                redact_fields=config.redact_fields,
            )


def reset_loggers() -> None:
    """Drop cached loggers so the next write picks up a new LogConfig."""
    with _init_lock:
        _loggers.clear()


class _LazyLogger:
    """Defers file creation until the first write."""

    def __init__(self, name: str):
        self._name = name

    def _get_logger(self) -> Any:
        _ensure_loggers()
        return _loggers[self._name]

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().error(msg, *args, **kwargs)


session_logger = _LazyLogger("session")
executor_logger = _LazyLogger("executor")
catalog_logger = _LazyLogger("catalog")


__all__ = [
    # Loggers
    "session_logger",
    "executor_logger",
    "catalog_logger",
    # Log entries
    "SessionLogEntry",
    "ExecutorLogEntry",
    "CatalogLogEntry",
    # Utilities
    "now_iso",
    "get_session_id",
    "set_session_id",
    "reset_loggers",
    # Config
    "LogConfig",
    "get_config",
    "set_config",
]
