"""
Logging Configuration for TaskDeck.

Defines paths, rotation settings, log levels, and redaction.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from taskdeck.config import DATA_DIR, secret_keys


@dataclass
class LogConfig:
    """Configuration for the TaskDeck structured logs."""

    log_dir: Path = field(default_factory=lambda: DATA_DIR / "logs")

    max_file_size_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    # Log levels: DEBUG, INFO, WARNING, ERROR
    session_level: str = "INFO"
    executor_level: str = "INFO"
    catalog_level: str = "INFO"

    # Field names whose values are replaced before a line is written
    redact_fields: frozenset[str] = field(default_factory=lambda: frozenset(secret_keys()))

    @classmethod
    def from_env(cls) -> "LogConfig":
        """Load config from environment variables with defaults."""
        config = cls()

        if level := os.environ.get("TASKDECK_LOG_LEVEL"):
            config.session_level = level
            config.executor_level = level
            config.catalog_level = level

        if log_dir := os.environ.get("TASKDECK_LOG_DIR"):
            config.log_dir = Path(log_dir)
        elif data_dir := os.environ.get("TASKDECK_DATA_DIR"):
            config.log_dir = Path(data_dir).expanduser() / "logs"

        if max_size := os.environ.get("TASKDECK_LOG_MAX_SIZE_MB"):
            try:
                config.max_file_size_bytes = int(max_size) * 1024 * 1024
            except ValueError:
                pass

        return config

    def ensure_log_dir(self) -> None:
        """Create log directory if it doesn't exist."""
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def session_log_path(self) -> Path:
        """Task lifecycle events (start, resume, cancel, delete, reset)."""
        return self.log_dir / "session.jsonl"

    @property
    def executor_log_path(self) -> Path:
        """Model provider turns driven by task executors."""
        return self.log_dir / "executor.jsonl"

    @property
    def catalog_log_path(self) -> Path:
        """Registry fetches and local probes."""
        return self.log_dir / "catalog.jsonl"


_config: LogConfig | None = None


def get_config() -> LogConfig:
    """Get the global log config, initializing from env if needed."""
    global _config
    if _config is None:
        _config = LogConfig.from_env()
        _config.ensure_log_dir()
    return _config


def set_config(config: LogConfig) -> None:
    """Set a custom log config (useful for testing)."""
    global _config
    _config = config
    _config.ensure_log_dir()
