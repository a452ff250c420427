"""
Log Entry Data Structures for TaskDeck.

Structured entries for task lifecycle events, executor turns and catalog
fetches. Each serializes to a single JSON line.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


class _EntryMixin:
    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)  # type: ignore[call-overload]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Any:
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})  # type: ignore[attr-defined]


@dataclass
class SessionLogEntry(_EntryMixin):
    """Log entry for task lifecycle events."""

    timestamp: str  # ISO 8601
    session_id: str
    event_type: str  # "open", "start", "resume", "cancel", "clear", "delete", "reset", "close"

    task_id: str | None = None
    from_state: str | None = None
    to_state: str | None = None

    # Cancellation
    abort_acknowledged: bool | None = None
    wait_ms: int = 0

    error: str | None = None
    error_type: str | None = None


@dataclass
class ExecutorLogEntry(_EntryMixin):
    """Log entry for one model turn driven by a task executor."""

    timestamp: str
    session_id: str
    task_id: str
    provider: str = ""
    model: str = ""

    prompt_preview: str = ""
    response_chars: int = 0

    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0
    latency_ms: int = 0

    aborted: bool = False
    error: str | None = None
    error_type: str | None = None


@dataclass
class CatalogLogEntry(_EntryMixin):
    """Log entry for registry fetches and local-registry probes."""

    timestamp: str
    session_id: str
    source: str  # "registry" or "local"
    url: str = ""

    status_code: int | None = None
    model_count: int = 0
    latency_ms: int = 0
    cache_written: bool = False

    error: str | None = None
    error_type: str | None = None


def now_iso() -> str:
    """Get current time as ISO 8601 string."""
    return datetime.now().isoformat()
