"""
TaskDeck Persistence Models

The task history index: one HistoryItem per task, stored as a JSON list in
the global state file under ``task_history``.
"""

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class HistoryItem:
    """One row of the task history index."""

    id: str
    ts: int  # milliseconds since epoch, creation time of the task
    task: str  # short summary shown in history lists
    tokens_in: int = 0
    tokens_out: int = 0
    cache_writes: int | None = None
    cache_reads: int | None = None
    total_cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to wire/storage format."""
        data: dict[str, Any] = {
            "id": self.id,
            "ts": self.ts,
            "task": self.task,
            "tokensIn": self.tokens_in,
            "tokensOut": self.tokens_out,
            "totalCost": self.total_cost,
        }
        if self.cache_writes is not None:
            data["cacheWrites"] = self.cache_writes
        if self.cache_reads is not None:
            data["cacheReads"] = self.cache_reads
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryItem":
        """Create from wire/storage format. Raises KeyError if ``id`` is missing."""
        return cls(
            id=str(data["id"]),
            ts=int(data.get("ts") or 0),
            task=str(data.get("task") or ""),
            tokens_in=int(data.get("tokensIn") or 0),
            tokens_out=int(data.get("tokensOut") or 0),
            cache_writes=data.get("cacheWrites"),
            cache_reads=data.get("cacheReads"),
            total_cost=float(data.get("totalCost") or 0.0),
        )


def parse_history(raw: Any) -> list[HistoryItem]:
    """Parse a stored history list, skipping malformed rows."""
    if not isinstance(raw, list):
        return []

    items: list[HistoryItem] = []
    for row in raw:
        if not isinstance(row, dict):
            continue
        try:
            items.append(HistoryItem.from_dict(row))
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed history entry: %r", row)
    return items


def sorted_history(items: list[HistoryItem]) -> list[HistoryItem]:
    """Entries with both ``ts`` and ``task`` set, newest first."""
    return sorted((i for i in items if i.ts and i.task), key=lambda i: i.ts, reverse=True)


def upsert_history(items: list[HistoryItem], item: HistoryItem) -> list[HistoryItem]:
    """Replace the entry with the same id, or append. Returns a new list."""
    updated = list(items)
    for index, existing in enumerate(updated):
        if existing.id == item.id:
            updated[index] = item
            return updated
    updated.append(item)
    return updated


def remove_history(items: list[HistoryItem], task_id: str) -> list[HistoryItem]:
    """Return the list without the entry for ``task_id``."""
    return [i for i in items if i.id != task_id]
