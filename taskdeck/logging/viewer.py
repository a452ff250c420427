"""
Log Viewer Utilities for TaskDeck.

Query and format JSONL log entries. Used by the `taskdeck logs` command.
"""

import json
import re
from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .config import get_config

LOG_TYPES = ("session", "executor", "catalog")


def parse_since(since: str) -> datetime:
    """
    Parse a 'since' time string into a datetime.

    Supports:
        - ISO format: "2026-01-11T10:00:00"
        - Relative: "1h", "30m", "2d", "1w"

    Raises:
        ValueError: If the string matches neither form
    """
    try:
        return datetime.fromisoformat(since)
    except ValueError:
        pass

    match = re.match(r"^(\d+)([mhdw])$", since.lower())
    if match:
        value = int(match.group(1))
        delta_map = {
            "m": timedelta(minutes=value),
            "h": timedelta(hours=value),
            "d": timedelta(days=value),
            "w": timedelta(weeks=value),
        }
        return datetime.now() - delta_map[match.group(2)]

    raise ValueError(f"Invalid time format: {since}. Use ISO format or relative (1h, 30m, 2d)")


def read_jsonl(filepath: Path, since: datetime | None = None) -> Iterator[dict[str, Any]]:
    """Yield parsed entries from a JSONL file, skipping unparseable lines."""
    if not filepath.exists():
        return

    with open(filepath, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue

            if since:
                try:
                    if datetime.fromisoformat(entry.get("timestamp", "")) < since:
                        continue
                except (ValueError, TypeError):
                    continue

            yield entry


def query_logs(
    log_type: str = "all",
    since: str | None = None,
    task_id: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """
    Query log entries with filters.

    Args:
        log_type: "session", "executor", "catalog", or "all"
        since: Time filter (ISO or relative like "1h")
        task_id: Only entries about this task
        limit: Max entries to return

    Returns:
        Matching entries, newest first
    """
    if log_type != "all" and log_type not in LOG_TYPES:
        raise ValueError(f"Unknown log type: {log_type}. Use one of {', '.join(LOG_TYPES)}, all")

    config = get_config()
    since_dt = parse_since(since) if since else None
    paths = {
        "session": config.session_log_path,
        "executor": config.executor_log_path,
        "catalog": config.catalog_log_path,
    }

    results: list[dict[str, Any]] = []
    for source in LOG_TYPES:
        if log_type not in ("all", source):
            continue
        for entry in read_jsonl(paths[source], since=since_dt):
            if task_id and entry.get("task_id") != task_id:
                continue
            entry["_source"] = source
            results.append(entry)

    results.sort(key=lambda x: x.get("timestamp", ""), reverse=True)
    return results[:limit]


def format_entry_line(entry: dict[str, Any]) -> str:
    """Render one entry as a single console line."""
    ts = entry.get("timestamp", "")[:19].replace("T", " ")
    source = entry.get("_source", "")

    if source == "session":
        detail = entry.get("event_type", "")
        if entry.get("task_id"):
            detail += f" task={entry['task_id']}"
        if entry.get("to_state"):
            detail += f" -> {entry['to_state']}"
        if entry.get("abort_acknowledged") is False:
            detail += f" (abort not acknowledged after {entry.get('wait_ms', 0)}ms)"
    elif source == "executor":
        detail = (
            f"task={entry.get('task_id', '')} {entry.get('model', '')} "
            f"in={entry.get('tokens_in', 0)} out={entry.get('tokens_out', 0)} "
            f"{entry.get('latency_ms', 0)}ms"
        )
        if entry.get("aborted"):
            detail += " aborted"
    elif source == "catalog":
        detail = f"{entry.get('source', '')} {entry.get('model_count', 0)} models {entry.get('latency_ms', 0)}ms"
    else:
        detail = entry.get("message", "")

    if entry.get("error"):
        detail += f" ERROR: {entry['error']}"

    return f"{ts} [{source}] {detail}"
