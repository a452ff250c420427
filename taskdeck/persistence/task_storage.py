"""
Task Storage - per-task transcript directories.

Layout:
    <data_dir>/tasks/<task_id>/api_conversation_history.json
    <data_dir>/tasks/<task_id>/ui_messages.json
    <data_dir>/tasks/<task_id>/claude_messages.json   (legacy, delete-only)

A task exists iff its api-history file exists. Directories are created on
first write. Only the orchestrator writes here, and only for the active
task or during delete, so there is no per-task locking.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from taskdeck.config import GlobalFileNames
from taskdeck.exceptions import StorageError, TaskNotFoundError

logger = logging.getLogger(__name__)

TASK_FILES = (
    GlobalFileNames.API_CONVERSATION_HISTORY,
    GlobalFileNames.UI_MESSAGES,
    GlobalFileNames.LEGACY_MESSAGES,
)


class TaskStorage:
    """Maps task ids to transcript files under a fixed root."""

    def __init__(self, root: Path):
        """
        Initialize task storage.

        Args:
            root: Directory holding one subdirectory per task
        """
        self.root = Path(root)

    @staticmethod
    def is_valid_id(task_id: Any) -> bool:
        """A task id must name one directory directly under the root."""
        if not isinstance(task_id, str) or task_id in ("", ".", ".."):
            return False
        return not any(c in task_id for c in ("/", "\\", "\0"))

    def task_dir(self, task_id: str) -> Path:
        """
        Directory for ``task_id`` (pure path derivation, nothing is created).

        Raises:
            TaskNotFoundError: If the id could resolve outside the root
        """
        if not self.is_valid_id(task_id):
            raise TaskNotFoundError(str(task_id), "Invalid task id")
        return self.root / task_id

    def api_history_path(self, task_id: str) -> Path:
        return self.task_dir(task_id) / GlobalFileNames.API_CONVERSATION_HISTORY

    def ui_messages_path(self, task_id: str) -> Path:
        return self.task_dir(task_id) / GlobalFileNames.UI_MESSAGES

    def exists(self, task_id: str) -> bool:
        """A task is resumable only if its api-history file is present."""
        return self.is_valid_id(task_id) and self.api_history_path(task_id).is_file()

    @staticmethod
    def _read_list(path: Path) -> list[Any] | None:
        """Parse a JSON array file. Missing or malformed files read as None."""
        try:
            data = json.loads(path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable transcript file %s: %s", path, e)
            return None
        if not isinstance(data, list):
            logger.warning("Transcript file %s is not a JSON array", path)
            return None
        return data

    def load(self, task_id: str) -> list[dict[str, Any]]:
        """
        Load the api conversation history.

        Raises:
            TaskNotFoundError: If the api-history file is absent or unreadable
        """
        history = self._read_list(self.api_history_path(task_id))
        if history is None:
            raise TaskNotFoundError(task_id, "Task transcript not found")
        return history

    load_api_history = load

    def load_ui_messages(self, task_id: str) -> list[dict[str, Any]]:
        return self._read_list(self.ui_messages_path(task_id)) or []

    def _write(self, path: Path, data: list[Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(data, ensure_ascii=False), "utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path}", {"error": str(e)}) from e

    def save_api_history(self, task_id: str, history: list[dict[str, Any]]) -> None:
        self._write(self.api_history_path(task_id), history)

    def save_ui_messages(self, task_id: str, messages: list[dict[str, Any]]) -> None:
        self._write(self.ui_messages_path(task_id), messages)

    def delete_all(self, task_id: str) -> None:
        """
        Delete every known transcript file, then the directory.

        Safe to call repeatedly: each file is checked before deletion and a
        missing directory is not an error.
        """
        task_dir = self.task_dir(task_id)
        for name in TASK_FILES:
            path = task_dir / name
            if path.exists():
                path.unlink()
        stray_tmp = [p for p in task_dir.glob("*.tmp")] if task_dir.is_dir() else []
        for path in stray_tmp:
            path.unlink()

        if task_dir.is_dir():
            try:
                task_dir.rmdir()
            except OSError as e:
                raise StorageError(f"Task directory not empty: {task_dir}", {"error": str(e)}) from e
        logger.debug("Deleted task files for %s", task_id)
