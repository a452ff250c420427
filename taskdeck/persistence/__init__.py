"""
TaskDeck Persistence Layer

JSON state file + keychain secrets for configuration and the task history
index, and one directory per task for transcripts.
"""

from taskdeck.persistence.models import (
    HistoryItem,
    parse_history,
    remove_history,
    sorted_history,
    upsert_history,
)
from taskdeck.persistence.store import (
    GlobalStateStore,
    SecretStore,
    SessionSettings,
    StateStore,
)
from taskdeck.persistence.task_storage import TASK_FILES, TaskStorage

__all__ = [
    # History index
    "HistoryItem",
    "parse_history",
    "sorted_history",
    "upsert_history",
    "remove_history",
    # Stores
    "GlobalStateStore",
    "SecretStore",
    "SessionSettings",
    "StateStore",
    # Transcripts
    "TASK_FILES",
    "TaskStorage",
]
