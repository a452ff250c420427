"""
TaskDeck - control plane for an interactive AI-assistant host.

Manages a single active task per session surface, persists task transcripts
and the task history index, and caches the model catalog from a remote
registry.
"""

__version__ = "0.1.0"

from taskdeck.exceptions import (
    CatalogError,
    CatalogFetchError,
    ConfigError,
    ExecutorError,
    MessageError,
    StateTransitionError,
    StorageError,
    TaskDeckError,
    TaskNotFoundError,
)

__all__ = [
    "__version__",
    "TaskDeckError",
    "ConfigError",
    "TaskNotFoundError",
    "StorageError",
    "CatalogError",
    "CatalogFetchError",
    "ExecutorError",
    "MessageError",
    "StateTransitionError",
]
