"""
TaskDeck - Exception Hierarchy

All TaskDeck-specific exceptions inherit from TaskDeckError.

Only TaskNotFoundError is expected to escape an inbound command handler.
Transport and parse failures are caught at the boundary and degraded to a
safe default (empty list, unchanged cache, no-op).
"""

from typing import Any


class TaskDeckError(Exception):
    """Base exception for all TaskDeck errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Configuration Errors
class ConfigError(TaskDeckError):
    """Raised when configuration is invalid or incomplete."""

    pass


# Task / Storage Errors
class TaskNotFoundError(TaskDeckError):
    """Raised when a task id is missing from the index or its transcript is gone.

    The lookup that raises this has already purged the stale index entry.
    """

    def __init__(self, task_id: str, reason: str = "Task not found"):
        super().__init__(reason, {"task_id": task_id})
        self.task_id = task_id


class StorageError(TaskDeckError):
    """Raised when persisted state cannot be written."""

    pass


# Catalog Errors
class CatalogError(TaskDeckError):
    """Base exception for model catalog errors."""

    pass


class CatalogFetchError(CatalogError):
    """Raised when the remote model registry cannot be fetched or parsed."""

    def __init__(self, message: str, url: str, status_code: int | None = None):
        super().__init__(message, {"url": url, "status_code": status_code})
        self.url = url
        self.status_code = status_code


# Executor Errors
class ExecutorError(TaskDeckError):
    """Raised when a task executor fails to talk to its model provider."""

    pass


# Message Errors
class MessageError(TaskDeckError):
    """Raised when an inbound message cannot be parsed."""

    pass


# State Errors
class StateTransitionError(TaskDeckError):
    """Raised when an invalid state transition is attempted.

    Includes the current state and the attempted target state for debugging.
    """

    def __init__(self, message: str, from_state: str, to_state: str):
        super().__init__(message, {"from_state": from_state, "to_state": to_state})
        self.from_state = from_state
        self.to_state = to_state
