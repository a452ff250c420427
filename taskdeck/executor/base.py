"""
Task executor interface.

The orchestrator never talks to a model provider itself. It builds one
TaskExecutor per task through an ExecutorFactory and drives it with
start() / abort(). Everything the executor sends back (transcript saves,
history updates, state pushes) goes through a TaskBinding, which drops the
call once that executor is no longer the active one.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from taskdeck.config import ApiConfiguration
from taskdeck.persistence.models import HistoryItem
from taskdeck.persistence.task_storage import TaskStorage

logger = logging.getLogger(__name__)


@dataclass
class ExecutorRequest:
    """Everything needed to build an executor for a new or resumed task."""

    task_id: str
    ts: int
    api_configuration: ApiConfiguration
    custom_instructions: str | None = None
    always_allow_read_only: bool = False

    # New task
    task: str | None = None
    images: list[str] = field(default_factory=list)

    # Resumed task
    history_item: HistoryItem | None = None
    api_history: list[dict[str, Any]] = field(default_factory=list)
    ui_messages: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_resume(self) -> bool:
        return self.history_item is not None


@runtime_checkable
class TaskExecutor(Protocol):
    """What the orchestrator needs from a task executor."""

    task_id: str
    custom_instructions: str | None
    always_allow_read_only: bool

    @property
    def did_finish_aborting(self) -> bool:
        """True once an aborted executor has released its stream."""
        ...

    @property
    def ui_messages(self) -> list[dict[str, Any]]: ...

    def start(self) -> None:
        """Begin (or resume) the conversation in the background."""
        ...

    def abort(self) -> None:
        """Request cancellation. Must not block; acknowledgment is via did_finish_aborting."""
        ...

    async def handle_ask_response(
        self, kind: str, text: str | None = None, images: list[str] | None = None
    ) -> None: ...

    def update_api_configuration(self, config: ApiConfiguration) -> None: ...


class TaskBinding:
    """
    The executor's handle back into the host, bound to one executor instance.

    Every method is a no-op once ``is_current`` is False, so an executor that
    was superseded (new task, resume, delete) cannot touch storage or the
    history index of its successor. A resumed task gets a fresh binding even
    though its id is unchanged, so the aborted executor is cut off as well.
    """

    def __init__(
        self,
        task_id: str,
        storage: TaskStorage,
        is_current: Callable[["TaskBinding"], bool],
        on_history_item: Callable[[HistoryItem], Awaitable[Any]],
        on_state_changed: Callable[[], Awaitable[None]],
        generation: int = 0,
    ):
        self.task_id = task_id
        self.generation = generation
        self._storage = storage
        self._is_current = is_current
        self._on_history_item = on_history_item
        self._on_state_changed = on_state_changed

    @property
    def is_current(self) -> bool:
        return self._is_current(self)

    def _check(self, action: str) -> bool:
        if self.is_current:
            return True
        logger.debug("Ignoring %s from superseded executor for task %s", action, self.task_id)
        return False

    def save_api_history(self, history: list[dict[str, Any]]) -> None:
        if self._check("api history save"):
            self._storage.save_api_history(self.task_id, history)

    def save_ui_messages(self, messages: list[dict[str, Any]]) -> None:
        if self._check("ui messages save"):
            self._storage.save_ui_messages(self.task_id, messages)

    async def update_history_item(self, item: HistoryItem) -> None:
        if self._check("history update"):
            await self._on_history_item(item)

    async def post_state(self) -> None:
        if self._check("state push"):
            await self._on_state_changed()


ExecutorFactory = Callable[[ExecutorRequest, TaskBinding], TaskExecutor]
