"""
Session Orchestrator - owns the single active task of one session surface.

Responsibilities:
- Keep at most one live TaskExecutor, replacing it on new task / resume
- Cancel with a bounded wait for the executor to acknowledge, then resume
- Maintain the task history index, self-healing entries whose transcript is gone
- Delete and export tasks
- Serve the model catalog (cached, refreshed in the background) and probe
  the local registry
- Dispatch inbound commands and post state snapshots to the channel

All public coroutines run on one event loop. handle_message() serializes
inbound commands with a lock, so one command runs to completion before the
next starts.
"""

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Protocol

import httpx

from taskdeck import __version__
from taskdeck.catalog.cache import ModelCatalogCache
from taskdeck.catalog.local import get_local_models
from taskdeck.catalog.models import ModelInfo
from taskdeck.config import CANCEL_POLL_INTERVAL, LATEST_ANNOUNCEMENT_ID, AppConfig
from taskdeck.exceptions import CatalogFetchError, ConfigError, StorageError, TaskNotFoundError
from taskdeck.executor.base import ExecutorFactory, ExecutorRequest, TaskBinding, TaskExecutor
from taskdeck.executor.streaming import StreamingTaskExecutor
from taskdeck.logging import SessionLogEntry, get_session_id, now_iso, session_logger, set_session_id
from taskdeck.orchestrator.channel import NotificationChannel
from taskdeck.orchestrator.export import export_task_markdown
from taskdeck.orchestrator.messages import (
    ActionKind,
    ActionMessage,
    CatalogMessage,
    InboundMessage,
    InboundType,
    LocalModelsMessage,
    SelectedImagesMessage,
    StateMessage,
    ThemeMessage,
)
from taskdeck.persistence.models import HistoryItem, remove_history, sorted_history, upsert_history
from taskdeck.persistence.store import StateStore
from taskdeck.persistence.task_storage import TaskStorage
from taskdeck.state import SessionContext, SessionState

logger = logging.getLogger(__name__)


class HostActions(Protocol):
    """Host capabilities the orchestrator delegates to (pickers, viewers, theme)."""

    async def select_images(self) -> list[str]: ...

    async def open_image(self, path: str) -> None: ...

    async def open_file(self, path: str) -> None: ...

    async def open_mention(self, text: str | None) -> None: ...

    def get_theme(self) -> Any: ...


class NullHostActions:
    """Host without pickers or viewers."""

    async def select_images(self) -> list[str]:
        return []

    async def open_image(self, path: str) -> None:
        return None

    async def open_file(self, path: str) -> None:
        return None

    async def open_mention(self, text: str | None) -> None:
        return None

    def get_theme(self) -> Any:
        return None


# Open orchestrators, oldest first
_active_instances: list["SessionOrchestrator"] = []


def get_visible_instance() -> "SessionOrchestrator | None":
    """The most recently opened orchestrator whose surface is visible."""
    for instance in reversed(_active_instances):
        if instance.visible:
            return instance
    return None


def active_instances() -> list["SessionOrchestrator"]:
    return list(_active_instances)


class SessionOrchestrator:
    """
    Control plane for one session surface.

    Usage:
        async with SessionOrchestrator(config, store, channel) as orchestrator:
            await orchestrator.handle_message({"type": "launch"})
            await orchestrator.handle_message({"type": "newTask", "text": "..."})
    """

    def __init__(
        self,
        app_config: AppConfig,
        store: StateStore,
        channel: NotificationChannel,
        executor_factory: ExecutorFactory = StreamingTaskExecutor,
        host: HostActions | None = None,
        catalog: ModelCatalogCache | None = None,
        task_storage: TaskStorage | None = None,
        uri_scheme: str = "taskdeck",
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            app_config: Paths, endpoints and timeouts
            store: Shared configuration / secret / history store
            channel: Outbound notification channel
            executor_factory: Builds one TaskExecutor per task
            host: Pickers and viewers (defaults to NullHostActions)
            catalog: Model catalog cache (defaults to one under app_config.cache_dir)
            task_storage: Transcript storage (defaults to app_config.tasks_dir)
            uri_scheme: Reported in state snapshots
            http_transport: Optional httpx transport for registry calls (tests)
        """
        self.app_config = app_config
        self.store = store
        self.channel = channel
        self.executor_factory = executor_factory
        self.host: HostActions = host or NullHostActions()
        self.catalog = catalog or ModelCatalogCache(
            app_config.cache_dir,
            url=app_config.registry_models_url,
            timeout=app_config.http_timeout,
            transport=http_transport,
        )
        self.task_storage = task_storage or TaskStorage(app_config.tasks_dir)
        self.uri_scheme = uri_scheme
        self.version = __version__
        self.visible = False

        self.context = SessionContext(session_id=uuid.uuid4().hex[:12])
        self._executor: TaskExecutor | None = None
        self._generation = 0  # bumped for every executor built
        self._active_generation: int | None = None
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task[Any]] = set()
        self._http_transport = http_transport
        self._last_task_ms = 0

    # ---- lifecycle ----

    async def open(self) -> "SessionOrchestrator":
        """Register this orchestrator and drop any stale task."""
        set_session_id(self.context.session_id)
        if self not in _active_instances:
            _active_instances.append(self)
        await self.clear_active_task()
        self._log_event("open")
        return self

    async def close(self) -> None:
        """Abort the executor, cancel background work and unregister."""
        if self.context.state is SessionState.CLOSED:
            return

        await self.clear_active_task()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

        if self in _active_instances:
            _active_instances.remove(self)
        from_state = self.context.state.name
        self.context.require_transition(SessionState.CLOSED)
        self._log_event("close", from_state=from_state)

    async def __aenter__(self) -> "SessionOrchestrator":
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def set_visible(self, visible: bool) -> None:
        became_visible = visible and not self.visible
        self.visible = visible
        if became_visible:
            self.channel.post(ActionMessage(ActionKind.BECAME_VISIBLE))

    # ---- active task ----

    @property
    def active_executor(self) -> TaskExecutor | None:
        return self._executor

    @property
    def active_task_id(self) -> str | None:
        return self._executor.task_id if self._executor is not None else None

    def _is_current(self, task_id: str) -> bool:
        return self._executor is not None and self._executor.task_id == task_id

    def _is_current_binding(self, binding: TaskBinding) -> bool:
        return self._executor is not None and binding.generation == self._active_generation

    def _new_task_id(self) -> str:
        """Millisecond timestamp, bumped so ids strictly increase within the process."""
        ms = int(time.time() * 1000)
        if ms <= self._last_task_ms:
            ms = self._last_task_ms + 1
        self._last_task_ms = ms
        return str(ms)

    def _build_executor(self, request: ExecutorRequest) -> tuple[TaskExecutor, TaskBinding] | None:
        self._generation += 1
        binding = TaskBinding(
            request.task_id,
            self.task_storage,
            is_current=self._is_current_binding,
            on_history_item=self.upsert_history_item,
            on_state_changed=self.post_state,
            generation=self._generation,
        )
        try:
            return self.executor_factory(request, binding), binding
        except ConfigError as e:
            logger.warning("Cannot start task %s: %s", request.task_id, e)
            self.context.add_error(str(e))
            self._log_event("start_failed", task_id=request.task_id, error=e)
            return None

    def _set_active(self, executor: TaskExecutor, binding: TaskBinding) -> None:
        from_state = self.context.state.name
        self._executor = executor
        self._active_generation = binding.generation
        self.context.require_transition(SessionState.ACTIVE, executor.task_id)
        executor.start()
        self._log_event(
            "activate", task_id=executor.task_id, from_state=from_state, to_state=SessionState.ACTIVE.name
        )

    async def start_new_task(self, text: str | None = None, images: list[str] | None = None) -> str | None:
        """
        Replace the active task with a new one.

        Returns:
            The new task id, or None if the provider configuration is incomplete
        """
        await self.clear_active_task()

        settings = self.store.get_state()
        task_id = self._new_task_id()
        request = ExecutorRequest(
            task_id=task_id,
            ts=int(task_id),
            api_configuration=settings.api_configuration,
            custom_instructions=settings.custom_instructions,
            always_allow_read_only=settings.always_allow_read_only,
            task=text,
            images=list(images or []),
        )
        built = self._build_executor(request)
        if built is None:
            await self.post_state()
            return None

        # The task record exists from the moment the task does
        self.task_storage.save_api_history(task_id, [])
        self._set_active(*built)
        self._log_event("start", task_id=task_id)
        await self.upsert_history_item(HistoryItem(id=task_id, ts=request.ts, task=text or ""))
        return task_id

    async def resume_task(self, item: HistoryItem) -> bool:
        """
        Replace the active task with a saved one.

        Raises:
            TaskNotFoundError: If the transcript is gone (the index entry is purged)

        Returns:
            True if an executor is now active on ``item.id``
        """
        await self.clear_active_task()

        try:
            api_history = self.task_storage.load(item.id)
        except TaskNotFoundError:
            self._purge_history_entry(item.id)
            raise
        ui_messages = self.task_storage.load_ui_messages(item.id)

        settings = self.store.get_state()
        request = ExecutorRequest(
            task_id=item.id,
            ts=item.ts,
            api_configuration=settings.api_configuration,
            custom_instructions=settings.custom_instructions,
            always_allow_read_only=settings.always_allow_read_only,
            history_item=item,
            api_history=api_history,
            ui_messages=ui_messages,
        )
        built = self._build_executor(request)
        if built is None:
            await self.post_state()
            return False

        self._set_active(*built)
        self._log_event("resume", task_id=item.id)
        await self.post_state()
        return True

    async def _wait_for_abort(self, executor: TaskExecutor) -> bool:
        """Poll until the executor acknowledges the abort or is replaced."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.app_config.cancel_timeout
        while True:
            if executor.did_finish_aborting or self._executor is not executor:
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(CANCEL_POLL_INTERVAL)

    async def cancel_active_task(self) -> None:
        """
        Abort the active task and resume it from its saved transcript.

        Waits at most ``app_config.cancel_timeout`` seconds for the executor to
        acknowledge; an executor that never does is abandoned and the task is
        resumed anyway. No-op when idle.

        Raises:
            TaskNotFoundError: If the active task's transcript is gone
        """
        executor = self._executor
        if executor is None:
            return

        item = await self.get_task_with_id(executor.task_id)
        self.context.require_transition(SessionState.CANCELLING, executor.task_id)
        executor.abort()

        start_time = time.monotonic()
        acknowledged = await self._wait_for_abort(executor)
        wait_ms = int((time.monotonic() - start_time) * 1000)
        if not acknowledged:
            logger.warning(
                "Task %s did not acknowledge abort within %.1fs, resuming anyway",
                executor.task_id,
                self.app_config.cancel_timeout,
            )
        session_logger.info(
            SessionLogEntry(
                timestamp=now_iso(),
                session_id=get_session_id(),
                event_type="cancel",
                task_id=executor.task_id,
                abort_acknowledged=acknowledged,
                wait_ms=wait_ms,
            ).to_json()
        )

        await self.resume_task(item)

    async def clear_active_task(self) -> None:
        """Abort (without waiting) and drop the active executor."""
        executor = self._executor
        if executor is not None:
            executor.abort()
            self._executor = None
            self._active_generation = None
            self._log_event("clear", task_id=executor.task_id)
        if self.context.state in (SessionState.ACTIVE, SessionState.CANCELLING):
            self.context.require_transition(SessionState.IDLE)

    # ---- history index ----

    async def upsert_history_item(self, item: HistoryItem) -> list[HistoryItem]:
        """Replace the index entry with the same id (or append), then post state."""
        history = upsert_history(self.store.get_task_history(), item)
        self.store.set_task_history(history)
        await self.post_state()
        return history

    def _purge_history_entry(self, task_id: str) -> None:
        history = self.store.get_task_history()
        remaining = remove_history(history, task_id)
        if len(remaining) != len(history):
            self.store.set_task_history(remaining)
            logger.info("Removed history entry for task %s", task_id)

    async def get_task_with_id(self, task_id: str) -> HistoryItem:
        """
        Look up a task in the index and check that its transcript exists.

        Raises:
            TaskNotFoundError: On a miss; the stale index entry is purged first
        """
        for item in self.store.get_task_history():
            if item.id == task_id:
                if self.task_storage.exists(task_id):
                    return item
                break

        self._purge_history_entry(task_id)
        raise TaskNotFoundError(task_id)

    async def delete_task(self, task_id: str) -> bool:
        """
        Delete a task's index entry and transcript directory.

        Safe to repeat: an unknown id is purged from the index, a leftover
        directory directly under the tasks root is removed, and False is
        returned. Path-like ids never touch the filesystem.

        Returns:
            True if the task was found in the index with its transcript
        """
        if self._is_current(task_id):
            await self.clear_active_task()

        try:
            await self.get_task_with_id(task_id)
            found = True
        except TaskNotFoundError:
            found = False

        self._purge_history_entry(task_id)
        if found:
            self.task_storage.delete_all(task_id)
        elif self.task_storage.is_valid_id(task_id):
            try:
                self.task_storage.delete_all(task_id)
            except StorageError as e:
                logger.warning("Left directory of unknown task %s in place: %s", task_id, e)
        self._log_event("delete", task_id=task_id)
        await self.post_state()
        return found

    async def export_task(self, task_id: str) -> Path:
        """
        Export a task transcript to markdown.

        Raises:
            TaskNotFoundError: If the task is unknown or its transcript is gone
        """
        item = await self.get_task_with_id(task_id)
        api_history = self.task_storage.load(task_id)
        return export_task_markdown(item.ts, api_history, self.app_config.exports_dir)

    async def show_task(self, task_id: str) -> None:
        """Make ``task_id`` the active task (resuming it if needed) and focus the chat view."""
        if task_id != self.active_task_id:
            item = await self.get_task_with_id(task_id)
            await self.resume_task(item)
        self.channel.post(ActionMessage(ActionKind.CHAT_BUTTON_CLICKED))

    async def reset_all(self) -> None:
        """Clear every persisted setting, secret and the history index."""
        self.store.reset_state()
        await self.clear_active_task()
        self._log_event("reset")
        await self.post_state()
        self.channel.post(ActionMessage(ActionKind.CHAT_BUTTON_CLICKED))

    # ---- state snapshot ----

    def get_state_snapshot(self) -> dict[str, Any]:
        settings = self.store.get_state()
        api_configuration = settings.api_configuration
        return {
            "version": self.version,
            "apiConfiguration": api_configuration.to_dict(),
            "customInstructions": settings.custom_instructions,
            "alwaysAllowReadOnly": settings.always_allow_read_only,
            "uriScheme": self.uri_scheme,
            "messages": list(self._executor.ui_messages) if self._executor is not None else [],
            "taskHistory": [item.to_dict() for item in sorted_history(settings.task_history)],
            "shouldShowAnnouncement": settings.last_shown_announcement_id != LATEST_ANNOUNCEMENT_ID,
            "isDebugMode": settings.is_debug_mode,
            "configuredSecrets": api_configuration.configured_secrets(),
        }

    async def post_state(self) -> None:
        self.channel.post(StateMessage(self.get_state_snapshot()))

    # ---- configuration ----

    async def update_configuration(self, values: dict[str, Any]) -> None:
        self.store.update_configuration(values)
        if self._executor is not None:
            self._executor.update_api_configuration(self.store.get_api_configuration())
        await self.post_state()

    async def update_custom_instructions(self, text: str | None) -> None:
        self.store.update_global_state("custom_instructions", text or None)
        if self._executor is not None:
            self._executor.custom_instructions = text or None
        await self.post_state()

    async def set_always_allow_read_only(self, value: bool) -> None:
        self.store.update_global_state("always_allow_read_only", bool(value))
        if self._executor is not None:
            self._executor.always_allow_read_only = bool(value)
        await self.post_state()

    async def set_debug_mode(self, value: bool) -> None:
        self.store.update_global_state("is_debug_mode", bool(value))
        await self.post_state()

    async def mark_announcement_shown(self) -> None:
        self.store.update_global_state("last_shown_announcement_id", LATEST_ANNOUNCEMENT_ID)
        await self.post_state()

    async def handle_registry_auth_callback(self, code: str) -> None:
        """
        Exchange a registry OAuth code for an API key and switch to that provider.

        Raises:
            CatalogFetchError: If the exchange fails
        """
        url = self.app_config.registry_auth_url
        try:
            async with httpx.AsyncClient(
                timeout=self.app_config.http_timeout, transport=self._http_transport
            ) as client:
                response = await client.post(url, json={"code": code})
            response.raise_for_status()
            api_key = response.json().get("key")
        except httpx.HTTPStatusError as e:
            logger.error("Registry auth exchange failed: %s", e)
            raise CatalogFetchError("Registry auth exchange failed", url, e.response.status_code) from e
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error("Registry auth exchange failed: %s", e)
            raise CatalogFetchError(f"Registry auth exchange failed: {e}", url) from e

        if not api_key:
            logger.error("Registry auth response has no key")
            raise CatalogFetchError("Invalid response from registry auth endpoint", url, response.status_code)

        await self.update_configuration({"api_provider": "openrouter", "open_router_api_key": api_key})
        logger.info("Stored registry API key from auth callback")

    # ---- catalog ----

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_for_background(self) -> None:
        """Wait for spawned background work (catalog refreshes) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background))

    def _post_catalog(self, models: dict[str, ModelInfo]) -> None:
        self.channel.post(CatalogMessage(models))

    def refresh_catalog(self) -> asyncio.Task[Any]:
        """Spawn a registry refresh; its result arrives as a catalog notification."""
        return self._spawn(self.catalog.refresh(self._post_catalog))

    async def request_local_models(self, base_url: str | None = None) -> list[str]:
        names = await get_local_models(
            base_url or self.app_config.local_registry_url,
            timeout=self.app_config.http_timeout,
            transport=self._http_transport,
        )
        self.channel.post(LocalModelsMessage(names))
        return names

    async def _on_launch(self) -> None:
        await self.post_state()
        theme = self.host.get_theme()
        if theme is not None:
            self.channel.post(ThemeMessage(theme))

        cached = self.catalog.read()
        if cached is not None:
            self._post_catalog(cached)
        else:
            self.refresh_catalog()

    # ---- inbound commands ----

    async def handle_message(self, data: Any) -> None:
        """
        Dispatch one inbound command.

        Raises:
            MessageError: If ``data`` is not a well-formed message
            TaskNotFoundError: If a show/export/cancel targets a missing task
        """
        message = InboundMessage.from_dict(data)
        async with self._lock:
            await self._dispatch(message)

    async def _dispatch(self, message: InboundMessage) -> None:
        kind = message.kind
        if kind is None:
            logger.warning("Ignoring unknown inbound message type: %s", message.type)
            return

        if kind is InboundType.LAUNCH:
            await self._on_launch()
        elif kind is InboundType.NEW_TASK:
            await self.start_new_task(message.text, message.images)
        elif kind is InboundType.UPDATE_CONFIGURATION:
            await self.update_configuration(message.config or {})
        elif kind is InboundType.UPDATE_CUSTOM_INSTRUCTIONS:
            await self.update_custom_instructions(message.text)
        elif kind is InboundType.SET_ALWAYS_ALLOW_READ_ONLY:
            await self.set_always_allow_read_only(bool(message.bool_value))
        elif kind is InboundType.SET_DEBUG_MODE:
            await self.set_debug_mode(bool(message.bool_value))
        elif kind is InboundType.ASK_RESPONSE:
            if self._executor is not None and message.ask_kind:
                await self._executor.handle_ask_response(message.ask_kind, message.text, message.images)
        elif kind is InboundType.CLEAR_TASK:
            await self.clear_active_task()
            await self.post_state()
        elif kind is InboundType.ANNOUNCEMENT_SHOWN:
            await self.mark_announcement_shown()
        elif kind is InboundType.SELECT_IMAGES:
            self.channel.post(SelectedImagesMessage(await self.host.select_images()))
        elif kind is InboundType.EXPORT_CURRENT_TASK:
            if self.active_task_id is not None:
                await self.export_task(self.active_task_id)
        elif kind is InboundType.SHOW_TASK_WITH_ID:
            if message.task_id:
                await self.show_task(message.task_id)
        elif kind is InboundType.DELETE_TASK_WITH_ID:
            if message.task_id:
                await self.delete_task(message.task_id)
        elif kind is InboundType.EXPORT_TASK_WITH_ID:
            if message.task_id:
                await self.export_task(message.task_id)
        elif kind is InboundType.RESET_STATE:
            await self.reset_all()
        elif kind is InboundType.REQUEST_LOCAL_MODELS:
            await self.request_local_models(message.base_url)
        elif kind is InboundType.REFRESH_CATALOG:
            self.refresh_catalog()
        elif kind is InboundType.OPEN_IMAGE:
            if message.path:
                await self.host.open_image(message.path)
        elif kind is InboundType.OPEN_FILE:
            if message.path:
                await self.host.open_file(message.path)
        elif kind is InboundType.OPEN_MENTION:
            await self.host.open_mention(message.text)
        elif kind is InboundType.CANCEL_TASK:
            await self.cancel_active_task()

    # ---- logging ----

    def _log_event(
        self,
        event_type: str,
        task_id: str | None = None,
        from_state: str | None = None,
        to_state: str | None = None,
        error: Exception | None = None,
    ) -> None:
        entry = SessionLogEntry(
            timestamp=now_iso(),
            session_id=get_session_id(),
            event_type=event_type,
            task_id=task_id,
            from_state=from_state,
            to_state=to_state,
        )
        if error is not None:
            entry.error = str(error)
            entry.error_type = type(error).__name__
            session_logger.error(entry.to_json())
        else:
            session_logger.info(entry.to_json())
