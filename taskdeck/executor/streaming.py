"""
Streaming Task Executor - drives one task over an OpenAI-compatible API.

Works with every provider that speaks the chat-completions protocol:
OpenRouter, OpenAI (native or custom base URL) and a local Ollama server.

Transcript shape:
    api history  - [{"role": "user" | "assistant", "content": ...}, ...]
    ui messages  - [{"ts": ms, "type": "say" | "ask", "say"/"ask": kind, "text": ...}, ...]

Each model turn records an ``api_req_started`` say whose text is a JSON blob
with token counts and cost; the history index totals are summed from those.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from taskdeck.catalog.models import ModelInfo
from taskdeck.catalog.pricing import calculate_api_cost
from taskdeck.config import LOCAL_REGISTRY_DEFAULT_URL, OPENROUTER_BASE_URL, ApiConfiguration
from taskdeck.exceptions import ConfigError, ExecutorError, TaskDeckError
from taskdeck.executor.base import ExecutorRequest, TaskBinding
from taskdeck.logging import ExecutorLogEntry, executor_logger, get_session_id, now_iso
from taskdeck.persistence.models import HistoryItem

logger = logging.getLogger(__name__)

DEFAULT_OPENROUTER_MODEL = "anthropic/claude-3.5-sonnet"
DEFAULT_OPENAI_NATIVE_MODEL = "gpt-4o"
DEFAULT_MAX_TOKENS = 8192

SYSTEM_PROMPT = (
    "You are a capable software engineering assistant. Work through the user's "
    "task step by step and answer concisely."
)

RESUME_PROMPT = "[TASK RESUMPTION] This task was interrupted. Continue where you left off."

SUPPORTED_PROVIDERS = ("openrouter", "openai", "openai-native", "ollama")


@dataclass
class ProviderSettings:
    """Resolved connection settings for one provider."""

    provider: str
    base_url: str | None
    api_key: str
    model: str
    model_info: ModelInfo

    @property
    def headers(self) -> dict[str, str]:
        if self.provider == "openrouter":
            return {"HTTP-Referer": "https://github.com/taskdeck/taskdeck", "X-Title": "TaskDeck"}
        return {}


def resolve_provider(config: ApiConfiguration) -> ProviderSettings:
    """
    Pick base URL, key and model for the configured provider.

    Raises:
        ConfigError: If the provider is unsupported or a required value is missing
    """
    provider = config.api_provider or "openrouter"

    if provider == "openrouter":
        if not config.open_router_api_key:
            raise ConfigError("OpenRouter API key is not set", {"provider": provider})
        info = ModelInfo.from_dict(config.open_router_model_info or {})
        return ProviderSettings(
            provider,
            OPENROUTER_BASE_URL,
            config.open_router_api_key,
            config.open_router_model_id or DEFAULT_OPENROUTER_MODEL,
            info,
        )

    if provider == "openai":
        if not config.openai_base_url or not config.openai_api_key or not config.openai_model_id:
            raise ConfigError(
                "OpenAI-compatible provider needs base URL, API key and model id",
                {"provider": provider},
            )
        return ProviderSettings(
            provider, config.openai_base_url, config.openai_api_key, config.openai_model_id, ModelInfo()
        )

    if provider == "openai-native":
        if not config.openai_native_api_key:
            raise ConfigError("OpenAI API key is not set", {"provider": provider})
        return ProviderSettings(
            provider,
            None,
            config.openai_native_api_key,
            config.api_model_id or DEFAULT_OPENAI_NATIVE_MODEL,
            ModelInfo(),
        )

    if provider == "ollama":
        if not config.ollama_model_id:
            raise ConfigError("Ollama model id is not set", {"provider": provider})
        base_url = (config.ollama_base_url or LOCAL_REGISTRY_DEFAULT_URL).rstrip("/") + "/v1"
        return ProviderSettings(provider, base_url, "ollama", config.ollama_model_id, ModelInfo())

    raise ConfigError(
        f"Provider '{provider}' is not supported by the streaming executor",
        {"provider": provider, "supported": list(SUPPORTED_PROVIDERS)},
    )


def now_ms() -> int:
    return int(time.time() * 1000)


def api_metrics(ui_messages: list[dict[str, Any]]) -> dict[str, Any]:
    """Sum token counts and cost over every ``api_req_started`` entry."""
    totals: dict[str, Any] = {
        "tokensIn": 0,
        "tokensOut": 0,
        "cacheWrites": 0,
        "cacheReads": 0,
        "totalCost": 0.0,
    }
    for message in ui_messages:
        if message.get("type") != "say" or message.get("say") != "api_req_started":
            continue
        try:
            info = json.loads(message.get("text") or "{}")
        except json.JSONDecodeError:
            continue
        totals["tokensIn"] += info.get("tokensIn", 0) or 0
        totals["tokensOut"] += info.get("tokensOut", 0) or 0
        totals["cacheWrites"] += info.get("cacheWrites", 0) or 0
        totals["cacheReads"] += info.get("cacheReads", 0) or 0
        totals["totalCost"] += info.get("cost", 0.0) or 0.0
    return totals


class StreamingTaskExecutor:
    """
    TaskExecutor backed by ``openai.AsyncOpenAI`` streaming completions.

    The conversation runs in a background asyncio task started by start().
    Between turns the executor posts an ``ask`` and waits for
    handle_ask_response(); abort() cancels the background task and
    did_finish_aborting flips once it has unwound.
    """

    def __init__(
        self,
        request: ExecutorRequest,
        host: TaskBinding,
        client: AsyncOpenAI | None = None,
    ):
        """
        Initialize the executor.

        Args:
            request: Task id, configuration and (for resume) the saved transcript
            host: Binding used for persistence and state pushes
            client: Optional pre-built client (tests inject a mock)

        Raises:
            ConfigError: If the provider configuration is incomplete
        """
        self.settings = resolve_provider(request.api_configuration)
        self.task_id = request.task_id
        self.ts = request.ts
        self.custom_instructions = request.custom_instructions
        self.always_allow_read_only = request.always_allow_read_only

        self._request = request
        self._host = host
        self._api_history: list[dict[str, Any]] = list(request.api_history)
        self._ui_messages: list[dict[str, Any]] = list(request.ui_messages)
        self._responses: asyncio.Queue[tuple[str, str | None, list[str] | None]] = asyncio.Queue()

        # Lazy-initialized client, recreated if the event loop changes
        self._client = client
        self._owns_client = client is None
        self._client_loop: asyncio.AbstractEventLoop | None = None

        self._run_task: asyncio.Task[None] | None = None
        self._abort = False
        self._did_finish_aborting = False

    # ---- TaskExecutor interface ----

    @property
    def did_finish_aborting(self) -> bool:
        return self._did_finish_aborting

    @property
    def ui_messages(self) -> list[dict[str, Any]]:
        return self._ui_messages

    @property
    def api_history(self) -> list[dict[str, Any]]:
        return self._api_history

    def start(self) -> None:
        if self._run_task is not None:
            return
        self._run_task = asyncio.create_task(self._run(), name=f"task-{self.task_id}")

    def abort(self) -> None:
        self._abort = True
        if self._run_task is None or self._run_task.done():
            self._did_finish_aborting = True
            return
        self._run_task.cancel()
        logger.debug("Executor %s: abort requested", self.task_id)

    async def handle_ask_response(
        self, kind: str, text: str | None = None, images: list[str] | None = None
    ) -> None:
        self._responses.put_nowait((kind, text, images))

    def update_api_configuration(self, config: ApiConfiguration) -> None:
        try:
            settings = resolve_provider(config)
        except ConfigError as e:
            logger.warning("Executor %s: keeping previous provider settings: %s", self.task_id, e)
            return
        self.settings = settings
        if self._owns_client:
            self._client = None
            self._client_loop = None

    # ---- client ----

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create AsyncOpenAI client, recreating if event loop changed."""
        if not self._owns_client and self._client is not None:
            return self._client

        current_loop = asyncio.get_running_loop()
        if self._client is not None and self._client_loop is not current_loop:
            self._client = None
            self._client_loop = None

        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.api_key,
                base_url=self.settings.base_url,
                default_headers=self.settings.headers or None,
            )
            self._client_loop = current_loop

        return self._client

    async def close(self) -> None:
        """Close the client if this executor created it."""
        if self._owns_client and self._client is not None:
            try:
                await self._client.close()
            except OpenAIError as e:
                logger.debug("Executor %s: error closing client: %s", self.task_id, e)
            self._client = None
            self._client_loop = None

    # ---- conversation ----

    async def _run(self) -> None:
        try:
            if self._request.is_resume:
                await self._resume()
            else:
                await self._start_new()
        except TaskDeckError as e:
            logger.error("Executor %s stopped: %s", self.task_id, e)
        finally:
            await self.close()
            if self._abort:
                self._did_finish_aborting = True

    async def _start_new(self) -> None:
        text = self._request.task or ""
        images = self._request.images or None
        await self._say("text", text, images=images)
        await self._conversation_loop(self._user_content(text, images))

    async def _resume(self) -> None:
        # Drop trailing asks left over from the interrupted run
        while self._ui_messages and self._ui_messages[-1].get("type") == "ask":
            self._ui_messages.pop()

        kind, text, images = await self._ask("resume_task")
        if kind == "messageResponse" and text:
            await self._say("user_feedback", text, images=images)
            content = self._user_content(f"{RESUME_PROMPT}\n\n{text}", images)
        else:
            content = RESUME_PROMPT
        await self._conversation_loop(content)

    async def _conversation_loop(self, user_content: Any) -> None:
        while not self._abort:
            self._api_history.append({"role": "user", "content": user_content})
            self._host.save_api_history(self._api_history)

            try:
                reply = await self._stream_turn()
            except ExecutorError as e:
                self._api_history.pop()
                self._host.save_api_history(self._api_history)
                await self._say("error", str(e))
                kind, _, _ = await self._ask("api_req_failed", str(e))
                if kind == "yesButtonClicked":
                    continue
                return

            self._api_history.append({"role": "assistant", "content": reply})
            self._host.save_api_history(self._api_history)

            kind, text, images = await self._ask("followup")
            if kind != "messageResponse" or not text:
                await self._say("completion_result", "")
                return
            await self._say("user_feedback", text, images=images)
            user_content = self._user_content(text, images)

    async def _stream_turn(self) -> str:
        """
        Stream one assistant reply.

        Raises:
            ExecutorError: If the provider call fails
        """
        start_time = time.monotonic()
        req_index = len(self._ui_messages)
        preview = self._preview(self._api_history[-1]["content"])
        await self._say("api_req_started", json.dumps({"request": preview}))

        log_entry = ExecutorLogEntry(
            timestamp=now_iso(),
            session_id=get_session_id(),
            task_id=self.task_id,
            provider=self.settings.provider,
            model=self.settings.model,
            prompt_preview=preview,
        )

        parts: list[str] = []
        usage: Any = None
        try:
            client = await self._get_client()
            stream = await client.chat.completions.create(
                model=self.settings.model,
                messages=[{"role": "system", "content": self._system_prompt()}] + self._api_history,
                max_tokens=self.settings.model_info.max_tokens or DEFAULT_MAX_TOKENS,
                stream=True,
                stream_options={"include_usage": True},
            )
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    parts.append(chunk.choices[0].delta.content)
                if getattr(chunk, "usage", None):
                    usage = chunk.usage
        except asyncio.CancelledError:
            log_entry.aborted = True
            log_entry.response_chars = sum(len(p) for p in parts)
            log_entry.latency_ms = int((time.monotonic() - start_time) * 1000)
            executor_logger.info(log_entry.to_json())
            raise
        except OpenAIError as e:
            log_entry.error = str(e)[:500]
            log_entry.error_type = type(e).__name__
            log_entry.latency_ms = int((time.monotonic() - start_time) * 1000)
            executor_logger.error(log_entry.to_json())
            raise ExecutorError(f"API request failed: {e}", {"provider": self.settings.provider}) from e

        reply = "".join(parts)
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0
        details = getattr(usage, "prompt_tokens_details", None)
        cache_reads = getattr(details, "cached_tokens", 0) or 0
        tokens_in = max(prompt_tokens - cache_reads, 0)
        cost = calculate_api_cost(
            self.settings.model_info, tokens_in, completion_tokens, cache_reads=cache_reads
        )

        self._ui_messages[req_index]["text"] = json.dumps(
            {
                "request": preview,
                "tokensIn": tokens_in,
                "tokensOut": completion_tokens,
                "cacheWrites": 0,
                "cacheReads": cache_reads,
                "cost": cost,
            }
        )
        await self._say("text", reply)

        log_entry.response_chars = len(reply)
        log_entry.tokens_in = tokens_in
        log_entry.tokens_out = completion_tokens
        log_entry.cost_usd = cost
        log_entry.latency_ms = int((time.monotonic() - start_time) * 1000)
        executor_logger.info(log_entry.to_json())
        return reply

    # ---- transcript helpers ----

    def _system_prompt(self) -> str:
        if self.custom_instructions and self.custom_instructions.strip():
            return (
                f"{SYSTEM_PROMPT}\n\n"
                "The user has provided the following additional instructions:\n\n"
                f"{self.custom_instructions.strip()}"
            )
        return SYSTEM_PROMPT

    @staticmethod
    def _user_content(text: str, images: list[str] | None) -> Any:
        if not images:
            return text
        content: list[dict[str, Any]] = [{"type": "text", "text": text}]
        content.extend({"type": "image_url", "image_url": {"url": url}} for url in images)
        return content

    @staticmethod
    def _preview(content: Any) -> str:
        if isinstance(content, list):
            content = " ".join(p.get("text", "") for p in content if isinstance(p, dict))
        return str(content)[:200]

    def _task_text(self) -> str:
        for message in self._ui_messages:
            if message.get("type") == "say" and message.get("say") == "text":
                return message.get("text") or ""
        if self._request.history_item is not None:
            return self._request.history_item.task
        return self._request.task or ""

    async def _say(self, kind: str, text: str, images: list[str] | None = None) -> None:
        message: dict[str, Any] = {"ts": now_ms(), "type": "say", "say": kind, "text": text}
        if images:
            message["images"] = images
        self._ui_messages.append(message)
        await self._save_transcript()

    async def _ask(
        self, kind: str, text: str | None = None
    ) -> tuple[str, str | None, list[str] | None]:
        """Post an ask and wait for handle_ask_response()."""
        message: dict[str, Any] = {"ts": now_ms(), "type": "ask", "ask": kind}
        if text:
            message["text"] = text
        self._ui_messages.append(message)
        await self._save_transcript()
        return await self._responses.get()

    async def _save_transcript(self) -> None:
        """Persist the UI transcript and refresh the history index entry."""
        self._host.save_ui_messages(self._ui_messages)
        await self._update_history_item()
        await self._host.post_state()

    async def _update_history_item(self) -> None:
        metrics = api_metrics(self._ui_messages)
        await self._host.update_history_item(
            HistoryItem(
                id=self.task_id,
                ts=self.ts,
                task=self._task_text(),
                tokens_in=metrics["tokensIn"],
                tokens_out=metrics["tokensOut"],
                cache_writes=metrics["cacheWrites"],
                cache_reads=metrics["cacheReads"],
                total_cost=metrics["totalCost"],
            )
        )
