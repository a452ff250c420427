"""Tests for the streaming executor (mocked AsyncOpenAI client)."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from taskdeck.config import ApiConfiguration
from taskdeck.exceptions import ConfigError
from taskdeck.executor.base import ExecutorRequest, TaskBinding, TaskExecutor
from taskdeck.executor.streaming import (
    RESUME_PROMPT,
    StreamingTaskExecutor,
    api_metrics,
    resolve_provider,
)
from taskdeck.persistence.models import HistoryItem
from taskdeck.persistence.task_storage import TaskStorage

OPENROUTER_CONFIG = ApiConfiguration(
    api_provider="openrouter",
    open_router_api_key="sk-or-test",
    open_router_model_id="anthropic/claude-3.5-sonnet",
    open_router_model_info={"maxTokens": 4096, "inputPrice": 3.0, "outputPrice": 15.0},
)


def chunk(content=None, usage=None):
    choices = [SimpleNamespace(delta=SimpleNamespace(content=content))] if content is not None else []
    return SimpleNamespace(choices=choices, usage=usage)


def usage(prompt_tokens, completion_tokens, cached_tokens=0):
    return SimpleNamespace(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        prompt_tokens_details=SimpleNamespace(cached_tokens=cached_tokens),
    )


async def stream_of(*chunks):
    for item in chunks:
        yield item


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def last_ask(executor):
    asks = [m for m in executor.ui_messages if m["type"] == "ask"]
    return asks[-1]["ask"] if asks else None


@pytest.fixture
def storage(tmp_path):
    return TaskStorage(tmp_path / "tasks")


@pytest.fixture
def binding(storage):
    return TaskBinding(
        "100",
        storage,
        is_current=lambda b: True,
        on_history_item=AsyncMock(),
        on_state_changed=AsyncMock(),
        generation=1,
    )


@pytest.fixture
def client():
    mock = MagicMock()
    mock.chat.completions.create = AsyncMock()
    mock.close = AsyncMock()
    return mock


def new_request(**overrides):
    values = dict(task_id="100", ts=100, api_configuration=OPENROUTER_CONFIG, task="Write a haiku")
    values.update(overrides)
    return ExecutorRequest(**values)


class TestResolveProvider:
    """Tests for resolve_provider."""

    def test_openrouter(self):
        settings = resolve_provider(OPENROUTER_CONFIG)
        assert settings.base_url == "https://openrouter.ai/api/v1"
        assert settings.model == "anthropic/claude-3.5-sonnet"
        assert settings.model_info.max_tokens == 4096
        assert "X-Title" in settings.headers

    def test_default_provider_is_openrouter(self):
        with pytest.raises(ConfigError):
            resolve_provider(ApiConfiguration())

    def test_openai_compatible_needs_all_fields(self):
        with pytest.raises(ConfigError):
            resolve_provider(ApiConfiguration(api_provider="openai", openai_api_key="k"))

    def test_openai_native_default_model(self):
        settings = resolve_provider(ApiConfiguration(api_provider="openai-native", openai_native_api_key="k"))
        assert settings.base_url is None
        assert settings.model == "gpt-4o"
        assert settings.headers == {}

    def test_ollama(self):
        settings = resolve_provider(
            ApiConfiguration(api_provider="ollama", ollama_model_id="llama3", ollama_base_url="http://gpu:11434/")
        )
        assert settings.base_url == "http://gpu:11434/v1"
        assert settings.model == "llama3"

    def test_unsupported_provider(self):
        with pytest.raises(ConfigError) as exc_info:
            resolve_provider(ApiConfiguration(api_provider="bedrock"))
        assert exc_info.value.details["provider"] == "bedrock"


class TestApiMetrics:
    """Tests for api_metrics."""

    def test_sums_request_entries(self):
        messages = [
            {"type": "say", "say": "api_req_started", "text": json.dumps({"tokensIn": 10, "tokensOut": 5, "cost": 0.5})},
            {"type": "say", "say": "text", "text": "{}"},
            {"type": "say", "say": "api_req_started", "text": json.dumps({"tokensIn": 1, "cacheReads": 4, "cost": 0.25})},
            {"type": "say", "say": "api_req_started", "text": "not json"},
        ]
        assert api_metrics(messages) == {
            "tokensIn": 11,
            "tokensOut": 5,
            "cacheWrites": 0,
            "cacheReads": 4,
            "totalCost": 0.75,
        }


class TestStreamingTaskExecutor:
    """Tests for the conversation loop."""

    def test_satisfies_protocol(self, binding, client):
        executor = StreamingTaskExecutor(new_request(), binding, client=client)
        assert isinstance(executor, TaskExecutor)

    def test_incomplete_config_raises(self, binding):
        with pytest.raises(ConfigError):
            StreamingTaskExecutor(new_request(api_configuration=ApiConfiguration()), binding)

    @pytest.mark.asyncio
    async def test_new_task_turn(self, binding, client, storage):
        client.chat.completions.create.return_value = stream_of(
            chunk("Autumn "), chunk("leaves"), chunk(usage=usage(1000, 100))
        )
        executor = StreamingTaskExecutor(new_request(), binding, client=client)

        executor.start()
        await wait_for(lambda: last_ask(executor) == "followup")

        assert storage.load("100") == [
            {"role": "user", "content": "Write a haiku"},
            {"role": "assistant", "content": "Autumn leaves"},
        ]
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["max_tokens"] == 4096
        assert kwargs["messages"][0]["role"] == "system"

        request_info = json.loads(executor.ui_messages[1]["text"])
        assert request_info["tokensIn"] == 1000
        assert request_info["tokensOut"] == 100
        assert request_info["cost"] == pytest.approx(0.0045)

        item = binding._on_history_item.await_args.args[0]
        assert isinstance(item, HistoryItem)
        assert item.task == "Write a haiku"
        assert item.total_cost == pytest.approx(0.0045)

        await executor.handle_ask_response("noButtonClicked")
        await wait_for(lambda: executor.ui_messages[-1].get("say") == "completion_result")
        assert storage.load_ui_messages("100")[-1]["say"] == "completion_result"

    @pytest.mark.asyncio
    async def test_cached_tokens_are_not_billed_as_input(self, binding, client):
        client.chat.completions.create.return_value = stream_of(
            chunk("ok"), chunk(usage=usage(1000, 0, cached_tokens=800))
        )
        executor = StreamingTaskExecutor(new_request(), binding, client=client)
        executor.start()
        await wait_for(lambda: last_ask(executor) == "followup")

        request_info = json.loads(executor.ui_messages[1]["text"])
        assert request_info["tokensIn"] == 200
        assert request_info["cacheReads"] == 800
        executor.abort()

    @pytest.mark.asyncio
    async def test_followup_message_continues(self, binding, client, storage):
        client.chat.completions.create.side_effect = [
            stream_of(chunk("first")),
            stream_of(chunk("second")),
        ]
        executor = StreamingTaskExecutor(new_request(), binding, client=client)
        executor.start()
        await wait_for(lambda: last_ask(executor) == "followup")

        await executor.handle_ask_response("messageResponse", "shorter please")
        await wait_for(lambda: len(storage.load("100")) == 4)

        assert storage.load("100")[2] == {"role": "user", "content": "shorter please"}
        assert storage.load("100")[3]["content"] == "second"
        executor.abort()

    @pytest.mark.asyncio
    async def test_provider_error_asks_to_retry(self, binding, client, storage):
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
        client.chat.completions.create.side_effect = [
            openai.APIConnectionError(request=request),
            stream_of(chunk("recovered")),
        ]
        executor = StreamingTaskExecutor(new_request(), binding, client=client)
        executor.start()
        await wait_for(lambda: last_ask(executor) == "api_req_failed")

        assert any(m.get("say") == "error" for m in executor.ui_messages)
        assert storage.load("100") == []

        await executor.handle_ask_response("yesButtonClicked")
        await wait_for(lambda: last_ask(executor) == "followup")
        assert storage.load("100")[-1]["content"] == "recovered"
        executor.abort()

    @pytest.mark.asyncio
    async def test_history_item_updated_on_every_transcript_change(self, binding, client):
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
        client.chat.completions.create.side_effect = openai.APIConnectionError(request=request)
        executor = StreamingTaskExecutor(new_request(), binding, client=client)
        executor.start()
        await wait_for(lambda: last_ask(executor) == "api_req_failed")

        # text, api_req_started, error, api_req_failed
        assert len(executor.ui_messages) == 4
        assert binding._on_history_item.await_count == 4
        item = binding._on_history_item.await_args.args[0]
        assert item.task == "Write a haiku"
        assert item.tokens_in == 0
        assert item.total_cost == 0
        executor.abort()

    @pytest.mark.asyncio
    async def test_abort_mid_stream(self, binding, client):
        started = asyncio.Event()

        async def hanging_stream():
            started.set()
            await asyncio.Event().wait()
            yield chunk("never")

        client.chat.completions.create.return_value = hanging_stream()
        executor = StreamingTaskExecutor(new_request(), binding, client=client)
        executor.start()
        await asyncio.wait_for(started.wait(), timeout=2)

        executor.abort()
        await wait_for(lambda: executor.did_finish_aborting)

    def test_abort_before_start_acknowledges_immediately(self, binding, client):
        executor = StreamingTaskExecutor(new_request(), binding, client=client)
        executor.abort()
        assert executor.did_finish_aborting

    @pytest.mark.asyncio
    async def test_resume_drops_trailing_asks(self, binding, client, storage):
        client.chat.completions.create.return_value = stream_of(chunk("continuing"))
        request = new_request(
            task=None,
            history_item=HistoryItem(id="100", ts=100, task="Write a haiku"),
            api_history=[{"role": "user", "content": "Write a haiku"}],
            ui_messages=[
                {"ts": 1, "type": "say", "say": "text", "text": "Write a haiku"},
                {"ts": 2, "type": "ask", "ask": "followup"},
            ],
        )
        executor = StreamingTaskExecutor(request, binding, client=client)
        executor.start()
        await wait_for(lambda: last_ask(executor) == "resume_task")

        assert [m.get("ask") for m in executor.ui_messages if m["type"] == "ask"] == ["resume_task"]

        await executor.handle_ask_response("yesButtonClicked")
        await wait_for(lambda: last_ask(executor) == "followup")
        assert storage.load("100")[1] == {"role": "user", "content": RESUME_PROMPT}
        executor.abort()

    @pytest.mark.asyncio
    async def test_superseded_binding_drops_writes(self, storage, client):
        current = {"value": True}
        binding = TaskBinding(
            "100",
            storage,
            is_current=lambda b: current["value"],
            on_history_item=AsyncMock(),
            on_state_changed=AsyncMock(),
        )
        client.chat.completions.create.return_value = stream_of(chunk("late"))
        executor = StreamingTaskExecutor(new_request(), binding, client=client)

        current["value"] = False
        executor.start()
        await wait_for(lambda: last_ask(executor) == "followup")

        assert not storage.exists("100")
        binding._on_history_item.assert_not_awaited()
        executor.abort()

    def test_update_api_configuration_keeps_settings_on_error(self, binding, client):
        executor = StreamingTaskExecutor(new_request(), binding, client=client)
        executor.update_api_configuration(ApiConfiguration(api_provider="bedrock"))
        assert executor.settings.provider == "openrouter"

        executor.update_api_configuration(
            ApiConfiguration(api_provider="ollama", ollama_model_id="llama3")
        )
        assert executor.settings.provider == "ollama"
