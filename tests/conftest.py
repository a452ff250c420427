"""Shared fixtures: temp data dir, in-memory keychain, test log config, fake executors."""

from typing import Any
from unittest.mock import patch

import keyring.errors
import pytest

from taskdeck.config import AppConfig, ApiConfiguration
from taskdeck.executor.base import ExecutorRequest, TaskBinding
from taskdeck.logging import LogConfig, reset_loggers, set_config
from taskdeck.orchestrator.channel import QueueNotificationChannel
from taskdeck.orchestrator.session import SessionOrchestrator
from taskdeck.persistence.store import StateStore


class FakeKeyring:
    """In-memory stand-in for the keyring module."""

    errors = keyring.errors

    def __init__(self):
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, key: str) -> str | None:
        return self.passwords.get((service, key))

    def set_password(self, service: str, key: str, value: str) -> None:
        self.passwords[(service, key)] = value

    def delete_password(self, service: str, key: str) -> None:
        if (service, key) not in self.passwords:
            raise keyring.errors.PasswordDeleteError("Password not found")
        del self.passwords[(service, key)]


@pytest.fixture(autouse=True)
def fake_keyring():
    """Never touch the real system keychain."""
    fake = FakeKeyring()
    with patch("taskdeck.persistence.store.keyring", fake):
        yield fake


@pytest.fixture(autouse=True)
def log_config(tmp_path):
    """Send structured logs to a temp directory."""
    config = LogConfig(log_dir=tmp_path / "logs")
    set_config(config)
    reset_loggers()
    yield config
    reset_loggers()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(
        data_dir=tmp_path / "data",
        registry_models_url="https://registry.test/api/v1/models",
        registry_auth_url="https://registry.test/api/v1/auth/keys",
        cancel_timeout=0.2,
    )


@pytest.fixture
def store(app_config) -> StateStore:
    return StateStore(app_config)


@pytest.fixture
def configured_store(store) -> StateStore:
    """Store with a complete OpenRouter configuration."""
    store.update_configuration(
        {
            "apiProvider": "openrouter",
            "openRouterApiKey": "sk-or-test",
            "openRouterModelId": "anthropic/claude-3.5-sonnet",
        }
    )
    return store


class FakeExecutor:
    """TaskExecutor that records calls instead of talking to a provider."""

    def __init__(self, request: ExecutorRequest, host: TaskBinding, acknowledge_abort: bool = True):
        self.request = request
        self.host = host
        self.task_id = request.task_id
        self.custom_instructions = request.custom_instructions
        self.always_allow_read_only = request.always_allow_read_only
        self.api_configuration: ApiConfiguration = request.api_configuration
        self.acknowledge_abort = acknowledge_abort
        self.started = False
        self.aborted = False
        self.ask_responses: list[tuple[str, str | None, list[str] | None]] = []
        self._did_finish_aborting = False
        self._ui_messages: list[dict[str, Any]] = list(request.ui_messages)

    @property
    def did_finish_aborting(self) -> bool:
        return self._did_finish_aborting

    @property
    def ui_messages(self) -> list[dict[str, Any]]:
        return self._ui_messages

    def start(self) -> None:
        self.started = True

    def abort(self) -> None:
        self.aborted = True
        if self.acknowledge_abort:
            self._did_finish_aborting = True

    async def handle_ask_response(self, kind, text=None, images=None) -> None:
        self.ask_responses.append((kind, text, images))

    def update_api_configuration(self, config: ApiConfiguration) -> None:
        self.api_configuration = config


class FakeExecutorFactory:
    """Builds FakeExecutors and keeps every instance."""

    def __init__(self, acknowledge_abort: bool = True):
        self.acknowledge_abort = acknowledge_abort
        self.instances: list[FakeExecutor] = []

    def __call__(self, request: ExecutorRequest, host: TaskBinding) -> FakeExecutor:
        executor = FakeExecutor(request, host, acknowledge_abort=self.acknowledge_abort)
        self.instances.append(executor)
        return executor


@pytest.fixture
def executor_factory() -> FakeExecutorFactory:
    return FakeExecutorFactory()


@pytest.fixture
def stubborn_executor_factory() -> FakeExecutorFactory:
    """Executors that never acknowledge an abort."""
    return FakeExecutorFactory(acknowledge_abort=False)


@pytest.fixture
def channel() -> QueueNotificationChannel:
    return QueueNotificationChannel()


@pytest.fixture
def orchestrator(app_config, configured_store, channel, executor_factory) -> SessionOrchestrator:
    return SessionOrchestrator(app_config, configured_store, channel, executor_factory=executor_factory)
