"""
TaskDeck - Configuration Management

Paths, endpoints and timeouts for the host, plus the explicit schema that
decides which configuration keys are plain settings and which are secrets.

Everything TaskDeck persists lives under ~/.config/taskdeck (override with
TASKDECK_DATA_DIR):

    state.json                      plain settings + task history index
    cache/openrouter_models.json    model catalog cache
    tasks/<id>/...                  per-task transcripts
    exports/                        markdown exports
"""

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

# Configuration paths
DATA_DIR = Path.home() / ".config" / "taskdeck"

# Remote model registry (OpenRouter)
REGISTRY_MODELS_URL = "https://openrouter.ai/api/v1/models"
REGISTRY_AUTH_URL = "https://openrouter.ai/api/v1/auth/keys"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# Local model registry (Ollama)
LOCAL_REGISTRY_DEFAULT_URL = "http://localhost:11434"
LOCAL_REGISTRY_TAGS_PATH = "/api/tags"

# Transport timeout for registry and probe requests (seconds).
# No extra timeout is layered on top: a stuck fetch just never refreshes.
HTTP_TIMEOUT = 30.0

# Upper bound on waiting for an executor to acknowledge an abort
CANCEL_TIMEOUT_SECONDS = 3.0
CANCEL_POLL_INTERVAL = 0.05

# Bump when a new announcement should be shown to users
LATEST_ANNOUNCEMENT_ID = "oct-9-2024"

KEYRING_SERVICE = "taskdeck"


class GlobalFileNames:
    """File names used inside the data directory."""

    API_CONVERSATION_HISTORY = "api_conversation_history.json"
    UI_MESSAGES = "ui_messages.json"
    LEGACY_MESSAGES = "claude_messages.json"
    CATALOG_CACHE = "openrouter_models.json"
    STATE = "state.json"


class KeyKind(Enum):
    """Storage class for a configuration key."""

    PLAIN = "plain"
    SECRET = "secret"


@dataclass(frozen=True)
class ConfigField:
    """One entry of the configuration schema."""

    name: str  # storage key (snake_case)
    wire_name: str  # key used by the presentation layer (camelCase)
    kind: KeyKind = KeyKind.PLAIN


def _plain(name: str, wire_name: str) -> ConfigField:
    return ConfigField(name, wire_name, KeyKind.PLAIN)


def _secret(name: str, wire_name: str) -> ConfigField:
    return ConfigField(name, wire_name, KeyKind.SECRET)


# Provider configuration keys. Every key is classified explicitly, so a plain
# key whose name happens to contain "key" or "token" is never stored as a secret.
API_CONFIG_SCHEMA: dict[str, ConfigField] = {
    f.name: f
    for f in (
        _plain("api_provider", "apiProvider"),
        _plain("api_model_id", "apiModelId"),
        _secret("api_key", "apiKey"),
        _secret("open_router_api_key", "openRouterApiKey"),
        _plain("open_router_model_id", "openRouterModelId"),
        _plain("open_router_model_info", "openRouterModelInfo"),
        _secret("aws_access_key", "awsAccessKey"),
        _secret("aws_secret_key", "awsSecretKey"),
        _secret("aws_session_token", "awsSessionToken"),
        _plain("aws_region", "awsRegion"),
        _plain("vertex_project_id", "vertexProjectId"),
        _plain("vertex_region", "vertexRegion"),
        _plain("openai_base_url", "openAiBaseUrl"),
        _secret("openai_api_key", "openAiApiKey"),
        _plain("openai_model_id", "openAiModelId"),
        _plain("ollama_model_id", "ollamaModelId"),
        _plain("ollama_base_url", "ollamaBaseUrl"),
        _plain("anthropic_base_url", "anthropicBaseUrl"),
        _secret("gemini_api_key", "geminiApiKey"),
        _secret("openai_native_api_key", "openAiNativeApiKey"),
        _plain("azure_api_version", "azureApiVersion"),
    )
}

# Host-level keys stored alongside the provider configuration (all plain).
GLOBAL_STATE_SCHEMA: dict[str, ConfigField] = {
    f.name: f
    for f in (
        _plain("custom_instructions", "customInstructions"),
        _plain("always_allow_read_only", "alwaysAllowReadOnly"),
        _plain("last_shown_announcement_id", "lastShownAnnouncementId"),
        _plain("task_history", "taskHistory"),
        _plain("is_debug_mode", "isDebugMode"),
    )
}

CONFIG_SCHEMA: dict[str, ConfigField] = {**API_CONFIG_SCHEMA, **GLOBAL_STATE_SCHEMA}

_WIRE_TO_NAME: dict[str, str] = {f.wire_name: f.name for f in CONFIG_SCHEMA.values()}


def resolve_key(key: str) -> ConfigField | None:
    """
    Look up a configuration key by storage name or wire name.

    Returns:
        The schema entry, or None for keys the schema does not know
    """
    if key in CONFIG_SCHEMA:
        return CONFIG_SCHEMA[key]
    name = _WIRE_TO_NAME.get(key)
    return CONFIG_SCHEMA[name] if name else None


def secret_keys() -> list[str]:
    """All schema keys stored in the secret store."""
    return [f.name for f in CONFIG_SCHEMA.values() if f.kind is KeyKind.SECRET]


def plain_keys() -> list[str]:
    """All schema keys stored in the global state file."""
    return [f.name for f in CONFIG_SCHEMA.values() if f.kind is KeyKind.PLAIN]


@dataclass
class ApiConfiguration:
    """Provider credentials and model selection used to build a task executor."""

    api_provider: str | None = None
    api_model_id: str | None = None
    api_key: str | None = None
    open_router_api_key: str | None = None
    open_router_model_id: str | None = None
    open_router_model_info: dict[str, Any] | None = None
    aws_access_key: str | None = None
    aws_secret_key: str | None = None
    aws_session_token: str | None = None
    aws_region: str | None = None
    vertex_project_id: str | None = None
    vertex_region: str | None = None
    openai_base_url: str | None = None
    openai_api_key: str | None = None
    openai_model_id: str | None = None
    ollama_model_id: str | None = None
    ollama_base_url: str | None = None
    anthropic_base_url: str | None = None
    gemini_api_key: str | None = None
    openai_native_api_key: str | None = None
    azure_api_version: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApiConfiguration":
        """Create from a mapping keyed by storage names or wire names."""
        values: dict[str, Any] = {}
        for key, value in data.items():
            entry = resolve_key(key)
            if entry is not None and entry.name in API_CONFIG_SCHEMA:
                values[entry.name] = value
        return cls(**values)

    def to_dict(self, include_secrets: bool = False) -> dict[str, Any]:
        """
        Convert to a wire-format dictionary.

        Args:
            include_secrets: Include secret values (never for outbound snapshots)

        Returns:
            Dict keyed by wire names, unset values omitted
        """
        result: dict[str, Any] = {}
        for f in fields(self):
            entry = API_CONFIG_SCHEMA[f.name]
            if entry.kind is KeyKind.SECRET and not include_secrets:
                continue
            value = getattr(self, f.name)
            if value is not None:
                result[entry.wire_name] = value
        return result

    def configured_secrets(self) -> list[str]:
        """Wire names of secret keys that currently hold a value."""
        return [
            API_CONFIG_SCHEMA[f.name].wire_name
            for f in fields(self)
            if API_CONFIG_SCHEMA[f.name].kind is KeyKind.SECRET and getattr(self, f.name)
        ]


def _env_path(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class AppConfig:
    """Host-level settings: where data lives and which endpoints to call."""

    data_dir: Path = field(default_factory=lambda: DATA_DIR)
    registry_models_url: str = REGISTRY_MODELS_URL
    registry_auth_url: str = REGISTRY_AUTH_URL
    local_registry_url: str = LOCAL_REGISTRY_DEFAULT_URL
    http_timeout: float = HTTP_TIMEOUT
    cancel_timeout: float = CANCEL_TIMEOUT_SECONDS
    keyring_service: str = KEYRING_SERVICE
    export_dir: Path | None = None

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load config from environment variables with defaults."""
        config = cls()
        config.data_dir = _env_path("TASKDECK_DATA_DIR", DATA_DIR)
        config.http_timeout = _env_float("TASKDECK_HTTP_TIMEOUT", HTTP_TIMEOUT)

        if url := os.environ.get("TASKDECK_REGISTRY_URL"):
            config.registry_models_url = url
        if url := os.environ.get("TASKDECK_LOCAL_REGISTRY_URL"):
            config.local_registry_url = url
        if service := os.environ.get("TASKDECK_KEYRING_SERVICE"):
            config.keyring_service = service
        if export_dir := os.environ.get("TASKDECK_EXPORT_DIR"):
            config.export_dir = Path(export_dir).expanduser()

        return config

    @property
    def state_file(self) -> Path:
        """Path to the plain-settings JSON file."""
        return self.data_dir / GlobalFileNames.STATE

    @property
    def cache_dir(self) -> Path:
        """Directory holding the model catalog cache."""
        return self.data_dir / "cache"

    @property
    def tasks_dir(self) -> Path:
        """Directory holding one subdirectory per task."""
        return self.data_dir / "tasks"

    @property
    def exports_dir(self) -> Path:
        """Default destination for exported transcripts."""
        return self.export_dir or (self.data_dir / "exports")

    def ensure_dirs(self) -> None:
        """Create the data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
