"""
TaskDeck State Store

Process-wide key/value persistence, split by the configuration schema:

- plain settings and the task history index live in a JSON file
  (``state.json`` in the data directory)
- secrets (API keys, tokens) live in the system keychain via ``keyring``

One StateStore is created per host process and shared by every session
surface. ``reset_state()`` wipes both halves.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import keyring
import keyring.errors

from taskdeck.config import (
    API_CONFIG_SCHEMA,
    ApiConfiguration,
    AppConfig,
    KeyKind,
    resolve_key,
    secret_keys,
)
from taskdeck.exceptions import ConfigError, StorageError
from taskdeck.persistence.models import HistoryItem, parse_history

logger = logging.getLogger(__name__)


class GlobalStateStore:
    """
    JSON-file key/value store for plain settings.

    The file is read once and cached; every update rewrites it atomically
    (temp file + os.replace). A corrupt file is treated as empty.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data

        data: dict[str, Any] = {}
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text("utf-8"))
                if isinstance(raw, dict):
                    data = raw
                else:
                    logger.warning("Ignoring non-object state file %s", self.path)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Could not read state file %s: %s", self.path, e)
        self._data = data
        return data

    def _flush(self) -> None:
        data = self._load()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write {self.path}", {"error": str(e)}) from e

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def update(self, key: str, value: Any) -> None:
        """Set ``key``; a None value removes it."""
        data = self._load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self._flush()

    def keys(self) -> list[str]:
        return list(self._load().keys())

    def clear(self) -> None:
        self._data = {}
        self._flush()


class SecretStore:
    """Thin wrapper around keyring for credential CRUD."""

    def __init__(self, service_name: str):
        self._service = service_name

    def get(self, key: str) -> str | None:
        """Retrieve a secret. Returns None if unset or the keychain is unavailable."""
        try:
            return keyring.get_password(self._service, key)
        except keyring.errors.KeyringError:
            logger.warning("Keyring read failed for %s", key, exc_info=True)
            return None

    def store(self, key: str, value: str | None) -> None:
        """Store a secret; an empty value deletes it."""
        if not value:
            self.delete(key)
            return
        try:
            keyring.set_password(self._service, key, value)
        except keyring.errors.KeyringError as e:
            raise StorageError(f"Failed to store secret {key}", {"error": str(e)}) from e
        logger.info("Stored secret: %s", key)

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self._service, key)
            logger.info("Deleted secret: %s", key)
        except keyring.errors.PasswordDeleteError:
            logger.debug("Secret %s not set, nothing to delete", key)
        except keyring.errors.KeyringError:
            logger.warning("Keyring delete failed for %s", key, exc_info=True)


@dataclass
class SessionSettings:
    """Everything a session surface reads from the store in one go."""

    api_configuration: ApiConfiguration
    custom_instructions: str | None = None
    always_allow_read_only: bool = False
    last_shown_announcement_id: str | None = None
    task_history: list[HistoryItem] = field(default_factory=list)
    is_debug_mode: bool = False


class StateStore:
    """
    Schema-aware facade over the plain and secret stores.

    Usage:
        store = StateStore(AppConfig.from_env())
        store.update_configuration({"apiProvider": "openrouter", "openRouterApiKey": "sk-..."})
        settings = store.get_state()
    """

    def __init__(
        self,
        config: AppConfig,
        global_state: GlobalStateStore | None = None,
        secrets: SecretStore | None = None,
    ):
        self.config = config
        self.global_state = global_state or GlobalStateStore(config.state_file)
        self.secrets = secrets or SecretStore(config.keyring_service)

    # ---- plain / secret access by schema key ----

    def get_global_state(self, key: str) -> Any:
        return self.global_state.get(self._plain_name(key))

    def update_global_state(self, key: str, value: Any) -> None:
        self.global_state.update(self._plain_name(key), value)

    def get_secret(self, key: str) -> str | None:
        return self.secrets.get(self._secret_name(key))

    def store_secret(self, key: str, value: str | None) -> None:
        self.secrets.store(self._secret_name(key), value)

    def _plain_name(self, key: str) -> str:
        entry = resolve_key(key)
        if entry is None or entry.kind is not KeyKind.PLAIN:
            raise ConfigError(f"Not a plain configuration key: {key}")
        return entry.name

    def _secret_name(self, key: str) -> str:
        entry = resolve_key(key)
        if entry is None or entry.kind is not KeyKind.SECRET:
            raise ConfigError(f"Not a secret configuration key: {key}")
        return entry.name

    # ---- bulk operations ----

    def update_configuration(self, values: dict[str, Any]) -> list[str]:
        """
        Write a batch of provider settings, routing each key by the schema.

        Args:
            values: Mapping keyed by storage names or wire names

        Returns:
            Storage names that were written (unknown keys are skipped)
        """
        written: list[str] = []
        for key, value in values.items():
            entry = resolve_key(key)
            if entry is None or entry.name not in API_CONFIG_SCHEMA:
                logger.warning("Ignoring unknown configuration key: %s", key)
                continue
            if entry.kind is KeyKind.SECRET:
                self.secrets.store(entry.name, value or None)
            else:
                self.global_state.update(entry.name, value)
            written.append(entry.name)
        return written

    def get_api_configuration(self) -> ApiConfiguration:
        values: dict[str, Any] = {}
        for name, entry in API_CONFIG_SCHEMA.items():
            if entry.kind is KeyKind.SECRET:
                values[name] = self.secrets.get(name)
            else:
                values[name] = self.global_state.get(name)
        return ApiConfiguration(**values)

    def get_task_history(self) -> list[HistoryItem]:
        return parse_history(self.global_state.get("task_history"))

    def set_task_history(self, items: list[HistoryItem]) -> None:
        self.global_state.update("task_history", [i.to_dict() for i in items])

    def get_state(self) -> SessionSettings:
        """Read the full configuration used to build executors and snapshots."""
        return SessionSettings(
            api_configuration=self.get_api_configuration(),
            custom_instructions=self.global_state.get("custom_instructions"),
            always_allow_read_only=bool(self.global_state.get("always_allow_read_only", False)),
            last_shown_announcement_id=self.global_state.get("last_shown_announcement_id"),
            task_history=self.get_task_history(),
            is_debug_mode=bool(self.global_state.get("is_debug_mode", False)),
        )

    def reset_state(self) -> None:
        """Clear every stored key, plain and secret."""
        self.global_state.clear()
        for name in secret_keys():
            self.secrets.delete(name)
        logger.info("State reset: cleared plain settings and %d secret keys", len(secret_keys()))
