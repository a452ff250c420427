"""Tests for the state store (plain settings file + keyring secrets)."""

import json
from unittest.mock import MagicMock, patch

import keyring.errors
import pytest

from taskdeck.exceptions import ConfigError, StorageError
from taskdeck.persistence.models import HistoryItem
from taskdeck.persistence.store import GlobalStateStore, SecretStore, StateStore


class TestGlobalStateStore:
    """Tests for the JSON-file store."""

    def test_missing_file_reads_empty(self, tmp_path):
        store = GlobalStateStore(tmp_path / "state.json")
        assert store.get("anything") is None
        assert store.keys() == []

    def test_update_persists(self, tmp_path):
        path = tmp_path / "state.json"
        GlobalStateStore(path).update("api_provider", "openrouter")
        assert json.loads(path.read_text())["api_provider"] == "openrouter"
        assert GlobalStateStore(path).get("api_provider") == "openrouter"

    def test_none_removes_key(self, tmp_path):
        store = GlobalStateStore(tmp_path / "state.json")
        store.update("aws_region", "us-east-1")
        store.update("aws_region", None)
        assert "aws_region" not in store.keys()

    def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        store = GlobalStateStore(path)
        assert store.get("api_provider") is None
        store.update("api_provider", "ollama")
        assert json.loads(path.read_text()) == {"api_provider": "ollama"}

    def test_no_tmp_file_left(self, tmp_path):
        GlobalStateStore(tmp_path / "state.json").update("k", 1)
        assert list(tmp_path.glob("*.tmp")) == []

    def test_clear(self, tmp_path):
        store = GlobalStateStore(tmp_path / "state.json")
        store.update("a", 1)
        store.clear()
        assert store.keys() == []


class TestSecretStore:
    """Tests for the keyring wrapper."""

    def test_store_and_get(self, fake_keyring):
        secrets = SecretStore("taskdeck")
        secrets.store("api_key", "sk-1")
        assert secrets.get("api_key") == "sk-1"
        assert fake_keyring.passwords[("taskdeck", "api_key")] == "sk-1"

    def test_empty_value_deletes(self, fake_keyring):
        secrets = SecretStore("taskdeck")
        secrets.store("api_key", "sk-1")
        secrets.store("api_key", "")
        assert secrets.get("api_key") is None

    def test_delete_missing_is_quiet(self):
        SecretStore("taskdeck").delete("api_key")

    def test_read_failure_returns_none(self):
        broken = MagicMock()
        broken.errors = keyring.errors
        broken.get_password.side_effect = keyring.errors.KeyringError("locked")
        with patch("taskdeck.persistence.store.keyring", broken):
            assert SecretStore("taskdeck").get("api_key") is None

    def test_write_failure_raises(self):
        broken = MagicMock()
        broken.errors = keyring.errors
        broken.set_password.side_effect = keyring.errors.KeyringError("locked")
        with patch("taskdeck.persistence.store.keyring", broken):
            with pytest.raises(StorageError):
                SecretStore("taskdeck").store("api_key", "sk-1")


class TestStateStore:
    """Tests for the schema-aware facade."""

    def test_update_configuration_routes_by_schema(self, store, app_config, fake_keyring):
        written = store.update_configuration(
            {"apiProvider": "openrouter", "openRouterApiKey": "sk-or-1", "bogus": 1}
        )
        assert written == ["api_provider", "open_router_api_key"]

        on_disk = json.loads(app_config.state_file.read_text())
        assert on_disk == {"api_provider": "openrouter"}
        assert fake_keyring.passwords[("taskdeck", "open_router_api_key")] == "sk-or-1"

    def test_update_configuration_ignores_global_state_keys(self, store):
        assert store.update_configuration({"customInstructions": "x"}) == []

    def test_get_api_configuration_merges_both_halves(self, store):
        store.update_configuration({"apiProvider": "openrouter", "openRouterApiKey": "sk-or-1"})
        config = store.get_api_configuration()
        assert config.api_provider == "openrouter"
        assert config.open_router_api_key == "sk-or-1"

    def test_plain_access_rejects_secret_keys(self, store):
        with pytest.raises(ConfigError):
            store.update_global_state("api_key", "sk-1")

    def test_secret_access_rejects_plain_keys(self, store):
        with pytest.raises(ConfigError):
            store.store_secret("api_provider", "openrouter")

    def test_secret_roundtrip(self, store):
        store.store_secret("geminiApiKey", "g-1")
        assert store.get_secret("gemini_api_key") == "g-1"

    def test_task_history(self, store):
        store.set_task_history([HistoryItem(id="1", ts=1, task="first")])
        assert store.get_task_history() == [HistoryItem(id="1", ts=1, task="first")]

    def test_get_state_defaults(self, store):
        settings = store.get_state()
        assert settings.custom_instructions is None
        assert settings.always_allow_read_only is False
        assert settings.task_history == []
        assert settings.is_debug_mode is False

    def test_reset_state_clears_everything(self, store, fake_keyring, app_config):
        store.update_configuration({"apiProvider": "openrouter", "openRouterApiKey": "sk-or-1"})
        store.update_global_state("custom_instructions", "be brief")
        store.set_task_history([HistoryItem(id="1", ts=1, task="first")])

        store.reset_state()

        assert fake_keyring.passwords == {}
        assert json.loads(app_config.state_file.read_text()) == {}
        assert store.get_state().task_history == []
