"""
Tests for environment-driven configuration.
"""

import pytest

from bridge.config import BridgeSettings, EditorSettings, load_editor_settings, load_settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    # Keep a developer's .env out of the tests
    monkeypatch.chdir(tmp_path)
    for name in ("BRIDGE_PORT", "BRIDGE_LOG_CAPACITY", "BRIDGE_COMMAND_TIMEOUT_SECONDS",
                 "BRIDGE_EDITOR_SERVER_URL", "BRIDGE_EDITOR_LOGGING_ENABLED"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = BridgeSettings()
    assert settings.host == "localhost"
    assert settings.port == 8080
    assert settings.log_capacity == 1000
    assert settings.command_timeout_seconds == 5.0
    assert settings.diagnostic_tag == "[EditorBridge]"
    assert settings.reserved_asset_prefix == "Packages/"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BRIDGE_PORT", "9090")
    monkeypatch.setenv("BRIDGE_LOG_CAPACITY", "250")
    monkeypatch.setenv("BRIDGE_COMMAND_TIMEOUT_SECONDS", "2.5")

    settings = load_settings()
    assert settings.port == 9090
    assert settings.log_capacity == 250
    assert settings.command_timeout_seconds == 2.5


def test_editor_settings_use_their_own_prefix(monkeypatch):
    monkeypatch.setenv("BRIDGE_EDITOR_SERVER_URL", "http://10.0.0.5:8080")
    monkeypatch.setenv("BRIDGE_EDITOR_LOGGING_ENABLED", "false")

    settings = load_editor_settings()
    assert settings.server_url == "http://10.0.0.5:8080"
    assert settings.logging_enabled is False
    assert settings.connect_timeout_seconds == 5.0
    assert settings.snapshot_interval_seconds == 1.0


def test_dotenv_file_is_read(tmp_path):
    (tmp_path / ".env").write_text("BRIDGE_PORT=7070\n")
    assert BridgeSettings().port == 7070


def test_invalid_values_raise_value_error(monkeypatch):
    monkeypatch.setenv("BRIDGE_LOG_CAPACITY", "0")
    with pytest.raises(ValueError, match="Failed to load configuration"):
        load_settings()


def test_editor_defaults():
    settings = EditorSettings()
    assert settings.reconnect_interval_seconds == 5.0
    assert settings.log_queue_size == 1000
    assert settings.auth_token is None
