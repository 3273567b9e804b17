"""Tests for configuration loading."""

from pathlib import Path

import pytest

from task_crafter.config import Config


def test_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Test default ports and origins."""
    monkeypatch.setenv("TASK_CRAFTER_CONFIG_FILE", str(tmp_path / "absent.yaml"))

    config = Config()

    assert config.relay_port == 3001
    assert config.client_origins == ["http://localhost:3000"]
    assert config.reconnect_attempts == 5
    assert config.sync_policy == "ignore"


def test_yaml_file_and_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Test that environment variables take precedence over the YAML file."""
    config_file = tmp_path / "task_crafter.yaml"
    config_file.write_text(
        """
port: 9000
relay_port: 4001
sync_policy: last_write_wins
client_origins:
  - http://app.example
"""
    )
    monkeypatch.setenv("TASK_CRAFTER_CONFIG_FILE", str(config_file))
    monkeypatch.setenv("TASK_CRAFTER_PORT", "9100")

    config = Config()

    assert config.port == 9100
    assert config.relay_port == 4001
    assert config.sync_policy == "last_write_wins"
    assert config.client_origins == ["http://app.example"]


def test_invalid_sync_policy_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TASK_CRAFTER_SYNC_POLICY", "merge_everything")

    with pytest.raises(ValueError):
        Config()
