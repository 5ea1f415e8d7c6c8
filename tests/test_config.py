"""Tests for BridgeConfig loading."""

import pytest
import yaml

from discord_zendesk.config import BridgeConfig

_ENV_KEYS = [
    "BRIDGE_SITE",
    "ZENDESK_PUSH_CLIENT_ID",
    "BRIDGE_ADMIN_UI_URL",
    "PORT",
    "ZENDESK_WEBHOOK_SECRET",
    "BRIDGE_ATTACHMENT_SECRET",
    "OPENAI_API_KEY",
    "BRIDGE_GREETING",
    "BRIDGE_SYNC_TAGS",
    "BRIDGE_STATUS_LOCK_DELAY",
    "BRIDGE_MAX_BUFFER_SIZE",
    "BRIDGE_ATTACHMENT_TTL",
    "BRIDGE_ATTACHMENT_HOSTS",
    "BRIDGE_HTTP_TIMEOUT",
    "BRIDGE_ATTACHMENT_TIMEOUT",
    "QDRANT_URL",
    "BRIDGE_SIMULATOR_MODE",
]


@pytest.fixture
def bridge_home(tmp_path, monkeypatch):
    """Empty bridge home with no bridge env vars set."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("BRIDGE_HOME", str(tmp_path))
    return tmp_path


class TestBridgeConfig:
    def test_defaults(self):
        config = BridgeConfig()
        assert config.mode == "unconfigured"
        assert config.max_buffer_size == 5000
        assert config.status_lock_delay == 5.0
        assert config.http_timeout == 15.0
        assert config.attachment_timeout == 10.0
        assert config.sync_tags is True
        assert "cdn.discordapp.com" in config.attachment_hosts

    def test_modes(self):
        assert BridgeConfig(site="https://b").mode == "pull"
        assert BridgeConfig(site="https://b", push_client_id="x").mode == "push"
        assert BridgeConfig(simulator_mode=True).mode == "simulator"

    def test_related_threads_need_both_settings(self):
        assert not BridgeConfig(qdrant_url="http://q").related_threads_enabled
        assert BridgeConfig(
            qdrant_url="http://q", openai_api_key="sk"
        ).related_threads_enabled


class TestFromEnv:
    def test_empty_home(self, bridge_home):
        config = BridgeConfig.from_env()
        assert config.site == ""
        assert config.mode == "unconfigured"

    def test_reads_yaml_files(self, bridge_home):
        (bridge_home / "bridge.yaml").write_text(
            yaml.safe_dump(
                {
                    "site": "https://bridge.example.com/",
                    "greeting": "Hi {owner}",
                    "sync_tags": False,
                    "max_buffer_size": 10,
                }
            )
        )
        (bridge_home / "keys.yaml").write_text(
            yaml.safe_dump({"ZENDESK_WEBHOOK_SECRET": "whsec"})
        )
        config = BridgeConfig.from_env()
        assert config.site == "https://bridge.example.com"
        assert config.greeting == "Hi {owner}"
        assert config.sync_tags is False
        assert config.max_buffer_size == 10
        assert config.webhook_secret == "whsec"

    def test_env_overrides_files(self, bridge_home, monkeypatch):
        (bridge_home / "bridge.yaml").write_text(
            yaml.safe_dump({"site": "https://from-file", "status_lock_delay": 3})
        )
        (bridge_home / "keys.yaml").write_text(
            yaml.safe_dump({"ZENDESK_WEBHOOK_SECRET": "from-file"})
        )
        monkeypatch.setenv("BRIDGE_SITE", "https://from-env")
        monkeypatch.setenv("ZENDESK_WEBHOOK_SECRET", "from-env")
        monkeypatch.setenv("BRIDGE_STATUS_LOCK_DELAY", "0.5")
        config = BridgeConfig.from_env()
        assert config.site == "https://from-env"
        assert config.webhook_secret == "from-env"
        assert config.status_lock_delay == 0.5

    def test_bad_number_falls_back(self, bridge_home, monkeypatch):
        monkeypatch.setenv("BRIDGE_MAX_BUFFER_SIZE", "lots")
        assert BridgeConfig.from_env().max_buffer_size == 5000

    def test_attachment_hosts_list(self, bridge_home, monkeypatch):
        monkeypatch.setenv("BRIDGE_ATTACHMENT_HOSTS", "a.example, b.example")
        assert BridgeConfig.from_env().attachment_hosts == ("a.example", "b.example")

    def test_unreadable_yaml_ignored(self, bridge_home):
        (bridge_home / "bridge.yaml").write_text("site: [unclosed")
        assert BridgeConfig.from_env().site == ""
