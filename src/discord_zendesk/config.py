"""Configuration for the bridge.

Secrets live in keys.yaml, settings in bridge.yaml, both under
``~/.discord-zendesk/``.

Priority order (highest wins):
1. Environment variables (BRIDGE_SITE, ZENDESK_WEBHOOK_SECRET, etc.)
2. keys.yaml for secrets, bridge.yaml for config
3. Dataclass defaults
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from discord_zendesk.conventions import (
    BRIDGE_CONFIG_FILENAME,
    BRIDGE_HOME,
    DISCORD_CDN_HOSTS,
    KEYS_FILENAME,
    SERVER_DEFAULT_PORT,
)

logger = logging.getLogger(__name__)


def bridge_home() -> Path:
    return Path(os.environ.get("BRIDGE_HOME", BRIDGE_HOME)).expanduser()


def _load_yaml(filename: str) -> dict[str, Any]:
    """Load a YAML mapping from the bridge home if it exists."""
    path = bridge_home() / filename
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text())
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        logger.warning("Failed to read %s", filename, exc_info=True)
        return {}


def _str(
    env_key: str,
    keys: dict[str, Any],
    config: dict[str, Any],
    config_key: str,
    default: str = "",
) -> str:
    """Get string: env > keys.yaml > bridge.yaml > default."""
    env = os.environ.get(env_key, "")
    if env:
        return env
    k = keys.get(env_key, "")
    if k:
        return str(k)
    c = config.get(config_key, "")
    if c:
        return str(c)
    return default


def _bool(
    env_key: str,
    config: dict[str, Any],
    config_key: str,
    default: bool = False,
) -> bool:
    """Get bool: env > bridge.yaml > default."""
    env = os.environ.get(env_key, "")
    if env:
        return env.lower() in ("1", "true", "yes")
    val = config.get(config_key)
    if val is not None:
        return bool(val)
    return default


def _number(
    env_key: str,
    config: dict[str, Any],
    config_key: str,
    default: float,
) -> float:
    """Get number: env > bridge.yaml > default. Bad values fall back."""
    raw = os.environ.get(env_key, "") or config.get(config_key)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s=%r", env_key, raw)
        return default


@dataclass
class BridgeConfig:
    """Bridge configuration."""

    # --- Public surface ---
    site: str = ""  # Public base URL, e.g. https://bridge.example.com
    push_client_id: str = ""  # Zendesk OAuth client id enabling push
    admin_ui_url: str = ""
    port: int = SERVER_DEFAULT_PORT

    # --- Secrets (from keys.yaml) ---
    webhook_secret: str = ""  # Zendesk webhook signing secret
    attachment_secret: str = ""  # Signs proxied attachment URLs
    openai_api_key: str = ""

    # --- Behavior ---
    greeting: str = ""  # Posted into new threads; {owner} is a mention
    sync_tags: bool = True
    status_lock_delay: float = 5.0
    max_buffer_size: int = 5000  # 0 = unbounded
    attachment_ttl: int = 7 * 24 * 3600
    attachment_hosts: tuple[str, ...] = field(default=DISCORD_CDN_HOSTS)

    # --- Timeouts (seconds) ---
    http_timeout: float = 15.0
    attachment_timeout: float = 10.0

    # --- Related threads (optional) ---
    qdrant_url: str = ""

    # --- Mode ---
    simulator_mode: bool = False

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load config from keys.yaml + bridge.yaml + env overrides.

        Priority: env vars > keys.yaml (secrets) > bridge.yaml (config)
        > dataclass defaults.
        """
        keys = _load_yaml(KEYS_FILENAME)
        cfg = _load_yaml(BRIDGE_CONFIG_FILENAME)
        site = _str("BRIDGE_SITE", {}, cfg, "site").rstrip("/")
        hosts = _str("BRIDGE_ATTACHMENT_HOSTS", {}, cfg, "attachment_hosts")
        config = cls(
            site=site,
            push_client_id=_str("ZENDESK_PUSH_CLIENT_ID", {}, cfg, "push_client_id"),
            admin_ui_url=_str("BRIDGE_ADMIN_UI_URL", {}, cfg, "admin_ui_url"),
            port=int(_number("PORT", cfg, "port", SERVER_DEFAULT_PORT)),
            webhook_secret=_str("ZENDESK_WEBHOOK_SECRET", keys, cfg, "webhook_secret"),
            attachment_secret=_str(
                "BRIDGE_ATTACHMENT_SECRET", keys, cfg, "attachment_secret"
            ),
            openai_api_key=_str("OPENAI_API_KEY", keys, cfg, "openai_api_key"),
            greeting=_str("BRIDGE_GREETING", {}, cfg, "greeting"),
            sync_tags=_bool("BRIDGE_SYNC_TAGS", cfg, "sync_tags", True),
            status_lock_delay=_number(
                "BRIDGE_STATUS_LOCK_DELAY", cfg, "status_lock_delay", 5.0
            ),
            max_buffer_size=int(
                _number("BRIDGE_MAX_BUFFER_SIZE", cfg, "max_buffer_size", 5000)
            ),
            attachment_ttl=int(
                _number("BRIDGE_ATTACHMENT_TTL", cfg, "attachment_ttl", 7 * 24 * 3600)
            ),
            attachment_hosts=(
                tuple(h.strip() for h in hosts.split(",") if h.strip())
                if hosts
                else DISCORD_CDN_HOSTS
            ),
            http_timeout=_number("BRIDGE_HTTP_TIMEOUT", cfg, "http_timeout", 15.0),
            attachment_timeout=_number(
                "BRIDGE_ATTACHMENT_TIMEOUT", cfg, "attachment_timeout", 10.0
            ),
            qdrant_url=_str("QDRANT_URL", {}, cfg, "qdrant_url"),
            simulator_mode=_bool("BRIDGE_SIMULATOR_MODE", cfg, "simulator_mode"),
        )
        logger.debug("BridgeConfig.from_env: site=%s", config.site)
        return config

    @property
    def is_configured(self) -> bool:
        """Whether the public site URL is known."""
        return bool(self.site)

    @property
    def push_enabled(self) -> bool:
        """Whether the manifest advertises push delivery."""
        return bool(self.push_client_id)

    @property
    def related_threads_enabled(self) -> bool:
        return bool(self.qdrant_url and self.openai_api_key)

    @property
    def mode(self) -> str:
        """Current operating mode."""
        if self.simulator_mode:
            return "simulator"
        if not self.is_configured:
            return "unconfigured"
        return "push" if self.push_enabled else "pull"
