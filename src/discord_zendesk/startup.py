"""Server startup utilities: structured logging and .env loading.

Handles tasks that run before the event loop starts:
- Structured logging (JSON to file, human-readable to console)
- Environment variables from .env files
- Startup configuration summary

All paths are constructed from conventions.py constants.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from discord_zendesk import __version__, conventions
from discord_zendesk.config import BridgeConfig, bridge_home

logger = logging.getLogger(__name__)


def log_file_path() -> Path:
    """Return the server log file path, constructed from conventions."""
    return bridge_home() / conventions.SERVER_LOG_FILE


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured file logging."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(log_file: Path | None = None, level: int = logging.INFO) -> None:
    """Configure structured logging: JSON to file, human-readable to console.

    Args:
        log_file: Path for the JSON log file. Uses convention default if None.
        level: Logging level for both handlers.
    """
    if log_file is None:
        log_file = log_file_path()

    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.addHandler(console_handler)

    file_handler = RotatingFileHandler(
        str(log_file), maxBytes=10 * 1024 * 1024, backupCount=3
    )
    file_handler.setFormatter(JSONFormatter())
    root.addHandler(file_handler)


def env_file_paths() -> list[Path]:
    """Return .env file search paths in priority order."""
    return [bridge_home() / conventions.ENV_FILENAME, Path.cwd() / ".env"]


def load_env_file(env_file: Path | None = None) -> list[str]:
    """Load environment variables from a .env file.

    Parses ``KEY=value`` lines (optionally quoted) and sets them with
    ``os.environ.setdefault`` so variables already in the environment
    win. Comments and blank lines are skipped.

    Returns:
        Names of the variables that were loaded.
    """
    files = [env_file] if env_file is not None else env_file_paths()
    loaded: list[str] = []

    for path in files:
        if not path.exists():
            continue
        try:
            lines = path.read_text().splitlines()
        except OSError:
            logger.debug("Could not read %s", path, exc_info=True)
            continue
        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            if key and key not in os.environ:
                os.environ[key] = value
                loaded.append(key)

    return loaded


def log_startup_info(config: BridgeConfig, host: str, port: int) -> None:
    """Log version, mode and the optional features that are switched on."""
    logger.info("Discord Zendesk bridge %s starting on %s:%d", __version__, host, port)
    logger.info("Mode: %s, site: %s", config.mode, config.site or "(unset)")
    if not config.webhook_secret:
        logger.warning("No webhook secret configured; webhooks are not verified")
    if not config.attachment_secret:
        logger.info("No attachment secret configured; proxy URLs are unsigned")
    if config.related_threads_enabled:
        logger.info("Related-thread suggestions enabled (%s)", config.qdrant_url)
