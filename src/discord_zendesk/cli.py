"""CLI entry point for the bridge.

Usage:
    discord-zendesk serve [OPTIONS]      # run the HTTP server (foreground)
    discord-zendesk discord-only         # one forum, no Zendesk delivery
    discord-zendesk manifest             # print the integration manifest
    python -m discord_zendesk [COMMAND]  # via module
"""

from __future__ import annotations

import asyncio
import json
import logging
import os

import click

from discord_zendesk import __version__, conventions


@click.group("discord-zendesk")
@click.version_option(__version__, prog_name="discord-zendesk")
def main() -> None:
    """Discord forum <-> Zendesk bridge."""


@main.command()
@click.option(
    "--host",
    default="127.0.0.1",
    help="Bind host (use 0.0.0.0 to accept Zendesk traffic directly)",
)
@click.option("--port", default=None, type=int, help="Bind port")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.option("--simulator", is_flag=True, help="In-memory Discord and Zendesk")
def serve(host: str, port: int | None, reload: bool, simulator: bool) -> None:
    """Run the bridge HTTP server in the foreground."""
    import uvicorn

    from discord_zendesk.config import BridgeConfig
    from discord_zendesk.startup import load_env_file, log_startup_info, setup_logging

    setup_logging()
    logger = logging.getLogger("discord_zendesk")

    loaded_env = load_env_file()
    if loaded_env:
        logger.info(
            "Loaded %d var(s) from .env: %s", len(loaded_env), ", ".join(loaded_env)
        )

    if simulator:
        os.environ["BRIDGE_SIMULATOR_MODE"] = "1"
    config = BridgeConfig.from_env()
    port = port or config.port

    if not config.is_configured and not config.simulator_mode:
        raise click.ClickException(
            "No public site URL configured (set BRIDGE_SITE or site in "
            f"{conventions.BRIDGE_HOME}/{conventions.BRIDGE_CONFIG_FILENAME})"
        )

    log_startup_info(config, host, port)
    click.echo(f"Starting bridge on http://{host}:{port} (mode: {config.mode})")

    uvicorn.run(
        "discord_zendesk.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command("discord-only")
def discord_only() -> None:
    """Run one bridge session for a single forum, without Zendesk.

    Reads DISCORD_ONLY_TOKEN and DISCORD_ONLY_CHANNEL. Translated events
    are logged and dropped. Useful for checking a bot's permissions.
    """
    from discord_zendesk.startup import load_env_file, setup_logging

    setup_logging()
    load_env_file()

    token = os.environ.get("DISCORD_ONLY_TOKEN", "")
    channel = os.environ.get("DISCORD_ONLY_CHANNEL", "")
    if not token or not channel:
        raise click.ClickException(
            "DISCORD_ONLY_TOKEN and DISCORD_ONLY_CHANNEL must both be set"
        )

    try:
        asyncio.run(_run_discord_only(token, channel))
    except KeyboardInterrupt:
        click.echo("Stopped.")


async def _run_discord_only(token: str, channel: str) -> None:
    from discord_zendesk.attachments import AttachmentProxy
    from discord_zendesk.config import BridgeConfig
    from discord_zendesk.connection import http_connection_factory
    from discord_zendesk.delivery import DeliveryPolicy, OutboundBuffer
    from discord_zendesk.models import TenantMetadata
    from discord_zendesk.session import BridgeSession
    from discord_zendesk.zendesk import HttpZendeskClient

    config = BridgeConfig.from_env()
    metadata = TenantMetadata(uuid="discord-only", token=token, channel=channel)
    session = BridgeSession(
        metadata=metadata,
        connection=http_connection_factory(config)(token),
        buffer=OutboundBuffer(metadata.uuid),
        delivery=DeliveryPolicy(None),
        fetch_file=HttpZendeskClient().fetch_file,
        proxy=AttachmentProxy(config.site or "http://localhost"),
        config=config,
    )
    await session.create()
    click.echo(f"Watching forum #{channel}; press Ctrl+C to stop")
    try:
        await asyncio.Event().wait()
    finally:
        await session.destroy()


@main.command()
def manifest() -> None:
    """Print the integration manifest JSON."""
    from discord_zendesk.app import build_manifest
    from discord_zendesk.config import BridgeConfig
    from discord_zendesk.startup import load_env_file

    load_env_file()
    config = BridgeConfig.from_env()
    if not config.is_configured:
        raise click.ClickException("No public site URL configured (set BRIDGE_SITE)")
    click.echo(json.dumps(build_manifest(config), indent=2))
