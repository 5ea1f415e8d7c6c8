"""One live Discord connection per bot credential.

A DiscordConnection pairs the REST client with the gateway adapter and
turns raw gateway dispatches into tagged events before they reach a
bridge session.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from discord_zendesk.client import DiscordClient, HttpDiscordClient, MemoryDiscordClient
from discord_zendesk.config import BridgeConfig
from discord_zendesk.errors import ValidationError
from discord_zendesk.gateway import DiscordGateway
from discord_zendesk.models import DiscordEvent, parse_event

logger = logging.getLogger(__name__)

EventHandler = Callable[[DiscordEvent], Awaitable[None]]
ConnectionFactory = Callable[[str], "DiscordConnection"]


class DiscordConnection:
    """REST client plus (optionally) a gateway for one bot token."""

    def __init__(self, client: DiscordClient, token: str | None = None) -> None:
        self.client = client
        self._token = token
        self._gateway: DiscordGateway | None = None
        self._on_event: EventHandler | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self, on_event: EventHandler) -> None:
        """Start receiving events. Without a token no gateway is opened."""
        self._on_event = on_event
        if self._token:
            self._gateway = DiscordGateway(self._token, self._dispatch)
            await self._gateway.start()

    async def _dispatch(self, name: str, data: dict[str, Any]) -> None:
        try:
            event = parse_event(name, data)
        except ValidationError as e:
            logger.warning("Dropping gateway event: %s", e)
            return
        if event is None:
            logger.debug(f"Ignoring gateway event: {name}")
            return
        if self._on_event is not None:
            await self._on_event(event)

    async def disconnect(self) -> None:
        """Close the gateway and the REST client. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._gateway is not None:
            await self._gateway.stop()
        await self.client.close()


def http_connection_factory(config: BridgeConfig) -> ConnectionFactory:
    """Factory producing real gateway-backed connections."""

    def connect(token: str) -> DiscordConnection:
        return DiscordConnection(
            HttpDiscordClient(token, timeout=config.http_timeout), token=token
        )

    return connect


def memory_connection_factory() -> ConnectionFactory:
    """Factory producing in-memory connections (simulator mode)."""

    def connect(token: str) -> DiscordConnection:
        return DiscordConnection(MemoryDiscordClient())

    return connect
