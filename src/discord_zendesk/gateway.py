"""Discord gateway adapter.

Connects to the Discord gateway via WebSocket and forwards the dispatch
events the bridge cares about to a callback.

Uses a direct aiohttp WebSocket connection so the bridge controls the
connection lifecycle itself: HELLO -> IDENTIFY -> heartbeat -> DISPATCH,
with reconnection and exponential backoff.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import platform
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from discord_zendesk.conventions import (
    DISCORD_GATEWAY_URL,
    DISCORD_INTENT_GUILD_MESSAGES,
    DISCORD_INTENT_GUILDS,
    DISCORD_INTENT_MESSAGE_CONTENT,
)

logger = logging.getLogger(__name__)

DEFAULT_INTENTS = (
    DISCORD_INTENT_GUILDS
    | DISCORD_INTENT_GUILD_MESSAGES
    | DISCORD_INTENT_MESSAGE_CONTENT
)

# Reconnect backoff
_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 60.0
_BACKOFF_FACTOR = 2.0

# Heartbeats arrive every ~41s; two missed intervals means a dead socket.
_RECEIVE_TIMEOUT = 120  # seconds

# Close codes after which reconnecting cannot help (bad token, bad intents)
FATAL_CLOSE_CODES = frozenset({4004, 4010, 4011, 4012, 4013, 4014})

# Gateway opcodes
OP_DISPATCH = 0
OP_HEARTBEAT = 1
OP_IDENTIFY = 2
OP_RECONNECT = 7
OP_INVALID_SESSION = 9
OP_HELLO = 10
OP_HEARTBEAT_ACK = 11

DispatchHandler = Callable[[str, dict[str, Any]], Awaitable[None]]


def build_identify_payload(bot_token: str, intents: int) -> dict[str, Any]:
    return {
        "op": OP_IDENTIFY,
        "d": {
            "token": bot_token,
            "intents": intents,
            "properties": {
                "os": platform.system().lower() or "unknown",
                "browser": "discord-zendesk-bridge",
                "device": "discord-zendesk-bridge",
            },
        },
    }


class DiscordGateway:
    """Bridges Discord gateway dispatches to a handler coroutine.

    Each dispatch runs as its own task so a slow handler (attachment
    fetches, Zendesk pushes) never stalls heartbeats or other events.
    """

    def __init__(
        self,
        bot_token: str,
        on_dispatch: DispatchHandler,
        intents: int = DEFAULT_INTENTS,
        gateway_url: str = DISCORD_GATEWAY_URL,
    ) -> None:
        self._token = bot_token
        self._on_dispatch = on_dispatch
        self._intents = intents
        self._gateway_url = gateway_url
        self._task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._running = False
        self._sequence: int | None = None
        self._pending_tasks: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the gateway connection in the background."""
        self._running = True
        self._task = asyncio.create_task(self._connection_loop())
        logger.info("Discord gateway started")

    async def _connection_loop(self) -> None:
        """Main loop: connect, process, reconnect on failure."""
        backoff = _INITIAL_BACKOFF

        while self._running:
            try:
                logger.info("Connecting to Discord gateway...")
                session = aiohttp.ClientSession()
                self._session = session
                self._ws = await session.ws_connect(self._gateway_url)
                logger.info("Gateway WebSocket connected")

                backoff = _INITIAL_BACKOFF

                await self._process_frames()

                close_code = self._ws.close_code if self._ws else None
                if close_code in FATAL_CLOSE_CODES:
                    logger.error(
                        "Discord gateway closed with fatal code %s; "
                        "check the bot token and intents",
                        close_code,
                    )
                    self._running = False

            except asyncio.CancelledError:
                logger.info("Gateway connection cancelled")
                break
            except Exception:
                logger.exception("Gateway connection error")
            finally:
                await self._cancel_heartbeat()
                await self._close_ws()

            if self._running:
                logger.info(f"Reconnecting in {backoff:.0f}s...")
                await asyncio.sleep(backoff)
                backoff = min(backoff * _BACKOFF_FACTOR, _MAX_BACKOFF)

    async def _process_frames(self) -> None:
        """Read and dispatch WebSocket frames until the socket closes."""
        assert self._ws is not None

        while self._running and self._ws and not self._ws.closed:
            try:
                msg = await asyncio.wait_for(
                    self._ws.receive(), timeout=_RECEIVE_TIMEOUT
                )
            except TimeoutError:
                logger.warning(
                    f"No gateway frames in {_RECEIVE_TIMEOUT}s, assuming dead connection"
                )
                break

            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    frame = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning("Dropping non-JSON gateway frame")
                    continue
                await self._handle_frame(frame)
            elif msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.ERROR,
            ):
                logger.info(f"Gateway socket closing (type={msg.type})")
                break

    async def _handle_frame(self, frame: dict[str, Any]) -> None:
        """Dispatch a single gateway frame."""
        op = frame.get("op")
        seq = frame.get("s")
        if isinstance(seq, int):
            self._sequence = seq

        if op == OP_HELLO:
            interval = (frame.get("d") or {}).get("heartbeat_interval", 41250)
            await self._cancel_heartbeat()
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(float(interval) / 1000.0)
            )
            await self._send(build_identify_payload(self._token, self._intents))

        elif op == OP_DISPATCH:
            event_name = frame.get("t") or ""
            data = frame.get("d")
            if event_name == "READY":
                user = (data or {}).get("user", {})
                logger.info(f"Gateway ready as {user.get('username', '?')}")
            if isinstance(data, dict):
                self._spawn(event_name, data)

        elif op == OP_HEARTBEAT:
            await self._send({"op": OP_HEARTBEAT, "d": self._sequence})

        elif op in (OP_RECONNECT, OP_INVALID_SESSION):
            logger.warning(f"Gateway asked us to reconnect (op={op})")
            if self._ws:
                await self._ws.close()

        # OP_HEARTBEAT_ACK needs no action

    def _spawn(self, event_name: str, data: dict[str, Any]) -> None:
        """Run the dispatch handler as a tracked background task."""
        task = asyncio.create_task(self._run_handler(event_name, data))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _run_handler(self, event_name: str, data: dict[str, Any]) -> None:
        try:
            await self._on_dispatch(event_name, data)
        except Exception:
            logger.exception(f"Error handling gateway event {event_name}")

    async def _heartbeat_loop(self, interval: float) -> None:
        while self._running:
            await asyncio.sleep(interval)
            await self._send({"op": OP_HEARTBEAT, "d": self._sequence})

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws and not self._ws.closed:
            await self._ws.send_json(payload)

    async def _cancel_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _close_ws(self) -> None:
        """Close WebSocket and HTTP session."""
        if self._ws and not self._ws.closed:
            try:
                await self._ws.close()
            except OSError:
                logger.debug("Error closing WebSocket", exc_info=True)
        self._ws = None

        if self._session and not self._session.closed:
            try:
                await self._session.close()
            except OSError:
                logger.debug("Error closing HTTP session", exc_info=True)
        self._session = None

    async def stop(self) -> None:
        """Stop the gateway connection. Safe to call more than once."""
        self._running = False

        await self._cancel_heartbeat()
        await self._close_ws()

        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

        logger.info("Discord gateway stopped")
