"""Discord API client abstraction.

Provides a Protocol for the Discord REST operations the bridge needs and
two implementations:
- MemoryDiscordClient: In-memory, no network calls (testing/simulator)
- HttpDiscordClient: Real Discord REST v10 calls (production)

The bridge always works through the DiscordClient protocol, making it
fully testable without a real Discord guild.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import httpx

from discord_zendesk.conventions import (
    DISCORD_API_BASE_URL,
    INTERACTION_CALLBACK_UPDATE_MESSAGE,
)
from discord_zendesk.errors import UpstreamError
from discord_zendesk.models import DiscordChannel, DiscordMessage, DiscordUser

logger = logging.getLogger(__name__)

# Longest Retry-After we will sleep through before retrying
_MAX_RETRY_AFTER = 30.0

# (filename, content) pairs for uploads
FileUpload = tuple[str, bytes]


@runtime_checkable
class DiscordClient(Protocol):
    """Protocol for Discord REST operations."""

    async def get_bot_user(self) -> DiscordUser:
        """The bot's own user."""
        ...

    async def get_channel(self, channel_id: str) -> DiscordChannel | None:
        """Fetch a channel or thread. Returns None if not found."""
        ...

    async def get_message(
        self, channel_id: str, message_id: str
    ) -> DiscordMessage | None:
        """Fetch one message. Returns None if not found."""
        ...

    async def send_message(
        self,
        channel_id: str,
        content: str,
        files: list[FileUpload] | None = None,
        components: list[dict[str, Any]] | None = None,
    ) -> DiscordMessage:
        """Post a message (with optional file uploads) to a channel."""
        ...

    async def edit_thread(
        self,
        thread_id: str,
        *,
        locked: bool | None = None,
        archived: bool | None = None,
    ) -> None:
        """Lock/unlock or archive/unarchive a thread."""
        ...

    async def update_interaction_message(
        self,
        interaction_id: str,
        interaction_token: str,
        components: list[dict[str, Any]],
    ) -> None:
        """Answer a button press by replacing the message's components."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...


@dataclass
class SentMessage:
    """Record of a message sent through the client (for testing)."""

    channel_id: str
    content: str
    files: list[FileUpload] = field(default_factory=list)
    message_id: str = ""
    components: list[dict[str, Any]] = field(default_factory=list)


class MemoryDiscordClient:
    """In-memory Discord client for testing and simulation.

    Records all operations for inspection. No network calls.
    Implements DiscordClient protocol.
    """

    def __init__(
        self, bot_user_id: str = "B0", bot_username: str = "zendesk-bridge"
    ) -> None:
        self.bot_user = DiscordUser(id=bot_user_id, username=bot_username, bot=True)
        self.sent_messages: list[SentMessage] = []
        self.thread_edits: list[dict[str, Any]] = []
        self.interaction_responses: list[dict[str, Any]] = []
        self.closed = False
        self._channels: dict[str, DiscordChannel] = {}
        self._messages: dict[tuple[str, str], DiscordMessage] = {}
        self._ids = itertools.count(1)
        # Callback for when messages are sent (used by simulator)
        self.on_message_sent: Any = None

    def _check_open(self) -> None:
        if self.closed:
            raise UpstreamError("Discord connection is closed")

    def seed_channel(self, channel: DiscordChannel) -> None:
        """Pre-populate a channel or thread (for test setup)."""
        self._channels[channel.id] = channel

    def seed_message(self, message: DiscordMessage) -> None:
        """Pre-populate a message (for test setup)."""
        self._messages[(message.channel_id, message.id)] = message

    def channel(self, channel_id: str) -> DiscordChannel | None:
        """Current state of a seeded channel (testing helper)."""
        return self._channels.get(channel_id)

    async def get_bot_user(self) -> DiscordUser:
        self._check_open()
        return self.bot_user

    async def get_channel(self, channel_id: str) -> DiscordChannel | None:
        self._check_open()
        found = self._channels.get(channel_id)
        return replace(found) if found is not None else None

    async def get_message(
        self, channel_id: str, message_id: str
    ) -> DiscordMessage | None:
        self._check_open()
        return self._messages.get((channel_id, message_id))

    async def send_message(
        self,
        channel_id: str,
        content: str,
        files: list[FileUpload] | None = None,
        components: list[dict[str, Any]] | None = None,
    ) -> DiscordMessage:
        self._check_open()
        message_id = f"M{next(self._ids)}"
        channel = self._channels.get(channel_id)
        message = DiscordMessage(
            id=message_id,
            channel_id=channel_id,
            author=self.bot_user,
            content=content,
            guild_id=channel.guild_id if channel else "",
            timestamp=datetime.now(UTC).isoformat(),
        )
        self._messages[(channel_id, message_id)] = message
        sent = SentMessage(
            channel_id=channel_id,
            content=content,
            files=list(files or []),
            message_id=message_id,
            components=list(components or []),
        )
        self.sent_messages.append(sent)
        if self.on_message_sent:
            self.on_message_sent(sent)
        return message

    async def edit_thread(
        self,
        thread_id: str,
        *,
        locked: bool | None = None,
        archived: bool | None = None,
    ) -> None:
        self._check_open()
        self.thread_edits.append(
            {"thread_id": thread_id, "locked": locked, "archived": archived}
        )
        channel = self._channels.get(thread_id)
        if channel is None:
            return
        if locked is not None:
            channel.locked = locked
        if archived is not None:
            channel.archived = archived

    async def update_interaction_message(
        self,
        interaction_id: str,
        interaction_token: str,
        components: list[dict[str, Any]],
    ) -> None:
        self._check_open()
        self.interaction_responses.append(
            {"interaction_id": interaction_id, "components": components}
        )

    async def close(self) -> None:
        self.closed = True


class HttpDiscordClient:
    """Real Discord REST client.

    Uses httpx against the v10 API with the bot token. One instance per
    bot credential; close() when the owning session is destroyed.
    """

    def __init__(
        self,
        bot_token: str,
        timeout: float = 15.0,
        base_url: str = DISCORD_API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = 3,
    ) -> None:
        self._max_retries = max_retries
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bot {bot_token}"},
            transport=transport,
        )
        self._bot_user: DiscordUser | None = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Make a Discord API call. Returns None on 404 if allowed.

        Rate-limited calls (429) are retried after ``Retry-After``, up to
        ``max_retries`` times.
        """
        rate_limit_retries = 0
        while True:
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                raise UpstreamError(f"Discord {method} {path} failed: {e}") from e
            if response.status_code != 429:
                break
            retry_after_raw = response.headers.get("Retry-After")
            if retry_after_raw is None or rate_limit_retries >= self._max_retries:
                raise UpstreamError(f"Discord rate limit exceeded for {method} {path}")
            rate_limit_retries += 1
            try:
                retry_after = min(max(float(retry_after_raw), 0.0), _MAX_RETRY_AFTER)
            except ValueError:
                retry_after = 0.0
            logger.info(
                "Discord rate limited on %s %s, retrying after %.1fs (attempt %d)",
                method,
                path,
                retry_after,
                rate_limit_retries,
            )
            await asyncio.sleep(retry_after)

        if response.status_code == 404 and allow_missing:
            return None
        if response.status_code >= 400:
            preview = (response.text or "").strip().replace("\n", " ")[:200]
            raise UpstreamError(
                f"Discord {method} {path} -> {response.status_code}: {preview}"
            )
        if response.status_code == 204:
            return None
        return response.json()

    async def get_bot_user(self) -> DiscordUser:
        if self._bot_user is None:
            data = await self._request("GET", "/users/@me")
            self._bot_user = DiscordUser.from_payload(data)
        return self._bot_user

    async def get_channel(self, channel_id: str) -> DiscordChannel | None:
        data = await self._request(
            "GET", f"/channels/{channel_id}", allow_missing=True
        )
        return DiscordChannel.from_payload(data) if data else None

    async def get_message(
        self, channel_id: str, message_id: str
    ) -> DiscordMessage | None:
        data = await self._request(
            "GET",
            f"/channels/{channel_id}/messages/{message_id}",
            allow_missing=True,
        )
        return DiscordMessage.from_payload(data) if data else None

    async def send_message(
        self,
        channel_id: str,
        content: str,
        files: list[FileUpload] | None = None,
        components: list[dict[str, Any]] | None = None,
    ) -> DiscordMessage:
        path = f"/channels/{channel_id}/messages"
        payload: dict[str, Any] = {"content": content}
        if components:
            payload["components"] = components
        if not files:
            data = await self._request("POST", path, json=payload)
            return DiscordMessage.from_payload(data)

        payload["attachments"] = [
            {"id": index, "filename": name} for index, (name, _) in enumerate(files)
        ]
        multipart = {
            f"files[{index}]": (name, content_bytes)
            for index, (name, content_bytes) in enumerate(files)
        }
        data = await self._request(
            "POST",
            path,
            data={"payload_json": json.dumps(payload)},
            files=multipart,
        )
        return DiscordMessage.from_payload(data)

    async def edit_thread(
        self,
        thread_id: str,
        *,
        locked: bool | None = None,
        archived: bool | None = None,
    ) -> None:
        payload: dict[str, Any] = {}
        if locked is not None:
            payload["locked"] = locked
        if archived is not None:
            payload["archived"] = archived
        if payload:
            await self._request("PATCH", f"/channels/{thread_id}", json=payload)

    async def update_interaction_message(
        self,
        interaction_id: str,
        interaction_token: str,
        components: list[dict[str, Any]],
    ) -> None:
        await self._request(
            "POST",
            f"/interactions/{interaction_id}/{interaction_token}/callback",
            json={
                "type": INTERACTION_CALLBACK_UPDATE_MESSAGE,
                "data": {"components": components},
            },
        )

    async def close(self) -> None:
        await self._client.aclose()
