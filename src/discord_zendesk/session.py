"""Bridge sessions - one live Discord connection per Zendesk tenant.

A BridgeSession owns the tenant's Discord connection, its outbound
buffer and the current TenantMetadata. Event handlers always read
``self.metadata`` when they run, so update_configuration() changes the
forum channel or push credentials without reconnecting.

New forum posts get an optional greeting with a Close button; pressing
it archives the thread and swaps in a Reopen button.

Lifecycle: UNINITIALIZED -> ACTIVE -> DESTROYED. A destroyed session is
never revived; the registry creates a new instance instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from enum import StrEnum
from typing import Any

from discord_zendesk.attachments import AttachmentProxy
from discord_zendesk.client import DiscordClient
from discord_zendesk.config import BridgeConfig
from discord_zendesk.connection import DiscordConnection
from discord_zendesk.conventions import BUTTON_CLOSE, BUTTON_REOPEN, RESOLVED_NOTICE
from discord_zendesk.delivery import DeliveryPolicy, OutboundBuffer
from discord_zendesk.models import (
    ButtonPressed,
    ChannelbackRequest,
    DiscordChannel,
    DiscordEvent,
    DiscordMessage,
    DiscordUser,
    ExternalResource,
    MessageCreated,
    PushDescriptor,
    TenantMetadata,
    ThreadCreated,
    ThreadDeleted,
)
from discord_zendesk.related import (
    RelatedThreads,
    collection_name,
    embedding_text,
    format_suggestions,
)
from discord_zendesk.translator import (
    FileFetcher,
    ResourceTranslator,
    thread_action_row,
)
from discord_zendesk.webhook import is_resolved

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    """Where a session is in its lifecycle."""

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    DESTROYED = "destroyed"


class BridgeSession:
    """Couples one tenant's Discord connection to Zendesk delivery."""

    def __init__(
        self,
        metadata: TenantMetadata,
        connection: DiscordConnection,
        buffer: OutboundBuffer,
        delivery: DeliveryPolicy,
        fetch_file: FileFetcher,
        proxy: AttachmentProxy,
        config: BridgeConfig | None = None,
        related: RelatedThreads | None = None,
    ) -> None:
        self._metadata = metadata
        self._connection = connection
        self.buffer = buffer
        self._delivery = delivery
        self._config = config or BridgeConfig()
        self._related = related
        self._translator = ResourceTranslator(
            connection.client, proxy, fetch_file, sync_tags=self._config.sync_tags
        )
        self._bot_user: DiscordUser | None = None
        self._pending_tasks: set[asyncio.Task[None]] = set()
        self.state = SessionState.UNINITIALIZED
        # Push credentials Zendesk has confirmed for this session
        self.validated_push: PushDescriptor | None = None

    @property
    def metadata(self) -> TenantMetadata:
        """The tenant's current metadata snapshot."""
        return self._metadata

    @property
    def uuid(self) -> str:
        return self._metadata.uuid

    @property
    def client(self) -> DiscordClient:
        return self._connection.client

    @property
    def bot_user(self) -> DiscordUser | None:
        return self._bot_user

    # --- Lifecycle ---

    async def create(self) -> None:
        """Connect to Discord and start handling events."""
        if self.state is not SessionState.UNINITIALIZED:
            raise RuntimeError(f"Cannot create a session in state {self.state}")
        self._bot_user = await self.client.get_bot_user()
        await self._connection.open(self.handle_event)
        self.state = SessionState.ACTIVE
        await self._ensure_collection()
        logger.info(
            "Bridge session for tenant %s handles forum #%s as %s",
            self.uuid,
            self._metadata.channel,
            self._bot_user.username,
        )

    async def update_configuration(self, metadata: TenantMetadata) -> None:
        """Swap in new metadata. The credential must not change."""
        if metadata.token != self._metadata.token:
            raise ValueError("Credential changed; the session must be recreated")
        if metadata.uuid != self._metadata.uuid:
            raise ValueError("Tenant uuid cannot change")
        previous = self._metadata
        self._metadata = metadata
        if previous.channel != metadata.channel:
            logger.info(
                "Tenant %s now bridges forum #%s (was #%s)",
                self.uuid,
                metadata.channel,
                previous.channel,
            )
            await self._ensure_collection()

    async def destroy(self) -> None:
        """Disconnect from Discord. Idempotent."""
        if self.state is SessionState.DESTROYED:
            return
        self.state = SessionState.DESTROYED
        for task in list(self._pending_tasks):
            task.cancel()
        await self._connection.disconnect()
        logger.info("Bridge session for tenant %s destroyed", self.uuid)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for scheduled background work (tests and shutdown)."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    # --- Discord -> Zendesk ---

    def _deliver(self, resource: ExternalResource | None) -> None:
        if resource is None:
            return
        self._delivery.on_event(self._metadata, self.buffer, resource)

    async def handle_event(self, event: DiscordEvent) -> None:
        """Entry point for gateway events."""
        if self.state is not SessionState.ACTIVE:
            return
        if isinstance(event, ThreadCreated):
            await self._on_thread_created(event.thread)
        elif isinstance(event, MessageCreated):
            await self._on_message_created(event.message)
        elif isinstance(event, ThreadDeleted):
            await self._on_thread_deleted(event)
        elif isinstance(event, ButtonPressed):
            await self._on_button_pressed(event)
        else:
            logger.debug(f"Unhandled event: {type(event).__name__}")

    async def _on_thread_created(self, thread: DiscordChannel) -> None:
        metadata = self._metadata
        if not self._translator.in_forum(thread, metadata):
            return

        if self._config.greeting:
            await self._greet(thread)

        starter = await self.client.get_message(thread.id, thread.id)
        resource = await self._translator.thread_created(thread, metadata, starter)
        self._deliver(resource)

        if resource is not None and starter is not None and self._related:
            await self._suggest_related(thread, starter)

    async def _greet(self, thread: DiscordChannel) -> None:
        owner = f"<@{thread.owner_id}>" if thread.owner_id else "there"
        try:
            await self.client.send_message(
                thread.id,
                self._config.greeting.replace("{owner}", owner),
                components=thread_action_row(BUTTON_CLOSE),
            )
        except Exception:
            logger.warning(
                "Could not greet thread %s (tenant %s)",
                thread.id,
                self.uuid,
                exc_info=True,
            )

    async def _on_message_created(self, message: DiscordMessage) -> None:
        bot_id = self._bot_user.id if self._bot_user else ""
        resource = await self._translator.message_created(
            message, self._metadata, bot_id
        )
        self._deliver(resource)

    async def _on_thread_deleted(self, event: ThreadDeleted) -> None:
        assert self._bot_user is not None
        self._deliver(
            self._translator.thread_deleted(event, self._metadata, self._bot_user)
        )

    async def _on_button_pressed(self, event: ButtonPressed) -> None:
        """Close or reopen a forum thread from its greeting buttons."""
        if event.custom_id not in (BUTTON_CLOSE, BUTTON_REOPEN):
            return
        thread = await self.client.get_channel(event.channel_id)
        if thread is None or not self._translator.in_forum(thread, self._metadata):
            return
        if event.custom_id == BUTTON_CLOSE:
            await self.client.update_interaction_message(
                event.interaction_id, event.token, thread_action_row(BUTTON_REOPEN)
            )
            await self.client.edit_thread(thread.id, archived=True)
        else:
            await self.client.edit_thread(thread.id, archived=False)
            await self.client.update_interaction_message(
                event.interaction_id, event.token, thread_action_row(BUTTON_CLOSE)
            )
        action = "closed" if event.custom_id == BUTTON_CLOSE else "reopened"
        logger.info("Thread %s %s by user %s", thread.id, action, event.user_id)

    async def _ensure_collection(self) -> None:
        if self._related is None:
            return
        name = collection_name(self.uuid, self._metadata.channel)
        try:
            await self._related.ensure_collection(name)
        except Exception:
            logger.warning(
                "Could not prepare related-thread collection %s", name, exc_info=True
            )

    async def _suggest_related(
        self, thread: DiscordChannel, starter: DiscordMessage
    ) -> None:
        assert self._related is not None
        name = collection_name(self.uuid, self._metadata.channel)
        try:
            vector = await self._related.embed(
                embedding_text(thread.name, starter.content)
            )
            matches = await self._related.search(name, vector)
            suggestions = []
            for match in matches:
                found = await self.client.get_channel(match.thread_id)
                if found is not None:
                    if not found.guild_id:
                        found.guild_id = thread.guild_id
                    suggestions.append((found.name, found.url, match.score))
            if suggestions:
                await self.client.send_message(
                    thread.id, format_suggestions(suggestions)
                )
            await self._related.upsert(name, thread.id, vector)
        except Exception:
            logger.warning(
                "Related-thread lookup failed for thread %s", thread.id, exc_info=True
            )

    # --- Zendesk -> Discord ---

    async def channelback(self, request: ChannelbackRequest) -> str | None:
        return await self._translator.channelback(request, self._metadata)

    async def clickthrough(self, external_id: str) -> str | None:
        return await self._translator.clickthrough(external_id, self._metadata)

    async def status_change(self, thread_id: str, status: str) -> bool:
        """Apply a ticket status to a thread in this tenant's forum.

        Returns True if the thread belongs to this session. Resolution
        is applied after a delay so a final agent reply lands first.
        Errors are logged, never raised.
        """
        try:
            thread = await self.client.get_channel(thread_id)
            if thread is None or not self._translator.in_forum(thread, self._metadata):
                return False
            if is_resolved(status):
                self._spawn(self._resolve_later(thread_id))
            elif thread.locked:
                await self.client.edit_thread(thread_id, locked=False)
                logger.info("Unlocked thread %s (status %s)", thread_id, status)
            return True
        except Exception:
            logger.exception(
                "Status change %r for thread %s failed (tenant %s)",
                status,
                thread_id,
                self.uuid,
            )
            return False

    async def _resolve_later(self, thread_id: str) -> None:
        await asyncio.sleep(self._config.status_lock_delay)
        try:
            await self.client.send_message(thread_id, RESOLVED_NOTICE)
            await self.client.edit_thread(thread_id, locked=True)
            logger.info("Locked resolved thread %s", thread_id)
        except Exception:
            logger.exception("Could not lock resolved thread %s", thread_id)
