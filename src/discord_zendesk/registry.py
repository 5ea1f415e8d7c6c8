"""Session registry - the tenant uuid -> BridgeSession table.

The registry is the routing core of the bridge. Every pull resolves
(or creates, or recreates) the tenant's session and drains its buffer;
channelback looks the session up by uuid; clickthrough and status
webhooks carry no tenant id and are offered to each session in turn.

Credential rotation: metadata arriving with a known uuid but a different
token destroys the old session (its buffer is discarded) and creates a
fresh one. Same token means the metadata is swapped in place.

Concurrent first pulls for one uuid are serialized by a per-tenant
lock, so only one of them connects to Discord.
"""

from __future__ import annotations

import asyncio
import logging
import weakref

from discord_zendesk.attachments import AttachmentProxy
from discord_zendesk.config import BridgeConfig
from discord_zendesk.connection import ConnectionFactory
from discord_zendesk.delivery import DeliveryPolicy, OutboundBuffer
from discord_zendesk.errors import AuthError, BridgeError, NotFoundError
from discord_zendesk.models import ChannelbackRequest, ExternalResource, TenantMetadata
from discord_zendesk.related import RelatedThreads
from discord_zendesk.session import BridgeSession
from discord_zendesk.zendesk import ZendeskClient

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every tenant's bridge session and outbound buffer."""

    def __init__(
        self,
        connect: ConnectionFactory,
        zendesk: ZendeskClient,
        config: BridgeConfig | None = None,
        delivery: DeliveryPolicy | None = None,
        related: RelatedThreads | None = None,
    ) -> None:
        self._connect = connect
        self._zendesk = zendesk
        self._config = config or BridgeConfig()
        self.delivery = delivery or DeliveryPolicy(zendesk)
        self._related = related
        self._proxy = AttachmentProxy(
            self._config.site,
            self._config.attachment_secret,
            self._config.attachment_ttl,
            self._config.attachment_hosts,
        )
        self._sessions: dict[str, BridgeSession] = {}
        self._buffers: dict[str, OutboundBuffer] = {}
        # Held only while some pull for the uuid is running or waiting
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def proxy(self) -> AttachmentProxy:
        return self._proxy

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, uuid: str) -> bool:
        return uuid in self._sessions

    def sessions(self) -> list[BridgeSession]:
        """Active sessions in registration order."""
        return list(self._sessions.values())

    def lookup(self, uuid: str) -> BridgeSession | None:
        return self._sessions.get(uuid)

    def _lock_for(self, uuid: str) -> asyncio.Lock:
        lock = self._locks.get(uuid)
        if lock is None:
            lock = self._locks[uuid] = asyncio.Lock()
        return lock

    # --- Resolution ---

    async def resolve_or_create(self, metadata: TenantMetadata) -> BridgeSession:
        """Return the tenant's session, creating or recreating it as needed."""
        lock = self._lock_for(metadata.uuid)
        async with lock:
            existing = self._sessions.get(metadata.uuid)
            rotated = existing is not None and existing.metadata.token != metadata.token

            if existing is not None and not rotated:
                await self._check_push(metadata, existing)
                await existing.update_configuration(metadata)
                if metadata.push is not None:
                    existing.validated_push = metadata.push
                return existing

            await self._check_push(metadata, None)

            if existing is not None:
                logger.info(
                    "Credential for tenant %s changed; recreating its session",
                    metadata.uuid,
                )
                await self._discard(metadata.uuid)

            return await self._create(metadata)

    async def _check_push(
        self, metadata: TenantMetadata, session: BridgeSession | None
    ) -> None:
        """Validate push credentials Zendesk has not confirmed for us yet."""
        descriptor = metadata.push
        if descriptor is None:
            return
        if session is not None and session.validated_push == descriptor:
            return
        if not await self._zendesk.validate_token(descriptor):
            logger.warning("Push token rejected for tenant %s", metadata.uuid)
            raise AuthError("Zendesk rejected the push token")

    async def _create(self, metadata: TenantMetadata) -> BridgeSession:
        buffer = OutboundBuffer(metadata.uuid, self._config.max_buffer_size)
        self._buffers[metadata.uuid] = buffer
        session = BridgeSession(
            metadata=metadata,
            connection=self._connect(metadata.token),
            buffer=buffer,
            delivery=self.delivery,
            fetch_file=self._zendesk.fetch_file,
            proxy=self._proxy,
            config=self._config,
            related=self._related,
        )
        try:
            await session.create()
        except Exception:
            self._buffers.pop(metadata.uuid, None)
            await session.destroy()
            raise
        session.validated_push = metadata.push
        self._sessions[metadata.uuid] = session
        logger.info(
            "Configured session for tenant %s (forum #%s, %s delivery)",
            metadata.uuid,
            metadata.channel,
            "push" if metadata.push else "pull",
        )
        return session

    async def _discard(self, uuid: str) -> None:
        session = self._sessions.pop(uuid, None)
        dropped = self._buffers.pop(uuid, None)
        if dropped is not None and len(dropped):
            logger.warning(
                "Discarding %d buffered resource(s) for tenant %s", len(dropped), uuid
            )
        if session is not None:
            await session.destroy()

    # --- Buffers ---

    def drain_buffer(self, uuid: str) -> list[ExternalResource]:
        """Empty the tenant's buffer and return its contents in order."""
        buffer = self._buffers.get(uuid)
        if buffer is None:
            return []
        return buffer.drain()

    async def pull(self, metadata: TenantMetadata) -> list[ExternalResource]:
        """Handle a Zendesk pull: resolve the session, drain its buffer."""
        await self.resolve_or_create(metadata)
        return self.drain_buffer(metadata.uuid)

    # --- Zendesk -> Discord ---

    async def channelback(
        self, metadata: TenantMetadata, request: ChannelbackRequest
    ) -> str:
        session = self.lookup(metadata.uuid)
        if session is None:
            raise NotFoundError(f"No session for tenant {metadata.uuid}")
        external_id = await session.channelback(request)
        if external_id is None:
            raise NotFoundError(f"Thread {request.thread_id} not found")
        return external_id

    async def resolve_clickthrough_across_all(self, external_id: str) -> str | None:
        """First session that can resolve ``external_id`` wins."""
        for session in self.sessions():
            try:
                location = await session.clickthrough(external_id)
            except BridgeError as e:
                logger.debug(
                    "Clickthrough %s failed for tenant %s: %s",
                    external_id,
                    session.uuid,
                    e,
                )
                continue
            if location:
                return location
        return None

    async def status_change_across_all(self, thread_id: str, status: str) -> bool:
        """Offer a ticket status change to each session until one owns it."""
        for session in self.sessions():
            if await session.status_change(thread_id, status):
                return True
        logger.info("No session owns thread %s (status %s)", thread_id, status)
        return False

    # --- Shutdown ---

    async def shutdown(self) -> None:
        """Destroy every session (process exit)."""
        for uuid in list(self._sessions):
            await self._discard(uuid)
        await self.delivery.wait_idle()
