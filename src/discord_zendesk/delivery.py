"""Outbound delivery: push to Zendesk now, or buffer for the next pull.

Without a Zendesk client (discord-only mode) resources are logged and
dropped. Pushes are fire-and-forget. Each push runs as a detached task; a failed
push is logged and the resource is lost. It is never retried and never
put back into the buffer.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from discord_zendesk.models import ExternalResource, TenantMetadata
from discord_zendesk.zendesk import ZendeskClient

logger = logging.getLogger(__name__)


class OutboundBuffer:
    """Per-tenant FIFO of resources waiting for a pull.

    A positive ``max_size`` caps the buffer; on overflow the oldest
    resource is dropped.
    """

    def __init__(self, uuid: str, max_size: int = 0) -> None:
        self.uuid = uuid
        self._items: deque[ExternalResource] = deque(maxlen=max_size or None)
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._items)

    def append(self, resource: ExternalResource) -> None:
        if self._items.maxlen is not None and len(self._items) == self._items.maxlen:
            self.dropped += 1
            logger.warning(
                "Buffer for tenant %s full (%d), dropping oldest resource %s",
                self.uuid,
                self._items.maxlen,
                self._items[0].external_id,
            )
        self._items.append(resource)

    def drain(self) -> list[ExternalResource]:
        """Return everything buffered, oldest first, and empty the buffer."""
        items = list(self._items)
        self._items.clear()
        return items


class DeliveryPolicy:
    """Decides per event between pushing and buffering."""

    def __init__(self, zendesk: ZendeskClient | None) -> None:
        self._zendesk = zendesk
        self._pending_tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending_tasks)

    def on_event(
        self,
        metadata: TenantMetadata,
        buffer: OutboundBuffer,
        resource: ExternalResource,
    ) -> None:
        if self._zendesk is None:
            logger.info(
                "No Zendesk delivery; dropping %s for tenant %s",
                resource.external_id,
                metadata.uuid,
            )
            return

        descriptor = metadata.push
        if descriptor is None:
            buffer.append(resource)
            logger.debug(
                "Buffered %s for tenant %s (%d pending)",
                resource.external_id,
                metadata.uuid,
                len(buffer),
            )
            return

        task = asyncio.create_task(self._push(metadata, resource))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _push(self, metadata: TenantMetadata, resource: ExternalResource) -> None:
        descriptor = metadata.push
        assert descriptor is not None and self._zendesk is not None
        try:
            await self._zendesk.push(descriptor, [resource])
            logger.debug("Pushed %s for tenant %s", resource.external_id, metadata.uuid)
        except Exception:
            logger.exception(
                "Push of %s for tenant %s failed; resource dropped",
                resource.external_id,
                metadata.uuid,
            )

    async def wait_idle(self) -> None:
        """Wait for in-flight pushes (shutdown and tests)."""
        if self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)
