"""Zendesk Channel Framework client abstraction.

Provides a Protocol for the Zendesk calls the bridge makes and two
implementations:
- MemoryZendeskClient: Records calls, no network (testing/simulator)
- HttpZendeskClient: Real any_channel push/validate calls (production)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from discord_zendesk.conventions import ZENDESK_PUSH_URL, ZENDESK_VALIDATE_URL
from discord_zendesk.errors import UpstreamError
from discord_zendesk.models import ExternalResource, PushDescriptor

logger = logging.getLogger(__name__)


@runtime_checkable
class ZendeskClient(Protocol):
    """Protocol for Zendesk API operations."""

    async def push(
        self, descriptor: PushDescriptor, resources: list[ExternalResource]
    ) -> None:
        """Push a batch of external resources to the instance."""
        ...

    async def validate_token(self, descriptor: PushDescriptor) -> bool:
        """Whether the instance still accepts the push token."""
        ...

    async def fetch_file(self, url: str, access_token: str | None) -> bytes:
        """Download an attachment Zendesk offers on channelback."""
        ...


@dataclass
class PushRecord:
    """Record of a push made through the client (for testing)."""

    descriptor: PushDescriptor
    resources: list[dict[str, Any]] = field(default_factory=list)


class MemoryZendeskClient:
    """In-memory Zendesk client for testing and simulation.

    Records pushes and validations. File fetches are served from
    ``files`` (url -> bytes); unknown urls raise UpstreamError.
    """

    def __init__(self, valid: bool = True) -> None:
        self.valid = valid
        self.pushes: list[PushRecord] = []
        self.validations: list[PushDescriptor] = []
        self.fetches: list[tuple[str, str | None]] = []
        self.files: dict[str, bytes] = {}
        self.fail_push = False

    async def push(
        self, descriptor: PushDescriptor, resources: list[ExternalResource]
    ) -> None:
        if self.fail_push:
            raise UpstreamError("push rejected")
        self.pushes.append(
            PushRecord(descriptor=descriptor, resources=[r.to_dict() for r in resources])
        )

    async def validate_token(self, descriptor: PushDescriptor) -> bool:
        self.validations.append(descriptor)
        return self.valid

    async def fetch_file(self, url: str, access_token: str | None) -> bytes:
        self.fetches.append((url, access_token))
        if url not in self.files:
            raise UpstreamError(f"No such file: {url}")
        return self.files[url]


class HttpZendeskClient:
    """Real Zendesk client using httpx.

    Every call is bounded by an explicit timeout; attachment downloads
    use the shorter attachment timeout.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        attachment_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._attachment_timeout = attachment_timeout
        self._transport = transport

    def _client(self, timeout: float, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport, **kwargs)

    async def push(
        self, descriptor: PushDescriptor, resources: list[ExternalResource]
    ) -> None:
        url = ZENDESK_PUSH_URL.format(subdomain=descriptor.subdomain)
        body = {
            "instance_push_id": descriptor.instance_push_id,
            "external_resources": [r.to_dict() for r in resources],
        }
        try:
            async with self._client(self._timeout) as client:
                response = await client.post(
                    url,
                    json=body,
                    headers={"Authorization": f"Bearer {descriptor.access_token}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamError(f"Zendesk push failed: {e}") from e

    async def validate_token(self, descriptor: PushDescriptor) -> bool:
        url = ZENDESK_VALIDATE_URL.format(subdomain=descriptor.subdomain)
        try:
            async with self._client(self._timeout) as client:
                response = await client.post(
                    url,
                    json={"instance_push_id": descriptor.instance_push_id},
                    headers={"Authorization": f"Bearer {descriptor.access_token}"},
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Zendesk token validation failed: {e}") from e
        return response.is_success

    async def fetch_file(self, url: str, access_token: str | None) -> bytes:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        try:
            async with self._client(
                self._attachment_timeout, follow_redirects=True
            ) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamError(f"Attachment download failed: {url}: {e}") from e
        return response.content
