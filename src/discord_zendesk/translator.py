"""Translation between Discord events and Zendesk records.

Discord -> Zendesk: thread creations, thread messages and thread
deletions become ExternalResource records.
Zendesk -> Discord: channelback requests become thread posts and
clickthrough ids become Discord URLs.

Every method reads the tenant metadata it is given at call time, so a
configuration update takes effect on the next event.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import unquote, urlsplit

from discord_zendesk import codec
from discord_zendesk.attachments import AttachmentProxy
from discord_zendesk.client import DiscordClient
from discord_zendesk.conventions import (
    BUTTON_CLOSE,
    BUTTON_REOPEN,
    BUTTON_STYLE_DANGER,
    BUTTON_STYLE_PRIMARY,
    CHANNEL_TYPE_GUILD_FORUM,
    COMPONENT_TYPE_ACTION_ROW,
    COMPONENT_TYPE_BUTTON,
    EMPTY_MESSAGE_PLACEHOLDER,
    THREAD_DELETED_MESSAGE,
)
from discord_zendesk.models import (
    Author,
    ChannelbackRequest,
    DiscordAttachment,
    DiscordChannel,
    DiscordMessage,
    DiscordUser,
    ExternalResource,
    ResourceField,
    TenantMetadata,
    ThreadDeleted,
)
from discord_zendesk.webhook import sentinel_tag

logger = logging.getLogger(__name__)

# (url, access_token) -> file bytes, normally ZendeskClient.fetch_file
FileFetcher = Callable[[str, str | None], Awaitable[bytes]]

_PARENT_CACHE_SIZE = 10_000


def author_for(user: DiscordUser) -> Author:
    return Author(
        external_id=user.id,
        name=user.username,
        image_url=user.avatar_url,
        locale="en",
    )


def tag_value(name: str) -> str:
    """Zendesk tags cannot contain spaces."""
    return name.strip().replace(" ", "_")


def file_name(url: str) -> str:
    """Basename of a URL's path, used as the upload filename."""
    name = posixpath.basename(unquote(urlsplit(url).path))
    return name or "attachment"


def thread_action_row(button: str) -> list[dict[str, Any]]:
    """Message components holding the Close or Reopen button."""
    if button == BUTTON_CLOSE:
        component = {
            "type": COMPONENT_TYPE_BUTTON,
            "custom_id": BUTTON_CLOSE,
            "label": "Close",
            "style": BUTTON_STYLE_DANGER,
            "emoji": {"name": "\N{LOCK}"},
        }
    elif button == BUTTON_REOPEN:
        component = {
            "type": COMPONENT_TYPE_BUTTON,
            "custom_id": BUTTON_REOPEN,
            "label": "Reopen",
            "style": BUTTON_STYLE_PRIMARY,
            "emoji": {"name": "\N{OPEN LOCK}"},
        }
    else:
        raise ValueError(f"Unknown thread button {button!r}")
    return [{"type": COMPONENT_TYPE_ACTION_ROW, "components": [component]}]


class ResourceTranslator:
    """Maps Discord events to ExternalResources and back."""

    def __init__(
        self,
        client: DiscordClient,
        proxy: AttachmentProxy,
        fetch_file: FileFetcher,
        sync_tags: bool = True,
    ) -> None:
        self._client = client
        self._proxy = proxy
        self._fetch_file = fetch_file
        self._sync_tags = sync_tags
        # channel id -> parent id for threads, None for other channels
        self._parents: OrderedDict[str, str | None] = OrderedDict()

    def _file_urls(self, attachments: list[DiscordAttachment]) -> list[str]:
        return [self._proxy.proxy_url(a.url) for a in attachments]

    def remember_channel(self, channel: DiscordChannel) -> None:
        """Cache where a channel sits. A thread never changes parent."""
        self._parents[channel.id] = channel.parent_id if channel.is_thread else None
        self._parents.move_to_end(channel.id)
        while len(self._parents) > _PARENT_CACHE_SIZE:
            self._parents.popitem(last=False)

    async def _thread_parent(self, channel_id: str) -> str | None:
        """Parent forum of a thread, or None if the channel is not a thread."""
        if channel_id in self._parents:
            self._parents.move_to_end(channel_id)
            return self._parents[channel_id]
        channel = await self._client.get_channel(channel_id)
        if channel is None:
            return None
        self.remember_channel(channel)
        return self._parents[channel_id]

    @staticmethod
    def in_forum(thread: DiscordChannel, metadata: TenantMetadata) -> bool:
        return thread.parent_id == metadata.channel

    # --- Discord -> Zendesk ---

    async def _tag_names(self, thread: DiscordChannel) -> list[str]:
        if not thread.applied_tags or not thread.parent_id:
            return []
        forum = await self._client.get_channel(thread.parent_id)
        if forum is None:
            return []
        return [
            tag_value(forum.available_tags[tag_id])
            for tag_id in thread.applied_tags
            if tag_id in forum.available_tags
        ]

    async def thread_created(
        self,
        thread: DiscordChannel,
        metadata: TenantMetadata,
        starter: DiscordMessage | None = None,
    ) -> ExternalResource | None:
        """Resource for a new forum post, or None if it has no starter."""
        self.remember_channel(thread)
        if not self.in_forum(thread, metadata):
            return None

        if starter is None:
            starter = await self._client.get_message(thread.id, thread.id)
        if starter is None:
            logger.error(
                "No starter message for thread %s (tenant %s); dropping",
                thread.id,
                metadata.uuid,
            )
            return None

        fields = [ResourceField(id="subject", value=thread.name)]
        if self._sync_tags:
            tags = [sentinel_tag(thread.id), *await self._tag_names(thread)]
            fields.append(ResourceField(id="tags", value=tags))

        return ExternalResource(
            external_id=codec.encode(thread.id),
            author=author_for(starter.author),
            created_at=thread.created_at or starter.created_at,
            message=starter.content or EMPTY_MESSAGE_PLACEHOLDER,
            internal_note=False,
            allow_channelback=True,
            fields=fields,
            file_urls=self._file_urls(starter.attachments),
        )

    async def message_created(
        self,
        message: DiscordMessage,
        metadata: TenantMetadata,
        bot_user_id: str,
    ) -> ExternalResource | None:
        """Resource for a reply in a forum thread, or None to skip it."""
        # Messages by our bot user
        if message.author.id == bot_user_id:
            return None
        # Thread starters flagged as such
        if message.is_thread_starter:
            return None

        # Messages not in a thread
        parent_id = await self._thread_parent(message.channel_id)
        if parent_id is None:
            return None
        # Messages not in the forum we bridge
        if parent_id != metadata.channel:
            return None
        thread_id = message.channel_id
        # Forum starters share the thread's id but are not always typed
        if message.id == thread_id:
            return None

        return ExternalResource(
            external_id=codec.encode(thread_id, message.id),
            thread_id=thread_id,
            author=author_for(message.author),
            created_at=message.created_at,
            message=message.content or EMPTY_MESSAGE_PLACEHOLDER,
            internal_note=False,
            allow_channelback=True,
            file_urls=self._file_urls(message.attachments),
        )

    def thread_deleted(
        self,
        event: ThreadDeleted,
        metadata: TenantMetadata,
        bot_user: DiscordUser,
    ) -> ExternalResource | None:
        """Synthetic resource telling Zendesk a thread is gone."""
        self._parents.pop(event.thread_id, None)
        if event.parent_id is not None and event.parent_id != metadata.channel:
            return None
        return ExternalResource(
            external_id=codec.encode_delete(event.thread_id),
            thread_id=event.thread_id,
            author=author_for(bot_user),
            created_at=datetime.now(UTC).isoformat(),
            message=THREAD_DELETED_MESSAGE,
            internal_note=False,
            allow_channelback=False,
        )

    # --- Zendesk -> Discord ---

    async def _forum(self, metadata: TenantMetadata) -> DiscordChannel | None:
        forum = await self._client.get_channel(metadata.channel)
        if forum is None or forum.type != CHANNEL_TYPE_GUILD_FORUM:
            return None
        return forum

    async def _forum_thread(
        self, metadata: TenantMetadata, thread_id: str
    ) -> DiscordChannel | None:
        forum = await self._forum(metadata)
        if forum is None:
            return None
        thread = await self._client.get_channel(thread_id)
        if thread is None or not thread.is_thread or thread.parent_id != forum.id:
            return None
        if not thread.guild_id:
            thread.guild_id = forum.guild_id
        return thread

    async def channelback(
        self, request: ChannelbackRequest, metadata: TenantMetadata
    ) -> str | None:
        """Post an agent reply. Returns the new message's token or None."""
        thread_id = codec.decode(request.thread_id).thread_id
        if not thread_id:
            return None
        thread = await self._forum_thread(metadata, thread_id)
        if thread is None:
            return None

        contents = await asyncio.gather(
            *(
                self._fetch_file(url, metadata.zendesk_access_token)
                for url in request.file_urls
            )
        )
        files = [
            (file_name(url), data)
            for url, data in zip(request.file_urls, contents, strict=True)
        ]
        message = await self._client.send_message(thread.id, request.message, files)
        return codec.encode(thread.id, message.id)

    async def clickthrough(
        self, external_id: str, metadata: TenantMetadata
    ) -> str | None:
        """Discord URL for a thread or message token, or None."""
        address = codec.decode(external_id)
        # "200-" or "-300" address nothing we could have issued
        if not address.thread_id or address.message_id == "":
            return None
        thread = await self._forum_thread(metadata, address.thread_id)
        if thread is None:
            return None
        if address.is_thread:
            return thread.url

        assert address.message_id is not None
        message = await self._client.get_message(thread.id, address.message_id)
        if message is None:
            return None
        return message.url(thread.guild_id)
