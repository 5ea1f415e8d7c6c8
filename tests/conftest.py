"""Shared test fixtures for the Discord <-> Zendesk bridge tests."""

import asyncio
import contextlib
from dataclasses import replace

import pytest

from discord_zendesk.attachments import AttachmentProxy
from discord_zendesk.client import MemoryDiscordClient
from discord_zendesk.config import BridgeConfig
from discord_zendesk.connection import DiscordConnection
from discord_zendesk.delivery import DeliveryPolicy, OutboundBuffer
from discord_zendesk.models import (
    DiscordAttachment,
    DiscordChannel,
    DiscordMessage,
    DiscordUser,
    TenantMetadata,
)
from discord_zendesk.registry import SessionRegistry
from discord_zendesk.session import BridgeSession
from discord_zendesk.zendesk import MemoryZendeskClient

SITE = "https://bridge.test"
GUILD_ID = "9000"
FORUM_ID = "1000"
OTHER_FORUM_ID = "1001"
THIRD_FORUM_ID = "1002"


class FakeDiscord:
    """Connection factory over in-memory Discord clients.

    Every client it creates sees the same guild: the channels and
    messages added here are seeded into existing and future clients.
    """

    def __init__(self) -> None:
        self.clients: list[MemoryDiscordClient] = []
        self.tokens: list[str] = []
        self.fail_next = False
        self._channels: list[DiscordChannel] = []
        self._messages: list[DiscordMessage] = []
        for forum_id, name in (
            (FORUM_ID, "help"),
            (OTHER_FORUM_ID, "support"),
            (THIRD_FORUM_ID, "feedback"),
        ):
            self.add_channel(
                DiscordChannel(
                    id=forum_id,
                    type=15,
                    name=name,
                    guild_id=GUILD_ID,
                    available_tags={"501": "bug report", "502": "question"},
                )
            )

    def __call__(self, token: str) -> DiscordConnection:
        client = MemoryDiscordClient()
        for channel in self._channels:
            client.seed_channel(replace(channel))
        for message in self._messages:
            client.seed_message(message)
        if self.fail_next:
            self.fail_next = False
            client.closed = True
        self.clients.append(client)
        self.tokens.append(token)
        return DiscordConnection(client)

    @property
    def client(self) -> MemoryDiscordClient:
        """The most recently created client."""
        return self.clients[-1]

    def add_channel(self, channel: DiscordChannel) -> DiscordChannel:
        self._channels.append(channel)
        for client in self.clients:
            client.seed_channel(replace(channel))
        return channel

    def add_thread(
        self,
        thread_id: str,
        parent_id: str = FORUM_ID,
        name: str = "Printer on fire",
        owner_id: str = "111",
        applied_tags: list[str] | None = None,
        locked: bool = False,
    ) -> DiscordChannel:
        return self.add_channel(
            DiscordChannel(
                id=thread_id,
                type=11,
                name=name,
                guild_id=GUILD_ID,
                parent_id=parent_id,
                owner_id=owner_id,
                locked=locked,
                applied_tags=list(applied_tags or []),
                created_at="2024-05-01T10:00:00+00:00",
            )
        )

    def add_message(
        self,
        message_id: str,
        channel_id: str,
        content: str = "hello",
        author_id: str = "111",
        type: int = 0,
        attachments: list[str] | None = None,
    ) -> DiscordMessage:
        message = make_message(
            message_id, channel_id, content, author_id, type, attachments
        )
        self._messages.append(message)
        for client in self.clients:
            client.seed_message(message)
        return message

    def add_post(self, thread_id: str, parent_id: str = FORUM_ID, **kwargs):
        """A forum post: the thread plus its starter message."""
        attachments = kwargs.pop("attachments", None)
        content = kwargs.pop("content", "It is on fire")
        thread = self.add_thread(thread_id, parent_id=parent_id, **kwargs)
        self.add_message(
            thread_id,
            thread_id,
            content=content,
            author_id=thread.owner_id or "111",
            attachments=attachments,
        )
        return thread


def make_message(
    message_id: str,
    channel_id: str,
    content: str = "hello",
    author_id: str = "111",
    type: int = 0,
    attachments: list[str] | None = None,
) -> DiscordMessage:
    return DiscordMessage(
        id=message_id,
        channel_id=channel_id,
        author=DiscordUser(id=author_id, username=f"user{author_id}"),
        content=content,
        type=type,
        timestamp="2024-05-01T10:05:00+00:00",
        attachments=[
            DiscordAttachment(id=str(i), filename=url.rsplit("/", 1)[-1], url=url)
            for i, url in enumerate(attachments or [])
        ],
    )


@pytest.fixture
def config():
    """Config with a public site and no lock delay."""
    return BridgeConfig(site=SITE, status_lock_delay=0)


@pytest.fixture
def zendesk():
    return MemoryZendeskClient()


@pytest.fixture
def discord():
    return FakeDiscord()


@pytest.fixture
def metadata():
    """Pull-only tenant bridging the main forum."""
    return TenantMetadata(uuid="tenant-a", token="bot-token-a", channel=FORUM_ID)


@pytest.fixture
def push_metadata():
    """Tenant with push credentials."""
    return TenantMetadata(
        uuid="tenant-p",
        token="bot-token-p",
        channel=FORUM_ID,
        subdomain="acme",
        instance_push_id="push-1",
        zendesk_access_token="zd-token",
    )


@pytest.fixture
def registry(discord, zendesk, config):
    return SessionRegistry(discord, zendesk, config)


@pytest.fixture
async def session(discord, zendesk, config, metadata):
    """An active bridge session for ``metadata``."""
    s = BridgeSession(
        metadata=metadata,
        connection=discord(metadata.token),
        buffer=OutboundBuffer(metadata.uuid),
        delivery=DeliveryPolicy(zendesk),
        fetch_file=zendesk.fetch_file,
        proxy=AttachmentProxy(config.site),
        config=config,
    )
    await s.create()
    yield s
    await s.destroy()


@pytest.fixture(autouse=True)
async def _cancel_stray_tasks():
    """Cancel any tasks that leaked from a test."""
    yield
    await asyncio.sleep(0)
    current = asyncio.current_task()
    for task in asyncio.all_tasks():
        if task is not current and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, TimeoutError):
                await asyncio.wait_for(asyncio.shield(task), timeout=0.1)
