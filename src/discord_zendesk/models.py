"""Data models for the bridge.

Defines the core data structures used throughout the bridge:
- Tenant metadata (the Zendesk metadata blob, validated at the boundary)
- Zendesk-side records (external resources, authors, fields)
- Discord-side models (users, channels, messages, attachments)
- Tagged gateway event variants
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict

from discord_zendesk.conventions import (
    COMPONENT_TYPE_BUTTON,
    DISCORD_CDN_URL,
    DISCORD_WEB_URL,
    INTERACTION_TYPE_MESSAGE_COMPONENT,
    MESSAGE_TYPE_THREAD_STARTER,
    THREAD_CHANNEL_TYPES,
)
from discord_zendesk.errors import ValidationError

DISCORD_EPOCH_MS = 1420070400000


def snowflake_time(snowflake: str) -> datetime:
    """Creation time encoded in a Discord snowflake."""
    ms = (int(snowflake) >> 22) + DISCORD_EPOCH_MS
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


# --- Tenant metadata ---


@dataclass(frozen=True)
class PushDescriptor:
    """Credentials for pushing resources straight to Zendesk."""

    subdomain: str
    instance_push_id: str
    access_token: str


class TenantMetadata(BaseModel):
    """The metadata blob Zendesk stores per integration instance.

    ``token`` is the Discord bot credential and ``channel`` the forum
    channel id. The three push fields are only sent once the admin UI
    has obtained push credentials.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    uuid: str = pydantic.Field(min_length=1)
    token: str = pydantic.Field(min_length=1)
    channel: str = pydantic.Field(min_length=1)
    subdomain: str | None = None
    instance_push_id: str | None = None
    zendesk_access_token: str | None = None

    @classmethod
    def parse(cls, raw: str | dict[str, Any] | None) -> TenantMetadata:
        """Validate a metadata JSON string (or dict) from Zendesk."""
        if raw is None:
            raise ValidationError("Missing metadata")
        try:
            if isinstance(raw, str):
                return cls.model_validate_json(raw)
            return cls.model_validate(raw)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Bad metadata: {e.error_count()} error(s)") from e

    @property
    def push(self) -> PushDescriptor | None:
        """Push credentials, or None if this tenant is poll-only."""
        if self.subdomain and self.instance_push_id and self.zendesk_access_token:
            return PushDescriptor(
                subdomain=self.subdomain,
                instance_push_id=self.instance_push_id,
                access_token=self.zendesk_access_token,
            )
        return None


# --- Zendesk records ---


@dataclass
class ResourceField:
    """A Zendesk ticket field value (``{"id": ..., "value": ...}``)."""

    id: str
    value: Any


@dataclass
class Author:
    """External actor shown as the ticket comment author."""

    external_id: str
    name: str = ""
    image_url: str = ""
    locale: str = "en"
    fields: list[ResourceField] = field(default_factory=list)


@dataclass
class ExternalResource:
    """One Discord event as a Zendesk external resource."""

    external_id: str
    message: str
    author: Author
    created_at: str
    thread_id: str | None = None
    internal_note: bool = False
    allow_channelback: bool = True
    fields: list[ResourceField] = field(default_factory=list)
    file_urls: list[str] = field(default_factory=list)

    def field_value(self, field_id: str) -> Any:
        for f in self.fields:
            if f.id == field_id:
                return f.value
        return None

    def to_dict(self) -> dict[str, Any]:
        """Wire shape for pull responses and push batches."""
        data = asdict(self)
        if data["thread_id"] is None:
            del data["thread_id"]
        return data


@dataclass
class ChannelbackRequest:
    """A Zendesk agent reply to post into a thread."""

    message: str
    thread_id: str
    file_urls: list[str] = field(default_factory=list)


# --- Discord models ---


@dataclass
class DiscordUser:
    """A Discord user."""

    id: str
    username: str = ""
    avatar: str | None = None
    bot: bool = False

    @property
    def avatar_url(self) -> str:
        if self.avatar:
            return f"{DISCORD_CDN_URL}/avatars/{self.id}/{self.avatar}.png?size=512"
        index = (int(self.id) >> 22) % 6 if self.id.isdigit() else 0
        return f"{DISCORD_CDN_URL}/embed/avatars/{index}.png"

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> DiscordUser:
        return cls(
            id=str(data["id"]),
            username=data.get("global_name") or data.get("username", ""),
            avatar=data.get("avatar"),
            bot=bool(data.get("bot", False)),
        )


@dataclass
class DiscordAttachment:
    """A file attached to a Discord message."""

    id: str
    filename: str
    url: str

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> DiscordAttachment:
        return cls(
            id=str(data["id"]),
            filename=data.get("filename", ""),
            url=data["url"],
        )


@dataclass
class DiscordChannel:
    """A Discord channel, forum or thread."""

    id: str
    type: int
    name: str = ""
    guild_id: str = ""
    parent_id: str | None = None
    owner_id: str | None = None
    locked: bool = False
    archived: bool = False
    applied_tags: list[str] = field(default_factory=list)
    # Forum channels only: tag id -> tag name
    available_tags: dict[str, str] = field(default_factory=dict)
    created_at: str = ""

    @property
    def is_thread(self) -> bool:
        return self.type in THREAD_CHANNEL_TYPES

    @property
    def url(self) -> str:
        return f"{DISCORD_WEB_URL}/{self.guild_id}/{self.id}"

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> DiscordChannel:
        meta = data.get("thread_metadata") or {}
        parent = data.get("parent_id")
        return cls(
            id=str(data["id"]),
            type=int(data.get("type", 0)),
            name=data.get("name", "") or "",
            guild_id=str(data.get("guild_id", "") or ""),
            parent_id=str(parent) if parent else None,
            owner_id=str(data["owner_id"]) if data.get("owner_id") else None,
            locked=bool(meta.get("locked", False)),
            archived=bool(meta.get("archived", False)),
            applied_tags=[str(t) for t in data.get("applied_tags", [])],
            available_tags={
                str(t["id"]): t.get("name", "") for t in data.get("available_tags", [])
            },
            created_at=meta.get("create_timestamp", "") or "",
        )


@dataclass
class DiscordMessage:
    """A message posted in a Discord channel or thread."""

    id: str
    channel_id: str
    author: DiscordUser
    content: str = ""
    type: int = 0
    guild_id: str = ""
    timestamp: str = ""
    attachments: list[DiscordAttachment] = field(default_factory=list)

    @property
    def is_thread_starter(self) -> bool:
        return self.type == MESSAGE_TYPE_THREAD_STARTER

    @property
    def created_at(self) -> str:
        if self.timestamp:
            return self.timestamp
        if self.id.isdigit():
            return snowflake_time(self.id).isoformat()
        return datetime.now(UTC).isoformat()

    def url(self, guild_id: str = "") -> str:
        guild = self.guild_id or guild_id
        return f"{DISCORD_WEB_URL}/{guild}/{self.channel_id}/{self.id}"

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> DiscordMessage:
        return cls(
            id=str(data["id"]),
            channel_id=str(data["channel_id"]),
            author=DiscordUser.from_payload(data["author"]),
            content=data.get("content", "") or "",
            type=int(data.get("type", 0)),
            guild_id=str(data.get("guild_id", "") or ""),
            timestamp=data.get("timestamp", "") or "",
            attachments=[
                DiscordAttachment.from_payload(a) for a in data.get("attachments", [])
            ],
        )


# --- Gateway events ---


@dataclass
class ThreadCreated:
    """A thread was created (``THREAD_CREATE``)."""

    thread: DiscordChannel


@dataclass
class MessageCreated:
    """A message was posted (``MESSAGE_CREATE``)."""

    message: DiscordMessage


@dataclass
class ThreadDeleted:
    """A thread was deleted (``THREAD_DELETE``)."""

    thread_id: str
    parent_id: str | None = None
    guild_id: str = ""


@dataclass
class ButtonPressed:
    """A message button was clicked (``INTERACTION_CREATE``)."""

    interaction_id: str
    token: str
    custom_id: str
    channel_id: str
    user_id: str = ""


DiscordEvent = ThreadCreated | MessageCreated | ThreadDeleted | ButtonPressed


def _button_pressed(data: dict[str, Any]) -> ButtonPressed | None:
    if data.get("type") != INTERACTION_TYPE_MESSAGE_COMPONENT:
        return None
    component = data.get("data") or {}
    if component.get("component_type") != COMPONENT_TYPE_BUTTON:
        return None
    user = (data.get("member") or {}).get("user") or data.get("user") or {}
    return ButtonPressed(
        interaction_id=str(data["id"]),
        token=data["token"],
        custom_id=component["custom_id"],
        channel_id=str(data["channel_id"]),
        user_id=str(user.get("id", "")),
    )


def parse_event(name: str, data: dict[str, Any]) -> DiscordEvent | None:
    """Turn a gateway dispatch into a tagged event.

    Returns None for dispatches the bridge does not handle. Raises
    ValidationError for a handled dispatch with a malformed payload.
    """
    try:
        if name == "THREAD_CREATE":
            return ThreadCreated(thread=DiscordChannel.from_payload(data))
        if name == "MESSAGE_CREATE":
            return MessageCreated(message=DiscordMessage.from_payload(data))
        if name == "THREAD_DELETE":
            parent = data.get("parent_id")
            return ThreadDeleted(
                thread_id=str(data["id"]),
                parent_id=str(parent) if parent else None,
                guild_id=str(data.get("guild_id", "") or ""),
            )
        if name == "INTERACTION_CREATE":
            return _button_pressed(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed {name} payload: {e}") from e
    return None
