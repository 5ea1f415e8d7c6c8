"""Tests for tenant metadata, Zendesk records and Discord models."""

import json

import pytest

from discord_zendesk.errors import ValidationError
from discord_zendesk.models import (
    Author,
    ButtonPressed,
    DiscordChannel,
    DiscordMessage,
    DiscordUser,
    ExternalResource,
    MessageCreated,
    PushDescriptor,
    ResourceField,
    TenantMetadata,
    ThreadCreated,
    ThreadDeleted,
    parse_event,
    snowflake_time,
)


class TestTenantMetadata:
    def test_parse_json_string(self):
        metadata = TenantMetadata.parse(
            json.dumps({"uuid": "u1", "token": "t1", "channel": "c1"})
        )
        assert metadata.uuid == "u1"
        assert metadata.token == "t1"
        assert metadata.channel == "c1"
        assert metadata.push is None

    def test_parse_dict(self):
        metadata = TenantMetadata.parse({"uuid": "u1", "token": "t1", "channel": "c1"})
        assert metadata.uuid == "u1"

    def test_extra_fields_ignored(self):
        metadata = TenantMetadata.parse(
            {"uuid": "u1", "token": "t1", "channel": "c1", "name": "Acme"}
        )
        assert not hasattr(metadata, "name")

    def test_push_descriptor_needs_all_three_fields(self):
        partial = TenantMetadata.parse(
            {
                "uuid": "u1",
                "token": "t1",
                "channel": "c1",
                "subdomain": "acme",
                "instance_push_id": "p1",
            }
        )
        assert partial.push is None

        full = partial.model_copy(update={"zendesk_access_token": "zd"})
        assert full.push == PushDescriptor(
            subdomain="acme", instance_push_id="p1", access_token="zd"
        )

    def test_empty_push_fields_mean_pull(self):
        metadata = TenantMetadata.parse(
            {
                "uuid": "u1",
                "token": "t1",
                "channel": "c1",
                "subdomain": "",
                "instance_push_id": "",
                "zendesk_access_token": "",
            }
        )
        assert metadata.push is None

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "not json",
            '{"uuid": "u1", "token": "t1"}',
            '{"uuid": "", "token": "t1", "channel": "c1"}',
            '{"uuid": 5, "token": "t1", "channel": "c1"}',
        ],
    )
    def test_invalid_metadata_rejected(self, raw):
        with pytest.raises(ValidationError):
            TenantMetadata.parse(raw)

    def test_validation_error_is_400(self):
        with pytest.raises(ValidationError) as exc_info:
            TenantMetadata.parse("{}")
        assert exc_info.value.status_code == 400


class TestExternalResource:
    def _resource(self, **kwargs):
        return ExternalResource(
            external_id="200-300",
            message="hi",
            author=Author(external_id="111", name="alice"),
            created_at="2024-05-01T10:00:00+00:00",
            **kwargs,
        )

    def test_to_dict_omits_missing_thread_id(self):
        data = self._resource().to_dict()
        assert "thread_id" not in data
        assert data["author"]["external_id"] == "111"
        assert data["allow_channelback"] is True

    def test_to_dict_keeps_thread_id_and_fields(self):
        resource = self._resource(
            thread_id="200", fields=[ResourceField(id="subject", value="Help")]
        )
        data = resource.to_dict()
        assert data["thread_id"] == "200"
        assert data["fields"] == [{"id": "subject", "value": "Help"}]

    def test_field_value(self):
        resource = self._resource(fields=[ResourceField(id="tags", value=["a"])])
        assert resource.field_value("tags") == ["a"]
        assert resource.field_value("subject") is None


class TestDiscordModels:
    def test_snowflake_time(self):
        created = snowflake_time("175928847299117063")
        assert created.isoformat().startswith("2016-04-30T11:18:25.796")

    def test_default_avatar_url(self):
        user = DiscordUser(id="111")
        assert user.avatar_url.startswith("https://cdn.discordapp.com/embed/avatars/")

    def test_custom_avatar_url(self):
        user = DiscordUser(id="111", avatar="abc")
        assert user.avatar_url == (
            "https://cdn.discordapp.com/avatars/111/abc.png?size=512"
        )

    def test_user_prefers_global_name(self):
        user = DiscordUser.from_payload(
            {"id": 111, "username": "alice01", "global_name": "Alice"}
        )
        assert user.id == "111"
        assert user.username == "Alice"

    def test_thread_from_payload(self):
        thread = DiscordChannel.from_payload(
            {
                "id": "200",
                "type": 11,
                "name": "Printer on fire",
                "guild_id": "9000",
                "parent_id": "1000",
                "owner_id": "111",
                "applied_tags": ["501"],
                "thread_metadata": {
                    "locked": True,
                    "archived": False,
                    "create_timestamp": "2024-05-01T10:00:00+00:00",
                },
            }
        )
        assert thread.is_thread
        assert thread.locked
        assert thread.parent_id == "1000"
        assert thread.applied_tags == ["501"]
        assert thread.created_at == "2024-05-01T10:00:00+00:00"
        assert thread.url == "https://discord.com/channels/9000/200"

    def test_forum_from_payload(self):
        forum = DiscordChannel.from_payload(
            {
                "id": "1000",
                "type": 15,
                "available_tags": [{"id": "501", "name": "bug report"}],
            }
        )
        assert not forum.is_thread
        assert forum.available_tags == {"501": "bug report"}

    def test_message_from_payload(self):
        message = DiscordMessage.from_payload(
            {
                "id": "300",
                "channel_id": "200",
                "type": 21,
                "content": None,
                "author": {"id": "111", "username": "alice"},
                "attachments": [
                    {"id": "1", "filename": "a.png", "url": "https://cdn/a.png"}
                ],
            }
        )
        assert message.is_thread_starter
        assert message.content == ""
        assert message.attachments[0].url == "https://cdn/a.png"
        assert message.url("9000") == "https://discord.com/channels/9000/200/300"

    def test_message_created_at_prefers_timestamp(self):
        message = DiscordMessage(
            id="175928847299117063",
            channel_id="200",
            author=DiscordUser(id="111"),
            timestamp="2024-05-01T10:05:00+00:00",
        )
        assert message.created_at == "2024-05-01T10:05:00+00:00"
        message.timestamp = ""
        assert message.created_at.startswith("2016-04-30")


class TestParseEvent:
    def test_thread_create(self):
        event = parse_event(
            "THREAD_CREATE", {"id": "200", "type": 11, "parent_id": "1000"}
        )
        assert isinstance(event, ThreadCreated)
        assert event.thread.id == "200"

    def test_message_create(self):
        event = parse_event(
            "MESSAGE_CREATE",
            {"id": "300", "channel_id": "200", "author": {"id": "111"}},
        )
        assert isinstance(event, MessageCreated)
        assert event.message.channel_id == "200"

    def test_thread_delete(self):
        event = parse_event(
            "THREAD_DELETE", {"id": "200", "parent_id": "1000", "guild_id": "9000"}
        )
        assert event == ThreadDeleted(thread_id="200", parent_id="1000", guild_id="9000")

    def test_unhandled_event(self):
        assert parse_event("TYPING_START", {"channel_id": "200"}) is None

    def test_malformed_payload(self):
        with pytest.raises(ValidationError):
            parse_event("MESSAGE_CREATE", {"id": "300", "channel_id": "200"})

    def test_button_interaction(self):
        event = parse_event(
            "INTERACTION_CREATE",
            {
                "id": "700",
                "type": 3,
                "token": "itok",
                "channel_id": "200",
                "member": {"user": {"id": "111"}},
                "data": {"component_type": 2, "custom_id": "close"},
            },
        )
        assert event == ButtonPressed(
            interaction_id="700",
            token="itok",
            custom_id="close",
            channel_id="200",
            user_id="111",
        )

    def test_slash_command_interaction_ignored(self):
        data = {"id": "700", "type": 2, "token": "t", "data": {"name": "help"}}
        assert parse_event("INTERACTION_CREATE", data) is None

    def test_malformed_button_interaction(self):
        with pytest.raises(ValidationError):
            parse_event(
                "INTERACTION_CREATE",
                {"id": "700", "type": 3, "data": {"component_type": 2}},
            )
