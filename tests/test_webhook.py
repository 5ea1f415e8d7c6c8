"""Tests for Zendesk webhook signature and payload helpers."""

import base64
import hashlib
import hmac

import pytest

from discord_zendesk.errors import AuthError, ValidationError
from discord_zendesk.webhook import (
    compute_signature,
    is_resolved,
    parse_payload,
    sentinel_tag,
    thread_id_from_tags,
    verify_signature,
)

BODY = b'{"status": "solved", "tags": ["do-not-remove-discord-200"]}'


class TestSignature:
    def test_compute_signature_matches_zendesk_scheme(self):
        expected = base64.b64encode(
            hmac.new(b"secret", b"2024-05-01T10:00:00Z" + BODY, hashlib.sha256).digest()
        ).decode()
        assert compute_signature("secret", "2024-05-01T10:00:00Z", BODY) == expected

    def test_valid_signature_accepted(self):
        signature = compute_signature("secret", "ts", BODY)
        verify_signature("secret", BODY, "ts", signature)

    def test_tampered_body_rejected(self):
        signature = compute_signature("secret", "ts", BODY)
        with pytest.raises(AuthError):
            verify_signature("secret", BODY + b" ", "ts", signature)

    def test_other_timestamp_rejected(self):
        signature = compute_signature("secret", "ts", BODY)
        with pytest.raises(AuthError):
            verify_signature("secret", BODY, "ts2", signature)

    @pytest.mark.parametrize("timestamp,signature", [(None, "sig"), ("ts", None)])
    def test_missing_headers_rejected(self, timestamp, signature):
        with pytest.raises(AuthError):
            verify_signature("secret", BODY, timestamp, signature)

    def test_no_secret_accepts_anything(self):
        verify_signature("", BODY, None, None)


class TestTags:
    def test_sentinel_tag(self):
        assert sentinel_tag("200") == "do-not-remove-discord-200"

    def test_thread_id_from_list(self):
        assert thread_id_from_tags(["vip", "do-not-remove-discord-200"]) == "200"

    def test_thread_id_from_space_separated_string(self):
        assert thread_id_from_tags("vip do-not-remove-discord-200 bug") == "200"

    @pytest.mark.parametrize(
        "tags", [None, [], "", ["vip"], ["do-not-remove-discord-"], [5]]
    )
    def test_no_thread_id(self, tags):
        assert thread_id_from_tags(tags) is None


class TestPayload:
    def test_parse(self):
        assert parse_payload({"status": "solved", "tags": ["a"]}) == (["a"], "solved")

    def test_tags_optional(self):
        assert parse_payload({"status": "open"}) == (None, "open")

    @pytest.mark.parametrize(
        "payload",
        [[], "solved", {}, {"status": 3}, {"status": "open", "tags": {"a": 1}}],
    )
    def test_malformed(self, payload):
        with pytest.raises(ValidationError):
            parse_payload(payload)

    @pytest.mark.parametrize("status", ["solved", "Solved", " closed ", "CLOSED"])
    def test_resolved_statuses(self, status):
        assert is_resolved(status)

    @pytest.mark.parametrize("status", ["open", "pending", "hold", "new"])
    def test_unresolved_statuses(self, status):
        assert not is_resolved(status)
