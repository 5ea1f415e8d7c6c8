"""Zendesk webhook handling helpers.

Zendesk signs each webhook as base64(HMAC-SHA256(secret, timestamp +
body)). The signature is only checked when a secret is configured.
Ticket status changes find their Discord thread through the sentinel
tag written on thread creation.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any

from discord_zendesk.conventions import RESOLVED_STATUSES, SENTINEL_TAG_PREFIX
from discord_zendesk.errors import AuthError, ValidationError

logger = logging.getLogger(__name__)


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    digest = hmac.new(
        secret.encode(), timestamp.encode() + body, hashlib.sha256
    ).digest()
    return base64.b64encode(digest).decode()


def verify_signature(
    secret: str,
    body: bytes,
    timestamp: str | None,
    signature: str | None,
) -> None:
    """Raise AuthError if a configured secret does not match.

    With no secret configured every request is accepted.
    """
    if not secret:
        return
    if not timestamp or not signature:
        logger.warning("Webhook missing signature headers")
        raise AuthError("Missing webhook signature")
    expected = compute_signature(secret, timestamp, body)
    if not hmac.compare_digest(expected, signature):
        logger.warning("Webhook signature mismatch")
        raise AuthError("Bad webhook signature")


def sentinel_tag(thread_id: str) -> str:
    return f"{SENTINEL_TAG_PREFIX}{thread_id}"


def thread_id_from_tags(tags: list[str] | str | None) -> str | None:
    """Find the Discord thread id in a ticket's tags."""
    if not tags:
        return None
    if isinstance(tags, str):
        tags = tags.split()
    for tag in tags:
        if isinstance(tag, str) and tag.startswith(SENTINEL_TAG_PREFIX):
            thread_id = tag[len(SENTINEL_TAG_PREFIX) :]
            if thread_id:
                return thread_id
    return None


def is_resolved(status: str) -> bool:
    return status.strip().lower() in RESOLVED_STATUSES


def parse_payload(payload: Any) -> tuple[list[str] | str | None, str]:
    """Pull ``tags`` and ``status`` out of a webhook body."""
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")
    status = payload.get("status")
    if not isinstance(status, str):
        raise ValidationError("Webhook body missing status")
    tags = payload.get("tags")
    if tags is not None and not isinstance(tags, (list, str)):
        raise ValidationError("Webhook tags must be a list or string")
    return tags, status
