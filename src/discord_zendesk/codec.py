"""Compound address tokens.

A token joins a Discord thread id and, optionally, a message id:
``"<thread>"`` addresses a whole thread, ``"<thread>-<message>"`` one
message in it. Tokens are used as Zendesk ``external_id`` values and
come back to us on channelback and clickthrough.
"""

from __future__ import annotations

from dataclasses import dataclass

from discord_zendesk.conventions import DELETE_SUFFIX, ID_DELIMITER


@dataclass(frozen=True)
class Address:
    """A decoded token."""

    thread_id: str
    message_id: str | None = None

    @property
    def is_thread(self) -> bool:
        return self.message_id is None


def encode(thread_id: str, message_id: str | None = None) -> str:
    """Join a thread id and optional message id into one token."""
    if not thread_id or ID_DELIMITER in thread_id:
        raise ValueError(f"Cannot encode thread id {thread_id!r}")
    if message_id is None:
        return thread_id
    return f"{thread_id}{ID_DELIMITER}{message_id}"


def encode_delete(thread_id: str) -> str:
    """Token for the synthetic "thread deleted" resource."""
    return encode(thread_id, DELETE_SUFFIX)


def decode(token: str) -> Address:
    """Split a token on the first delimiter."""
    thread_id, sep, message_id = token.partition(ID_DELIMITER)
    if not sep:
        return Address(thread_id=thread_id)
    return Address(thread_id=thread_id, message_id=message_id)
