"""Related-thread suggestions (optional).

When a Qdrant URL and an OpenAI key are configured, each new forum post
is embedded, matched against earlier posts of the same tenant and forum,
and then indexed itself. Nothing here is needed for delivery; callers
log and ignore every failure.
"""

from __future__ import annotations

import logging
import uuid as uuid_lib
from dataclasses import dataclass
from typing import Any

import httpx

from discord_zendesk.conventions import (
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MODEL,
    OPENAI_EMBEDDINGS_URL,
    RELATED_THREAD_LIMIT,
)

logger = logging.getLogger(__name__)


def collection_name(tenant_uuid: str, channel_id: str) -> str:
    return f"{tenant_uuid}-{channel_id}"


def embedding_text(title: str, body: str) -> str:
    return f"# {title}\n\n{body}"


@dataclass
class RelatedMatch:
    """An earlier thread similar to a new one."""

    thread_id: str
    score: float


class RelatedThreads:
    """Qdrant vector search plus OpenAI embeddings, over plain HTTP."""

    def __init__(
        self,
        qdrant_url: str,
        openai_api_key: str,
        timeout: float = 15.0,
        openai_url: str = OPENAI_EMBEDDINGS_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._qdrant_url = qdrant_url.rstrip("/")
        self._openai_key = openai_api_key
        self._openai_url = openai_url
        self._timeout = timeout
        self._transport = transport
        self._known_collections: set[str] = set()

    async def _qdrant(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            return await client.request(method, f"{self._qdrant_url}{path}", json=json)

    async def ensure_collection(self, name: str) -> None:
        """Create the collection unless it already exists."""
        if name in self._known_collections:
            return
        response = await self._qdrant("GET", f"/collections/{name}")
        if response.status_code == 404:
            created = await self._qdrant(
                "PUT",
                f"/collections/{name}",
                json={
                    "vectors": {"size": EMBEDDING_DIMENSIONS, "distance": "Cosine"}
                },
            )
            created.raise_for_status()
            logger.info(f"Created vector collection {name}")
        else:
            response.raise_for_status()
        self._known_collections.add(name)

    async def embed(self, text: str) -> list[float]:
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post(
                self._openai_url,
                headers={"Authorization": f"Bearer {self._openai_key}"},
                json={"model": EMBEDDING_MODEL, "input": text},
            )
            response.raise_for_status()
            return response.json()["data"][0]["embedding"]

    async def search(
        self, name: str, vector: list[float], limit: int = RELATED_THREAD_LIMIT
    ) -> list[RelatedMatch]:
        response = await self._qdrant(
            "POST",
            f"/collections/{name}/points/search",
            json={"vector": vector, "limit": limit, "with_payload": True},
        )
        response.raise_for_status()
        matches = []
        for hit in response.json().get("result", []):
            thread_id = (hit.get("payload") or {}).get("discord_id")
            if thread_id:
                matches.append(
                    RelatedMatch(thread_id=str(thread_id), score=hit.get("score", 0.0))
                )
        return matches

    async def upsert(self, name: str, thread_id: str, vector: list[float]) -> None:
        response = await self._qdrant(
            "PUT",
            f"/collections/{name}/points?wait=false",
            json={
                "points": [
                    {
                        "id": str(uuid_lib.uuid4()),
                        "vector": vector,
                        "payload": {"discord_id": thread_id},
                    }
                ]
            },
        )
        response.raise_for_status()


def format_suggestions(threads: list[tuple[str, str, float]]) -> str:
    """Message listing (name, url, score) suggestions."""
    lines = ["These other threads might be useful to you:"]
    for name, url, score in threads:
        lines.append(f"- [{name}]({url}) ({score * 100:.2f}% match)")
    return "\n".join(lines)
