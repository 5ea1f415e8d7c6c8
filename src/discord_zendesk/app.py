"""Bridge HTTP surface.

Registers the Zendesk Channel Framework endpoints plus a few of our own:
- /manifest.json     - Integration manifest Zendesk installs from
- /pull              - Resolve the tenant's session, drain its buffer
- /channelback       - Post an agent reply into a Discord thread
- /clickthrough      - Redirect to the Discord thread or message
- /attachment/{url}  - Stream a Discord attachment to Zendesk
- /webhook           - Ticket status changes (lock/unlock threads)
- /status            - Bridge health and active tenants

Architecture:
    Zendesk -> routes -> SessionRegistry -> BridgeSession
        -> DiscordConnection (REST + gateway)
    Discord gateway -> BridgeSession -> DeliveryPolicy
        -> push to Zendesk, or buffer until the next pull

Routes are thin: they parse the request, call the registry and map
BridgeError subclasses to status codes through one exception handler.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import (
    PlainTextResponse,
    RedirectResponse,
    Response,
    StreamingResponse,
)
from starlette.background import BackgroundTask

from discord_zendesk import __version__
from discord_zendesk.config import BridgeConfig
from discord_zendesk.connection import (
    ConnectionFactory,
    http_connection_factory,
    memory_connection_factory,
)
from discord_zendesk.conventions import (
    WEBHOOK_SIGNATURE_HEADER,
    WEBHOOK_TIMESTAMP_HEADER,
)
from discord_zendesk.errors import BridgeError, NotFoundError, ValidationError
from discord_zendesk.models import ChannelbackRequest, TenantMetadata
from discord_zendesk.registry import SessionRegistry
from discord_zendesk.related import RelatedThreads
from discord_zendesk.webhook import parse_payload, thread_id_from_tags, verify_signature
from discord_zendesk.zendesk import HttpZendeskClient, MemoryZendeskClient, ZendeskClient

logger = logging.getLogger(__name__)

router = APIRouter()

# --- Global bridge state (initialized by create_app) ---

_state: dict[str, Any] = {}
_state_lock = threading.Lock()


def _get_state() -> dict[str, Any]:
    """Get the initialized bridge state."""
    with _state_lock:
        if not _state:
            raise RuntimeError("Bridge not initialized. Call initialize() first.")
        return _state


def initialize(
    config: BridgeConfig | None = None,
    zendesk: ZendeskClient | None = None,
    connect: ConnectionFactory | None = None,
    related: RelatedThreads | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Initialize the bridge components.

    Separate from create_app() so tests can inject in-memory clients.
    ``transport`` replaces the network for attachment streaming.
    """
    if config is None:
        config = BridgeConfig.from_env()

    if zendesk is None:
        if config.simulator_mode:
            zendesk = MemoryZendeskClient()
        else:
            zendesk = HttpZendeskClient(
                timeout=config.http_timeout,
                attachment_timeout=config.attachment_timeout,
            )

    if connect is None:
        if config.simulator_mode:
            logger.info("Bridge starting in simulator mode")
            connect = memory_connection_factory()
        else:
            connect = http_connection_factory(config)

    if related is None and config.related_threads_enabled:
        related = RelatedThreads(
            config.qdrant_url, config.openai_api_key, timeout=config.http_timeout
        )

    registry = SessionRegistry(connect, zendesk, config, related=related)

    state = {
        "config": config,
        "zendesk": zendesk,
        "registry": registry,
        "transport": transport,
    }
    with _state_lock:
        _state.clear()
        _state.update(state)

    return state


async def on_shutdown() -> None:
    """Destroy every session on server shutdown."""
    with _state_lock:
        registry: SessionRegistry | None = _state.get("registry")

    if registry is not None:
        await registry.shutdown()

    with _state_lock:
        _state.clear()
    logger.info("Bridge shut down")


# --- Request helpers ---


async def _read_fields(request: Request) -> dict[str, Any]:
    """Merge query parameters with a form-encoded or JSON body.

    Zendesk posts forms; list fields arrive as ``name[]``.
    """
    fields: dict[str, Any] = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("Body is not valid JSON") from None
        if not isinstance(body, dict):
            raise ValidationError("Body must be a JSON object")
        fields.update(body)
        return fields

    form = await request.form()
    for key in form:
        values = [str(v) for v in form.getlist(key)]
        if key.endswith("[]"):
            fields[key[:-2]] = values
        else:
            fields[key] = values[-1]
    return fields


def _metadata(fields: dict[str, Any]) -> TenantMetadata:
    return TenantMetadata.parse(fields.get("metadata"))


def build_manifest(config: BridgeConfig) -> dict[str, Any]:
    """The Channel Framework integration manifest."""
    site = config.site
    manifest: dict[str, Any] = {
        "name": "Zendesk Discord Integration",
        "id": site,
        "author": "discord-zendesk-bridge",
        "version": f"v{__version__}",
        "channelback_files": config.push_enabled,
        "urls": {
            "admin_ui": config.admin_ui_url or f"{site}/admin",
            "pull_url": f"{site}/pull",
            "channelback_url": f"{site}/channelback",
            "clickthrough_url": f"{site}/clickthrough",
        },
    }
    if config.push_client_id:
        manifest["push_client_id"] = config.push_client_id
    return manifest


# --- Channel Framework endpoints ---


@router.get("/manifest.json")
async def manifest() -> dict[str, Any]:
    logger.info("Manifest requested")
    return build_manifest(_get_state()["config"])


@router.api_route("/pull", methods=["GET", "POST"])
async def pull(request: Request) -> dict[str, Any]:
    """Resolve (or create, or recreate) the tenant's session and drain it."""
    registry: SessionRegistry = _get_state()["registry"]
    metadata = _metadata(await _read_fields(request))
    resources = await registry.pull(metadata)
    if resources:
        logger.info(
            "Pull for tenant %s returned %d resource(s)", metadata.uuid, len(resources)
        )
    return {"external_resources": [r.to_dict() for r in resources]}


@router.post("/channelback")
async def channelback(request: Request) -> dict[str, Any]:
    """Post a Zendesk agent reply into the addressed Discord thread."""
    registry: SessionRegistry = _get_state()["registry"]
    fields = await _read_fields(request)
    message = fields.get("message")
    thread_id = fields.get("thread_id")
    if not isinstance(message, str) or not isinstance(thread_id, str):
        raise ValidationError("channelback needs message and thread_id")
    metadata = _metadata(fields)

    file_urls = fields.get("file_urls") or []
    if isinstance(file_urls, str):
        file_urls = [file_urls]

    external_id = await registry.channelback(
        metadata,
        ChannelbackRequest(message=message, thread_id=thread_id, file_urls=file_urls),
    )
    return {"external_id": external_id, "allow_channelback": True}


@router.get("/clickthrough")
async def clickthrough(external_id: str | None = None) -> Response:
    """Redirect to the Discord location of a thread or message token."""
    if not external_id:
        raise ValidationError("clickthrough needs external_id")
    registry: SessionRegistry = _get_state()["registry"]
    location = await registry.resolve_clickthrough_across_all(external_id)
    if location is None:
        raise NotFoundError(f"No tenant resolves {external_id}")
    return RedirectResponse(location, status_code=302)


# --- Attachment proxy ---


@router.get("/attachment/{remote_url:path}")
async def attachment(
    remote_url: str, expires: str | None = None, token: str | None = None
) -> Response:
    """Stream a remote attachment after checking its proxy token."""
    state = _get_state()
    config: BridgeConfig = state["config"]
    registry: SessionRegistry = state["registry"]
    registry.proxy.verify(remote_url, expires, token)

    client = httpx.AsyncClient(
        timeout=config.attachment_timeout,
        follow_redirects=True,
        transport=state["transport"],
    )
    upstream: httpx.Response | None = None
    try:
        upstream = await client.send(client.build_request("GET", remote_url), stream=True)
        upstream.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Attachment fetch failed for %s: %s", remote_url, e)
        if upstream is not None:
            await upstream.aclose()
        await client.aclose()
        return PlainTextResponse("Internal server error", status_code=500)

    async def close() -> None:
        assert upstream is not None
        await upstream.aclose()
        await client.aclose()

    return StreamingResponse(
        upstream.aiter_bytes(),
        media_type=upstream.headers.get("content-type", "application/octet-stream"),
        background=BackgroundTask(close),
    )


# --- Webhook ---


@router.post("/webhook")
async def webhook(request: Request) -> dict[str, Any]:
    """Apply a ticket status change to the Discord thread it came from.

    Only a bad signature is reported to the caller; anything else is
    logged and answered with 200 so Zendesk does not retry.
    """
    state = _get_state()
    config: BridgeConfig = state["config"]
    registry: SessionRegistry = state["registry"]

    body = await request.body()
    verify_signature(
        config.webhook_secret,
        body,
        request.headers.get(WEBHOOK_TIMESTAMP_HEADER),
        request.headers.get(WEBHOOK_SIGNATURE_HEADER),
    )

    try:
        tags, status = parse_payload(json.loads(body))
        thread_id = thread_id_from_tags(tags)
        if thread_id is None:
            logger.debug("Webhook without a Discord thread tag; ignoring")
            return {"status": "ignored"}
        handled = await registry.status_change_across_all(thread_id, status)
    except Exception:
        logger.exception("Webhook handling failed")
        return {"status": "error"}

    return {"status": "ok" if handled else "ignored"}


# --- Bridge management ---


@router.get("/status")
async def bridge_status() -> dict[str, Any]:
    """Bridge health and status."""
    state = _get_state()
    config: BridgeConfig = state["config"]
    registry: SessionRegistry = state["registry"]

    return {
        "status": "ok",
        "version": __version__,
        "mode": config.mode,
        "active_sessions": len(registry),
        "pending_pushes": registry.delivery.pending,
        "tenants": [
            {
                "uuid": session.uuid,
                "channel": session.metadata.channel,
                "delivery": "push" if session.metadata.push else "pull",
                "buffered": len(session.buffer),
                "state": session.state.value,
            }
            for session in registry.sessions()
        ],
    }


# --- Application ---


async def _bridge_error(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, BridgeError)
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return PlainTextResponse(exc.message, status_code=exc.status_code)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await on_shutdown()


def create_app(**kwargs: Any) -> FastAPI:
    """Build the FastAPI application.

    Keyword arguments are passed to initialize(). With none given the
    configuration comes from the environment (``uvicorn --factory``).
    """
    initialize(**kwargs)
    app = FastAPI(
        title="Discord Zendesk Bridge",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        lifespan=_lifespan,
    )
    app.include_router(router)
    app.add_exception_handler(BridgeError, _bridge_error)
    return app
