"""Attachment proxy URLs.

Zendesk downloads attachment files itself, but Discord CDN links are
signed and short-lived, so file URLs handed to Zendesk point back at
this server (``/attachment/<quoted remote url>``) and are streamed on
request.

When a secret is configured each proxied URL carries ``expires`` and
``token`` query parameters. The token is an HMAC over the remote URL and
the expiry, so it only verifies for the exact path it was minted for.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from urllib.parse import quote, urlencode, urlsplit

from discord_zendesk.errors import AuthError


class AttachmentProxy:
    """Builds and checks proxied attachment URLs."""

    def __init__(
        self,
        site: str,
        secret: str = "",
        ttl: int = 7 * 24 * 3600,
        allowed_hosts: tuple[str, ...] = (),
    ) -> None:
        self._site = site.rstrip("/")
        self._secret = secret
        self._ttl = ttl
        self._allowed_hosts = allowed_hosts

    @property
    def signed(self) -> bool:
        return bool(self._secret)

    def _sign(self, remote_url: str, expires: int) -> str:
        return hmac.new(
            self._secret.encode(),
            f"{remote_url}:{expires}".encode(),
            hashlib.sha256,
        ).hexdigest()

    def proxy_url(self, remote_url: str, now: float | None = None) -> str:
        """Locally routable URL that streams ``remote_url``."""
        url = f"{self._site}/attachment/{quote(remote_url, safe='')}"
        if not self._secret:
            return url
        expires = int(now if now is not None else time.time()) + self._ttl
        query = urlencode({"expires": expires, "token": self._sign(remote_url, expires)})
        return f"{url}?{query}"

    def is_allowed_host(self, remote_url: str) -> bool:
        parts = urlsplit(remote_url)
        if parts.scheme not in ("http", "https"):
            return False
        if not self._allowed_hosts:
            return True
        return (parts.hostname or "") in self._allowed_hosts

    def verify(
        self,
        remote_url: str,
        expires: str | None,
        token: str | None,
        now: float | None = None,
    ) -> None:
        """Raise AuthError unless the request may be proxied."""
        if not self.is_allowed_host(remote_url):
            raise AuthError("Attachment host not allowed")
        if not self._secret:
            return
        if not expires or not token:
            raise AuthError("Missing attachment token")
        try:
            expires_at = int(expires)
        except ValueError:
            raise AuthError("Bad attachment expiry") from None
        if expires_at < (now if now is not None else time.time()):
            raise AuthError("Attachment link expired")
        if not hmac.compare_digest(self._sign(remote_url, expires_at), token):
            raise AuthError("Bad attachment token")
