"""Tests for proxied attachment URLs."""

from urllib.parse import parse_qs, unquote, urlsplit

import pytest

from discord_zendesk.attachments import AttachmentProxy
from discord_zendesk.conventions import DISCORD_CDN_HOSTS
from discord_zendesk.errors import AuthError

REMOTE = "https://cdn.discordapp.com/attachments/200/1/screen shot.png?ex=abc&hm=def"
NOW = 1_700_000_000


def _split(proxied: str) -> tuple[str, str | None, str | None]:
    parts = urlsplit(proxied)
    remote = unquote(parts.path.removeprefix("/attachment/"))
    query = parse_qs(parts.query)
    return remote, query.get("expires", [None])[0], query.get("token", [None])[0]


@pytest.fixture
def signed():
    return AttachmentProxy(
        "https://bridge.test/", "s3cret", ttl=3600, allowed_hosts=DISCORD_CDN_HOSTS
    )


class TestUnsigned:
    def test_proxy_url_quotes_remote(self):
        proxy = AttachmentProxy("https://bridge.test")
        url = proxy.proxy_url("https://cdn.discordapp.com/a/b.png")
        assert url == (
            "https://bridge.test/attachment/https%3A%2F%2Fcdn.discordapp.com%2Fa%2Fb.png"
        )
        assert not proxy.signed

    def test_any_http_host_allowed_without_list(self):
        proxy = AttachmentProxy("https://bridge.test")
        proxy.verify("https://example.com/file", None, None)

    def test_non_http_scheme_rejected(self):
        proxy = AttachmentProxy("https://bridge.test")
        with pytest.raises(AuthError):
            proxy.verify("file:///etc/passwd", None, None)


class TestSigned:
    def test_round_trip(self, signed):
        remote, expires, token = _split(signed.proxy_url(REMOTE, now=NOW))
        assert remote == REMOTE
        assert expires == str(NOW + 3600)
        signed.verify(remote, expires, token, now=NOW + 10)

    def test_expired(self, signed):
        remote, expires, token = _split(signed.proxy_url(REMOTE, now=NOW))
        with pytest.raises(AuthError, match="expired"):
            signed.verify(remote, expires, token, now=NOW + 3601)

    def test_token_bound_to_path(self, signed):
        _, expires, token = _split(signed.proxy_url(REMOTE, now=NOW))
        other = "https://cdn.discordapp.com/attachments/200/2/other.png"
        with pytest.raises(AuthError):
            signed.verify(other, expires, token, now=NOW)

    def test_token_bound_to_expiry(self, signed):
        remote, expires, token = _split(signed.proxy_url(REMOTE, now=NOW))
        with pytest.raises(AuthError):
            signed.verify(remote, str(int(expires) + 1), token, now=NOW)

    @pytest.mark.parametrize("expires,token", [(None, "t"), ("1", None), (None, None)])
    def test_missing_parameters(self, signed, expires, token):
        with pytest.raises(AuthError):
            signed.verify(REMOTE, expires, token, now=NOW)

    def test_bad_expiry(self, signed):
        with pytest.raises(AuthError):
            signed.verify(REMOTE, "tomorrow", "t", now=NOW)

    def test_host_not_on_allow_list(self, signed):
        remote = "https://evil.example/attachments/200/1/x.png"
        proxied = signed.proxy_url(remote, now=NOW)
        _, expires, token = _split(proxied)
        with pytest.raises(AuthError, match="host"):
            signed.verify(remote, expires, token, now=NOW)

    def test_site_trailing_slash_trimmed(self, signed):
        assert signed.proxy_url(REMOTE, now=NOW).startswith(
            "https://bridge.test/attachment/"
        )
