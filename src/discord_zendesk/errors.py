"""Error taxonomy for the bridge.

Each error carries the HTTP status the routing layer reports for it.
NotFoundError maps to 500 because Zendesk treats any 5xx on channelback
as a failed delivery; clickthrough catches it and tries the next tenant.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for errors surfaced to Zendesk."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(BridgeError):
    """Malformed inbound metadata or payload."""

    status_code = 400


class AuthError(BridgeError):
    """Token, credential or signature check failed."""

    status_code = 403


class NotFoundError(BridgeError):
    """Tenant, thread or message could not be resolved."""

    status_code = 500


class UpstreamError(BridgeError):
    """A Discord or Zendesk API call failed."""

    status_code = 502
