"""Error taxonomy shared by the auth, relay and moderation layers.

Route handlers never build error responses by hand: they raise one of these and
the handlers registered in :mod:`relay_admin.main` turn it into the standard
``{"success": false, "error": "..."}`` body.
"""

from __future__ import annotations

from fastapi import status

__all__ = [
    "AdminError",
    "AuthRejected",
    "Forbidden",
    "ValidationFailed",
    "UpstreamError",
    "ConfigurationError",
]


class AdminError(Exception):
    """Base class – carries the reason string and the HTTP status to use."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, reason: str, status_code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        if status_code is not None:
            self.status_code = status_code


class AuthRejected(AdminError):
    """Bad, expired or malformed credential. The reason never echoes secrets."""

    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(AdminError):
    status_code = status.HTTP_403_FORBIDDEN


class ValidationFailed(AdminError):
    """Missing or invalid request field."""

    status_code = status.HTTP_400_BAD_REQUEST


class ConfigurationError(AdminError):
    """A required secret or setting is not configured."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class UpstreamError(AdminError):
    """Relay or third-party service unreachable, non-2xx or returned an error.

    ``upstream_status`` keeps the original status for operator diagnosis; the
    response status mirrors it when it is an error status, else 502.
    """

    def __init__(self, reason: str, upstream_status: int | None = None):
        if upstream_status is not None and upstream_status >= 400:
            code = upstream_status
        else:
            code = status.HTTP_502_BAD_GATEWAY
        super().__init__(reason, code)
        self.upstream_status = upstream_status
