"""FastAPI auth dependencies for the relay admin API.

Every route declares which credential scheme it accepts:

    # Moderator dashboard (NIP-98 + ADMIN_PUBKEYS allow-list)
    mod: ModeratorContext = Depends(require_moderator)

    # Helpdesk sidebar app (HS256 JWT)
    user: HelpdeskIdentity = Depends(require_helpdesk_jwt)

    # Helpdesk webhooks (raw body is returned once the HMAC checks out)
    body: bytes = Depends(require_webhook("zendesk_webhook_secret"))

    # Any Nostr signer, no allow-list
    who: NostrIdentity = Depends(require_nip98)
"""

from __future__ import annotations

from fastapi import Depends, Header, Request

from relay_admin.errors import AuthRejected, ConfigurationError, Forbidden
from relay_admin.models import ModeratorContext
from relay_admin.settings import Settings, get_settings
from relay_admin.utils.logger import logger
from relay_admin.utils.nostr import NostrSigner
from relay_admin.utils.security_utils import (
    HelpdeskIdentity,
    NostrIdentity,
    Rejected,
    verify_helpdesk_jwt,
    verify_nip98_auth,
    verify_webhook_signature,
)

_DEV_PUBKEY = "0" * 64


def external_url(request: Request, settings: Settings) -> str:
    """URL the client signed: ``PUBLIC_BASE_URL`` wins when behind a proxy."""
    if not settings.public_base_url:
        return str(request.url)
    url = settings.public_base_url.rstrip("/") + request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


async def _nip98_identity(request: Request, authorization: str | None, settings: Settings) -> NostrIdentity:
    body = await request.body()
    result = verify_nip98_auth(
        authorization,
        external_url(request, settings),
        request.method,
        body=body or None,
    )
    if isinstance(result, Rejected):
        logger.info("auth.nip98_rejected", extra={"path": request.url.path, "reason": result.reason})
        raise AuthRejected(result.reason)
    return result.identity  # type: ignore[return-value]


async def _dev_pubkey(settings: Settings) -> str:
    try:
        return (await NostrSigner.from_credential(settings.nostr_nsec)).pubkey
    except ConfigurationError:
        return _DEV_PUBKEY


async def require_moderator(
    request: Request,
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> ModeratorContext:
    # Development bypass
    if authorization is None and settings.is_development:
        pubkey = await _dev_pubkey(settings)
        request.state.moderator_pubkey = pubkey
        return ModeratorContext(pubkey=pubkey, scheme="dev", dev_bypass=True)

    identity = await _nip98_identity(request, authorization, settings)

    if not settings.admin_pubkeys:
        raise ConfigurationError("ADMIN_PUBKEYS not configured")
    if identity.pubkey not in settings.admin_pubkeys:
        logger.warning("auth.not_moderator", extra={"pubkey": identity.pubkey})
        raise Forbidden("Pubkey is not an authorized moderator")

    request.state.moderator_pubkey = identity.pubkey
    return ModeratorContext(pubkey=identity.pubkey, scheme="nip98")


async def require_nip98(
    request: Request,
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> NostrIdentity:
    return await _nip98_identity(request, authorization, settings)


async def require_helpdesk_jwt(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> HelpdeskIdentity:
    result = await verify_helpdesk_jwt(authorization, settings.zendesk_jwt_secret)
    if isinstance(result, Rejected):
        raise AuthRejected(result.reason)
    return result.identity  # type: ignore[return-value]


def require_webhook(secret_field: str):
    """Dependency factory: verify the webhook HMAC with ``settings.<secret_field>``."""

    async def _webhook_dependency(
        request: Request,
        settings: Settings = Depends(get_settings),
    ) -> bytes:
        body = await request.body()
        if not await verify_webhook_signature(request.headers, body, getattr(settings, secret_field)):
            logger.warning("auth.webhook_rejected", extra={"path": request.url.path})
            raise AuthRejected("Invalid webhook signature")
        return body

    return _webhook_dependency
