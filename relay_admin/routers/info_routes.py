from __future__ import annotations

"""Signer identity and raw event publication."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from relay_admin.models import ModeratorContext, PublishRequest
from relay_admin.settings import Settings, get_settings
from relay_admin.utils.auth import require_moderator
from relay_admin.utils.dependencies import get_publisher, get_signer
from relay_admin.utils.logger import logger
from relay_admin.utils.nostr import NostrSigner
from relay_admin.utils.relay_socket import RelayEventPublisher

router = APIRouter(prefix="/api", tags=["info"])


@router.get("/info")
async def get_info(
    signer: NostrSigner = Depends(get_signer),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    return {
        "success": True,
        "pubkey": signer.pubkey,
        "npub": signer.npub,
        "relay": settings.relay_url,
    }


@router.post("/publish")
async def publish_event(
    payload: PublishRequest,
    mod: ModeratorContext = Depends(require_moderator),
    signer: NostrSigner = Depends(get_signer),
    publisher: RelayEventPublisher = Depends(get_publisher),
) -> Dict[str, Any]:
    # Signed with the relay admin key, not the moderator's.
    event = signer.sign(payload.kind, payload.content, payload.tags, payload.created_at)
    await publisher.publish(event)
    logger.info("relay.published", extra={"event_id": event["id"], "kind": event["kind"], "moderator": mod.pubkey})
    return {"success": True, "event": event}
