from __future__ import annotations

"""Proxy to the media moderation service (Cloudflare Access protected)."""

import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from relay_admin.errors import ValidationFailed
from relay_admin.models import ModerateMediaRequest, ModeratorContext
from relay_admin.utils.auth import require_moderator
from relay_admin.utils.dependencies import get_media_client
from relay_admin.utils.media_service import MediaModerationClient

router = APIRouter(prefix="/api", tags=["media"])

_SHA256_RE = re.compile(r"^[a-fA-F0-9]{64}$")


@router.post("/moderate-media")
async def moderate_media(
    payload: ModerateMediaRequest,
    mod: ModeratorContext = Depends(require_moderator),
    media: MediaModerationClient = Depends(get_media_client),
) -> Dict[str, Any]:
    result = await media.moderate(payload.sha256.lower(), payload.action, payload.reason)
    return {"success": True, "result": result}


@router.get("/check-result/{sha256}")
async def check_result(
    sha256: str,
    mod: ModeratorContext = Depends(require_moderator),
    media: MediaModerationClient = Depends(get_media_client),
) -> Optional[Dict[str, Any]]:
    # ``null`` when the service has no record for the hash.
    if not _SHA256_RE.match(sha256):
        raise ValidationFailed("Invalid sha256")
    return await media.check_result(sha256.lower())
