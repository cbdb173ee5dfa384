from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from relay_admin.models import ConsensusRequest, ModeratorContext
from relay_admin.utils.auth import require_moderator
from relay_admin.utils.consensus import aggregate

router = APIRouter(prefix="/api/ai-detection", tags=["ai-detection"])


@router.post("/consensus")
async def consensus(
    payload: ConsensusRequest,
    mod: ModeratorContext = Depends(require_moderator),
) -> Dict[str, Any]:
    verdict = aggregate(payload.results)
    return {"success": True, "consensus": verdict.model_dump() if verdict else None}
