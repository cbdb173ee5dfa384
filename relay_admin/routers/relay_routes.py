from __future__ import annotations

"""Raw NIP-86 passthrough for the dashboard's relay manager."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from relay_admin.models import ModeratorContext, RelayRpcRequest
from relay_admin.utils.auth import require_moderator
from relay_admin.utils.dependencies import get_rpc_client
from relay_admin.utils.logger import logger
from relay_admin.utils.nip86 import RelayRpcClient

router = APIRouter(prefix="/api", tags=["relay"])


@router.post("/relay-rpc")
async def relay_rpc(
    payload: RelayRpcRequest,
    mod: ModeratorContext = Depends(require_moderator),
    rpc: RelayRpcClient = Depends(get_rpc_client),
) -> Dict[str, Any]:
    logger.info("relay_rpc.call", extra={"method": payload.method, "moderator": mod.pubkey})
    result = await rpc.call(payload.method, payload.params)
    return {"success": True, "result": result}


@router.get("/banned-pubkeys")
async def banned_pubkeys(
    mod: ModeratorContext = Depends(require_moderator),
    rpc: RelayRpcClient = Depends(get_rpc_client),
) -> Dict[str, Any]:
    return {"success": True, "pubkeys": await rpc.list_banned_pubkeys()}
