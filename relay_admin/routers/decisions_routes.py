from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from relay_admin.models import DecisionCreate, ModeratorContext
from relay_admin.utils.audit import AuditStore
from relay_admin.utils.auth import require_moderator
from relay_admin.utils.dependencies import get_audit_store, get_helpdesk, get_orchestrator, get_supabase_async
from relay_admin.utils.helpdesk import ZendeskClient, sync_helpdesk_after_action
from relay_admin.utils.moderation import ModerationOrchestrator

router = APIRouter(prefix="/api/decisions", tags=["decisions"])


@router.post("")
async def log_decision(
    payload: DecisionCreate,
    background_tasks: BackgroundTasks,
    mod: ModeratorContext = Depends(require_moderator),
    store: AuditStore = Depends(get_audit_store),
    supabase=Depends(get_supabase_async),
    zendesk: ZendeskClient = Depends(get_helpdesk),
) -> Dict[str, Any]:
    """Record a decision taken in the dashboard (e.g. marking a report reviewed)."""
    record = await store.append(
        payload.target_type.value,
        payload.target_id,
        payload.action,
        payload.reason,
        payload.moderator_pubkey or mod.pubkey,
        payload.report_id,
    )
    background_tasks.add_task(
        sync_helpdesk_after_action,
        supabase,
        zendesk,
        payload.action,
        payload.target_type.value,
        payload.target_id,
        payload.moderator_pubkey or mod.pubkey,
    )
    return {"success": True, "decision": record.model_dump()}


@router.get("")
async def list_decisions(
    mod: ModeratorContext = Depends(require_moderator),
    store: AuditStore = Depends(get_audit_store),
) -> Dict[str, Any]:
    records = await store.list_all()
    return {"success": True, "decisions": [r.model_dump() for r in records]}


@router.get("/{target_id}")
async def get_decisions(
    target_id: str,
    mod: ModeratorContext = Depends(require_moderator),
    store: AuditStore = Depends(get_audit_store),
) -> Dict[str, Any]:
    records = await store.list_for_target(target_id)
    return {"success": True, "decisions": [r.model_dump() for r in records]}


@router.delete("/{target_id}")
async def reopen_target(
    target_id: str,
    related_pubkey: Optional[str] = Query(None, alias="relatedPubkey"),
    mod: ModeratorContext = Depends(require_moderator),
    orchestrator: ModerationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Reopen a target: drop its decision history. Relay state is left alone."""
    deleted = await orchestrator.reopen(target_id, related_pubkey)
    return {"success": True, "deleted": deleted}
