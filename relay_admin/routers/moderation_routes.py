from __future__ import annotations

"""Moderator actions: single intents and the ban-user / remove-content fan-outs."""

import re
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.responses import JSONResponse

from relay_admin.errors import ValidationFailed
from relay_admin.models import (
    BanUserRequest,
    IntentKind,
    ModerateRequest,
    ModerationIntent,
    ModeratorContext,
    RemoveContentRequest,
    TargetType,
)
from relay_admin.utils.auth import require_moderator
from relay_admin.utils.dependencies import get_helpdesk, get_orchestrator, get_supabase_async
from relay_admin.utils.helpdesk import ZendeskClient, sync_helpdesk_after_action
from relay_admin.utils.moderation import ModerationOrchestrator
from relay_admin.utils.nostr import normalize_pubkey

router = APIRouter(prefix="/api/moderate", tags=["moderation"])

_HEX64 = re.compile(r"^[a-fA-F0-9]{64}$")


def _pubkey(value: str | None) -> str:
    if not value:
        raise ValidationFailed("Missing pubkey")
    try:
        return normalize_pubkey(value)
    except ValueError as exc:
        raise ValidationFailed("Invalid pubkey") from exc


def _hex_id(value: str | None, field: str) -> str:
    if not value:
        raise ValidationFailed(f"Missing {field}")
    if not _HEX64.match(value):
        raise ValidationFailed(f"Invalid {field}")
    return value.lower()


def intent_from_request(payload: ModerateRequest, actor: str) -> ModerationIntent:
    """Resolve the target field that matches ``payload.action``."""
    kind = payload.action
    extra: Dict[str, Any] = {}

    if kind in (IntentKind.ban_pubkey, IntentKind.unban_pubkey):
        target = _pubkey(payload.pubkey)
    elif kind is IntentKind.delete_event:
        target = _hex_id(payload.event_id, "eventId")
    elif kind in (IntentKind.block_media, IntentKind.unblock_media):
        target = _hex_id(payload.sha256, "sha256")
    else:
        if not payload.labels:
            raise ValidationFailed("Missing labels")
        target_type = payload.target_type or (TargetType.event if payload.event_id else TargetType.pubkey)
        if target_type is TargetType.event:
            target = _hex_id(payload.event_id, "eventId")
        elif target_type is TargetType.pubkey:
            target = _pubkey(payload.pubkey)
        else:
            raise ValidationFailed("Labels target an event or a pubkey")
        extra = {
            "labels": tuple(payload.labels),
            "namespace": payload.namespace,
            "label_target_type": target_type,
        }

    return ModerationIntent(
        kind=kind,
        target=target,
        reason=payload.reason or "",
        actor=actor,
        report_id=payload.report_id,
        **extra,
    )


@router.post("")
async def moderate(
    payload: ModerateRequest,
    background_tasks: BackgroundTasks,
    mod: ModeratorContext = Depends(require_moderator),
    orchestrator: ModerationOrchestrator = Depends(get_orchestrator),
    supabase=Depends(get_supabase_async),
    zendesk: ZendeskClient = Depends(get_helpdesk),
) -> Dict[str, Any]:
    intent = intent_from_request(payload, mod.pubkey)
    result = await orchestrator.execute(intent, verify=payload.verify)

    background_tasks.add_task(
        sync_helpdesk_after_action,
        supabase,
        zendesk,
        intent.audit_action,
        intent.target_type.value,
        intent.target,
        mod.pubkey,
    )
    return result.model_dump(mode="json")


@router.post("/ban-user")
async def ban_user(
    payload: BanUserRequest,
    background_tasks: BackgroundTasks,
    mod: ModeratorContext = Depends(require_moderator),
    orchestrator: ModerationOrchestrator = Depends(get_orchestrator),
    supabase=Depends(get_supabase_async),
    zendesk: ZendeskClient = Depends(get_helpdesk),
) -> Dict[str, Any]:
    pubkey = _pubkey(payload.pubkey)
    result = await orchestrator.ban_user(
        pubkey,
        payload.reason,
        mod.pubkey,
        delete_events=payload.delete_events,
        block_media=payload.block_media,
        events=None if payload.events is None else [ev.model_dump() for ev in payload.events],
        report_id=payload.report_id,
        verify=payload.verify,
    )
    background_tasks.add_task(
        sync_helpdesk_after_action, supabase, zendesk, "ban_user", TargetType.pubkey.value, pubkey, mod.pubkey
    )
    return result.model_dump(mode="json")


@router.post("/remove-content")
async def remove_content(
    payload: RemoveContentRequest,
    background_tasks: BackgroundTasks,
    mod: ModeratorContext = Depends(require_moderator),
    orchestrator: ModerationOrchestrator = Depends(get_orchestrator),
    supabase=Depends(get_supabase_async),
    zendesk: ZendeskClient = Depends(get_helpdesk),
) -> Dict[str, Any]:
    event_id = _hex_id(payload.event_id, "eventId")
    hashes = [_hex_id(h, "media hash") for h in payload.media_hashes]

    result = await orchestrator.remove_content(
        event_id,
        hashes,
        payload.reason,
        mod.pubkey,
        report_id=payload.report_id,
        verify=payload.verify,
    )
    if not result.success:
        # Nothing was applied: report it as an upstream failure, with the breakdown.
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=result.model_dump(mode="json"))

    background_tasks.add_task(
        sync_helpdesk_after_action, supabase, zendesk, "delete_event", TargetType.event.value, event_id, mod.pubkey
    )
    return result.model_dump(mode="json")
