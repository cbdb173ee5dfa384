from __future__ import annotations

"""Zendesk integration routes.

``/webhook`` and ``/parse-report`` are called by Zendesk triggers and carry a
webhook signature; ``/verify``, ``/context`` and ``/action`` are called by the
sidebar app with a short-lived JWT; ``/mobile-jwt`` is called by the mobile
app with a NIP-98 header.
"""

from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from relay_admin.errors import AdminError, ValidationFailed
from relay_admin.models import (
    IntentKind,
    MobileJwtRequest,
    ModerationIntent,
    ParseReportPayload,
    ZendeskActionRequest,
    ZendeskWebhookPayload,
)
from relay_admin.settings import Settings, get_settings
from relay_admin.utils.auth import require_helpdesk_jwt, require_nip98, require_webhook
from relay_admin.utils.dependencies import (
    get_audit_store,
    get_helpdesk,
    get_orchestrator,
    get_rpc_client,
    get_supabase_async,
)
from relay_admin.utils.audit import AuditStore
from relay_admin.utils.helpdesk import (
    ZendeskClient,
    build_report_note,
    get_ticket,
    issue_mobile_jwt,
    parse_report_description,
    record_ticket,
    report_webhook_result,
    sync_helpdesk_after_action,
)
from relay_admin.utils.logger import logger
from relay_admin.utils.moderation import ModerationOrchestrator
from relay_admin.utils.nip86 import RelayRpcClient
from relay_admin.utils.nostr import normalize_pubkey
from relay_admin.utils.security_utils import HelpdeskIdentity, NostrIdentity

router = APIRouter(prefix="/api/zendesk", tags=["zendesk"])

CONTEXT_DECISION_LIMIT = 20

M = TypeVar("M", bound=BaseModel)

# Helpdesk action name → intent kind
HELPDESK_ACTIONS = {
    "ban_user": IntentKind.ban_pubkey,
    "allow_user": IntentKind.unban_pubkey,
    "delete_event": IntentKind.delete_event,
}


def _parse_body(model: Type[M], body: bytes) -> M:
    try:
        return model.model_validate_json(body or b"{}")
    except ValidationError as exc:
        raise ValidationFailed("Invalid request body") from exc


async def run_helpdesk_action(
    orchestrator: ModerationOrchestrator,
    action: str,
    *,
    pubkey: Optional[str],
    event_id: Optional[str],
    reason: str,
    actor: str,
    report_id: Optional[str],
) -> Optional[AdminError]:
    """Run a helpdesk-requested action. Returns the failure, ``None`` on success."""
    kind = HELPDESK_ACTIONS.get(action)
    if kind is None:
        return ValidationFailed(f"Unknown action: {action}")
    if kind is IntentKind.delete_event:
        if not event_id:
            return ValidationFailed("Missing event_id")
        target = event_id.lower()
    else:
        if not pubkey:
            return ValidationFailed("Missing pubkey")
        try:
            target = normalize_pubkey(pubkey)
        except ValueError:
            return ValidationFailed("Invalid pubkey")

    intent = ModerationIntent(kind=kind, target=target, reason=reason, actor=actor, report_id=report_id)
    try:
        await orchestrator.execute(intent, verify=False)
    except AdminError as exc:
        return exc
    return None


def _webhook_note(payload: ZendeskWebhookPayload, error: Optional[AdminError]) -> str:
    agent = f" by {payload.agent_email}" if payload.agent_email else ""
    action = payload.action_requested
    if error is None:
        if action == "ban_user":
            return f"✅ Ban executed successfully for pubkey {payload.nostr_pubkey}{agent}"
        if action == "delete_event":
            return f"✅ Delete event executed successfully for event {payload.nostr_event_id}{agent}"
        return f'✅ Action "{action}" executed successfully{agent}'
    if action == "ban_user":
        return f"❌ Ban failed for pubkey {payload.nostr_pubkey}: {error.reason}"
    if action == "delete_event":
        return f"❌ Delete event failed for event {payload.nostr_event_id}: {error.reason}"
    return f'❌ Action "{action}" failed: {error.reason}'


@router.post("/webhook")
async def zendesk_webhook(
    background_tasks: BackgroundTasks,
    body: bytes = Depends(require_webhook("zendesk_webhook_secret")),
    orchestrator: ModerationOrchestrator = Depends(get_orchestrator),
    supabase=Depends(get_supabase_async),
    zendesk: ZendeskClient = Depends(get_helpdesk),
):
    """Ticket-field trigger: run the requested action and report back on the ticket."""
    payload = _parse_body(ZendeskWebhookPayload, body)
    action = payload.action_requested
    if not action or action == "none":
        return {"success": True, "message": "No action requested"}

    actor = payload.agent_email or "webhook"
    error = await run_helpdesk_action(
        orchestrator,
        action,
        pubkey=payload.nostr_pubkey,
        event_id=payload.nostr_event_id,
        reason=f"Zendesk ticket #{payload.ticket_id}",
        actor=actor,
        report_id=f"zendesk:{payload.ticket_id}",
    )
    logger.info(
        "zendesk.webhook",
        extra={"ticket_id": payload.ticket_id, "action": action, "success": error is None},
    )

    if error is None:
        target_type = "event" if payload.nostr_event_id else "pubkey"
        target_id = payload.nostr_event_id or payload.nostr_pubkey or ""
        background_tasks.add_task(sync_helpdesk_after_action, supabase, zendesk, action, target_type, target_id, actor)
    # The ticket fields for allow_user have no status to report back to.
    if action != "allow_user":
        background_tasks.add_task(
            report_webhook_result, zendesk, payload.ticket_id, error is None, _webhook_note(payload, error)
        )

    if error is None:
        return {"success": True, "action": action, "error": None}
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "action": action, "error": error.reason},
    )


@router.post("/parse-report")
async def parse_report(
    body: bytes = Depends(require_webhook("zendesk_parse_report_secret")),
    supabase=Depends(get_supabase_async),
    zendesk: ZendeskClient = Depends(get_helpdesk),
) -> Dict[str, Any]:
    """Link a content-report ticket to the Nostr ids in its description."""
    payload = _parse_body(ParseReportPayload, body)
    if not payload.ticket_id or not payload.description:
        raise ValidationFailed("Missing ticket_id or description")

    report = parse_report_description(payload.description)
    if not report.event_id and not report.author_pubkey:
        raise ValidationFailed("Could not parse event_id or author_pubkey from description")

    response: Dict[str, Any] = {
        "success": True,
        "ticket_id": payload.ticket_id,
        "event_id": report.event_id,
        "author_pubkey": report.author_pubkey,
        "violation_type": report.violation_type,
    }
    if await get_ticket(supabase, payload.ticket_id) is not None:
        response["skipped"] = True
        return response

    await record_ticket(supabase, payload.ticket_id, report)
    try:
        await zendesk.add_internal_note(payload.ticket_id, build_report_note(report))
    except AdminError as exc:
        logger.warning("zendesk.note_failed", extra={"ticket_id": payload.ticket_id, "error": exc.reason})
    return response


@router.post("/mobile-jwt")
async def mobile_jwt(
    payload: Optional[MobileJwtRequest] = Body(None),
    identity: NostrIdentity = Depends(require_nip98),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    token = await issue_mobile_jwt(
        settings.zendesk_mobile_jwt_secret,
        settings.zendesk_mobile_jwt_kid,
        identity.pubkey,
        name=payload.name if payload else None,
        email=payload.email if payload else None,
    )
    logger.info("zendesk.mobile_jwt_issued", extra={"pubkey": identity.pubkey})
    return {"success": True, "jwt": token}


@router.get("/verify")
async def verify(user: HelpdeskIdentity = Depends(require_helpdesk_jwt)) -> Dict[str, Any]:
    return {"success": True, "user": {"email": user.email, "name": user.name}}


@router.get("/context")
async def context(
    pubkey: Optional[str] = Query(None),
    event_id: Optional[str] = Query(None),
    user: HelpdeskIdentity = Depends(require_helpdesk_jwt),
    store: AuditStore = Depends(get_audit_store),
    rpc: RelayRpcClient = Depends(get_rpc_client),
) -> Dict[str, Any]:
    """Decision history and ban status for the sidebar."""
    if not pubkey and not event_id:
        raise ValidationFailed("Missing pubkey or event_id parameter")
    if pubkey:
        try:
            pubkey = normalize_pubkey(pubkey)
        except ValueError as exc:
            raise ValidationFailed("Invalid pubkey") from exc

    records = await store.list_for_target(event_id or pubkey, limit=CONTEXT_DECISION_LIMIT)
    ctx: Dict[str, Any] = {
        "requested_by": user.email,
        "decisions": [r.model_dump() for r in records],
    }
    if pubkey:
        try:
            banned = await rpc.list_banned_pubkeys()
            ctx["is_banned"] = any(entry.get("pubkey") == pubkey for entry in banned)
        except AdminError as exc:
            logger.warning("zendesk.ban_status_unknown", extra={"pubkey": pubkey, "error": exc.reason})
            ctx["is_banned"] = None
    return {"success": True, "context": ctx}


@router.post("/action")
async def action(
    payload: ZendeskActionRequest,
    background_tasks: BackgroundTasks,
    user: HelpdeskIdentity = Depends(require_helpdesk_jwt),
    orchestrator: ModerationOrchestrator = Depends(get_orchestrator),
    supabase=Depends(get_supabase_async),
    zendesk: ZendeskClient = Depends(get_helpdesk),
):
    """Run a moderation action from the sidebar on behalf of a helpdesk agent."""
    ticket = f" (ticket #{payload.ticket_id})" if payload.ticket_id else ""
    reason = payload.reason or f"Via Zendesk by {user.email}{ticket}"

    error = await run_helpdesk_action(
        orchestrator,
        payload.action,
        pubkey=payload.pubkey,
        event_id=payload.event_id,
        reason=reason,
        actor=user.email or "zendesk",
        report_id=f"zendesk:{payload.ticket_id}" if payload.ticket_id else None,
    )
    if error is None:
        target_type = "event" if payload.event_id else "pubkey"
        target_id = payload.event_id or payload.pubkey or ""
        background_tasks.add_task(
            sync_helpdesk_after_action, supabase, zendesk, payload.action, target_type, target_id, user.email
        )

    if error is None:
        return {"success": True, "action": payload.action, "error": None, "moderator": user.email}
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "action": payload.action, "error": error.reason, "moderator": user.email},
    )
