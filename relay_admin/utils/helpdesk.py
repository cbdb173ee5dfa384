"""Zendesk integration: ticket notes, report parsing, post-action sync and
messaging JWTs for the mobile SDK.

Everything that runs after a moderation action (``sync_helpdesk_after_action``)
is best effort: it is scheduled on FastAPI ``BackgroundTasks`` and only logs
its failures.
"""

from __future__ import annotations

import base64
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from jose import jwt as jose_jwt

from relay_admin.errors import ConfigurationError, UpstreamError
from relay_admin.models import RESOLUTION_STATUSES, HelpdeskTicket
from relay_admin.settings import Settings
from relay_admin.utils.credentials import Credential, resolve_optional
from relay_admin.utils.database import insert_data, query_one, update_data
from relay_admin.utils.logger import logger
from relay_admin.utils.nostr import npub_encode
from relay_admin.utils.utils import now_ts

TICKETS_TABLE = "zendesk_tickets"
REPORT_LINK_BASE = "https://relay.admin.divine.video/reports"
MOBILE_JWT_TTL_SECONDS = 3600

_EVENT_ID_RE = re.compile(r"Event ID:\s*([a-f0-9]{64})", re.IGNORECASE)
_AUTHOR_RE = re.compile(r"Author Pubkey:\s*([a-f0-9]{64})", re.IGNORECASE)
_VIOLATION_RE = re.compile(r"Violation Type:\s*(\w+)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Report tickets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedReport:
    event_id: Optional[str]
    author_pubkey: Optional[str]
    violation_type: Optional[str]


def parse_report_description(description: str) -> ParsedReport:
    def _first(pattern: re.Pattern) -> Optional[str]:
        match = pattern.search(description or "")
        return match.group(1) if match else None

    event_id = _first(_EVENT_ID_RE)
    author = _first(_AUTHOR_RE)
    return ParsedReport(
        event_id=event_id.lower() if event_id else None,
        author_pubkey=author.lower() if author else None,
        violation_type=_first(_VIOLATION_RE),
    )


def build_report_note(report: ParsedReport) -> str:
    lines = ["**Content Report Links**", ""]
    if report.violation_type:
        lines += [f"**Violation Type:** {report.violation_type}", ""]
    if report.event_id:
        lines += [
            "**Reported Event:**",
            f"• [View in Relay Admin]({REPORT_LINK_BASE}?event={report.event_id})",
            f"• Event ID: `{report.event_id}`",
            "",
        ]
    if report.author_pubkey:
        lines += [
            "**Reported Author:**",
            f"• [View in Relay Admin]({REPORT_LINK_BASE}?pubkey={report.author_pubkey})",
            f"• Pubkey: `{report.author_pubkey}`",
        ]
    return "\n".join(lines)


def build_action_note(action: str, target_id: str, moderator: str) -> str:
    display = re.sub(r"([A-Z])", r" \1", action.replace("_", " ")).strip()
    return "\n".join(
        [
            "**Moderation Action Taken**",
            "",
            f"**Action:** {display}",
            f"**Target:** `{target_id}`",
            f"**Moderator:** {moderator}",
            f"**Time:** {datetime.now(timezone.utc).isoformat()}",
        ]
    )


async def get_ticket(supabase, ticket_id: int) -> Optional[HelpdeskTicket]:
    row = await query_one(supabase, TICKETS_TABLE, match={"ticket_id": ticket_id})
    return HelpdeskTicket(**row) if row else None


async def record_ticket(supabase, ticket_id: int, report: ParsedReport) -> None:
    await insert_data(
        supabase,
        TICKETS_TABLE,
        {
            "ticket_id": ticket_id,
            "event_id": report.event_id,
            "author_pubkey": report.author_pubkey,
            "violation_type": report.violation_type,
            "status": "open",
            "created_at": datetime.now(timezone.utc).isoformat(),
        },
    )


async def find_open_ticket(supabase, target_type: str, target_id: str) -> Optional[HelpdeskTicket]:
    column = {"event": "event_id", "pubkey": "author_pubkey"}.get(target_type)
    if column is None:
        # Media hashes are not mapped to tickets.
        return None
    row = await query_one(supabase, TICKETS_TABLE, match={column: target_id, "status": "open"})
    return HelpdeskTicket(**row) if row else None


# ---------------------------------------------------------------------------
# Zendesk API
# ---------------------------------------------------------------------------


class ZendeskClient:
    def __init__(
        self,
        subdomain: Optional[str],
        email: Optional[str],
        api_token: Credential | None,
        *,
        field_action_status: Optional[int] = None,
        field_action_requested: Optional[int] = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.subdomain = subdomain
        self.email = email
        self._api_token = api_token
        self.field_action_status = field_action_status
        self.field_action_requested = field_action_requested
        self.timeout = timeout
        self._http = http_client

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ZendeskClient":
        return cls(
            settings.zendesk_subdomain,
            settings.zendesk_email,
            settings.zendesk_api_token,
            field_action_status=settings.zendesk_field_action_status,
            field_action_requested=settings.zendesk_field_action_requested,
            **kwargs,
        )

    async def _auth_header(self) -> Optional[str]:
        token = await resolve_optional(self._api_token)
        if not (self.subdomain and self.email and token):
            return None
        raw = f"{self.email}/token:{token}".encode()
        return "Basic " + base64.b64encode(raw).decode("ascii")

    async def _update_ticket(self, ticket_id: int, ticket: Dict[str, Any]) -> bool:
        auth = await self._auth_header()
        if auth is None:
            logger.warning("helpdesk.not_configured", extra={"ticket_id": ticket_id})
            return False

        url = f"https://{self.subdomain}.zendesk.com/api/v2/tickets/{ticket_id}"
        headers = {"Authorization": auth, "Content-Type": "application/json"}
        try:
            if self._http is not None:
                resp = await self._http.put(url, json={"ticket": ticket}, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.put(url, json={"ticket": ticket}, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Zendesk unreachable: {exc}") from exc
        if not resp.is_success:
            raise UpstreamError(f"Zendesk error: {resp.status_code} - {resp.text}", resp.status_code)
        return True

    async def add_internal_note(self, ticket_id: int, note: str, *, solve: bool = False) -> bool:
        ticket: Dict[str, Any] = {"comment": {"body": note, "public": False}}
        if solve:
            ticket["status"] = "solved"
        return await self._update_ticket(ticket_id, ticket)

    async def report_action_result(self, ticket_id: int, success: bool, note: str) -> bool:
        """Set the action-status custom field (and reset the request field on success)."""
        if self.field_action_status is None or self.field_action_requested is None:
            logger.warning("helpdesk.fields_not_configured", extra={"ticket_id": ticket_id})
            return False
        fields = [{"id": self.field_action_status, "value": "success" if success else "failed"}]
        if success:
            fields.append({"id": self.field_action_requested, "value": "none"})
        return await self._update_ticket(
            ticket_id,
            {"custom_fields": fields, "comment": {"body": note, "public": False}},
        )


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------


async def sync_helpdesk_after_action(
    supabase,
    zendesk: ZendeskClient,
    action: str,
    target_type: str,
    target_id: str,
    moderator: str,
) -> None:
    """Note the action on a linked open ticket; solve it for resolution statuses."""
    try:
        ticket = await find_open_ticket(supabase, target_type, target_id)
        if ticket is None:
            return
        resolved = action in RESOLUTION_STATUSES
        await zendesk.add_internal_note(ticket.ticket_id, build_action_note(action, target_id, moderator), solve=resolved)
        if resolved:
            await update_data(
                supabase,
                TICKETS_TABLE,
                {
                    "status": "resolved",
                    "resolved_at": datetime.now(timezone.utc).isoformat(),
                    "resolution_action": action,
                    "resolution_moderator": moderator,
                },
                {"ticket_id": ticket.ticket_id},
            )
        logger.info("helpdesk.synced", extra={"ticket_id": ticket.ticket_id, "action": action, "resolved": resolved})
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "helpdesk.sync_failed",
            extra={"action": action, "target_id": target_id, "error": str(exc)},
        )


async def report_webhook_result(zendesk: ZendeskClient, ticket_id: int, success: bool, note: str) -> None:
    try:
        await zendesk.report_action_result(ticket_id, success, note)
    except Exception as exc:  # noqa: BLE001
        logger.warning("helpdesk.callback_failed", extra={"ticket_id": ticket_id, "error": str(exc)})


# ---------------------------------------------------------------------------
# Messaging JWT
# ---------------------------------------------------------------------------


async def issue_mobile_jwt(
    secret: Credential | None,
    kid: Optional[str],
    pubkey: str,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
) -> str:
    """Sign a Zendesk messaging JWT that identifies the caller by Nostr pubkey."""
    key = await resolve_optional(secret)
    if not key:
        raise ConfigurationError("ZENDESK_MOBILE_JWT_SECRET not configured")
    if not kid:
        raise ConfigurationError("ZENDESK_MOBILE_JWT_KID not configured")

    issued = now_ts()
    claims: Dict[str, Any] = {
        "scope": "user",
        "external_id": pubkey,
        "name": name or npub_encode(pubkey)[:16],
        "iat": issued,
        "exp": issued + MOBILE_JWT_TTL_SECONDS,
        "jti": uuid.uuid4().hex,
    }
    if email:
        claims["email"] = email
        claims["email_verified"] = False
    return jose_jwt.encode(claims, key, algorithm="HS256", headers={"kid": kid})
