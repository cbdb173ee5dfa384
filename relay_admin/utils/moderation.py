"""Moderation orchestrator.

Turns a :class:`~relay_admin.models.ModerationIntent` into relay / media
service calls, writes one audit row per applied (sub-)action and runs the
advisory verification pass.

Phase history per request::

    pending → executing → {succeeded, partially_failed, failed}
            → verifying → {verified, verification_warning}

Single intents are all-or-nothing: a dispatch error propagates to the
caller. Fan-out intents (``ban_user``, ``remove_content``) run every
sub-action even when a sibling fails and report per-sub-action results.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from relay_admin.errors import AdminError, ValidationFailed
from relay_admin.models import (
    IntentKind,
    MediaAction,
    ModerationIntent,
    ModerationResult,
    ModerationStatus,
    SubActionResult,
)
from relay_admin.utils.audit import AuditStore, log_moderation_decision
from relay_admin.utils.logger import logger
from relay_admin.utils.media_service import MediaModerationClient
from relay_admin.utils.nip86 import RelayRpcClient
from relay_admin.utils.nostr import (
    NostrEvent,
    NostrSigner,
    build_deletion_event,
    build_label_event,
)
from relay_admin.utils.relay_socket import RelayEventPublisher
from relay_admin.utils.verification import VerificationCheck, Verifier

_SHA256_RE = re.compile(r"\b([a-f0-9]{64})\b", re.IGNORECASE)
_EVENT_ID_RE = re.compile(r"[0-9a-fA-F]{64}")
_MEDIA_TAGS = {"imeta", "url", "x"}

DEFAULT_LABEL_NAMESPACE = "moderation"


def extract_media_hashes(content: str, tags: Iterable[Sequence[Any]]) -> List[str]:
    """Collect lowercase sha256 hashes from ``content`` and ``imeta``/``url``/``x`` tags.

    >>> h = "ab" * 32
    >>> extract_media_hashes(f"https://cdn.example/{h}.mp4", [["x", h.upper()]])
    ['abababababababababababababababababababababababababababababababab']
    """
    seen: Dict[str, None] = {}
    for match in _SHA256_RE.finditer(content or ""):
        seen.setdefault(match.group(1).lower(), None)
    for tag in tags or []:
        if tag and tag[0] in _MEDIA_TAGS:
            for match in _SHA256_RE.finditer(" ".join(str(part) for part in tag)):
                seen.setdefault(match.group(1).lower(), None)
    return list(seen)


def is_actionable_event(event: Any) -> bool:
    """True when ``event`` has a hex id, string content and string-list tags."""
    if not isinstance(event, dict):
        return False
    event_id, tags = event.get("id"), event.get("tags", [])
    return (
        isinstance(event_id, str)
        and _EVENT_ID_RE.fullmatch(event_id) is not None
        and isinstance(event.get("content", ""), str)
        and isinstance(tags, list)
        and all(isinstance(tag, list) and all(isinstance(part, str) for part in tag) for tag in tags)
    )


def _status_for(results: Sequence[SubActionResult]) -> ModerationStatus:
    succeeded = sum(1 for r in results if r.success)
    if succeeded == len(results):
        return ModerationStatus.succeeded
    if succeeded == 0:
        return ModerationStatus.failed
    return ModerationStatus.partially_failed


class ModerationOrchestrator:
    def __init__(
        self,
        *,
        signer: NostrSigner,
        rpc: RelayRpcClient,
        publisher: RelayEventPublisher,
        media: MediaModerationClient,
        audit: AuditStore,
        verifier: Verifier,
        delete_strategy: str = "publish",
        concurrency: int = 4,
        event_limit: int = 100,
    ):
        self.signer = signer
        self.rpc = rpc
        self.publisher = publisher
        self.media = media
        self.audit = audit
        self.verifier = verifier
        self.delete_strategy = delete_strategy
        self.concurrency = max(1, concurrency)
        self.event_limit = event_limit

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, intent: ModerationIntent) -> Optional[NostrEvent]:
        """Apply ``intent``. Returns the published event for event-based actions."""
        kind = intent.kind
        reason = intent.reason or None

        if kind is IntentKind.ban_pubkey:
            await self.rpc.ban_pubkey(intent.target, reason)
        elif kind is IntentKind.unban_pubkey:
            await self.rpc.allow_pubkey(intent.target, reason)
        elif kind is IntentKind.delete_event:
            if self.delete_strategy == "banevent":
                await self.rpc.ban_event(intent.target, reason)
                return None
            event = build_deletion_event(self.signer, intent.target, intent.reason)
            await self.publisher.publish(event)
            return event
        elif kind is IntentKind.block_media:
            await self.media.moderate(intent.target, MediaAction.PERMANENT_BAN, reason)
        elif kind is IntentKind.unblock_media:
            await self.media.moderate(intent.target, MediaAction.SAFE, reason)
        elif kind is IntentKind.label:
            event = build_label_event(
                self.signer,
                intent.target_type.value,
                intent.target,
                intent.namespace or DEFAULT_LABEL_NAMESPACE,
                list(intent.labels),
                intent.reason,
            )
            await self.publisher.publish(event)
            return event
        return None

    async def _audit(self, intent: ModerationIntent) -> bool:
        return await log_moderation_decision(
            self.audit,
            intent.target_type.value,
            intent.target,
            intent.audit_action,
            intent.reason,
            intent.actor,
            intent.report_id,
        )

    async def _run_sub_action(self, intent: ModerationIntent) -> tuple[SubActionResult, Optional[NostrEvent]]:
        try:
            event = await self.dispatch(intent)
        except Exception as exc:  # noqa: BLE001
            reason = exc.reason if isinstance(exc, AdminError) else str(exc)
            logger.warning(
                "moderation.sub_action_failed",
                extra={"kind": intent.kind.value, "target": intent.target, "error": reason},
            )
            return SubActionResult(
                action=intent.audit_action,
                target_type=intent.target_type,
                target_id=intent.target,
                success=False,
                error=reason,
            ), None

        logged = await self._audit(intent)
        return SubActionResult(
            action=intent.audit_action,
            target_type=intent.target_type,
            target_id=intent.target,
            success=True,
            audit_logged=logged,
        ), event

    async def _run_batch(self, intents: List[ModerationIntent]) -> List[tuple[SubActionResult, Optional[NostrEvent]]]:
        if not intents:
            return []
        sem = asyncio.Semaphore(self.concurrency)

        async def _bounded(intent: ModerationIntent):
            async with sem:
                return await self._run_sub_action(intent)

        # Shielded so a client disconnect cannot strand dispatched-but-unaudited sub-actions.
        batch = asyncio.gather(*(_bounded(i) for i in intents))
        return await asyncio.shield(batch)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def _verify(self, result: ModerationResult, checks: List[VerificationCheck]) -> None:
        if not checks:
            return
        result.phase_history.append(ModerationStatus.verifying)
        outcomes, warnings = await self.verifier.run(checks)
        result.verification = outcomes
        result.warnings.extend(warnings)
        status = (
            ModerationStatus.verified
            if all(o.matched for o in outcomes)
            else ModerationStatus.verification_warning
        )
        result.verification_status = status
        result.phase_history.append(status)

    @staticmethod
    def _audit_warnings(subs: Iterable[SubActionResult]) -> List[str]:
        return [
            f"Audit log write failed for {s.action} on {s.target_id}"
            for s in subs
            if s.success and not s.audit_logged
        ]

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def execute(self, intent: ModerationIntent, *, verify: bool = True) -> ModerationResult:
        """Run a single intent. Dispatch errors are terminal and propagate."""
        history = [ModerationStatus.pending, ModerationStatus.executing]
        logger.info("moderation.execute", extra={"kind": intent.kind.value, "target": intent.target, "actor": intent.actor})
        try:
            event = await self.dispatch(intent)
        except AdminError as exc:
            logger.warning(
                "moderation.failed",
                extra={"kind": intent.kind.value, "target": intent.target, "error": exc.reason},
            )
            raise

        history.append(ModerationStatus.succeeded)
        logged = await self._audit(intent)
        sub = SubActionResult(
            action=intent.audit_action,
            target_type=intent.target_type,
            target_id=intent.target,
            success=True,
            audit_logged=logged,
        )
        result = ModerationResult(
            intent=intent.kind.value,
            status=ModerationStatus.succeeded,
            phase_history=history,
            sub_actions=[sub],
            warnings=self._audit_warnings([sub]),
            event=event,
        )
        if verify:
            check = VerificationCheck(intent.kind, intent.target, event["id"] if event and intent.kind is IntentKind.label else None)
            await self._verify(result, [check])
        return result

    async def _user_events(self, pubkey: str, supplied: Optional[List[Dict[str, Any]]], warnings: List[str]) -> List[Dict[str, Any]]:
        if supplied is not None:
            return supplied
        try:
            found = await self.publisher.query({"authors": [pubkey], "limit": self.event_limit})
        except AdminError as exc:
            warnings.append(f"Could not fetch events for {pubkey}: {exc.reason}")
            return []
        usable = [ev for ev in found.events if is_actionable_event(ev)]
        if len(usable) < len(found.events):
            warnings.append(f"Skipped {len(found.events) - len(usable)} malformed events from the relay for {pubkey}")
        if not found.complete:
            warnings.append(f"Relay query for {pubkey}'s events timed out; acted on {len(usable)} events")
        return usable

    async def ban_user(
        self,
        pubkey: str,
        reason: str,
        actor: str,
        *,
        delete_events: bool = True,
        block_media: bool = True,
        events: Optional[List[Dict[str, Any]]] = None,
        report_id: Optional[str] = None,
        verify: bool = True,
    ) -> ModerationResult:
        """Ban ``pubkey`` then delete its recent events and block their media.

        The ban is the primary action: if it fails nothing else is attempted
        and the error propagates. Supplied ``events`` are checked before the
        ban so a malformed list never leaves a half-applied request.
        """
        if events is not None and not all(is_actionable_event(ev) for ev in events):
            raise ValidationFailed("Invalid events: each needs a 64-hex id, string content and string tags")

        ban = ModerationIntent(kind=IntentKind.ban_pubkey, target=pubkey, reason=reason, actor=actor, report_id=report_id)
        result = await self.execute(ban, verify=False)
        result.intent = "ban_user"
        result.phase_history = [ModerationStatus.pending, ModerationStatus.executing]

        warnings: List[str] = list(result.warnings)
        user_events = await self._user_events(pubkey, events, warnings) if (delete_events or block_media) else []

        sub_intents: List[ModerationIntent] = []
        if delete_events:
            sub_intents.extend(
                ModerationIntent(
                    kind=IntentKind.delete_event, target=ev["id"].lower(), reason=reason, actor=actor, report_id=report_id
                )
                for ev in user_events
            )
        if block_media:
            hashes: Dict[str, None] = {}
            for ev in user_events:
                for h in extract_media_hashes(ev.get("content", ""), ev.get("tags", [])):
                    hashes.setdefault(h, None)
            sub_intents.extend(
                ModerationIntent(kind=IntentKind.block_media, target=h, reason=reason, actor=actor, report_id=report_id)
                for h in hashes
            )

        outcomes = await self._run_batch(sub_intents)
        subs = [sub for sub, _ in outcomes]
        all_subs = result.sub_actions + subs

        result.sub_actions = all_subs
        result.status = _status_for(all_subs)
        result.phase_history.append(result.status)
        result.counters = {
            "banned": 1,
            "events_deleted": sum(1 for s in subs if s.success and s.action == "delete_event"),
            "media_blocked": sum(1 for s in subs if s.success and s.action == "block_media"),
        }
        result.warnings = warnings + self._audit_warnings(subs)
        logger.info("moderation.ban_user", extra={"pubkey": pubkey, "status": result.status.value, **result.counters})

        if verify:
            checks = [VerificationCheck(IntentKind.ban_pubkey, pubkey)]
            checks.extend(_checks_for(zip(sub_intents, subs)))
            await self._verify(result, checks)
        return result

    async def remove_content(
        self,
        event_id: str,
        media_hashes: Sequence[str],
        reason: str,
        actor: str,
        *,
        report_id: Optional[str] = None,
        verify: bool = True,
    ) -> ModerationResult:
        """Block every media hash, then delete the event. Each step is independent."""
        history = [ModerationStatus.pending, ModerationStatus.executing]
        blocks = [
            ModerationIntent(kind=IntentKind.block_media, target=h.lower(), reason=reason, actor=actor, report_id=report_id)
            for h in dict.fromkeys(media_hashes)
        ]
        delete = ModerationIntent(kind=IntentKind.delete_event, target=event_id, reason=reason, actor=actor, report_id=report_id)

        block_outcomes = await self._run_batch(blocks)
        delete_outcomes = await self._run_batch([delete])
        intents = blocks + [delete]
        subs = [sub for sub, _ in block_outcomes + delete_outcomes]

        status = _status_for(subs)
        history.append(status)
        result = ModerationResult(
            success=status is not ModerationStatus.failed,
            intent="remove_content",
            status=status,
            phase_history=history,
            sub_actions=subs,
            counters={
                "media_blocked": sum(1 for s in subs if s.success and s.action == "block_media"),
                "event_deleted": int(subs[-1].success),
            },
            warnings=self._audit_warnings(subs),
        )
        if status is ModerationStatus.failed:
            result.error = "; ".join(s.error or "failed" for s in subs)
        logger.info("moderation.remove_content", extra={"event_id": event_id, "status": status.value, **result.counters})

        if verify and status is not ModerationStatus.failed:
            await self._verify(result, _checks_for(zip(intents, subs)))
        return result

    async def reopen(self, target_id: str, related_pubkey: Optional[str] = None) -> int:
        """Delete the audit rows for a target. Relay-side effects stay in place."""
        deleted = await self.audit.delete_for_target(target_id)
        if related_pubkey and related_pubkey != target_id:
            deleted += await self.audit.delete_for_target(related_pubkey)
        logger.info("moderation.reopen", extra={"target_id": target_id, "deleted": deleted})
        return deleted


def _checks_for(pairs: Iterable[tuple[ModerationIntent, SubActionResult]]) -> List[VerificationCheck]:
    return [VerificationCheck(intent.kind, intent.target) for intent, sub in pairs if sub.success]

