from __future__ import annotations

"""Unified models namespace – API request/response models, enums and the
moderation domain types.

Call-sites simply::

    from relay_admin.models import ModerationIntent, IntentKind, BanUserRequest

Inbound bodies use the dashboard's camelCase field names (``eventId``,
``reportId``) as aliases; Python code always works with snake_case.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from relay_admin.utils.nostr import RESOLUTION_NAMESPACE

# ---------------------------------------------------------------------------
# Authentication Models
# ---------------------------------------------------------------------------


@dataclass
class ModeratorContext:
    """Authenticated moderator for admin routes."""

    pubkey: str
    scheme: str
    dev_bypass: bool = False


# ---------------------------------------------------------------------------
# Enums – shareable across request / DB models
# ---------------------------------------------------------------------------


class TargetType(str, Enum):
    event = "event"
    pubkey = "pubkey"
    media = "media"


class IntentKind(str, Enum):
    ban_pubkey = "ban_pubkey"
    unban_pubkey = "unban_pubkey"
    delete_event = "delete_event"
    block_media = "block_media"
    unblock_media = "unblock_media"
    label = "label"


class MediaAction(str, Enum):
    SAFE = "SAFE"
    REVIEW = "REVIEW"
    AGE_RESTRICTED = "AGE_RESTRICTED"
    PERMANENT_BAN = "PERMANENT_BAN"


class ModerationStatus(str, Enum):
    pending = "pending"
    executing = "executing"
    succeeded = "succeeded"
    partially_failed = "partially_failed"
    failed = "failed"
    verifying = "verifying"
    verified = "verified"
    verification_warning = "verification_warning"


class DecisionAction(str, Enum):
    """Values written to ``moderation_decisions.action`` by the orchestrator."""

    ban_user = "ban_user"
    unban_user = "unban_user"
    delete_event = "delete_event"
    block_media = "block_media"
    unblock_media = "unblock_media"
    label = "label"


RESOLUTION_STATUSES = frozenset({"reviewed", "dismissed", "no-action", "false-positive"})

_INTENT_TARGETS = {
    IntentKind.ban_pubkey: TargetType.pubkey,
    IntentKind.unban_pubkey: TargetType.pubkey,
    IntentKind.delete_event: TargetType.event,
    IntentKind.block_media: TargetType.media,
    IntentKind.unblock_media: TargetType.media,
}

_INTENT_ACTIONS = {
    IntentKind.ban_pubkey: DecisionAction.ban_user,
    IntentKind.unban_pubkey: DecisionAction.unban_user,
    IntentKind.delete_event: DecisionAction.delete_event,
    IntentKind.block_media: DecisionAction.block_media,
    IntentKind.unblock_media: DecisionAction.unblock_media,
}


# ---------------------------------------------------------------------------
# Moderation domain
# ---------------------------------------------------------------------------


class ModerationIntent(BaseModel):
    """A requested administrative action, immutable once built."""

    model_config = ConfigDict(frozen=True)

    kind: IntentKind
    target: str
    reason: str = ""
    actor: str
    report_id: Optional[str] = None
    labels: tuple[str, ...] = ()
    namespace: Optional[str] = None
    # Labels can point at an event or a pubkey; every other kind implies its target type.
    label_target_type: TargetType = TargetType.event

    @property
    def target_type(self) -> TargetType:
        return _INTENT_TARGETS.get(self.kind, self.label_target_type)

    @property
    def audit_action(self) -> str:
        if self.kind is IntentKind.label:
            if self.namespace == RESOLUTION_NAMESPACE and self.labels and self.labels[0] in RESOLUTION_STATUSES:
                return self.labels[0]
            return DecisionAction.label.value
        return _INTENT_ACTIONS[self.kind].value


class SubActionResult(BaseModel):
    action: str
    target_type: TargetType
    target_id: str
    success: bool
    error: Optional[str] = None
    audit_logged: bool = False


class VerificationOutcome(BaseModel):
    target: str
    expected_state: str
    observed_state: str
    matched: bool


class ModerationResult(BaseModel):
    success: bool = True
    intent: str
    status: ModerationStatus
    phase_history: List[ModerationStatus] = Field(default_factory=list)
    sub_actions: List[SubActionResult] = Field(default_factory=list)
    counters: Dict[str, int] = Field(default_factory=dict)
    verification: List[VerificationOutcome] = Field(default_factory=list)
    verification_status: Optional[ModerationStatus] = None
    warnings: List[str] = Field(default_factory=list)
    event: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Audit store
# ---------------------------------------------------------------------------


class AuditRecord(BaseModel):
    id: Optional[int] = None
    target_type: str
    target_id: str
    action: str
    reason: Optional[str] = None
    moderator_pubkey: Optional[str] = None
    report_id: Optional[str] = None
    created_at: Optional[str] = None


class HelpdeskTicket(BaseModel):
    ticket_id: int
    event_id: Optional[str] = None
    author_pubkey: Optional[str] = None
    violation_type: Optional[str] = None
    status: str = "open"
    created_at: Optional[str] = None
    resolved_at: Optional[str] = None
    resolution_action: Optional[str] = None
    resolution_moderator: Optional[str] = None


# ---------------------------------------------------------------------------
# AI classifier consensus
# ---------------------------------------------------------------------------


class ProviderResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider_id: str = Field(alias="providerId")
    status: str
    score: Optional[float] = Field(None, ge=0.0, le=1.0)
    verdict: Optional[str] = None
    raw_breakdown: Optional[Dict[str, Any]] = Field(None, alias="rawBreakdown")


class ConsensusVerdict(BaseModel):
    verdict: str
    confidence: str
    agreement: str
    score: Optional[float] = None
    provider_count: int


class ConsensusRequest(BaseModel):
    results: List[ProviderResult]


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PublishRequest(_CamelModel):
    kind: int = Field(..., ge=0)
    content: str
    tags: List[List[str]] = Field(default_factory=list)
    created_at: Optional[int] = None


class ModerateRequest(_CamelModel):
    action: IntentKind
    event_id: Optional[str] = Field(None, alias="eventId")
    pubkey: Optional[str] = None
    sha256: Optional[str] = None
    reason: Optional[str] = None
    report_id: Optional[str] = Field(None, alias="reportId")
    labels: List[str] = Field(default_factory=list)
    namespace: Optional[str] = None
    target_type: Optional[TargetType] = Field(None, alias="targetType")
    verify: bool = True


class UserEvent(BaseModel):
    """One of the banned user's events, as the dashboard already holds it."""

    id: str = Field(..., pattern=r"^[0-9a-fA-F]{64}$")
    content: str = ""
    tags: List[List[str]] = Field(default_factory=list)


class BanUserRequest(_CamelModel):
    pubkey: str
    reason: str = "Banned by relay admin"
    delete_events: bool = Field(True, alias="deleteEvents")
    block_media: bool = Field(True, alias="blockMedia")
    events: Optional[List[UserEvent]] = None
    report_id: Optional[str] = Field(None, alias="reportId")
    verify: bool = True


class RemoveContentRequest(_CamelModel):
    event_id: str = Field(..., alias="eventId")
    media_hashes: List[str] = Field(default_factory=list, alias="mediaHashes")
    reason: str = "Removed by relay admin"
    report_id: Optional[str] = Field(None, alias="reportId")
    verify: bool = True


class RelayRpcRequest(BaseModel):
    method: str = Field(..., min_length=1)
    params: List[Any] = Field(default_factory=list)


class DecisionCreate(_CamelModel):
    target_type: TargetType = Field(..., alias="targetType")
    target_id: str = Field(..., alias="targetId", min_length=1)
    action: str = Field(..., min_length=1)
    reason: Optional[str] = None
    moderator_pubkey: Optional[str] = Field(None, alias="moderatorPubkey")
    report_id: Optional[str] = Field(None, alias="reportId")


class ModerateMediaRequest(BaseModel):
    sha256: str = Field(..., pattern=r"^[a-fA-F0-9]{64}$")
    action: MediaAction
    reason: Optional[str] = None


class ZendeskWebhookPayload(BaseModel):
    ticket_id: int
    action_requested: Optional[str] = None
    nostr_pubkey: Optional[str] = None
    nostr_event_id: Optional[str] = None
    agent_email: Optional[str] = None


class ParseReportPayload(BaseModel):
    ticket_id: Optional[int] = None
    description: Optional[str] = None


class ZendeskActionRequest(BaseModel):
    action: str = Field(..., min_length=1)
    pubkey: Optional[str] = None
    event_id: Optional[str] = None
    reason: Optional[str] = None
    ticket_id: Optional[int] = None


class MobileJwtRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class RecentPost(BaseModel):
    content: str = ""
    created_at: Optional[int] = None


class ExistingLabel(BaseModel):
    tags: List[List[str]] = Field(default_factory=list)
    created_at: Optional[int] = None


class ReportRecord(BaseModel):
    content: str = ""
    tags: List[List[str]] = Field(default_factory=list)
    created_at: Optional[int] = None


class SummarizeUserRequest(_CamelModel):
    pubkey: str = Field(..., min_length=1)
    recent_posts: List[RecentPost] = Field(default_factory=list, alias="recentPosts")
    existing_labels: List[ExistingLabel] = Field(default_factory=list, alias="existingLabels")
    report_history: List[ReportRecord] = Field(default_factory=list, alias="reportHistory")
