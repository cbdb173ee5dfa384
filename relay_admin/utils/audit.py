"""Append-only moderation decision log (``moderation_decisions`` table)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from relay_admin.models import AuditRecord
from relay_admin.utils.database import delete_data, insert_data, query_many
from relay_admin.utils.logger import logger

DECISIONS_TABLE = "moderation_decisions"
DEFAULT_LIST_LIMIT = 1000


class AuditStore:
    """Thin repository over the Supabase client.

    Rows are only ever inserted or, on reopen, deleted per target; nothing
    here talks to the relay.
    """

    def __init__(self, supabase):
        self.supabase = supabase

    async def append(
        self,
        target_type: str,
        target_id: str,
        action: str,
        reason: Optional[str] = None,
        moderator_pubkey: Optional[str] = None,
        report_id: Optional[str] = None,
    ) -> AuditRecord:
        row = {
            "target_type": target_type,
            "target_id": target_id,
            "action": action,
            "reason": reason or None,
            "moderator_pubkey": moderator_pubkey or None,
            "report_id": report_id or None,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        inserted = await insert_data(self.supabase, DECISIONS_TABLE, row)
        return AuditRecord(**(inserted[0] if inserted else row))

    async def list_all(self, limit: int = DEFAULT_LIST_LIMIT) -> List[AuditRecord]:
        rows = await query_many(
            self.supabase,
            DECISIONS_TABLE,
            order_by=("created_at", True),
            limit=limit,
        )
        return [AuditRecord(**r) for r in rows]

    async def list_for_target(self, target_id: str, limit: int | None = None) -> List[AuditRecord]:
        rows = await query_many(
            self.supabase,
            DECISIONS_TABLE,
            match={"target_id": target_id},
            order_by=("created_at", True),
            limit=limit,
        )
        return [AuditRecord(**r) for r in rows]

    async def delete_for_target(self, target_id: str) -> int:
        deleted = await delete_data(self.supabase, DECISIONS_TABLE, {"target_id": target_id})
        return len(deleted)


async def log_moderation_decision(
    store: AuditStore,
    target_type: str,
    target_id: str,
    action: str,
    reason: Optional[str] = None,
    moderator_pubkey: Optional[str] = None,
    report_id: Optional[str] = None,
) -> bool:
    """Append a decision row; a store failure is logged and reported as ``False``.

    The relay-side effect already happened by the time this runs, so a failed
    write must never turn into a failed response.
    """
    try:
        await store.append(target_type, target_id, action, reason, moderator_pubkey, report_id)
    except Exception as e:  # noqa: BLE001
        logger.warning(
            "audit.write_failed",
            extra={"target_type": target_type, "target_id": target_id, "action": action, "error": str(e)},
        )
        return False
    return True
