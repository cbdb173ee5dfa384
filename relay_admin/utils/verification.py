"""Post-action verification: re-read relay / media service state after a fixed delay.

Verification is advisory. A mismatch or a failed lookup becomes a warning in
the response; it never fails the action and is never retried.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from relay_admin.models import IntentKind, MediaAction, VerificationOutcome
from relay_admin.utils.logger import logger
from relay_admin.utils.media_service import MediaModerationClient
from relay_admin.utils.nip86 import RelayRpcClient
from relay_admin.utils.relay_socket import RelayEventPublisher

UNKNOWN = "unknown"

EXPECTED_STATES = {
    IntentKind.ban_pubkey: "banned",
    IntentKind.unban_pubkey: "not_banned",
    IntentKind.delete_event: "absent",
    IntentKind.block_media: MediaAction.PERMANENT_BAN.value,
    IntentKind.unblock_media: MediaAction.SAFE.value,
    IntentKind.label: "present",
}


@dataclass(frozen=True)
class VerificationCheck:
    kind: IntentKind
    target: str
    # Id of the event we published (labels); deletions are checked by target id.
    event_id: Optional[str] = None


class Verifier:
    def __init__(
        self,
        rpc: RelayRpcClient,
        publisher: RelayEventPublisher,
        media: MediaModerationClient,
        *,
        delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rpc = rpc
        self.publisher = publisher
        self.media = media
        self.delay = delay
        self._sleep = sleep

    async def run(self, checks: List[VerificationCheck]) -> Tuple[List[VerificationOutcome], List[str]]:
        if not checks:
            return [], []

        await self._sleep(self.delay)

        outcomes: List[VerificationOutcome] = []
        warnings: List[str] = []
        banned: Optional[set] = None

        for check in checks:
            expected = EXPECTED_STATES[check.kind]
            try:
                if check.kind in (IntentKind.ban_pubkey, IntentKind.unban_pubkey):
                    if banned is None:
                        banned = {entry["pubkey"] for entry in await self.rpc.list_banned_pubkeys()}
                    observed = "banned" if check.target in banned else "not_banned"
                elif check.kind is IntentKind.delete_event:
                    observed = await self._event_state(check.target)
                elif check.kind is IntentKind.label:
                    observed = await self._event_state(check.event_id or check.target)
                else:
                    record = await self.media.check_result(check.target, use_cache=False)
                    observed = (record or {}).get("action") or "no_record"
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "verification.error",
                    extra={"kind": check.kind.value, "target": check.target, "error": str(exc)},
                )
                outcomes.append(VerificationOutcome(target=check.target, expected_state=expected, observed_state=UNKNOWN, matched=False))
                warnings.append(f"Could not verify {check.kind.value} for {check.target}: {exc}")
                continue

            matched = observed == expected
            if check.kind is IntentKind.unblock_media and observed == "no_record":
                matched = True
            if observed == UNKNOWN:
                warnings.append(f"Could not confirm {check.kind.value} for {check.target}: relay query incomplete")
            elif not matched:
                warnings.append(f"{check.kind.value} on {check.target}: expected {expected}, relay reports {observed}")
            outcomes.append(
                VerificationOutcome(target=check.target, expected_state=expected, observed_state=observed, matched=matched)
            )

        if warnings:
            logger.info("verification.warning", extra={"warnings": warnings})
        return outcomes, warnings

    async def _event_state(self, event_id: str) -> str:
        result = await self.publisher.query({"ids": [event_id]})
        if result.events:
            return "present"
        return "absent" if result.complete else UNKNOWN
