import asyncio
from collections import Counter

import pytest

from relay_admin.errors import UpstreamError, ValidationFailed
from relay_admin.models import IntentKind, ModerationIntent, ModerationStatus, TargetType
from relay_admin.utils.audit import AuditStore
from relay_admin.utils.moderation import ModerationOrchestrator, extract_media_hashes
from relay_admin.utils.relay_socket import QueryResult
from relay_admin.utils.verification import Verifier
from tests import supabase_stub
from tests.helpers import (
    ADMIN_SIGNER,
    OUTSIDER_SIGNER,
    RELAY_SIGNER,
    FakeMedia,
    FakePublisher,
    FakeRelayRpc,
    signed_post,
)

USER = OUTSIDER_SIGNER.pubkey
HASH_A = "aa" * 32
HASH_B = "bb" * 32


def _decisions():
    return supabase_stub.rows("moderation_decisions")


def _orchestrator(events=None, audit=None, **kwargs) -> ModerationOrchestrator:
    rpc, publisher, media = FakeRelayRpc(), FakePublisher(events), FakeMedia()
    return ModerationOrchestrator(
        signer=RELAY_SIGNER,
        rpc=rpc,
        publisher=publisher,
        media=media,
        audit=audit or AuditStore(supabase_stub.SupabaseStub()),
        verifier=Verifier(rpc, publisher, media, delay=0),
        **kwargs,
    )


def _intent(kind, target, **kwargs) -> ModerationIntent:
    return ModerationIntent(kind=kind, target=target, reason="spam", actor=ADMIN_SIGNER.pubkey, **kwargs)


class BrokenAuditStore(AuditStore):
    async def append(self, *args, **kwargs):
        raise RuntimeError("database unavailable")


# ---------------------------------------------------------------------------
# Media hash extraction
# ---------------------------------------------------------------------------


def test_extract_media_hashes_from_content_and_tags():
    content = f"look https://cdn.divine.video/{HASH_A}.mp4 and again {HASH_A.upper()}"
    tags = [["imeta", f"url https://cdn/{HASH_B}.jpg", f"x {HASH_B}"], ["e", "cc" * 32], ["t", "dd" * 32]]
    assert extract_media_hashes(content, tags) == [HASH_A, HASH_B]


def test_extract_media_hashes_ignores_shorter_hex():
    assert extract_media_hashes("deadbeef " + "a" * 63, []) == []


# ---------------------------------------------------------------------------
# Single intents
# ---------------------------------------------------------------------------


async def test_ban_pubkey_is_dispatched_audited_and_verified():
    orch = _orchestrator()
    result = await orch.execute(_intent(IntentKind.ban_pubkey, USER, report_id="r-1"))

    assert orch.rpc.calls[0] == ("banpubkey", [USER, "spam"])
    assert result.status is ModerationStatus.succeeded
    assert result.phase_history == [
        ModerationStatus.pending,
        ModerationStatus.executing,
        ModerationStatus.succeeded,
        ModerationStatus.verifying,
        ModerationStatus.verified,
    ]
    assert result.verification[0].observed_state == "banned"

    (row,) = _decisions()
    assert row["target_type"] == "pubkey"
    assert row["target_id"] == USER
    assert row["action"] == "ban_user"
    assert row["moderator_pubkey"] == ADMIN_SIGNER.pubkey
    assert row["report_id"] == "r-1"


async def test_unban_is_audited_as_unban_user():
    orch = _orchestrator()
    orch.rpc.banned_pubkeys.append(USER)
    result = await orch.execute(_intent(IntentKind.unban_pubkey, USER))

    assert orch.rpc.calls[0][0] == "allowpubkey"
    assert result.verification_status is ModerationStatus.verified
    assert _decisions()[0]["action"] == "unban_user"


async def test_delete_event_publishes_signed_deletion():
    target = OUTSIDER_SIGNER.sign(1, "bad post")
    orch = _orchestrator(events=[target])

    result = await orch.execute(_intent(IntentKind.delete_event, target["id"]))

    (deletion,) = orch.publisher.published
    assert deletion["kind"] == 5
    assert deletion["pubkey"] == RELAY_SIGNER.pubkey
    assert deletion["tags"] == [["e", target["id"]]]
    assert result.event == deletion
    assert result.verification[0].observed_state == "absent"
    assert orch.rpc.calls == []


async def test_delete_event_ban_strategy_uses_rpc():
    orch = _orchestrator(delete_strategy="banevent")
    result = await orch.execute(_intent(IntentKind.delete_event, "cc" * 32), verify=False)

    assert orch.rpc.calls == [("banevent", ["cc" * 32, "spam"])]
    assert orch.publisher.published == []
    assert result.event is None
    assert result.verification == []


async def test_block_media_goes_to_media_service():
    orch = _orchestrator()
    result = await orch.execute(_intent(IntentKind.block_media, HASH_A))

    assert orch.media.calls == [(HASH_A, "PERMANENT_BAN")]
    assert result.verification_status is ModerationStatus.verified
    assert _decisions()[0]["target_type"] == "media"


async def test_resolution_label_is_audited_with_its_status():
    orch = _orchestrator()
    intent = _intent(
        IntentKind.label,
        USER,
        labels=("reviewed",),
        namespace="moderation/resolution",
        label_target_type=TargetType.pubkey,
    )
    result = await orch.execute(intent)

    (label,) = orch.publisher.published
    assert ["p", USER] in label["tags"]
    assert result.verification[0].observed_state == "present"
    assert _decisions()[0]["action"] == "reviewed"


async def test_dispatch_failure_propagates_without_audit():
    orch = _orchestrator()
    orch.rpc.fail["banpubkey"] = UpstreamError("unauthorized: not an admin")

    with pytest.raises(UpstreamError):
        await orch.execute(_intent(IntentKind.ban_pubkey, USER))
    assert _decisions() == []


async def test_audit_failure_is_a_warning_not_a_failure():
    orch = _orchestrator(audit=BrokenAuditStore(supabase_stub.SupabaseStub()))
    result = await orch.execute(_intent(IntentKind.ban_pubkey, USER), verify=False)

    assert result.success is True
    assert result.sub_actions[0].audit_logged is False
    assert result.warnings == [f"Audit log write failed for ban_user on {USER}"]


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


async def test_verification_error_reports_unknown():
    orch = _orchestrator()
    result = await orch.execute(_intent(IntentKind.ban_pubkey, USER), verify=False)
    assert result.verification_status is None

    orch.rpc.fail["listbannedpubkeys"] = UpstreamError("Relay RPC timed out", 504)
    result = await orch.execute(_intent(IntentKind.ban_pubkey, USER))

    assert result.success is True
    assert result.verification_status is ModerationStatus.verification_warning
    assert result.verification[0].observed_state == "unknown"
    assert result.warnings[0].startswith(f"Could not verify ban_pubkey for {USER}")


async def test_verification_mismatch_is_advisory():
    orch = _orchestrator()
    # The relay acknowledges but keeps the pubkey off its list.
    original = orch.rpc.call

    async def _forgetful(method, params=()):
        result = await original(method, params)
        orch.rpc.banned_pubkeys.clear()
        return result

    orch.rpc.call = _forgetful
    result = await orch.execute(_intent(IntentKind.ban_pubkey, USER))

    assert result.status is ModerationStatus.succeeded
    assert result.verification_status is ModerationStatus.verification_warning
    assert result.warnings == [f"ban_pubkey on {USER}: expected banned, relay reports not_banned"]


async def test_incomplete_query_leaves_deletion_unknown():
    orch = _orchestrator()

    async def _timeout(filter_, timeout=None):
        return QueryResult(events=[], complete=False)

    orch.publisher.query = _timeout
    result = await orch.execute(_intent(IntentKind.delete_event, "cc" * 32))

    assert result.verification[0].observed_state == "unknown"
    assert result.verification_status is ModerationStatus.verification_warning


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


def _user_events():
    return [
        OUTSIDER_SIGNER.sign(1, f"clip https://cdn.divine.video/{HASH_A}.mp4"),
        OUTSIDER_SIGNER.sign(1, "second"),
        OUTSIDER_SIGNER.sign(1, "third", [["imeta", f"x {HASH_A}"]]),
        ADMIN_SIGNER.sign(1, "someone else"),
    ]


async def test_ban_user_keeps_going_after_a_failed_deletion():
    events = _user_events()
    orch = _orchestrator(events=events)
    orch.publisher.reject_deletions_of.add(events[1]["id"])

    result = await orch.ban_user(USER, "spam", ADMIN_SIGNER.pubkey, report_id="r-9")

    assert result.intent == "ban_user"
    assert result.status is ModerationStatus.partially_failed
    assert result.counters == {"banned": 1, "events_deleted": 2, "media_blocked": 1}

    deleted = [t[1] for e in orch.publisher.published for t in e["tags"] if t[0] == "e"]
    assert deleted == [events[0]["id"], events[2]["id"]]
    assert events[3]["id"] in orch.publisher.store

    failed = [s for s in result.sub_actions if not s.success]
    assert [(s.target_id, s.error) for s in failed] == [(events[1]["id"], "blocked: deletion refused")]

    actions = Counter(row["action"] for row in _decisions())
    assert actions == {"ban_user": 1, "delete_event": 2, "block_media": 1}
    assert {row["report_id"] for row in _decisions()} == {"r-9"}

    assert result.verification_status is ModerationStatus.verified
    assert result.phase_history[-3:] == [
        ModerationStatus.partially_failed,
        ModerationStatus.verifying,
        ModerationStatus.verified,
    ]


async def test_ban_user_with_supplied_events_skips_query():
    events = _user_events()[:1]
    orch = _orchestrator()

    result = await orch.ban_user(USER, "spam", ADMIN_SIGNER.pubkey, events=events, block_media=False, verify=False)

    assert orch.publisher.queries == []
    assert result.counters == {"banned": 1, "events_deleted": 1, "media_blocked": 0}
    assert orch.media.calls == []


async def test_ban_user_stops_when_the_ban_fails():
    orch = _orchestrator(events=_user_events())
    orch.rpc.fail["banpubkey"] = UpstreamError("Relay error: 500 Internal Server Error", 500)

    with pytest.raises(UpstreamError):
        await orch.ban_user(USER, "spam", ADMIN_SIGNER.pubkey)
    assert orch.publisher.queries == []
    assert orch.publisher.published == []
    assert _decisions() == []


async def test_ban_user_query_failure_is_a_warning():
    orch = _orchestrator()

    async def _unreachable(filter_, timeout=None):
        raise UpstreamError("Relay query failed: refused")

    orch.publisher.query = _unreachable
    result = await orch.ban_user(USER, "spam", ADMIN_SIGNER.pubkey, verify=False)

    assert result.status is ModerationStatus.succeeded
    assert result.counters["events_deleted"] == 0
    assert result.warnings == [f"Could not fetch events for {USER}: Relay query failed: refused"]


async def test_ban_user_rejects_malformed_events_before_banning():
    orch = _orchestrator()

    with pytest.raises(ValidationFailed):
        await orch.ban_user(USER, "spam", ADMIN_SIGNER.pubkey, events=[{"id": "ab" * 32, "content": 5}])
    assert orch.rpc.calls == []
    assert _decisions() == []


async def test_ban_user_skips_malformed_relay_events():
    good = OUTSIDER_SIGNER.sign(1, "fine")
    orch = _orchestrator(events=[good])
    orch.publisher.store["junk"] = {"id": 123, "pubkey": USER, "content": None}

    result = await orch.ban_user(USER, "spam", ADMIN_SIGNER.pubkey, verify=False)

    assert result.status is ModerationStatus.succeeded
    assert result.counters["events_deleted"] == 1
    assert result.warnings == [f"Skipped 1 malformed events from the relay for {USER}"]


async def test_fan_out_is_bounded_and_finishes_after_cancellation():
    events = [OUTSIDER_SIGNER.sign(1, f"post {i}") for i in range(6)]
    orch = _orchestrator(events=events, concurrency=2)
    publish = orch.publisher.publish
    started = asyncio.Event()
    active = peak = 0

    async def _slow_publish(event):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        started.set()
        try:
            await asyncio.sleep(0.01)
            return await publish(event)
        finally:
            active -= 1

    orch.publisher.publish = _slow_publish
    task = asyncio.create_task(orch.ban_user(USER, "spam", ADMIN_SIGNER.pubkey, block_media=False, verify=False))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    for _ in range(200):
        if len(orch.publisher.published) == len(events) and active == 0:
            break
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.05)

    actions = Counter(row["action"] for row in _decisions())
    assert actions == {"ban_user": 1, "delete_event": 6}
    assert peak == 2


async def test_ban_user_ban_only():
    orch = _orchestrator(events=_user_events())
    result = await orch.ban_user(USER, "spam", ADMIN_SIGNER.pubkey, delete_events=False, block_media=False, verify=False)

    assert orch.publisher.queries == []
    assert [s.action for s in result.sub_actions] == ["ban_user"]


async def test_remove_content_blocks_media_then_deletes():
    target = OUTSIDER_SIGNER.sign(1, "bad post")
    orch = _orchestrator(events=[target])
    orch.media.fail_for.add(HASH_B)

    result = await orch.remove_content(target["id"], [HASH_A, HASH_B, HASH_A], "illegal", ADMIN_SIGNER.pubkey)

    assert result.success is True
    assert result.status is ModerationStatus.partially_failed
    assert result.counters == {"media_blocked": 1, "event_deleted": 1}
    assert [c[0] for c in orch.media.calls] == [HASH_A, HASH_B]
    assert target["id"] not in orch.publisher.store
    assert [s.action for s in result.sub_actions] == ["block_media", "block_media", "delete_event"]
    assert result.verification_status is ModerationStatus.verified


async def test_remove_content_total_failure():
    target = OUTSIDER_SIGNER.sign(1, "bad post")
    orch = _orchestrator(events=[target])
    orch.media.fail_for.add(HASH_A)
    orch.publisher.reject_deletions_of.add(target["id"])

    result = await orch.remove_content(target["id"], [HASH_A], "illegal", ADMIN_SIGNER.pubkey)

    assert result.success is False
    assert result.status is ModerationStatus.failed
    assert result.error == "Moderation service error: 503 - unavailable; blocked: deletion refused"
    assert result.verification == []
    assert _decisions() == []


# ---------------------------------------------------------------------------
# Reopen
# ---------------------------------------------------------------------------


async def test_reopen_only_touches_the_audit_log():
    target = OUTSIDER_SIGNER.sign(1, "bad post")
    orch = _orchestrator(events=[target])
    await orch.execute(_intent(IntentKind.delete_event, target["id"]), verify=False)
    await orch.execute(_intent(IntentKind.ban_pubkey, USER), verify=False)
    await orch.execute(_intent(IntentKind.block_media, HASH_A), verify=False)

    rpc_calls, published, media_calls = len(orch.rpc.calls), len(orch.publisher.published), len(orch.media.calls)
    deleted = await orch.reopen(target["id"], USER)

    assert deleted == 2
    assert [row["target_id"] for row in _decisions()] == [HASH_A]
    assert (len(orch.rpc.calls), len(orch.publisher.published), len(orch.media.calls)) == (rpc_calls, published, media_calls)
    assert USER in orch.rpc.banned_pubkeys


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def test_moderate_route_accepts_npub(relay, zendesk_requests):
    resp = signed_post("/api/moderate", {"action": "ban_pubkey", "pubkey": OUTSIDER_SIGNER.npub, "reason": "spam"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["status"] == "succeeded"
    assert body["verification_status"] == "verified"
    assert relay.rpc.banned_pubkeys == [USER]
    assert _decisions()[0]["moderator_pubkey"] == ADMIN_SIGNER.pubkey


@pytest.mark.parametrize(
    "payload, error",
    [
        ({"action": "ban_pubkey"}, "Missing pubkey"),
        ({"action": "ban_pubkey", "pubkey": "npub1nope"}, "Invalid pubkey"),
        ({"action": "delete_event", "eventId": "xyz"}, "Invalid eventId"),
        ({"action": "block_media"}, "Missing sha256"),
        ({"action": "label", "eventId": "cc" * 32}, "Missing labels"),
        ({"action": "label", "labels": ["nsfw"], "targetType": "media", "sha256": HASH_A}, "Labels target an event or a pubkey"),
    ],
)
def test_moderate_route_validation(relay, zendesk_requests, payload, error):
    resp = signed_post("/api/moderate", payload)
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": error}
    assert relay.rpc.calls == []


def test_moderate_route_unknown_action(relay):
    resp = signed_post("/api/moderate", {"action": "nuke", "pubkey": USER})
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Invalid action")


def test_moderate_route_mirrors_relay_failure(relay, zendesk_requests):
    relay.rpc.fail["banpubkey"] = UpstreamError("Relay error: 401 Unauthorized", 401)
    resp = signed_post("/api/moderate", {"action": "ban_pubkey", "pubkey": USER})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Relay error: 401 Unauthorized"}


def test_ban_user_route(relay, zendesk_requests):
    for event in _user_events():
        relay.publisher.store[event["id"]] = event

    resp = signed_post("/api/moderate/ban-user", {"pubkey": USER, "reason": "spam", "reportId": "r-2"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["intent"] == "ban_user"
    assert body["counters"] == {"banned": 1, "events_deleted": 3, "media_blocked": 1}


@pytest.mark.parametrize(
    "event, field",
    [({"id": 123, "content": "x"}, "id"), ({"id": "ab" * 32, "content": 5}, "content"), ({"id": "xyz"}, "id")],
)
def test_ban_user_route_rejects_malformed_events_before_banning(relay, zendesk_requests, event, field):
    resp = signed_post("/api/moderate/ban-user", {"pubkey": USER, "events": [event]})

    assert resp.status_code == 400
    assert resp.json()["error"].startswith(f"Invalid events.0.{field}")
    assert relay.rpc.calls == []
    assert relay.rpc.banned_pubkeys == []
    assert _decisions() == []


def test_ban_user_route_with_supplied_events(relay, zendesk_requests):
    event = OUTSIDER_SIGNER.sign(1, f"clip {HASH_A}")
    resp = signed_post("/api/moderate/ban-user", {"pubkey": USER, "events": [event], "verify": False})

    assert resp.status_code == 200
    assert resp.json()["counters"] == {"banned": 1, "events_deleted": 1, "media_blocked": 1}
    assert relay.publisher.queries == []


def test_remove_content_route_reports_total_failure(relay, zendesk_requests):
    event_id = "cc" * 32
    relay.media.fail_for.add(HASH_A)
    relay.publisher.reject_deletions_of.add(event_id)

    resp = signed_post("/api/moderate/remove-content", {"eventId": event_id, "mediaHashes": [HASH_A]})

    assert resp.status_code == 502
    body = resp.json()
    assert body["success"] is False
    assert [s["success"] for s in body["sub_actions"]] == [False, False]


def test_remove_content_route_rejects_bad_hash(relay):
    resp = signed_post("/api/moderate/remove-content", {"eventId": "cc" * 32, "mediaHashes": ["abc"]})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid media hash"
