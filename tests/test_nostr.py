import hashlib
import json

import pytest

from relay_admin.errors import ConfigurationError
from relay_admin.utils.credentials import LiteralCredential
from relay_admin.utils.nostr import (
    NostrSigner,
    build_deletion_event,
    build_label_event,
    compute_event_id,
    normalize_pubkey,
    npub_encode,
    serialize_event,
    verify_event,
)
from tests.helpers import ADMIN_SIGNER


def test_serialization_is_compact_and_unescaped():
    raw = serialize_event("ab" * 32, 1700000000, 1, [["t", "café"]], 'say "hi"\n')
    assert raw == ('[0,"' + "ab" * 32 + '",1700000000,1,[["t","café"]],"say \\"hi\\"\\n"]').encode()


def test_signed_event_verifies():
    event = ADMIN_SIGNER.sign(1, "hello", [["t", "nostr"]], created_at=1700000000)
    assert event["pubkey"] == ADMIN_SIGNER.pubkey
    assert event["id"] == hashlib.sha256(serialize_event(event["pubkey"], 1700000000, 1, [["t", "nostr"]], "hello")).hexdigest()
    assert verify_event(event)


@pytest.mark.parametrize(
    "field, value",
    [
        ("content", "changed"),
        ("kind", 2),
        ("created_at", 1),
        ("tags", [["t", "other"]]),
    ],
)
def test_any_change_breaks_verification(field, value):
    event = ADMIN_SIGNER.sign(1, "hello", [["t", "nostr"]])
    event[field] = value
    assert not verify_event(event)


def test_recomputed_id_with_foreign_signature_fails():
    event = ADMIN_SIGNER.sign(1, "hello")
    other = ADMIN_SIGNER.sign(1, "other")
    event["sig"] = other["sig"]
    assert compute_event_id(event) == event["id"]
    assert not verify_event(event)


@pytest.mark.parametrize("event", [None, [], {"id": "x"}, {**ADMIN_SIGNER.sign(1, ""), "sig": "zz" * 64}])
def test_malformed_events_do_not_verify(event):
    assert not verify_event(event)


def test_npub_and_nsec_round_trip():
    assert ADMIN_SIGNER.npub.startswith("npub1")
    assert normalize_pubkey(ADMIN_SIGNER.npub) == ADMIN_SIGNER.pubkey
    assert NostrSigner.from_nsec(ADMIN_SIGNER.nsec).pubkey == ADMIN_SIGNER.pubkey
    assert npub_encode(ADMIN_SIGNER.pubkey) == ADMIN_SIGNER.npub


def test_normalize_pubkey_lowercases_hex():
    assert normalize_pubkey("  " + ADMIN_SIGNER.pubkey.upper()) == ADMIN_SIGNER.pubkey
    with pytest.raises(ValueError):
        normalize_pubkey("abc")


def test_from_nsec_rejects_other_prefixes():
    with pytest.raises(ConfigurationError) as exc:
        NostrSigner.from_nsec(ADMIN_SIGNER.npub)
    assert exc.value.reason == "Invalid NOSTR_NSEC format - must be nsec1..."


async def test_from_credential_requires_a_value():
    with pytest.raises(ConfigurationError):
        await NostrSigner.from_credential(None)
    signer = await NostrSigner.from_credential(LiteralCredential(ADMIN_SIGNER.nsec))
    assert signer.pubkey == ADMIN_SIGNER.pubkey


def test_deletion_and_label_templates():
    target = "ab" * 32
    deletion = build_deletion_event(ADMIN_SIGNER, target, "spam")
    assert deletion["kind"] == 5
    assert deletion["tags"] == [["e", target]]
    assert deletion["content"] == "spam"

    label = build_label_event(ADMIN_SIGNER, "pubkey", target, "moderation/resolution", ["reviewed"], "ok")
    assert label["kind"] == 1985
    assert label["tags"] == [
        ["L", "moderation/resolution"],
        ["l", "reviewed", "moderation/resolution"],
        ["p", target],
    ]
    assert verify_event(json.loads(json.dumps(label)))
