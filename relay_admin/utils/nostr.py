"""Nostr event primitives: canonical hashing, BIP-340 signing, bech32 keys.

Events are plain dicts in wire shape::

    {"id", "pubkey", "created_at", "kind", "tags", "content", "sig"}

The id is ``sha256`` over the compact JSON array
``[0, pubkey, created_at, kind, tags, content]`` and the signature is a Schnorr
signature over that id. Any change to the serialized bytes (key order,
whitespace, escaping) produces a different id, so everything that hashes or
signs goes through :func:`serialize_event`.
"""

from __future__ import annotations

import hashlib
import json
import os
from typing import Any, Dict, List

from bech32 import bech32_decode, bech32_encode, convertbits
from coincurve import PrivateKey, PublicKeyXOnly

from relay_admin.errors import ConfigurationError
from relay_admin.utils.credentials import Credential
from relay_admin.utils.utils import now_ts

NostrEvent = Dict[str, Any]

KIND_DELETION = 5
KIND_LABEL = 1985
RESOLUTION_NAMESPACE = "moderation/resolution"

_HEX64 = set("0123456789abcdef")


def _is_hex(value: Any, length: int) -> bool:
    return isinstance(value, str) and len(value) == length and set(value) <= _HEX64


def serialize_event(pubkey: str, created_at: int, kind: int, tags: List[List[str]], content: str) -> bytes:
    return json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_event_id(event: NostrEvent) -> str:
    raw = serialize_event(
        event["pubkey"], event["created_at"], event["kind"], event["tags"], event["content"]
    )
    return hashlib.sha256(raw).hexdigest()


def verify_event(event: Any) -> bool:
    """Check the id matches the canonical hash and the signature matches the id."""
    if not isinstance(event, dict):
        return False
    try:
        if not (_is_hex(event.get("pubkey"), 64) and _is_hex(event.get("id"), 64) and _is_hex(event.get("sig"), 128)):
            return False
        if not isinstance(event.get("created_at"), int) or not isinstance(event.get("kind"), int):
            return False
        if not isinstance(event.get("tags"), list) or not isinstance(event.get("content"), str):
            return False
        if compute_event_id(event) != event["id"]:
            return False
        pub = PublicKeyXOnly(bytes.fromhex(event["pubkey"]))
        return pub.verify(bytes.fromhex(event["sig"]), bytes.fromhex(event["id"]))
    except (ValueError, TypeError):
        return False


# ---------------------------------------------------------------------------
# bech32 (NIP-19) keys
# ---------------------------------------------------------------------------

def decode_bech32(value: str, expected_hrp: str) -> bytes:
    hrp, data = bech32_decode(value.strip())
    if hrp != expected_hrp or data is None:
        raise ValueError(f"expected {expected_hrp}1... value")
    decoded = convertbits(data, 5, 8, False)
    if decoded is None or len(decoded) != 32:
        raise ValueError(f"invalid {expected_hrp} payload")
    return bytes(decoded)


def encode_bech32(hrp: str, raw: bytes) -> str:
    return bech32_encode(hrp, convertbits(raw, 8, 5, True))


def npub_encode(pubkey_hex: str) -> str:
    return encode_bech32("npub", bytes.fromhex(pubkey_hex))


def normalize_pubkey(value: str) -> str:
    """Accept hex or ``npub1...`` and return lowercase hex."""
    value = value.strip()
    if value.startswith("npub1"):
        return decode_bech32(value, "npub").hex()
    if not _is_hex(value.lower(), 64):
        raise ValueError("pubkey must be 64 hex chars or npub")
    return value.lower()


class NostrSigner:
    """Holds the admin secret key and signs event templates."""

    def __init__(self, secret_key: bytes):
        self._secret = secret_key
        self.pubkey = PublicKeyXOnly.from_secret(secret_key).format().hex()

    @classmethod
    def from_nsec(cls, nsec: str) -> "NostrSigner":
        if not nsec:
            raise ConfigurationError("NOSTR_NSEC secret not configured")
        try:
            secret = decode_bech32(nsec, "nsec")
        except ValueError as exc:
            raise ConfigurationError("Invalid NOSTR_NSEC format - must be nsec1...") from exc
        return cls(secret)

    @classmethod
    async def from_credential(cls, credential: Credential | None) -> "NostrSigner":
        if credential is None:
            raise ConfigurationError("NOSTR_NSEC secret not configured")
        return cls.from_nsec(await credential.resolve())

    @property
    def npub(self) -> str:
        return npub_encode(self.pubkey)

    @property
    def nsec(self) -> str:
        return encode_bech32("nsec", self._secret)

    def sign(
        self,
        kind: int,
        content: str = "",
        tags: List[List[str]] | None = None,
        created_at: int | None = None,
    ) -> NostrEvent:
        event: NostrEvent = {
            "pubkey": self.pubkey,
            "created_at": created_at if created_at is not None else now_ts(),
            "kind": kind,
            "tags": [list(map(str, t)) for t in (tags or [])],
            "content": content,
        }
        event["id"] = compute_event_id(event)
        sig = PrivateKey(self._secret).sign_schnorr(bytes.fromhex(event["id"]), os.urandom(32))
        event["sig"] = sig.hex()
        return event


# ---------------------------------------------------------------------------
# Event templates used by moderation
# ---------------------------------------------------------------------------

def build_deletion_event(signer: NostrSigner, event_id: str, reason: str) -> NostrEvent:
    return signer.sign(KIND_DELETION, reason, [["e", event_id]])


def build_label_event(
    signer: NostrSigner,
    target_type: str,
    target: str,
    namespace: str,
    labels: List[str],
    comment: str = "",
) -> NostrEvent:
    """NIP-32 label (kind 1985) on an event (``e``) or a pubkey (``p``)."""
    tags = [["L", namespace]]
    tags.extend(["l", label, namespace] for label in labels)
    tags.append(["e" if target_type == "event" else "p", target])
    return signer.sign(KIND_LABEL, comment, tags)
