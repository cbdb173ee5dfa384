from __future__ import annotations

"""Credential verification for inbound requests.

Three independent schemes share nothing but the credential resolver and the
60 second clock-skew policy:

* helpdesk HS256 JWT (``Authorization: Bearer <token>``)
* NIP-98 HTTP auth (``Authorization: Nostr <base64(kind-27235 event)>``)
* webhook HMAC (static ``X-Webhook-Key`` or Zendesk's timestamped signature)

The verifiers return an :data:`AuthResult` and never raise for expected
failures; the FastAPI dependencies in :mod:`relay_admin.utils.auth` turn a
:class:`Rejected` into a 401.
"""

import base64
import binascii
import hmac
import json
from dataclasses import dataclass, field
from hashlib import sha256
from typing import Any, Dict, Mapping, Sequence, Union

from jose.utils import base64url_decode, base64url_encode

from relay_admin import NIP98_KIND
from relay_admin.utils.credentials import Credential, resolve_optional
from relay_admin.utils.logger import logger
from relay_admin.utils.nostr import verify_event
from relay_admin.utils.utils import first_tag_value, now_ts

CLOCK_SKEW_SECONDS = 60

# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HelpdeskIdentity:
    email: str | None
    name: str | None
    external_id: str | None = None
    claims: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NostrIdentity:
    pubkey: str


@dataclass(frozen=True)
class Authenticated:
    identity: Union[HelpdeskIdentity, NostrIdentity]
    scheme: str
    ok = True


@dataclass(frozen=True)
class Rejected:
    reason: str
    ok = False


AuthResult = Union[Authenticated, Rejected]

# ---------------------------------------------------------------------------
# base64url
# ---------------------------------------------------------------------------


def b64url_decode(value: str | bytes) -> bytes:
    """Decode base64url, tolerating missing padding.

    >>> b64url_decode("YQ"), b64url_decode("YWI")
    (b'a', b'ab')
    """
    if isinstance(value, str):
        value = value.encode("ascii")
    return base64url_decode(value)


def b64url_encode(raw: bytes) -> str:
    return base64url_encode(raw).decode("ascii")


def _b64_decode_lenient(value: str) -> bytes:
    value = value.strip()
    value += "=" * (-len(value) % 4)
    return base64.b64decode(value)


# ---------------------------------------------------------------------------
# Helpdesk JWT
# ---------------------------------------------------------------------------


async def verify_helpdesk_jwt(
    authorization: str | None,
    secret: Credential | None,
    *,
    now: int | None = None,
) -> AuthResult:
    """Verify an HS256 helpdesk JWT and return its claims as the identity.

    Expiry is strict while issue time gets :data:`CLOCK_SKEW_SECONDS` of slack.
    """
    if not authorization or not authorization.startswith("Bearer "):
        return Rejected("Missing or invalid Authorization header")

    try:
        key = await resolve_optional(secret)
        if not key:
            return Rejected("ZENDESK_JWT_SECRET not configured")

        token = authorization[len("Bearer "):].strip()
        parts = token.split(".")
        if len(parts) != 3 or not all(parts):
            return Rejected("Invalid JWT format")
        header_b64, payload_b64, signature_b64 = parts

        try:
            header = json.loads(b64url_decode(header_b64))
            claims = json.loads(b64url_decode(payload_b64))
        except ValueError:
            return Rejected("Invalid JWT payload")
        if not isinstance(header, dict) or not isinstance(claims, dict):
            return Rejected("Invalid JWT payload")

        expected = hmac.new(key.encode(), f"{header_b64}.{payload_b64}".encode("ascii"), sha256).digest()
        try:
            supplied = b64url_decode(signature_b64)
        except (ValueError, binascii.Error):
            return Rejected("Invalid signature")
        if not hmac.compare_digest(expected, supplied):
            return Rejected("Invalid signature")

        current = now_ts() if now is None else now
        exp = claims.get("exp")
        if isinstance(exp, (int, float)) and exp < current:
            return Rejected("Token expired")
        iat = claims.get("iat")
        if isinstance(iat, (int, float)) and iat > current + CLOCK_SKEW_SECONDS:
            return Rejected("Token not yet valid")

        identity = HelpdeskIdentity(
            email=claims.get("email"),
            name=claims.get("name"),
            external_id=claims.get("external_id"),
            claims=claims,
        )
        return Authenticated(identity, "jwt")
    except Exception as exc:  # noqa: BLE001
        logger.warning("auth.jwt_error", extra={"error": type(exc).__name__})
        return Rejected("JWT verification failed")


# ---------------------------------------------------------------------------
# NIP-98
# ---------------------------------------------------------------------------


def verify_nip98_auth(
    authorization: str | None,
    expected_url: str,
    method: str,
    *,
    body: bytes | None = None,
    now: int | None = None,
) -> AuthResult:
    """Verify a kind-27235 event bound to ``expected_url`` and ``method``."""
    if not authorization or not authorization.startswith("Nostr "):
        return Rejected("Missing or invalid Authorization header (expected: Nostr <base64>)")

    try:
        event = json.loads(_b64_decode_lenient(authorization[len("Nostr "):]))
        if not isinstance(event, dict):
            raise ValueError("auth event is not an object")
    except (ValueError, binascii.Error):
        return Rejected("Failed to parse auth event")

    if event.get("kind") != NIP98_KIND:
        return Rejected(f"Invalid event kind (expected {NIP98_KIND})")

    if not verify_event(event):
        return Rejected("Invalid event signature")

    current = now_ts() if now is None else now
    if abs(event["created_at"] - current) > CLOCK_SKEW_SECONDS:
        return Rejected("Event timestamp too old or in future")

    tags = event["tags"]
    if first_tag_value(tags, "u") != expected_url:
        return Rejected(f"URL mismatch (expected {expected_url})")

    signed_method = first_tag_value(tags, "method")
    if signed_method is None or signed_method.upper() != method.upper():
        return Rejected("Method mismatch")

    payload_hash = first_tag_value(tags, "payload")
    if payload_hash is not None and body is not None:
        if not hmac.compare_digest(payload_hash.lower(), sha256(body).hexdigest()):
            return Rejected("Payload hash mismatch")

    return Authenticated(NostrIdentity(event["pubkey"]), "nip98")


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


async def verify_webhook_signature(
    headers: Mapping[str, str],
    body: bytes,
    secret: Credential | None,
) -> bool:
    """Accept a static ``X-Webhook-Key`` or Zendesk's signed ``timestamp.body``."""
    key = await resolve_optional(secret)
    if not key:
        logger.warning("auth.webhook_secret_missing")
        return False

    api_key = headers.get("X-Webhook-Key")
    if api_key and hmac.compare_digest(api_key.encode(), key.encode()):
        return True

    signature = headers.get("X-Zendesk-Webhook-Signature")
    timestamp = headers.get("X-Zendesk-Webhook-Signature-Timestamp")
    if not signature or not timestamp:
        return False

    digest = hmac.new(key.encode(), timestamp.encode() + b"." + body, sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(signature.encode(), expected.encode())


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def resolve_allowed_origin(origin: str | None, allow_list: str | Sequence[str] | None) -> str:
    """Pick the ``Access-Control-Allow-Origin`` value for ``origin``.

    ``*.example.com`` entries are a plain ``endswith(".example.com")`` check:
    any scheme and any depth of subdomain matches, while
    ``https://a.example.com.attacker.net`` does not. Unlisted origins get the
    first entry back.
    """
    if isinstance(allow_list, str):
        if not allow_list.strip():
            return ""
        entries = [part.strip() for part in allow_list.split(",")]
    else:
        entries = [part.strip() for part in (allow_list or [])]
    entries = [e for e in entries if e]
    if not entries:
        return ""
    if not origin:
        return entries[0]

    for allowed in entries:
        if allowed.startswith("*.") and origin.endswith(allowed[1:]):
            return origin
        if origin == allowed:
            return origin
    return entries[0]
