"""Shared test helpers: the app instance, fakes for every outbound service and
request signing helpers.

Environment defaults are set here, before anything from ``relay_admin`` is
imported, because the package reads its configuration at import time.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from jose import jwt as jose_jwt
from starlette.testclient import TestClient

# ---------------------------------------------------------------------------
# Runtime env for the application
# ---------------------------------------------------------------------------

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test_key")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("RELAY_URL", "wss://relay.test")
os.environ.setdefault("ALLOWED_ORIGINS", "https://relay.admin.divine.video,*.divine.video")
os.environ.setdefault("VERIFY_DELAY_SECONDS", "0")

from relay_admin.utils.nostr import NostrSigner  # noqa: E402

ADMIN_SIGNER = NostrSigner(bytes.fromhex("11" * 32))
RELAY_SIGNER = NostrSigner(bytes.fromhex("22" * 32))
OUTSIDER_SIGNER = NostrSigner(bytes.fromhex("33" * 32))

JWT_SECRET = "helpdesk-jwt-secret"
WEBHOOK_SECRET = "webhook-secret"
PARSE_REPORT_SECRET = "parse-report-secret"
MOBILE_JWT_SECRET = "mobile-jwt-secret"

os.environ.setdefault("NOSTR_NSEC", RELAY_SIGNER.nsec)
os.environ.setdefault("ADMIN_PUBKEYS", ADMIN_SIGNER.npub)
os.environ.setdefault("ZENDESK_JWT_SECRET", JWT_SECRET)
os.environ.setdefault("ZENDESK_WEBHOOK_SECRET", WEBHOOK_SECRET)
os.environ.setdefault("ZENDESK_PARSE_REPORT_SECRET", PARSE_REPORT_SECRET)
os.environ.setdefault("ZENDESK_MOBILE_JWT_SECRET", MOBILE_JWT_SECRET)
os.environ.setdefault("ZENDESK_MOBILE_JWT_KID", "app_test_kid")
os.environ.setdefault("ZENDESK_SUBDOMAIN", "divine")
os.environ.setdefault("ZENDESK_EMAIL", "bot@divine.video")
os.environ.setdefault("ZENDESK_API_TOKEN", "zd-token")
os.environ.setdefault("ZENDESK_FIELD_ACTION_STATUS", "1001")
os.environ.setdefault("ZENDESK_FIELD_ACTION_REQUESTED", "1002")
os.environ.setdefault("CF_ACCESS_CLIENT_ID", "cf-id")
os.environ.setdefault("CF_ACCESS_CLIENT_SECRET", "cf-secret")

# Boot the app once
from relay_admin.errors import UpstreamError  # noqa: E402
from relay_admin.main import create_app, limiter  # noqa: E402, WPS433
from relay_admin.models import MediaAction  # noqa: E402
from relay_admin.utils.media_service import MediaModerationClient  # noqa: E402
from relay_admin.utils.nip86 import RelayRpcClient  # noqa: E402
from relay_admin.utils.relay_socket import PublishAck, PublishRejected, QueryResult, RelayEventPublisher  # noqa: E402

app: FastAPI = create_app()
client = TestClient(app)

BASE_URL = "http://testserver"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRelayRpc(RelayRpcClient):
    """NIP-86 endpoint kept in memory. ``fail`` maps method → exception."""

    def __init__(self):
        super().__init__(RELAY_SIGNER, "https://relay.test/management")
        self.calls: List[tuple[str, list]] = []
        self.banned_pubkeys: List[str] = []
        self.banned_events: List[str] = []
        self.fail: Dict[str, Exception] = {}

    async def call(self, method: str, params=()) -> Any:
        params = [p for p in params if p is not None]
        self.calls.append((method, params))
        if method in self.fail:
            raise self.fail[method]
        if method == "banpubkey":
            self.banned_pubkeys.append(params[0])
            return True
        if method == "allowpubkey":
            self.banned_pubkeys = [pk for pk in self.banned_pubkeys if pk != params[0]]
            return True
        if method == "banevent":
            self.banned_events.append(params[0])
            return True
        if method == "listbannedpubkeys":
            # Bare strings, as some relays return them
            return list(self.banned_pubkeys)
        if method == "listbannedevents":
            return [{"id": e} for e in self.banned_events]
        if method == "supportedmethods":
            return ["banpubkey", "allowpubkey", "banevent", "listbannedpubkeys"]
        return True


class FakePublisher(RelayEventPublisher):
    """Relay WebSocket kept in memory; deletions remove their target events."""

    def __init__(self, events: Optional[List[Dict[str, Any]]] = None):
        super().__init__("wss://relay.test")
        self.published: List[Dict[str, Any]] = []
        self.queries: List[Dict[str, Any]] = []
        self.store: Dict[str, Dict[str, Any]] = {e["id"]: e for e in (events or [])}
        self.reject_deletions_of: set[str] = set()

    async def publish(self, event):
        targets = [t[1] for t in event["tags"] if t and t[0] == "e"]
        if event["kind"] == 5 and self.reject_deletions_of.intersection(targets):
            raise PublishRejected("blocked: deletion refused")
        self.published.append(event)
        if event["kind"] == 5:
            for target in targets:
                self.store.pop(target, None)
        else:
            self.store[event["id"]] = event
        return PublishAck(event_id=event["id"], message="")

    async def query(self, filter_, timeout=None):
        self.queries.append(filter_)
        found = list(self.store.values())
        if "ids" in filter_:
            found = [e for e in found if e["id"] in filter_["ids"]]
        if "authors" in filter_:
            found = [e for e in found if e.get("pubkey") in filter_["authors"]]
        if "limit" in filter_:
            found = found[: filter_["limit"]]
        return QueryResult(events=found, complete=True)


class FakeMedia(MediaModerationClient):
    def __init__(self):
        super().__init__("https://media.test", None, None)
        self.actions: Dict[str, str] = {}
        self.calls: List[tuple[str, str]] = []
        self.fail_for: set[str] = set()

    async def moderate(self, sha256, action, reason=None):
        value = action.value if isinstance(action, MediaAction) else str(action)
        self.calls.append((sha256, value))
        if sha256 in self.fail_for:
            raise UpstreamError("Moderation service error: 503 - unavailable", 503)
        self.actions[sha256] = value
        return {"sha256": sha256, "action": value}

    async def check_result(self, sha256, *, use_cache=True):
        action = self.actions.get(sha256)
        return {"sha256": sha256, "action": action} if action else None


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def nip98_header(
    signer: NostrSigner,
    url: str,
    method: str = "GET",
    body: Optional[bytes] = None,
    created_at: Optional[int] = None,
) -> str:
    tags = [["u", url], ["method", method]]
    if body is not None:
        tags.append(["payload", hashlib.sha256(body).hexdigest()])
    event = signer.sign(27235, "", tags, created_at)
    return "Nostr " + base64.b64encode(json.dumps(event).encode()).decode()


def signed_get(path: str, signer: NostrSigner = ADMIN_SIGNER, **kwargs):
    headers = {"Authorization": nip98_header(signer, BASE_URL + path, "GET"), **kwargs.pop("headers", {})}
    return client.get(path, headers=headers, **kwargs)


def signed_post(path: str, payload: Any, signer: NostrSigner = ADMIN_SIGNER, **kwargs):
    body = json.dumps(payload).encode()
    headers = {
        "Authorization": nip98_header(signer, BASE_URL + path, "POST", body),
        "Content-Type": "application/json",
        **kwargs.pop("headers", {}),
    }
    return client.post(path, content=body, headers=headers, **kwargs)


def signed_delete(path: str, signer: NostrSigner = ADMIN_SIGNER):
    return client.delete(path, headers={"Authorization": nip98_header(signer, BASE_URL + path, "DELETE")})


def make_jwt(secret: str = JWT_SECRET, **overrides: Any) -> str:
    now = int(time.time())
    claims = {
        "iss": "divine.zendesk.com",
        "iat": now,
        "exp": now + 300,
        "email": "agent@divine.video",
        "name": "Agent Smith",
    }
    claims.update(overrides)
    return jose_jwt.encode(claims, secret, algorithm="HS256")


def signed_event(signer: NostrSigner, content: str = "", tags=None, kind: int = 1) -> Dict[str, Any]:
    return signer.sign(kind, content, tags or [])

