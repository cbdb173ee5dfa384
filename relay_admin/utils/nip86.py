"""NIP-86 relay management RPC client.

Each call is a POST of ``{"method", "params"}`` to the relay's management URL,
authorised by a NIP-98 event whose ``payload`` tag is the SHA-256 of the exact
body bytes sent.
"""

from __future__ import annotations

import base64
import json
from hashlib import sha256
from typing import Any, Dict, List, Sequence
from urllib.parse import urlsplit

import httpx

from relay_admin import NIP98_KIND
from relay_admin.errors import ConfigurationError, UpstreamError
from relay_admin.settings import Settings
from relay_admin.utils.logger import logger
from relay_admin.utils.nostr import NostrEvent, NostrSigner

RPC_CONTENT_TYPE = "application/nostr+json+rpc"


def get_management_url(settings: Settings) -> str:
    """``MANAGEMENT_URL`` if set, else ``RELAY_URL`` as https plus ``MANAGEMENT_PATH``.

    >>> from relay_admin.settings import Settings
    >>> get_management_url(Settings(relay_url="wss://relay.example.com"))
    'https://relay.example.com/management'
    """
    if settings.management_url:
        return settings.management_url
    if not settings.relay_url:
        raise ConfigurationError("RELAY_URL not configured")
    base = settings.relay_url
    for scheme in ("wss://", "ws://"):
        if base.startswith(scheme):
            base = "https://" + base[len(scheme):]
            break
    return base.rstrip("/") + settings.management_path


def forwarded_headers(url: str) -> Dict[str, str]:
    """Plain-http targets (local relays) need the proxy headers or they redirect to https."""
    parts = urlsplit(url)
    if parts.scheme != "http":
        return {}
    return {"X-Forwarded-Proto": "http", "X-Forwarded-Host": parts.netloc}


def encode_rpc_body(method: str, params: Sequence[Any]) -> bytes:
    body = {"method": method, "params": [p for p in params if p is not None]}
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def nostr_authorization(event: NostrEvent) -> str:
    raw = json.dumps(event, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return "Nostr " + base64.b64encode(raw).decode("ascii")


class RelayRpcClient:
    """Signs and sends NIP-86 calls.

    ``http_client`` is optional; without one every call opens its own
    ``httpx.AsyncClient`` bounded by ``timeout``.
    """

    def __init__(
        self,
        signer: NostrSigner,
        url: str,
        *,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.signer = signer
        self.url = url
        self.timeout = timeout
        self._http = http_client

    @classmethod
    def from_settings(cls, signer: NostrSigner, settings: Settings, **kwargs: Any) -> "RelayRpcClient":
        return cls(signer, get_management_url(settings), timeout=settings.relay_rpc_timeout_seconds, **kwargs)

    def build_request(self, method: str, params: Sequence[Any] = ()) -> tuple[bytes, Dict[str, str]]:
        body = encode_rpc_body(method, params)
        auth_event = self.signer.sign(
            NIP98_KIND,
            "",
            [["u", self.url], ["method", "POST"], ["payload", sha256(body).hexdigest()]],
        )
        headers = {
            "Content-Type": RPC_CONTENT_TYPE,
            "Authorization": nostr_authorization(auth_event),
            **forwarded_headers(self.url),
        }
        return body, headers

    async def _post(self, body: bytes, headers: Dict[str, str]) -> httpx.Response:
        if self._http is not None:
            return await self._http.post(self.url, content=body, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, content=body, headers=headers)

    async def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        body, headers = self.build_request(method, params)
        try:
            resp = await self._post(body, headers)
        except httpx.TimeoutException as exc:
            logger.warning("nip86.timeout", extra={"method": method})
            raise UpstreamError("Relay RPC timed out", 504) from exc
        except httpx.HTTPError as exc:
            logger.warning("nip86.transport_error", extra={"method": method, "error": str(exc)})
            raise UpstreamError(f"Relay RPC failed: {exc}") from exc

        if not resp.is_success:
            logger.warning("nip86.http_error", extra={"method": method, "status_code": resp.status_code})
            raise UpstreamError(f"Relay error: {resp.status_code} {resp.reason_phrase}", resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError("Relay returned invalid JSON") from exc
        if isinstance(data, dict) and data.get("error"):
            logger.info("nip86.rpc_error", extra={"method": method, "error": data["error"]})
            raise UpstreamError(str(data["error"]))
        return data.get("result") if isinstance(data, dict) else None

    # -- convenience wrappers ------------------------------------------------

    async def supported_methods(self) -> List[str]:
        return list(await self.call("supportedmethods") or [])

    async def ban_pubkey(self, pubkey: str, reason: str | None = None) -> Any:
        return await self.call("banpubkey", [pubkey, reason])

    async def allow_pubkey(self, pubkey: str, reason: str | None = None) -> Any:
        return await self.call("allowpubkey", [pubkey, reason])

    async def ban_event(self, event_id: str, reason: str | None = None) -> Any:
        return await self.call("banevent", [event_id, reason])

    async def allow_event(self, event_id: str, reason: str | None = None) -> Any:
        return await self.call("allowevent", [event_id, reason])

    async def list_banned_pubkeys(self) -> List[Dict[str, Any]]:
        return _normalize_entries(await self.call("listbannedpubkeys"), "pubkey")

    async def list_banned_events(self) -> List[Dict[str, Any]]:
        return _normalize_entries(await self.call("listbannedevents"), "id")


def _normalize_entries(result: Any, key: str) -> List[Dict[str, Any]]:
    """Relays answer with bare strings or ``{key, reason}`` objects; always return objects."""
    entries: List[Dict[str, Any]] = []
    for item in result or []:
        if isinstance(item, str):
            entries.append({key: item})
        elif isinstance(item, dict) and item.get(key):
            entries.append(item)
    return entries
