"""Client for the external media moderation service (behind Cloudflare Access)."""

from __future__ import annotations

from typing import Any, Dict

import httpx

from relay_admin.errors import UpstreamError
from relay_admin.models import MediaAction
from relay_admin.settings import Settings
from relay_admin.utils.cache import TTLCache
from relay_admin.utils.credentials import Credential, resolve_optional
from relay_admin.utils.logger import logger

DEFAULT_REASON = "Moderated via Divine Relay Admin"
SOURCE = "relay-manager"


async def cf_access_headers(client_id: Credential | None, client_secret: Credential | None) -> Dict[str, str] | None:
    """Cloudflare Access service-token headers, or ``None`` when either half is unset."""
    resolved_id = await resolve_optional(client_id)
    resolved_secret = await resolve_optional(client_secret)
    if not resolved_id or not resolved_secret:
        return None
    return {"CF-Access-Client-Id": resolved_id, "CF-Access-Client-Secret": resolved_secret}


class MediaModerationClient:
    def __init__(
        self,
        base_url: str,
        client_id: Credential | None,
        client_secret: Credential | None,
        *,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
        cache: TTLCache[str, Any] | None = None,
        cache_ttl: float | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self.timeout = timeout
        self._http = http_client
        self._cache = cache
        self._cache_ttl = cache_ttl

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "MediaModerationClient":
        return cls(
            settings.moderation_service_url,
            settings.cf_access_client_id,
            settings.cf_access_client_secret,
            cache_ttl=settings.check_result_ttl_seconds,
            **kwargs,
        )

    async def _access_headers(self) -> Dict[str, str] | None:
        return await cf_access_headers(self._client_id, self._client_secret)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._http is not None:
                return await self._http.request(method, url, timeout=self.timeout, **kwargs)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("media.transport_error", extra={"path": path, "error": str(exc)})
            raise UpstreamError(f"Moderation service unreachable: {exc}") from exc

    async def moderate(self, sha256: str, action: MediaAction | str, reason: str | None = None) -> Dict[str, Any]:
        headers = await self._access_headers()
        if headers is None:
            raise UpstreamError("CF_ACCESS credentials not configured", 500)

        action_value = action.value if isinstance(action, MediaAction) else str(action)
        resp = await self._request(
            "POST",
            "/api/v1/moderate",
            headers={"Content-Type": "application/json", **headers},
            json={
                "sha256": sha256,
                "action": action_value,
                "reason": reason or DEFAULT_REASON,
                "source": SOURCE,
            },
        )
        if not resp.is_success:
            raise UpstreamError(f"Moderation service error: {resp.status_code} - {resp.text}", resp.status_code)

        if self._cache is not None:
            self._cache.delete(sha256.lower())
        logger.info("media.moderated", extra={"sha256": sha256, "action": action_value})
        return resp.json()

    async def check_result(self, sha256: str, *, use_cache: bool = True) -> Dict[str, Any] | None:
        """Current moderation record for ``sha256``; ``None`` when the service has none."""
        key = sha256.lower()
        if use_cache and self._cache is not None:
            hit, value = self._cache.lookup(key)
            if hit:
                return value

        headers = {"Content-Type": "application/json", **(await self._access_headers() or {})}
        resp = await self._request("GET", f"/check-result/{sha256}", headers=headers)
        if resp.status_code == 404:
            result = None
        elif not resp.is_success:
            raise UpstreamError(f"Moderation service error: {resp.status_code}", resp.status_code)
        else:
            result = resp.json()

        if self._cache is not None:
            self._cache.set(key, result, self._cache_ttl)
        return result
