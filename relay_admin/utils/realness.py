"""Client for the AI-detection ("realness") service behind Cloudflare Access.

The service runs several detection providers per video and reports each one
under ``details.ai_detection.providers``. Job responses are passed through
unchanged; :func:`provider_results` lifts the per-provider entries into
:class:`~relay_admin.models.ProviderResult` for consensus aggregation.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

import httpx
from pydantic import ValidationError

from relay_admin.errors import UpstreamError
from relay_admin.models import ProviderResult
from relay_admin.settings import Settings
from relay_admin.utils.credentials import Credential
from relay_admin.utils.logger import logger
from relay_admin.utils.media_service import cf_access_headers

_COMPLETE = {"complete", "completed"}


class RealnessClient:
    def __init__(
        self,
        base_url: str,
        client_id: Credential | None,
        client_secret: Credential | None,
        *,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self.timeout = timeout
        self._http = http_client

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "RealnessClient":
        return cls(settings.realness_api_url, settings.cf_access_client_id, settings.cf_access_client_secret, **kwargs)

    async def _send(self, method: str, path: str, failure: str, **kwargs: Any) -> Tuple[int, Any]:
        headers = await cf_access_headers(self._client_id, self._client_secret)
        if headers is None:
            raise UpstreamError("CF_ACCESS credentials not configured", 500)
        headers["Accept"] = "application/json"
        url = f"{self.base_url}{path}"
        try:
            if self._http is not None:
                resp = await self._http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("realness.transport_error", extra={"path": path, "error": str(exc)})
            raise UpstreamError(failure) from exc

        try:
            return resp.status_code, resp.json()
        except ValueError as exc:
            logger.warning(
                "realness.non_json_response",
                extra={"path": path, "status_code": resp.status_code, "body": resp.text[:500]},
            )
            raise UpstreamError(f"Upstream error: {resp.status_code}", resp.status_code) from exc

    async def analyze(self, payload: Dict[str, Any]) -> Tuple[int, Any]:
        """Submit a video for analysis; returns the upstream status and body."""
        return await self._send("POST", "/analyze", "Failed to submit analysis", json=payload)

    async def get_job(self, job_id: str) -> Tuple[int, Any]:
        return await self._send("GET", f"/api/jobs/{job_id}", "Failed to fetch job")


def provider_results(job: Any) -> List[ProviderResult]:
    """Per-provider results of a job; malformed entries are skipped."""
    if not isinstance(job, dict):
        return []
    details = job.get("details") if isinstance(job.get("details"), dict) else {}
    detection = details.get("ai_detection") if isinstance(details.get("ai_detection"), dict) else {}
    providers = detection.get("providers") if isinstance(detection.get("providers"), dict) else {}

    results: List[ProviderResult] = []
    for name, raw in sorted(providers.items()):
        if not isinstance(raw, dict):
            continue
        status = str(raw.get("status") or "").lower()
        try:
            results.append(
                ProviderResult(
                    provider_id=name,
                    status="completed" if status in _COMPLETE else status,
                    score=raw.get("score"),
                    verdict=raw.get("verdict"),
                    raw_breakdown=raw.get("breakdown"),
                )
            )
        except ValidationError as exc:
            logger.warning("realness.provider_skipped", extra={"provider": name, "error": str(exc)})
    return results
