from __future__ import annotations

"""Proxy to the AI-detection (realness) service; job results gain a consensus verdict."""

import re
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from relay_admin.errors import ValidationFailed
from relay_admin.models import ModeratorContext
from relay_admin.utils.auth import require_moderator
from relay_admin.utils.consensus import aggregate
from relay_admin.utils.dependencies import get_realness_client
from relay_admin.utils.realness import RealnessClient, provider_results

router = APIRouter(prefix="/api/realness", tags=["ai-detection"])

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


@router.post("/analyze")
async def analyze(
    payload: Dict[str, Any] = Body(...),
    mod: ModeratorContext = Depends(require_moderator),
    realness: RealnessClient = Depends(get_realness_client),
) -> JSONResponse:
    status, data = await realness.analyze(payload)
    return JSONResponse(status_code=status, content=data)


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    mod: ModeratorContext = Depends(require_moderator),
    realness: RealnessClient = Depends(get_realness_client),
) -> JSONResponse:
    if not _JOB_ID_RE.match(job_id):
        raise ValidationFailed("Invalid job id")

    status, data = await realness.get_job(job_id)
    if 200 <= status < 300 and isinstance(data, dict):
        verdict = aggregate(provider_results(data))
        data = {**data, "consensus": verdict.model_dump() if verdict else None}
    return JSONResponse(status_code=status, content=data)
