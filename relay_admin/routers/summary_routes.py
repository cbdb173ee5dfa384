from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends

from relay_admin.models import ModeratorContext, SummarizeUserRequest
from relay_admin.utils.auth import require_moderator
from relay_admin.utils.dependencies import get_summarizer
from relay_admin.utils.summaries import UserSummarizer

router = APIRouter(prefix="/api", tags=["summaries"])


@router.post("/summarize-user")
async def summarize_user(
    payload: SummarizeUserRequest,
    mod: ModeratorContext = Depends(require_moderator),
    summarizer: UserSummarizer = Depends(get_summarizer),
) -> Dict[str, str]:
    return await summarizer.summarize(
        payload.pubkey,
        payload.recent_posts,
        payload.existing_labels,
        payload.report_history,
    )
