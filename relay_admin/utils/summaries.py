"""Short moderator-facing summaries of a user's behaviour, written by Claude.

Summaries are best effort: any failure (missing key, API error, unparseable
reply) yields :data:`FALLBACK_SUMMARY` instead of an error response. Successful
summaries are cached per pubkey for an hour.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, Optional

import anthropic

from relay_admin.errors import ConfigurationError
from relay_admin.models import ExistingLabel, RecentPost, ReportRecord
from relay_admin.utils.cache import TTLCache
from relay_admin.utils.credentials import Credential, resolve_optional
from relay_admin.utils.logger import logger

SUMMARY_TTL_SECONDS = 3600.0
MAX_TOKENS = 256
RISK_LEVELS = ("low", "medium", "high", "critical")

FALLBACK_SUMMARY: Dict[str, str] = {
    "error": "Failed to generate summary",
    "summary": "Unable to analyze user behavior at this time.",
    "riskLevel": "medium",
}

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def _tag_value(tags: Iterable[list], name: str) -> Optional[str]:
    for tag in tags:
        if len(tag) >= 2 and tag[0] == name:
            return tag[1]
    return None


def build_summary_prompt(
    pubkey: str,
    posts: Iterable[RecentPost],
    labels: Iterable[ExistingLabel],
    reports: Iterable[ReportRecord],
) -> str:
    post_lines = "\n".join(f"- {post.content[:200]}" for post in posts) or "None"
    label_lines = "\n".join(f"- {_tag_value(label.tags, 'l') or 'unknown'}" for label in labels) or "None"
    report_lines = (
        "\n".join(
            f"- {_tag_value(report.tags, 'report') or 'unknown'}: {report.content[:100] or 'no details'}"
            for report in reports
        )
        or "None"
    )
    return (
        "You are helping a Nostr relay moderator review a user.\n\n"
        f"User pubkey: {pubkey}\n\n"
        f"Recent posts:\n{post_lines}\n\n"
        f"Existing moderation labels:\n{label_lines}\n\n"
        f"Reports against this user:\n{report_lines}\n\n"
        "Write a 2-3 sentence summary of this user's behaviour for the moderator and "
        "assess their risk. Respond with JSON only, in the form "
        '{"summary": "...", "riskLevel": "low|medium|high|critical"}'
    )


def parse_summary(text: str) -> Dict[str, str]:
    """Pull the ``{"summary", "riskLevel"}`` object out of a model reply."""
    match = _JSON_OBJECT_RE.search(text)
    if match is None:
        raise ValueError("No JSON object in summary reply")
    data = json.loads(match.group(0))
    if not isinstance(data, dict) or not isinstance(data.get("summary"), str):
        raise ValueError("Summary reply is missing 'summary'")
    risk = str(data.get("riskLevel", "")).lower()
    return {"summary": data["summary"], "riskLevel": risk if risk in RISK_LEVELS else "medium"}


class UserSummarizer:
    def __init__(
        self,
        api_key: Credential | None,
        model: str,
        cache: TTLCache[str, Dict[str, str]],
        *,
        client: Any = None,
    ):
        self._api_key = api_key
        self.model = model
        self._cache = cache
        self._client = client

    async def _messages_client(self) -> Any:
        if self._client is None:
            key = await resolve_optional(self._api_key)
            if not key:
                raise ConfigurationError("ANTHROPIC_API_KEY not configured")
            self._client = anthropic.AsyncAnthropic(api_key=key)
        return self._client

    async def summarize(
        self,
        pubkey: str,
        posts: Iterable[RecentPost] = (),
        labels: Iterable[ExistingLabel] = (),
        reports: Iterable[ReportRecord] = (),
    ) -> Dict[str, str]:
        key = pubkey.lower()
        hit, cached = self._cache.lookup(key)
        if hit:
            return cached

        try:
            client = await self._messages_client()
            response = await client.messages.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                messages=[{"role": "user", "content": build_summary_prompt(pubkey, posts, labels, reports)}],
            )
            text = response.content[0].text if response.content else ""
            summary = parse_summary(text)
        except (ConfigurationError, anthropic.APIError, ValueError) as exc:
            logger.warning("summary.failed", extra={"pubkey": pubkey, "error": str(exc)})
            return dict(FALLBACK_SUMMARY)

        self._cache.set(key, summary, SUMMARY_TTL_SECONDS)
        return summary
