"""Combine AI-detection provider results into one verdict.

Pure and order-independent: the same set of provider results always yields
the same :class:`~relay_admin.models.ConsensusVerdict`, whatever order the
providers finished in.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable, List, Optional

from relay_admin.models import ConsensusVerdict, ProviderResult

AUTHENTIC = "AUTHENTIC"
UNCERTAIN = "UNCERTAIN"
LIKELY_AI = "LIKELY_AI"

# Tie-break between equally held buckets: most severe wins.
SEVERITY = {LIKELY_AI: 3, UNCERTAIN: 2, AUTHENTIC: 1}

AUTHENTIC_BELOW = 0.3
UNCERTAIN_BELOW = 0.7


def bucket_for(result: ProviderResult) -> str:
    """Provider's own verdict if it gave one, else bucket the score."""
    if result.verdict:
        return result.verdict.strip().upper()
    if result.score < AUTHENTIC_BELOW:
        return AUTHENTIC
    if result.score < UNCERTAIN_BELOW:
        return UNCERTAIN
    return LIKELY_AI


def _rank(result: ProviderResult) -> tuple:
    bucket = bucket_for(result)
    return (result.provider_id, SEVERITY.get(bucket, 0), bucket, -1.0 if result.score is None else result.score)


def completed_results(results: Iterable[ProviderResult]) -> List[ProviderResult]:
    """Completed results with a score or verdict, one per provider.

    A provider reporting twice keeps its most severe result.
    """
    usable = [
        r for r in results
        if r.status == "completed" and (r.score is not None or r.verdict)
    ]
    per_provider = {}
    for r in sorted(usable, key=_rank):
        per_provider[r.provider_id] = r
    return [per_provider[k] for k in sorted(per_provider)]


def aggregate(results: Iterable[ProviderResult]) -> Optional[ConsensusVerdict]:
    completed = completed_results(results)
    if not completed:
        return None

    scores = [r.score for r in completed if r.score is not None]
    score = max(scores) if scores else None
    buckets = Counter(bucket_for(r) for r in completed)
    count = len(completed)

    if len(buckets) == 1:
        verdict = next(iter(buckets))
        return ConsensusVerdict(verdict=verdict, confidence="high", agreement="unanimous", score=score, provider_count=count)

    top = max(buckets.values())
    if count >= 2 and top >= 2:
        leaders = [b for b, n in buckets.items() if n == top]
        verdict = max(leaders, key=lambda b: (SEVERITY.get(b, 0), b))
        return ConsensusVerdict(verdict=verdict, confidence="medium", agreement="majority", score=score, provider_count=count)

    return ConsensusVerdict(verdict=UNCERTAIN, confidence="low", agreement="split", score=score, provider_count=count)
