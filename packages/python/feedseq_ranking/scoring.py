from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List

from feedseq_core.config import TimeConstants, Weights
from feedseq_core.parsing import as_utc
from feedseq_core.rng import Rng, resolve_rng
from feedseq_core.types import Candidate, ViewerPreferenceSnapshot
from feedseq_user.state import ViewerState

from .decay import decay_multiplier, freshness_boost, tag_relevance
from .preference import preference_boost
from .types import ScoreBreakdown, ScoredCandidate


def score_candidate(
    candidate: Candidate,
    state: ViewerState | None = None,
    *,
    snapshot: ViewerPreferenceSnapshot | None = None,
    constants: TimeConstants | None = None,
    weights: Weights | None = None,
    rng: Rng | None = None,
    now: datetime | None = None,
) -> ScoredCandidate:
    """
    Product of decay, freshness, tag relevance, popularity, new-image,
    jitter and (optionally) preference-snapshot factors.
    """
    c = constants or TimeConstants.default()
    w = weights or Weights.default()
    r = resolve_rng(rng)
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    st = state or ViewerState()

    factors = {
        "decay": decay_multiplier(st.last_seen(candidate.id), c, w, now=now),
        "freshness": freshness_boost(candidate.freshness_date, c, w, now=now),
        "tags": tag_relevance(candidate.tags, st.preferred_tags, w),
        "popularity": w.popular if candidate.total_images > w.popular_min_images else 1.0,
        "new_images": w.new_images if candidate.has_new_images else 1.0,
        # tie-breaker so equal candidates do not always surface in the same order
        "jitter": r.uniform(w.jitter_low, w.jitter_high),
    }
    if snapshot is not None:
        factors["preference"] = preference_boost(candidate, snapshot, w)

    breakdown = ScoreBreakdown(factors=factors)
    return ScoredCandidate(candidate=candidate, score=breakdown.total, breakdown=breakdown)


def score_candidates(
    candidates: Iterable[Candidate],
    state: ViewerState | None = None,
    *,
    snapshot: ViewerPreferenceSnapshot | None = None,
    constants: TimeConstants | None = None,
    weights: Weights | None = None,
    rng: Rng | None = None,
    now: datetime | None = None,
) -> List[ScoredCandidate]:
    r = resolve_rng(rng)
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    return [
        score_candidate(
            c,
            state,
            snapshot=snapshot,
            constants=constants,
            weights=weights,
            rng=r,
            now=now,
        )
        for c in candidates
    ]
