from __future__ import annotations

from typing import List, Sequence, TypeVar

import numpy as np

from feedseq_core.config import Weights
from feedseq_core.errors import InvalidCountError, NegativeWeightError
from feedseq_core.rng import Rng, resolve_rng
from feedseq_core.types import Candidate

from .types import ScoredCandidate

T = TypeVar("T")


def sample_without_replacement(
    items: Sequence[T],
    weights: Sequence[float],
    k: int,
    *,
    rng: Rng | None = None,
) -> List[T]:
    """
    Weighted draw of up to k items. Each round picks the first item whose
    cumulative weight reaches r ~ U(0, total) and removes it from the pool.
    """
    if k < 0:
        raise InvalidCountError(f"sample size must be >= 0, got {k}")
    if len(items) != len(weights):
        raise ValueError("items and weights must have the same length")
    if not items or k == 0:
        return []

    w = np.asarray(weights, dtype=float)
    if not np.all(np.isfinite(w)) or np.any(w < 0):
        raise NegativeWeightError("sampling weights must be finite and non-negative")

    r = resolve_rng(rng)
    remaining = list(range(len(items)))
    picked: List[T] = []
    while remaining and len(picked) < k:
        pool_w = w[remaining]
        if pool_w.sum() <= 0:
            # all-zero pool: fall back to uniform
            pool_w = np.ones(len(remaining))
        cum = np.cumsum(pool_w)
        target = r.random() * cum[-1]
        idx = min(int(np.searchsorted(cum, target, side="left")), len(remaining) - 1)
        picked.append(items[remaining.pop(idx)])
    return picked


def dedupe_scored(scored: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
    """First occurrence of each candidate id wins."""
    seen: set[str] = set()
    out: List[ScoredCandidate] = []
    for sc in scored:
        if sc.id not in seen:
            seen.add(sc.id)
            out.append(sc)
    return out


def rank_by_score(scored: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
    # stable: equal scores keep input order
    return sorted(scored, key=lambda sc: sc.score, reverse=True)


def sample_scored(
    scored: Sequence[ScoredCandidate],
    k: int,
    *,
    pool_multiplier: int = 3,
    rng: Rng | None = None,
) -> List[ScoredCandidate]:
    pool = rank_by_score(scored)[: max(0, k) * pool_multiplier]
    return sample_without_replacement(pool, [sc.score for sc in pool], k, rng=rng)


def select_top(
    scored: Sequence[ScoredCandidate],
    count: int,
    *,
    weights: Weights | None = None,
    rng: Rng | None = None,
) -> List[Candidate]:
    """Simple mode: weighted draw from the top pool_multiplier * count by score."""
    if count <= 0:
        raise InvalidCountError(f"count must be positive, got {count}")
    w = weights or Weights.default()
    picks = sample_scored(
        dedupe_scored(scored), count, pool_multiplier=w.pool_multiplier, rng=rng
    )
    return [sc.candidate for sc in picks]
