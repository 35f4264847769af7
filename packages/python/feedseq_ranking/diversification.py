from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Sequence

from feedseq_core.config import DiversityConfig, TimeConstants, Weights
from feedseq_core.errors import InvalidCountError
from feedseq_core.parsing import as_utc
from feedseq_core.rng import Rng, resolve_rng
from feedseq_core.types import (
    Candidate,
    ContentAge,
    ContentRating,
    Gender,
    ViewerPreferenceSnapshot,
    has_nsfw_content,
    has_sfw_content,
)

from .decay import categorize_content_age
from .sampler import dedupe_scored, rank_by_score, sample_without_replacement
from .types import ScoredCandidate

_EPS = 1e-9


@dataclass
class DiversityGroups:
    by_gender: Dict[Gender, List[ScoredCandidate]] = field(
        default_factory=lambda: {g: [] for g in Gender}
    )
    by_age: Dict[ContentAge, List[ScoredCandidate]] = field(
        default_factory=lambda: {a: [] for a in ContentAge}
    )
    # a candidate with mixed images sits in both rating buckets
    by_rating: Dict[ContentRating, List[ScoredCandidate]] = field(
        default_factory=lambda: {r: [] for r in ContentRating}
    )
    age_of: Dict[str, ContentAge] = field(default_factory=dict)


@dataclass
class DiversityStats:
    targets: Dict[str, Dict[str, int]] = field(default_factory=dict)
    phase_picks: Dict[str, int] = field(
        default_factory=lambda: {"gender": 0, "age": 0, "backfill": 0}
    )
    passthrough: bool = False


def group_by_diversity(
    scored: Sequence[ScoredCandidate],
    constants: TimeConstants | None = None,
    *,
    now: datetime | None = None,
) -> DiversityGroups:
    groups = DiversityGroups()
    for sc in scored:
        c = sc.candidate
        groups.by_gender[c.gender_bucket].append(sc)

        age = categorize_content_age(c.content_date, constants, now=now)
        groups.by_age[age].append(sc)
        groups.age_of[c.id] = age

        if has_nsfw_content(c):
            groups.by_rating[ContentRating.NSFW].append(sc)
        if has_sfw_content(c):
            groups.by_rating[ContentRating.SFW].append(sc)
    return groups


def calculate_targets(config: Mapping[str, float], total: int) -> Dict[str, int]:
    """
    Integer quota per bucket summing exactly to total. Floors first, then the
    remainder goes to the buckets with the largest share, cycling if needed.
    """
    if total < 0:
        raise InvalidCountError(f"total must be >= 0, got {total}")
    if not config:
        return {}
    keys = list(config)
    shares = {k: max(0.0, float(config[k] or 0.0)) for k in keys}
    share_sum = sum(shares.values())
    if share_sum <= 0:
        shares = {k: 1.0 / len(keys) for k in keys}
    else:
        shares = {k: v / share_sum for k, v in shares.items()}

    # epsilon keeps 0.35 * 20 from flooring to 6 after normalization drift
    targets = {k: math.floor(total * shares[k] + _EPS) for k in keys}
    by_share = sorted(keys, key=lambda k: shares[k], reverse=True)

    remainder = total - sum(targets.values())
    i = 0
    while remainder > 0:
        targets[by_share[i % len(by_share)]] += 1
        remainder -= 1
        i += 1
    # rounding can overshoot; take it back from the smallest shares
    while remainder < 0:
        for k in reversed(by_share):
            if remainder >= 0:
                break
            if targets[k] > 0:
                targets[k] -= 1
                remainder += 1
    return targets


def _member(enum_cls, key):
    try:
        return enum_cls(key)
    except ValueError:
        return None


def diversify(
    scored: Sequence[ScoredCandidate],
    count: int,
    snapshot: ViewerPreferenceSnapshot | None = None,
    *,
    config: DiversityConfig | None = None,
    constants: TimeConstants | None = None,
    weights: Weights | None = None,
    rng: Rng | None = None,
    now: datetime | None = None,
) -> tuple[List[Candidate], DiversityStats]:
    if count <= 0:
        raise InvalidCountError(f"count must be positive, got {count}")

    stats = DiversityStats()
    pool = dedupe_scored(scored)
    if len(pool) <= count:
        stats.passthrough = True
        return [sc.candidate for sc in pool], stats

    cfg = config or DiversityConfig.default()
    if snapshot is not None and snapshot.preferred_genders:
        cfg = cfg.with_gender_preferences(snapshot.preferred_genders)
    w = weights or Weights.default()
    r = resolve_rng(rng)
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)

    groups = group_by_diversity(pool, constants, now=now)
    gender_targets = calculate_targets(cfg.gender, count)
    age_targets = calculate_targets(cfg.content_age, count)
    stats.targets = {
        "gender": gender_targets,
        "age": age_targets,
        # reported only; rating mix is not enforced
        "rating": calculate_targets(cfg.content_rating, count),
    }

    selected: List[ScoredCandidate] = []
    selected_ids: set[str] = set()

    def pick(group: Sequence[ScoredCandidate], target: int) -> int:
        n = min(target, count - len(selected))
        if n <= 0:
            return 0
        ranked = [sc for sc in rank_by_score(group) if sc.id not in selected_ids]
        ranked = ranked[: n * w.pool_multiplier]
        picks = sample_without_replacement(ranked, [sc.score for sc in ranked], n, rng=r)
        for sc in picks:
            selected.append(sc)
            selected_ids.add(sc.id)
        return len(picks)

    # Phase 1: gender quotas
    for gender, target in gender_targets.items():
        g = _member(Gender, gender)
        if g is not None:
            stats.phase_picks["gender"] += pick(groups.by_gender[g], target)

    # Phase 2: top up under-represented content ages
    for age, target in age_targets.items():
        bucket_age = _member(ContentAge, age)
        if bucket_age is None:
            continue
        current = sum(1 for sc in selected if groups.age_of.get(sc.id) == bucket_age)
        if current < target:
            stats.phase_picks["age"] += pick(groups.by_age[bucket_age], target - current)

    # Phase 3: backfill by score
    for sc in rank_by_score(pool):
        if len(selected) >= count:
            break
        if sc.id not in selected_ids:
            selected.append(sc)
            selected_ids.add(sc.id)
            stats.phase_picks["backfill"] += 1

    return [sc.candidate for sc in r.shuffled(selected)], stats


def select_diverse(
    scored: Sequence[ScoredCandidate],
    count: int,
    snapshot: ViewerPreferenceSnapshot | None = None,
    *,
    config: DiversityConfig | None = None,
    constants: TimeConstants | None = None,
    weights: Weights | None = None,
    rng: Rng | None = None,
    now: datetime | None = None,
) -> List[Candidate]:
    """
    Quota-balanced selection across gender and content age, backfilled by
    score and shuffled. Output has no repeated ids and min(count, len) items.
    """
    out, _ = diversify(
        scored,
        count,
        snapshot,
        config=config,
        constants=constants,
        weights=weights,
        rng=rng,
        now=now,
    )
    return out
