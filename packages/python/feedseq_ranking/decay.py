from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from feedseq_core.config import TimeConstants, Weights
from feedseq_core.parsing import as_utc
from feedseq_core.types import ContentAge


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def decay_multiplier(
    last_seen: datetime | None,
    constants: TimeConstants | None = None,
    weights: Weights | None = None,
    *,
    now: datetime | None = None,
) -> float:
    """Penalty for candidates the viewer has already seen; older sightings cost less."""
    if last_seen is None:
        return 1.0
    c = constants or TimeConstants.default()
    w = weights or Weights.default()
    age = _now(now) - as_utc(last_seen)

    if age < c.recently_seen:
        return w.recently_seen
    if age < c.short_term:
        return w.short_term_seen
    if age < c.medium_term:
        return w.medium_term_seen
    return 1.0


def freshness_boost(
    created_at: datetime | None,
    constants: TimeConstants | None = None,
    weights: Weights | None = None,
    *,
    now: datetime | None = None,
) -> float:
    if created_at is None:
        return 1.0
    c = constants or TimeConstants.default()
    w = weights or Weights.default()
    if _now(now) - as_utc(created_at) < c.fresh_content:
        return w.fresh_content
    return 1.0


def tag_relevance(
    candidate_tags: Iterable[str] | None,
    preferred_tags: Iterable[str] | None,
    weights: Weights | None = None,
) -> float:
    """
    1.0 + share of the candidate's tags the viewer prefers, scaled by
    (tag_match - 1). Many loosely matching tags dilute the boost.
    """
    tags = [t for t in (candidate_tags or []) if isinstance(t, str)]
    preferred = {t.lower() for t in (preferred_tags or []) if isinstance(t, str)}
    if not tags or not preferred:
        return 1.0
    w = weights or Weights.default()
    matches = sum(1 for t in tags if t.lower() in preferred)
    if matches == 0:
        return 1.0
    return 1.0 + matches * (w.tag_match - 1.0) / len(tags)


def categorize_content_age(
    content_date: datetime | None,
    constants: TimeConstants | None = None,
    *,
    now: datetime | None = None,
) -> ContentAge:
    # undated content is treated as old
    if content_date is None:
        return ContentAge.OLD
    c = constants or TimeConstants.default()
    age = _now(now) - as_utc(content_date)
    if age < c.fresh_content:
        return ContentAge.RECENT
    if age < c.old_content:
        return ContentAge.MIDDLE
    return ContentAge.OLD
