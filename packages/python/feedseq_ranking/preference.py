from __future__ import annotations

import math

from feedseq_core.config import Weights
from feedseq_core.types import Candidate, ViewerPreferenceSnapshot, has_nsfw_content

GENDER_MIN_FRACTION = 0.3  # weaker preferences are ignored
GENDER_FULL_FRACTION = 0.5
TYPE_BOOST_STEP = 0.3
TYPE_BOOST_CAP = 2.0
RATING_BOOST = 1.2
NSFW_HIGH = 0.5
NSFW_LOW = 0.3


def gender_boost(candidate: Candidate, snapshot: ViewerPreferenceSnapshot, weights: Weights) -> float:
    frac = snapshot.preferred_genders.get(candidate.gender_bucket.value, 0.0)
    if frac <= GENDER_MIN_FRACTION:
        return 1.0
    if frac > GENDER_FULL_FRACTION:
        return weights.user_preference_match
    return 1.0 + frac * (weights.user_preference_match - 1.0)


def character_type_boost(candidate: Candidate, snapshot: ViewerPreferenceSnapshot) -> float:
    preferred = {t.lower() for t in snapshot.preferred_character_types}
    if not preferred or not candidate.tags:
        return 1.0
    matches = sum(1 for t in candidate.tags if t.lower() in preferred)
    if matches == 0:
        return 1.0
    # log scale so a tag-heavy character cannot dominate
    return min(TYPE_BOOST_CAP, 1.0 + math.log2(matches + 1) * TYPE_BOOST_STEP)


def rating_boost(candidate: Candidate, snapshot: ViewerPreferenceSnapshot) -> float:
    pref = snapshot.nsfw_preference
    if pref is None:
        return 1.0
    nsfw = has_nsfw_content(candidate)
    if pref > NSFW_HIGH and nsfw:
        return RATING_BOOST
    if pref < NSFW_LOW and not nsfw:
        return RATING_BOOST
    return 1.0


def preference_boost(
    candidate: Candidate,
    snapshot: ViewerPreferenceSnapshot | None,
    weights: Weights | None = None,
) -> float:
    """
    Multiplier from the nightly preference snapshot. Not a probability:
    the three factors multiply without normalization.
    """
    if snapshot is None:
        return 1.0
    w = weights or Weights.default()
    return (
        gender_boost(candidate, snapshot, w)
        * character_type_boost(candidate, snapshot)
        * rating_boost(candidate, snapshot)
    )
