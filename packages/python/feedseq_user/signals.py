from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping

from feedseq_core.config import TimeConstants, TrackingConfig
from feedseq_core.parsing import as_utc

from .state import ViewerState


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def top_tags(weights: Mapping[str, float], limit: int = 10) -> list[str]:
    # descending weight; ties keep insertion order
    ranked = sorted(weights.items(), key=lambda kv: kv[1], reverse=True)
    return [tag for tag, _ in ranked[:limit]]


def expire_tag_preferences(
    state: ViewerState,
    *,
    tracking: TrackingConfig | None = None,
    now: datetime | None = None,
) -> ViewerState:
    """Forget tag preferences when the state has not been touched for tag_ttl."""
    t = tracking or TrackingConfig.default()
    if state.last_updated is None or not (state.tag_preferences or state.preferred_tags):
        return state
    if as_utc(state.last_updated) >= _now(now) - t.tag_ttl:
        return state
    return state.model_copy(update={"tag_preferences": {}, "preferred_tags": []})


def _purge_stale(
    seen: dict[str, datetime],
    images: dict[str, list[str]],
    served: dict[str, datetime],
    threshold: datetime,
) -> tuple[dict[str, datetime], dict[str, list[str]], dict[str, datetime]]:
    seen = {cid: ts for cid, ts in seen.items() if ts >= threshold}
    # image history lives and dies with its character entry
    images = {cid: ids for cid, ids in images.items() if cid in seen}
    served = {cid: ts for cid, ts in served.items() if ts >= threshold}
    return seen, images, served


def record_view(
    state: ViewerState,
    candidate_id: str,
    image_ids: Iterable[str] = (),
    *,
    constants: TimeConstants | None = None,
    tracking: TrackingConfig | None = None,
    now: datetime | None = None,
) -> ViewerState:
    """
    Mark a candidate (and optionally some of its images) as seen, then drop
    every entry older than the medium-term window.
    """
    c = constants or TimeConstants.default()
    t = tracking or TrackingConfig.default()
    ts = _now(now)
    state = expire_tag_preferences(state, tracking=t, now=ts)
    cid = str(candidate_id)

    seen = dict(state.seen_characters)
    seen[cid] = ts

    images = {k: list(v) for k, v in state.seen_images.items()}
    if isinstance(image_ids, str):
        image_ids = [image_ids]
    new_ids = [str(i) for i in image_ids if i is not None]
    if new_ids:
        merged = list(dict.fromkeys([*images.get(cid, []), *new_ids]))
        images[cid] = merged[-t.seen_image_cap:]

    seen, images, served = _purge_stale(
        seen, images, dict(state.served_characters), ts - c.medium_term
    )
    return state.model_copy(
        update={
            "seen_characters": seen,
            "seen_images": images,
            "served_characters": served,
            "last_updated": ts,
        }
    )


def record_served(
    state: ViewerState,
    candidate_ids: Iterable[str],
    *,
    constants: TimeConstants | None = None,
    tracking: TrackingConfig | None = None,
    now: datetime | None = None,
) -> ViewerState:
    """
    Stamp candidates as served on a page the viewer has not interacted with
    yet. No tag signal; served ids only count as seen through merge_served.
    """
    c = constants or TimeConstants.default()
    t = tracking or TrackingConfig.default()
    ts = _now(now)
    state = expire_tag_preferences(state, tracking=t, now=ts)
    if isinstance(candidate_ids, str):
        candidate_ids = [candidate_ids]

    served = dict(state.served_characters)
    for cid in candidate_ids:
        if cid is not None:
            served[str(cid)] = ts

    seen, images, served = _purge_stale(
        dict(state.seen_characters),
        {k: list(v) for k, v in state.seen_images.items()},
        served,
        ts - c.medium_term,
    )
    return state.model_copy(
        update={
            "seen_characters": seen,
            "seen_images": images,
            "served_characters": served,
            "last_updated": ts,
        }
    )


def record_tag_interaction(
    state: ViewerState,
    tags: Iterable[str] | str,
    strength: float = 1.0,
    *,
    tracking: TrackingConfig | None = None,
    now: datetime | None = None,
) -> ViewerState:
    """
    Credit every tag, recompute the preferred list, then decay all weights once.
    The decay runs once per call, not once per tag.
    """
    t = tracking or TrackingConfig.default()
    ts = _now(now)
    state = expire_tag_preferences(state, tracking=t, now=ts)
    if isinstance(tags, str):
        tags = [tags]
    prefs = dict(state.tag_preferences)
    for tag in tags:
        if not isinstance(tag, str) or not tag.strip():
            continue
        key = tag.strip().lower()
        prefs[key] = prefs.get(key, 0.0) + strength

    preferred = top_tags(prefs, t.preferred_tag_limit)

    decayed = {
        tag: w * t.tag_decay for tag, w in prefs.items() if w * t.tag_decay >= t.tag_floor
    }
    return state.model_copy(
        update={"tag_preferences": decayed, "preferred_tags": preferred, "last_updated": ts}
    )


def record_character_view(
    state: ViewerState,
    candidate_id: str,
    image_ids: Iterable[str] = (),
    tags: Iterable[str] | str = (),
    *,
    constants: TimeConstants | None = None,
    tracking: TrackingConfig | None = None,
    now: datetime | None = None,
) -> ViewerState:
    """A view event: seen-state update plus a weak tag signal."""
    t = tracking or TrackingConfig.default()
    ts = _now(now)
    state = record_view(
        state, candidate_id, image_ids, constants=constants, tracking=t, now=ts
    )
    tags = [tags] if isinstance(tags, str) else list(tags)
    if tags:
        state = record_tag_interaction(
            state, tags, t.view_tag_strength, tracking=t, now=ts
        )
    return state
