from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from feedseq_core.config import TrackingConfig
from feedseq_core.errors import ViewerStateError
from feedseq_core.parsing import parse_timestamp, to_epoch_ms

log = logging.getLogger(__name__)

STATE_VERSION = 1


def _timestamp_map(v: Any) -> dict[str, datetime]:
    if not isinstance(v, dict):
        return {}
    out: dict[str, datetime] = {}
    for k, ts in v.items():
        parsed = parse_timestamp(ts)
        if parsed is not None:
            out[str(k)] = parsed
    return out


class ViewerState(BaseModel):
    """
    Per-viewer seen/tag state. Persisted by the host: a database document for
    registered viewers, a client-side blob for anonymous ones.
    Instances are never mutated; updates return a new state.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    version: int = STATE_VERSION
    seen_characters: dict[str, datetime] = Field(default_factory=dict, alias="seenCharacters")
    # ordered, de-duplicated; oldest first
    seen_images: dict[str, list[str]] = Field(default_factory=dict, alias="seenImages")
    tag_preferences: dict[str, float] = Field(default_factory=dict, alias="tagPreferences")
    preferred_tags: list[str] = Field(default_factory=list, alias="preferredTags")
    served_characters: dict[str, datetime] = Field(
        default_factory=dict, alias="servedCharacters"
    )
    last_updated: datetime | None = Field(default=None, alias="lastUpdated")

    @field_validator("seen_characters", "served_characters", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Any) -> dict[str, datetime]:
        return _timestamp_map(v)

    @field_validator("last_updated", mode="before")
    @classmethod
    def _coerce_updated(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @field_validator("seen_images", mode="before")
    @classmethod
    def _coerce_images(cls, v: Any) -> dict[str, list[str]]:
        if not isinstance(v, dict):
            return {}
        out: dict[str, list[str]] = {}
        for k, ids in v.items():
            if not isinstance(ids, (list, tuple, set)):
                continue
            out[str(k)] = list(dict.fromkeys(str(i) for i in ids if i is not None))
        return out

    @field_validator("tag_preferences", mode="before")
    @classmethod
    def _coerce_prefs(cls, v: Any) -> dict[str, float]:
        if not isinstance(v, dict):
            return {}
        out: dict[str, float] = {}
        for tag, weight in v.items():
            try:
                out[str(tag).lower()] = float(weight)
            except (TypeError, ValueError):
                continue
        return out

    @field_validator("preferred_tags", mode="before")
    @classmethod
    def _coerce_tags(cls, v: Any) -> list[str]:
        if not isinstance(v, (list, tuple)):
            return []
        return [t.lower() for t in v if isinstance(t, str) and t.strip()]

    @field_serializer("seen_characters", "served_characters", when_used="json")
    def _epoch_ms(self, v: dict[str, datetime]) -> dict[str, int]:
        # client trackers store Date.now() values
        return {k: to_epoch_ms(ts) for k, ts in v.items()}

    @field_serializer("last_updated", when_used="json")
    def _updated_ms(self, v: datetime | None) -> int | None:
        return to_epoch_ms(v) if v is not None else None

    def last_seen(self, candidate_id: str) -> datetime | None:
        return self.seen_characters.get(candidate_id)

    def seen_image_ids(self, candidate_id: str) -> list[str]:
        return self.seen_images.get(candidate_id, [])


def _reject(message: str, strict: bool, exc: Exception | None = None) -> ViewerState:
    if strict:
        raise ViewerStateError(message) from exc
    log.warning("Ignoring viewer state: %s", message)
    return ViewerState()


def parse_viewer_state(
    blob: Any,
    *,
    tracking: TrackingConfig | None = None,
    strict: bool = False,
) -> ViewerState:
    """
    Read a state blob as sent by a client header or loaded from storage.
    Unusable input yields an empty state unless strict=True.
    """
    t = tracking or TrackingConfig.default()
    if blob is None or blob == "" or blob == b"":
        return ViewerState()
    if isinstance(blob, ViewerState):
        return blob
    if isinstance(blob, bytes):
        if len(blob) > t.max_state_bytes:
            return _reject(f"state blob exceeds {t.max_state_bytes} bytes", strict)
        try:
            blob = blob.decode("utf-8")
        except UnicodeDecodeError as e:
            return _reject("state blob is not utf-8", strict, e)
    if isinstance(blob, str):
        if len(blob.encode("utf-8")) > t.max_state_bytes:
            return _reject(f"state blob exceeds {t.max_state_bytes} bytes", strict)
        try:
            blob = json.loads(blob)
        except json.JSONDecodeError as e:
            return _reject("state blob is not valid JSON", strict, e)
    if not isinstance(blob, dict):
        return _reject(f"unexpected state type {type(blob).__name__}", strict)

    version = blob.get("version", STATE_VERSION)
    if version != STATE_VERSION:
        return _reject(f"state version {version!r} != {STATE_VERSION}", strict)
    try:
        return ViewerState.model_validate(blob)
    except ValidationError as e:
        return _reject("state failed validation", strict, e)


def dump_viewer_state(state: ViewerState) -> str:
    return state.model_dump_json(by_alias=True)


def merge_served(state: ViewerState, client_state: Any = None) -> ViewerState:
    """
    Fold served-but-unviewed candidates into seen_characters, keeping the
    newer time. `client_state` is a session blob (or parsed state) whose
    served ids are folded in too, for viewers whose `state` came from storage.
    """
    served = dict(state.served_characters)
    if client_state is not None:
        for cid, served_at in parse_viewer_state(client_state).served_characters.items():
            if cid not in served or served_at > served[cid]:
                served[cid] = served_at
    if not served:
        return state
    seen = dict(state.seen_characters)
    for cid, served_at in served.items():
        existing = seen.get(cid)
        if existing is None or served_at > existing:
            seen[cid] = served_at
    return state.model_copy(update={"seen_characters": seen})
