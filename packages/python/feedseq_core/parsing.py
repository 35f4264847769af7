from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

# Raw gender labels arrive free-form from character documents
_FEMALE = {"female", "woman", "girl", "feminine", "f"}
_MALE = {"male", "man", "boy", "masculine", "m"}
_NONBINARY = {
    "non-binary",
    "nonbinary",
    "non binary",
    "enby",
    "genderqueer",
    "genderfluid",
    "agender",
    "other",
    "nb",
    "trans",
    "transgender",
}

_TRUTHY_FLAGS = {"true", "on"}

# pydantic's own cut-over between epoch seconds and epoch milliseconds
_EPOCH_MS_THRESHOLD = 2e10


def parse_tri_state(value: Any) -> bool:
    """
    Rating flags are stored as True, "true" or "on" depending on which
    upload path wrote them. Anything else reads as False.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_FLAGS
    return False


def normalize_gender(raw: Any) -> str:
    if not isinstance(raw, str):
        return "unknown"
    g = raw.strip().lower()
    if g in _FEMALE:
        return "female"
    if g in _MALE:
        return "male"
    if g in _NONBINARY:
        return "nonbinary"
    return "unknown"


def as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _from_epoch(value: float) -> datetime | None:
    seconds = value / 1000.0 if abs(value) >= _EPOCH_MS_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """
    Best-effort timestamp coercion. Accepts datetimes, epoch seconds or
    milliseconds, ISO strings and Mongo extended JSON ({"$date": ...}).
    Returns None for anything it cannot read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if isinstance(value, dict) and "$date" in value:
        return parse_timestamp(value["$date"])
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return _from_epoch(float(s))
        except ValueError:
            pass
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(s))
        except ValueError:
            return None
    return None


def to_epoch_ms(ts: datetime) -> int:
    return int(as_utc(ts).timestamp() * 1000)
