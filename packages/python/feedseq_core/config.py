from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class TimeConstants:
    recently_seen: timedelta = timedelta(days=1)  # avoid almost completely
    short_term: timedelta = timedelta(days=7)  # reduced weight
    medium_term: timedelta = timedelta(days=30)  # light penalty, purge horizon
    fresh_content: timedelta = timedelta(days=7)
    old_content: timedelta = timedelta(days=90)

    def __post_init__(self) -> None:
        if not (self.recently_seen < self.short_term < self.medium_term):
            raise ValueError(
                "time windows must satisfy recently_seen < short_term < medium_term"
            )
        if self.fresh_content >= self.old_content:
            raise ValueError("fresh_content must be shorter than old_content")

    @classmethod
    def default(cls) -> "TimeConstants":
        return cls()

    @classmethod
    def anonymous(cls) -> "TimeConstants":
        """Shorter seen-windows for session-only viewers."""
        return cls(
            recently_seen=timedelta(minutes=30),
            short_term=timedelta(hours=6),
            medium_term=timedelta(days=7),
        )


@dataclass(frozen=True)
class Weights:
    tag_match: float = 2.0
    fresh_content: float = 1.5
    popular: float = 1.2
    popular_min_images: int = 10  # strictly more than this many images
    recently_seen: float = 0.1
    short_term_seen: float = 0.5
    medium_term_seen: float = 0.8
    new_images: float = 1.3
    user_preference_match: float = 1.8
    jitter_low: float = 0.9
    jitter_high: float = 1.1
    pool_multiplier: int = 3

    @classmethod
    def default(cls) -> "Weights":
        return cls()


@dataclass(frozen=True)
class TrackingConfig:
    seen_image_cap: int = 50
    preferred_tag_limit: int = 10
    tag_decay: float = 0.95
    tag_floor: float = 0.1
    view_tag_strength: float = 0.5
    tag_ttl: timedelta = timedelta(days=30)  # untouched preferences reset after this
    max_state_bytes: int = 100 * 1024

    @classmethod
    def default(cls) -> "TrackingConfig":
        return cls()


def normalize_distribution(dist: Mapping[str, float]) -> dict[str, float]:
    """
    Clamp negatives to 0 and scale so the values sum to 1.0.
    An all-zero distribution is returned unscaled.
    """
    clamped = {k: max(0.0, float(v or 0.0)) for k, v in dist.items()}
    total = sum(clamped.values())
    if total <= 0 or math.isclose(total, 1.0, abs_tol=1e-9):
        return clamped
    return {k: v / total for k, v in clamped.items()}


class DiversityConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    gender: dict[str, float] = Field(
        default_factory=lambda: {
            "female": 0.45,
            "male": 0.35,
            "nonbinary": 0.15,
            "unknown": 0.05,
        }
    )
    content_age: dict[str, float] = Field(
        default_factory=lambda: {"recent": 0.40, "middle": 0.35, "old": 0.25}
    )
    content_rating: dict[str, float] = Field(
        default_factory=lambda: {"sfw": 0.70, "nsfw": 0.30}
    )

    @field_validator("gender", "content_age", "content_rating")
    @classmethod
    def _normalize(cls, v: dict[str, float]) -> dict[str, float]:
        return normalize_distribution(v)

    @classmethod
    def default(cls) -> "DiversityConfig":
        return cls()

    def with_gender_preferences(
        self,
        preferred_genders: Mapping[str, float] | None,
        *,
        boost: float = 1.3,
        cap: float = 0.6,
    ) -> "DiversityConfig":
        if not preferred_genders:
            return self
        boosted = dict(self.gender)
        for gender, pct in boosted.items():
            if (preferred_genders.get(gender) or 0) > 0:
                boosted[gender] = min(cap, pct * boost)
        return self.model_copy(update={"gender": normalize_distribution(boosted)})


class SequencerSettings(BaseSettings):
    limit: int = 20
    exclude_recent: bool = True
    use_diversity: bool = True
    cold_start_multiplier: int = 2
    rng_seed: int | None = None
    anonymous_windows: bool = False
    log_level: str = "INFO"
    model_config = SettingsConfigDict(
        env_prefix="FEEDSEQ_", env_file=".env", extra="ignore"
    )

    def time_constants(self) -> TimeConstants:
        if self.anonymous_windows:
            return TimeConstants.anonymous()
        return TimeConstants.default()
