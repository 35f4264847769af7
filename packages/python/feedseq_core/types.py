from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .parsing import normalize_gender, parse_timestamp, parse_tri_state

CandidateId = str


class Gender(str, Enum):
    FEMALE = "female"
    MALE = "male"
    NONBINARY = "nonbinary"
    UNKNOWN = "unknown"


class ContentAge(str, Enum):
    RECENT = "recent"
    MIDDLE = "middle"
    OLD = "old"


class ContentRating(str, Enum):
    SFW = "sfw"
    NSFW = "nsfw"


def _opt_str(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


class Image(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "_id"))
    url: str | None = Field(
        default=None, validation_alias=AliasChoices("url", "imageUrl", "image_url")
    )
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    nsfw: bool = False

    @field_validator("id", "url", mode="before")
    @classmethod
    def _coerce_str(cls, v: Any) -> str | None:
        return _opt_str(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_ts(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @field_validator("nsfw", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return parse_tri_state(v)

    @property
    def key(self) -> str | None:
        """Identity used for seen-tracking: id, falling back to URL."""
        return self.id or self.url


class Candidate(BaseModel):
    """One discoverable character with its image bundle."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: CandidateId = Field(validation_alias=AliasChoices("id", "chatId", "chat_id", "_id"))
    tags: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("tags", "chatTags")
    )
    gender: str | None = None
    created_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("created_at", "chatCreatedAt", "createdAt"),
    )
    latest_image_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("latest_image_at", "latestImage")
    )
    images: list[Image] = Field(default_factory=list)
    image_count: int | None = Field(
        default=None, validation_alias=AliasChoices("image_count", "imageCount")
    )
    has_new_images: bool = Field(
        default=False, validation_alias=AliasChoices("has_new_images", "hasNewImages")
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> str:
        s = _opt_str(v)
        if s is None:
            raise ValueError("candidate id is required")
        return s

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, (list, tuple, set)):
            return []
        return [t.strip() for t in v if isinstance(t, str) and t.strip()]

    @field_validator("gender", mode="before")
    @classmethod
    def _coerce_gender(cls, v: Any) -> str | None:
        return v if isinstance(v, str) else None

    @field_validator("created_at", "latest_image_at", mode="before")
    @classmethod
    def _coerce_ts(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @field_validator("images", mode="before")
    @classmethod
    def _keep_mappings(cls, v: Any) -> list[Any]:
        if not isinstance(v, (list, tuple)):
            return []
        return [im for im in v if isinstance(im, (dict, Image))]

    @field_validator("images")
    @classmethod
    def _drop_unusable(cls, v: list[Image]) -> list[Image]:
        # no id and no url: cannot be tracked or rendered
        return [im for im in v if im.key]

    @field_validator("image_count", mode="before")
    @classmethod
    def _coerce_count(cls, v: Any) -> int | None:
        try:
            return int(v) if v is not None else None
        except (TypeError, ValueError):
            return None

    @field_validator("has_new_images", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return parse_tri_state(v)

    @property
    def total_images(self) -> int:
        return self.image_count if self.image_count is not None else len(self.images)

    @property
    def gender_bucket(self) -> Gender:
        return Gender(normalize_gender(self.gender))

    @property
    def freshness_date(self) -> datetime | None:
        return self.latest_image_at or self.created_at

    @property
    def content_date(self) -> datetime | None:
        return self.created_at or self.latest_image_at


def has_nsfw_content(candidate: Candidate) -> bool:
    return any(im.nsfw for im in candidate.images)


def has_sfw_content(candidate: Candidate) -> bool:
    return any(not im.nsfw for im in candidate.images)


class ViewerPreferenceSnapshot(BaseModel):
    """Nightly aggregate of a viewer's long-term tastes. Read-only."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    preferred_genders: dict[str, float] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("preferred_genders", "preferredGenders"),
    )
    preferred_character_types: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "preferred_character_types", "preferredCharacterTypes"
        ),
    )
    nsfw_preference: float | None = Field(
        default=None, validation_alias=AliasChoices("nsfw_preference", "nsfwPreference")
    )

    @field_validator("preferred_genders", mode="before")
    @classmethod
    def _coerce_genders(cls, v: Any) -> dict[str, float]:
        if not isinstance(v, dict):
            return {}
        out: dict[str, float] = {}
        for k, frac in v.items():
            try:
                out[str(k).strip().lower()] = float(frac)
            except (TypeError, ValueError):
                continue
        return out

    @field_validator("preferred_character_types", mode="before")
    @classmethod
    def _coerce_types(cls, v: Any) -> list[str]:
        if not isinstance(v, (list, tuple)):
            return []
        return [t for t in v if isinstance(t, str) and t.strip()]

    @field_validator("nsfw_preference", mode="before")
    @classmethod
    def _coerce_nsfw(cls, v: Any) -> float | None:
        try:
            return float(v) if v is not None else None
        except (TypeError, ValueError):
            return None
