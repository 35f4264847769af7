from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Sequence

from feedseq_core.parsing import as_utc
from feedseq_core.types import Candidate, Image
from feedseq_user.state import ViewerState

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _created(im: Image) -> datetime:
    return as_utc(im.created_at) if im.created_at is not None else _EPOCH


def rotate_images(candidate: Candidate, seen_image_ids: Iterable[str] | None = None) -> Candidate:
    """
    Unseen images first (newest first), then seen ones (oldest first) so
    re-shown images are the ones the viewer saw longest ago.
    """
    if not candidate.images:
        return candidate
    seen = set(seen_image_ids or ())
    unseen = [im for im in candidate.images if im.key not in seen]
    already = [im for im in candidate.images if im.key in seen]
    unseen.sort(key=_created, reverse=True)
    already.sort(key=_created)
    return candidate.model_copy(update={"images": unseen + already})


def rotate_all(candidates: Sequence[Candidate], state: ViewerState) -> list[Candidate]:
    return [rotate_images(c, state.seen_image_ids(c.id)) for c in candidates]
