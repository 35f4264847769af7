from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Callable, List, Sequence

import numpy as np

from feedseq_core.config import (
    DiversityConfig,
    SequencerSettings,
    TimeConstants,
    TrackingConfig,
    Weights,
)
from feedseq_core.errors import InvalidCountError
from feedseq_core.parsing import as_utc
from feedseq_core.rng import NumpyRng, Rng, resolve_rng
from feedseq_core.types import Candidate, ViewerPreferenceSnapshot
from feedseq_logging.logger import configure_logging
from feedseq_logging.selection_logger import SelectionLog, SelectionLogger
from feedseq_ranking.diversification import diversify
from feedseq_ranking.sampler import dedupe_scored, select_top
from feedseq_ranking.scoring import score_candidates
from feedseq_ranking.types import ScoredCandidate
from feedseq_user.signals import expire_tag_preferences
from feedseq_user.state import ViewerState, merge_served

from .cold_start import CandidateStore, cold_start_pool
from .images import rotate_all


def exclude_recently_seen(
    scored: Sequence[ScoredCandidate],
    state: ViewerState,
    limit: int,
    constants: TimeConstants,
    now: datetime,
) -> tuple[List[ScoredCandidate], int, int]:
    """
    Drop candidates seen inside the recently-seen window. If that leaves
    fewer than `limit`, re-admit the excluded ones, least recently seen first.
    Returns (kept, excluded_count, readmitted_count).
    """
    threshold = now - constants.recently_seen
    kept: List[ScoredCandidate] = []
    recent: List[ScoredCandidate] = []
    for sc in scored:
        last = state.last_seen(sc.id)
        if last is None or last < threshold:
            kept.append(sc)
        else:
            recent.append(sc)

    readmitted = 0
    if len(kept) < limit and recent:
        recent.sort(key=lambda sc: state.last_seen(sc.id))
        extra = recent[: limit - len(kept)]
        kept.extend(extra)
        readmitted = len(extra)
    return kept, len(recent), readmitted


def sequence_candidates(
    candidates: Sequence[Candidate],
    state: ViewerState | None = None,
    *,
    limit: int = 20,
    exclude_recent: bool = True,
    use_diversity: bool = True,
    snapshot: ViewerPreferenceSnapshot | None = None,
    client_state: Any = None,
    time_constants: TimeConstants | None = None,
    weights: Weights | None = None,
    diversity: DiversityConfig | None = None,
    tracking: TrackingConfig | None = None,
    rng: Rng | None = None,
    now: datetime | None = None,
    viewer_id: str | None = None,
    selection_logger: SelectionLogger | None = None,
) -> List[Candidate]:
    """
    Score -> (exclude recent) -> diverse or top-N selection -> image rotation.
    Never returns an empty page while any candidate exists.

    `client_state` carries served ids from a session blob when `state` was
    loaded from storage; they count as seen for this call.
    """
    if limit <= 0:
        raise InvalidCountError(f"limit must be positive, got {limit}")

    c = time_constants or TimeConstants.default()
    w = weights or Weights.default()
    r = resolve_rng(rng)
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    st = merge_served(state or ViewerState(), client_state)
    st = expire_tag_preferences(st, tracking=tracking, now=now)
    slog = selection_logger or SelectionLogger()

    if not candidates:
        slog.log_selection(
            SelectionLog(mode="empty", viewer_id=viewer_id, pool_size=0, limit=limit, returned=0)
        )
        return []

    scored = dedupe_scored(
        score_candidates(
            candidates, st, snapshot=snapshot, constants=c, weights=w, rng=r, now=now
        )
    )

    pool, excluded, readmitted = scored, 0, 0
    if exclude_recent and st.seen_characters:
        pool, excluded, readmitted = exclude_recently_seen(scored, st, limit, c, now)

    entry = SelectionLog(
        mode="diverse" if use_diversity else "top",
        viewer_id=viewer_id,
        pool_size=len(scored),
        excluded_recent=excluded,
        readmitted_recent=readmitted,
        limit=limit,
        returned=0,
        has_snapshot=snapshot is not None,
    )
    if use_diversity:
        selected, stats = diversify(
            pool,
            limit,
            snapshot,
            config=diversity,
            constants=c,
            weights=w,
            rng=r,
            now=now,
        )
        entry.targets = stats.targets
        entry.phase_picks = stats.phase_picks
    else:
        selected = select_top(pool, limit, weights=w, rng=r)

    out = rotate_all(selected, st)
    entry.returned = len(out)
    slog.log_selection(entry, scored, {cand.id for cand in out})
    return out


class FeedSequencer:
    """
    Settings-bound entry point for hosts serving explore pages.

    Safe to share between threads: every call draws from its own generator,
    spawned from one SeedSequence so a fixed rng_seed stays reproducible.
    """

    def __init__(
        self,
        settings: SequencerSettings | None = None,
        *,
        weights: Weights | None = None,
        diversity: DiversityConfig | None = None,
        tracking: TrackingConfig | None = None,
        rng_factory: Callable[[], Rng] | None = None,
        selection_logger: SelectionLogger | None = None,
    ):
        self.settings = settings or SequencerSettings()
        self.weights = weights or Weights.default()
        self.diversity = diversity or DiversityConfig.default()
        self.tracking = tracking or TrackingConfig.default()
        self.selection_logger = selection_logger or SelectionLogger()
        self._rng_factory = rng_factory
        self._seed = np.random.SeedSequence(self.settings.rng_seed)
        self._seed_lock = threading.Lock()
        configure_logging(self.settings.log_level)

    def _call_rng(self) -> Rng:
        if self._rng_factory is not None:
            return self._rng_factory()
        with self._seed_lock:
            (child,) = self._seed.spawn(1)
        return NumpyRng(child)

    def _limit(self, limit: int | None) -> int:
        return self.settings.limit if limit is None else limit

    def sequence(
        self,
        candidates: Sequence[Candidate],
        state: ViewerState | None = None,
        *,
        snapshot: ViewerPreferenceSnapshot | None = None,
        client_state: Any = None,
        anonymous: bool = False,
        limit: int | None = None,
        viewer_id: str | None = None,
        now: datetime | None = None,
    ) -> List[Candidate]:
        constants = (
            TimeConstants.anonymous() if anonymous else self.settings.time_constants()
        )
        return sequence_candidates(
            candidates,
            state,
            limit=self._limit(limit),
            exclude_recent=self.settings.exclude_recent,
            use_diversity=self.settings.use_diversity,
            # snapshots only exist for registered viewers
            snapshot=None if anonymous else snapshot,
            client_state=client_state,
            time_constants=constants,
            weights=self.weights,
            diversity=self.diversity,
            tracking=self.tracking,
            rng=self._call_rng(),
            now=now,
            viewer_id=viewer_id,
            selection_logger=self.selection_logger,
        )

    def cold_start(self, store: CandidateStore, limit: int | None = None) -> List[str]:
        return cold_start_pool(
            store,
            self._limit(limit),
            multiplier=self.settings.cold_start_multiplier,
            rng=self._call_rng(),
        )
