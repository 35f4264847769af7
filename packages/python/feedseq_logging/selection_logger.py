from __future__ import annotations

import logging
from typing import Sequence

from pydantic import BaseModel, Field

from feedseq_ranking.types import ScoredCandidate

log = logging.getLogger("feedseq.selection")


class ScoreTrace(BaseModel):
    candidate_id: str
    score: float
    factors: dict[str, float] = Field(default_factory=dict)
    selected: bool = False


class SelectionLog(BaseModel):
    mode: str  # "diverse" | "top" | "empty"
    viewer_id: str | None = None
    pool_size: int
    excluded_recent: int = 0
    readmitted_recent: int = 0
    limit: int
    returned: int
    targets: dict[str, dict[str, int]] = Field(default_factory=dict)
    phase_picks: dict[str, int] = Field(default_factory=dict)
    has_snapshot: bool = False


class SelectionLogger:
    """
    Emits one summary line per ranking call, plus per-candidate score traces
    at DEBUG. Never affects the ranking itself.
    """

    def __init__(self, logger: logging.Logger | None = None, *, enabled: bool = True):
        self.logger = logger or log
        self.enabled = enabled

    def _enabled(self, level: int) -> bool:
        return self.enabled and self.logger.isEnabledFor(level)

    @staticmethod
    def traces(
        scored: Sequence[ScoredCandidate], selected_ids: set[str]
    ) -> list[ScoreTrace]:
        return [
            ScoreTrace(
                candidate_id=sc.id,
                score=sc.score,
                factors=dict(sc.breakdown.factors) if sc.breakdown else {},
                selected=sc.id in selected_ids,
            )
            for sc in scored
        ]

    def log_selection(
        self,
        entry: SelectionLog,
        scored: Sequence[ScoredCandidate] = (),
        selected_ids: set[str] | None = None,
    ) -> None:
        if self._enabled(logging.INFO):
            self.logger.info("selection %s", entry.model_dump_json(exclude_none=True))
        if scored and self._enabled(logging.DEBUG):
            for row in self.traces(scored, selected_ids or set()):
                self.logger.debug("score %s", row.model_dump_json())
