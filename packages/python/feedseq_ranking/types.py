from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict

from feedseq_core.types import Candidate


@dataclass(frozen=True)
class ScoreBreakdown:
    factors: Dict[str, float] = field(default_factory=dict)  # keyed by factor name

    @property
    def total(self) -> float:
        return math.prod(self.factors.values())


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    score: float
    breakdown: ScoreBreakdown | None = None

    @property
    def id(self) -> str:
        return self.candidate.id
