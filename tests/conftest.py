from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Sequence

import pytest

from feedseq_core.rng import NumpyRng
from feedseq_core.types import Candidate
from feedseq_ranking.types import ScoreBreakdown, ScoredCandidate

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class ScriptedRng:
    """Deterministic Rng: replays `draws` for random(), midpoint for uniform(), identity shuffle."""

    def __init__(self, draws: Sequence[float] = (0.5,)):
        self._draws = list(draws)
        self._i = 0
        self.random_calls = 0

    def random(self) -> float:
        v = self._draws[self._i % len(self._draws)]
        self._i += 1
        self.random_calls += 1
        return v

    def uniform(self, low: float, high: float) -> float:
        return (low + high) / 2.0

    def shuffled(self, items):
        return list(items)


class FakeCandidateStore:
    def __init__(self, ids: List[str]):
        self._ids = ids
        self.captured: Dict[str, Any] = {}

    def popular_recent(self, limit: int) -> List[str]:
        self.captured["limit"] = limit
        return self._ids[:limit]


def make_candidate(cid: str, **overrides: Any) -> Candidate:
    doc: Dict[str, Any] = {
        "chatId": cid,
        "chatTags": [],
        "gender": "female",
        "chatCreatedAt": NOW - timedelta(days=200),
        "images": [],
        "imageCount": 1,
    }
    doc.update(overrides)
    return Candidate.model_validate(doc)


def make_scored(cid: str, score: float = 1.0, **overrides: Any) -> ScoredCandidate:
    return ScoredCandidate(
        candidate=make_candidate(cid, **overrides),
        score=score,
        breakdown=ScoreBreakdown(factors={"base": score}),
    )


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def scripted_rng() -> ScriptedRng:
    return ScriptedRng()


@pytest.fixture()
def seeded_rng() -> NumpyRng:
    return NumpyRng(seed=1234)
