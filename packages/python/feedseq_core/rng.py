from __future__ import annotations

from typing import Protocol, Sequence, TypeVar

import numpy as np

T = TypeVar("T")


class Rng(Protocol):
    """Randomness source used by scoring, sampling and shuffling."""

    def random(self) -> float: ...

    def uniform(self, low: float, high: float) -> float: ...

    def shuffled(self, items: Sequence[T]) -> list[T]: ...


class NumpyRng:
    def __init__(self, seed: int | np.random.SeedSequence | None = None):
        self._gen = np.random.default_rng(seed)

    def random(self) -> float:
        return float(self._gen.random())

    def uniform(self, low: float, high: float) -> float:
        return float(self._gen.uniform(low, high))

    def shuffled(self, items: Sequence[T]) -> list[T]:
        # new list; caller's sequence is left untouched
        return [items[int(i)] for i in self._gen.permutation(len(items))]


def resolve_rng(rng: Rng | None) -> Rng:
    return rng if rng is not None else NumpyRng()
