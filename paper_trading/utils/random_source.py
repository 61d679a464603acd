"""Seedable pseudo-random source for every stochastic model in the engine."""
from typing import Optional, Sequence, TypeVar

import numpy as np

T = TypeVar("T")


class RandomSource:
    """
    Thin wrapper over ``numpy.random.Generator``.

    Two sources built with the same seed replay the exact same sequence of
    draws, which is what the property tests rely on.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def random(self) -> float:
        """Uniform draw in [0, 1)."""
        return float(self._rng.random())

    def uniform(self, low: float, high: float) -> float:
        if high <= low:
            return float(low)
        return float(self._rng.uniform(low, high))

    def symmetric(self, magnitude: float) -> float:
        """Uniform draw in [-magnitude, +magnitude)."""
        return (self.random() - 0.5) * 2 * magnitude

    def choice(self, items: Sequence[T]) -> T:
        if not items:
            raise ValueError("Cannot choose from an empty sequence")
        return items[int(self._rng.integers(0, len(items)))]

    def hex_token(self, length: int = 64) -> str:
        digits = self._rng.integers(0, 16, size=length)
        return "".join(format(int(d), "x") for d in digits)
