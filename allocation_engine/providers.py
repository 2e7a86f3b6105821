"""Random-source protocol for the simulation modules.

Simulations never touch a global generator. Callers inject a ``RandomSource``
(or a seed); tests pass a fixed seed for reproducible draws.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Union, runtime_checkable

import numpy as np


@runtime_checkable
class RandomSource(Protocol):
    def standard_normal(self, size) -> np.ndarray: ...
    def standard_t(self, df: float, size) -> np.ndarray: ...
    def spawn(self, n: int) -> List["RandomSource"]: ...


class NumpyRandomSource:
    """``RandomSource`` backed by ``numpy.random.Generator``.

    ``spawn`` derives statistically independent child streams from the same
    ``SeedSequence``, so parallel workers never share a generator.
    """

    def __init__(self, seed: Union[int, np.random.SeedSequence, None] = None):
        if isinstance(seed, np.random.SeedSequence):
            self._seed_seq = seed
        else:
            self._seed_seq = np.random.SeedSequence(seed)
        self._rng = np.random.default_rng(self._seed_seq)

    def standard_normal(self, size) -> np.ndarray:
        return self._rng.standard_normal(size)

    def standard_t(self, df: float, size) -> np.ndarray:
        return self._rng.standard_t(df, size)

    def spawn(self, n: int) -> List["NumpyRandomSource"]:
        return [NumpyRandomSource(child) for child in self._seed_seq.spawn(n)]


def resolve_random_source(
    random_source: Optional[RandomSource] = None,
    seed: Optional[int] = None,
) -> RandomSource:
    """Injected source wins; otherwise a fresh numpy source from ``seed`` (``None`` = OS entropy)."""
    if random_source is not None:
        if not isinstance(random_source, RandomSource):
            raise TypeError(f"random_source does not implement RandomSource: {type(random_source)!r}")
        return random_source
    return NumpyRandomSource(seed)
