"""
finsim/random_source.py
-----------------------
Injectable source of standard-normal shocks for the Monte Carlo routines.

Production code uses a fresh, OS-seeded generator per sampler; tests pass
``NormalSampler.seeded(...)`` for reproducible paths.
"""

from __future__ import annotations

from typing import Optional, Tuple, Union

import numpy as np


class NormalSampler:
    """
    Standard-normal draws via the Box–Muller transform::

        z = √(−2 · ln U₁) · cos(2π U₂)

    Draws are produced in whole batches (one array per simulated month)
    so every path is sampled in a single vectorised step.
    """

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self._rng = rng if rng is not None else np.random.default_rng()

    @classmethod
    def seeded(cls, seed: int) -> "NormalSampler":
        """Deterministic sampler for tests and audits."""
        return cls(np.random.default_rng(seed))

    def uniform(self, size: Union[int, Tuple[int, ...]]) -> np.ndarray:
        """Uniform draws on [0, 1)."""
        return self._rng.random(size)

    def standard_normal(self, size: Union[int, Tuple[int, ...]]) -> np.ndarray:
        # 1 − U keeps U₁ in (0, 1] so the log is always finite
        u1 = 1.0 - self.uniform(size)
        u2 = self.uniform(size)
        return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)
