"""
random_source.py
~~~~~~~~~~~~~~~~

Seedable source of uniform random numbers used for weight initialization.
"""

from typing import Optional, Tuple, Union

import numpy as np


class RandomSource:
    """
    Uniform random draws on the half-open interval [lower, upper).

    Without a seed the generator is initialized from OS entropy and draws
    are not reproducible. Passing an integer seed makes every draw
    (and therefore every weight matrix built from it) repeatable.
    """

    def __init__(
        self,
        lower: float = 0.0,
        upper: float = 1.0,
        seed: Optional[int] = None
    ):
        if not lower < upper:
            raise ValueError(
                f"lower bound must be below upper bound, got [{lower}, {upper})"
            )
        self.lower = float(lower)
        self.upper = float(upper)
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def draw(self) -> float:
        """Return a single uniform draw."""
        return float(self._rng.uniform(self.lower, self.upper))

    def draw_matrix(self, shape: Union[int, Tuple[int, ...]]) -> np.ndarray:
        """Return an array of independent uniform draws with the given shape."""
        return self._rng.uniform(self.lower, self.upper, size=shape)

    def __repr__(self) -> str:
        return f"RandomSource(lower={self.lower}, upper={self.upper}, seed={self.seed})"
