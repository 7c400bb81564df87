"""x-coordinate strategies for Shamir sharing.

x = 0 is never issued: f(0) is the secret itself.  Within one sharing all
coordinates are distinct.

* ``SequentialCoordinates``: 1, 2, …, n.  Deterministic, smallest values.
* ``RandomCoordinates``: distinct uniform nonzero field elements.
* ``SeededCoordinates``: reproducible but unpredictable without the
  seed.  The same seeded RNG also draws the polynomial coefficients, so a
  whole ``share`` call is deterministic for a given seed.
"""

from __future__ import annotations

import random
import secrets
from typing import List, Optional, Protocol, Tuple

from beaver.config import PRIME


class CoordinateStrategy(Protocol):
    def draw(self, n: int) -> Tuple[List[int], Optional[random.Random]]:
        """Return n distinct nonzero x-coordinates and the coefficient RNG.

        A ``None`` RNG means coefficients come from the CSPRNG.
        """
        ...


def _distinct_nonzero(n: int, sample) -> List[int]:
    seen: set = set()
    xs: List[int] = []
    while len(xs) < n:
        x = 1 + sample(PRIME - 1)
        if x not in seen:
            seen.add(x)
            xs.append(x)
    return xs


class SequentialCoordinates:
    def draw(self, n: int) -> Tuple[List[int], Optional[random.Random]]:
        return list(range(1, n + 1)), None


class RandomCoordinates:
    def draw(self, n: int) -> Tuple[List[int], Optional[random.Random]]:
        return _distinct_nonzero(n, secrets.randbelow), None


class SeededCoordinates:
    def __init__(self, seed: int | str | bytes) -> None:
        self.seed = seed

    def draw(self, n: int) -> Tuple[List[int], Optional[random.Random]]:
        rng = random.Random(self.seed)
        return _distinct_nonzero(n, rng.randrange), rng


SEQUENTIAL = SequentialCoordinates()
