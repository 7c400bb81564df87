"""Polynomials over F_p and Lagrange interpolation.

A Shamir sharing of a secret s with threshold t is the evaluation of a
random polynomial f of degree t-1 with f(0) = s.  Polynomials only live for
the duration of a ``share`` call and are never persisted.
"""

from __future__ import annotations

import random
import secrets
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from beaver.config import PRIME
from beaver.crypto import field

Point = Tuple[int, int]


def _random_coefficient(rng: Optional[random.Random]) -> int:
    if rng is None:
        return secrets.randbelow(PRIME)
    return rng.randrange(PRIME)


@dataclass(frozen=True)
class Polynomial:
    """Coefficients ``[a_0, a_1, ..., a_d]``, lowest degree first."""

    coefficients: Tuple[int, ...]

    @classmethod
    def random(
        cls,
        constant: int,
        degree: int,
        rng: Optional[random.Random] = None,
    ) -> "Polynomial":
        """Polynomial with ``f(0) = constant`` and uniform higher coefficients.

        ``rng`` makes the draw reproducible; ``None`` uses the CSPRNG.
        """
        coeffs = [field.reduce(constant)]
        coeffs.extend(_random_coefficient(rng) for _ in range(degree))
        return cls(tuple(coeffs))

    @property
    def degree(self) -> int:
        return len(self.coefficients) - 1

    @property
    def constant(self) -> int:
        return self.coefficients[0]

    def evaluate(self, x: int) -> int:
        """Evaluate at *x* with Horner's method."""
        result = 0
        for c in reversed(self.coefficients):
            result = field.add(field.mul(result, x), c)
        return result

    def evaluate_many(self, xs: Iterable[int]) -> List[int]:
        return [self.evaluate(x) for x in xs]


def lagrange_coefficient(i: int, xs: Sequence[int], at: int = 0) -> int:
    """Lagrange basis L_i(at) = prod_{j != i} (at - x_j) / (x_i - x_j).

    Raises ``CryptographicError`` when a denominator has no inverse,
    which happens exactly when two x-coordinates coincide.
    """
    xi = xs[i]
    num = 1
    den = 1
    for j, xj in enumerate(xs):
        if j == i:
            continue
        num = field.mul(num, field.sub(at, xj))
        den = field.mul(den, field.sub(xi, xj))
    return field.mul(num, field.inv(den))


def interpolate_at(points: Sequence[Point], x_target: int = 0) -> int:
    """Evaluate the unique interpolating polynomial through *points* at x_target."""
    xs = [x for x, _ in points]
    result = 0
    for i, (_, y) in enumerate(points):
        result = field.add(result, field.mul(y, lagrange_coefficient(i, xs, x_target)))
    return result
