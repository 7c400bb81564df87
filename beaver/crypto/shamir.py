"""Shamir (T-of-N) secret sharing over F_p.

API
---
share(secret, threshold, parties)   -> list of Share(x_i, y_i)
reconstruct(shares, threshold)      -> secret   (uses the first T shares)
add_shares / sub_shares / scalar_mul -> Share   (local, no communication)

Addition, subtraction and multiplication by a public scalar keep the
underlying polynomial at degree T-1, so they work directly on shares.
Multiplying two shares pointwise yields a degree 2T-2 polynomial that needs
2T-1 shares to open; that degree blow-up is why secure multiplication goes
through Beaver triples instead (see ``beaver.multiply``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from beaver.crypto import field
from beaver.crypto.coordinates import SEQUENTIAL, CoordinateStrategy
from beaver.crypto.polynomial import Polynomial, interpolate_at
from beaver.errors import InsufficientShares, InvalidSecretShare, InvalidThreshold


@dataclass(frozen=True, order=True)
class Share:
    """One point (x, y) of a sharing polynomial.  x is never 0."""

    x: int
    y: int

    def as_point(self) -> tuple:
        return (self.x, self.y)


def validate_threshold(threshold: int, parties: int) -> None:
    if parties < 1 or threshold < 1 or threshold > parties:
        raise InvalidThreshold(f"Invalid threshold: t={threshold}, n={parties}")


def share(
    secret: int,
    threshold: int,
    parties: int,
    coordinates: Optional[CoordinateStrategy] = None,
) -> List[Share]:
    """Split *secret* into *parties* shares, any *threshold* of which recover it.

    A random polynomial f of degree threshold-1 is chosen with f(0) = secret
    and evaluated at the x-coordinates drawn from *coordinates*
    (1 … n by default).
    """
    validate_threshold(threshold, parties)
    field.validate(secret, "secret")

    strategy = coordinates or SEQUENTIAL
    xs, rng = strategy.draw(parties)
    poly = Polynomial.random(secret, threshold - 1, rng)
    return [Share(x, poly.evaluate(x)) for x in xs]


def reconstruct(shares: Sequence[Share], threshold: int) -> int:
    """Recover the secret by Lagrange interpolation at x=0.

    Exactly the first *threshold* shares are used; extra shares are ignored.
    """
    if threshold < 1:
        raise InvalidThreshold(f"Invalid threshold: t={threshold}")
    if len(shares) < threshold:
        raise InsufficientShares(
            f"Need {threshold} shares to reconstruct, got {len(shares)}"
        )
    return interpolate_at([(s.x, s.y) for s in shares[:threshold]], 0)


def add_shares(a: Share, b: Share) -> Share:
    """Share of the sum of the two underlying secrets."""
    if a.x != b.x:
        raise InvalidSecretShare(f"x-coordinate mismatch: {a.x} != {b.x}")
    return Share(a.x, field.add(a.y, b.y))


def sub_shares(a: Share, b: Share) -> Share:
    """Share of the difference of the two underlying secrets."""
    if a.x != b.x:
        raise InvalidSecretShare(f"x-coordinate mismatch: {a.x} != {b.x}")
    return Share(a.x, field.sub(a.y, b.y))


def scalar_mul(s: Share, scalar: int) -> Share:
    """Share of the underlying secret times a public scalar."""
    return Share(s.x, field.mul(s.y, field.reduce(scalar)))


def add_constant(s: Share, constant: int) -> Share:
    """Share of the underlying secret plus a public constant.

    A public constant is the constant polynomial, so every holder adds it.
    """
    return Share(s.x, field.add(s.y, field.reduce(constant)))


def consistency_check(shares: Sequence[Share], threshold: int) -> bool:
    """True iff all *shares* lie on one polynomial of degree < *threshold*.

    The first *threshold* shares fix the polynomial; every remaining share
    must match its interpolation.  Fails closed on too few or duplicated
    coordinates.
    """
    if threshold < 1 or len(shares) < threshold:
        return False
    if len({s.x for s in shares}) != len(shares) or any(s.x == 0 for s in shares):
        return False
    basis = [(s.x, s.y) for s in shares[:threshold]]
    return all(interpolate_at(basis, s.x) == s.y for s in shares[threshold:])
