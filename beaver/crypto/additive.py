"""Additive (N-of-N) secret sharing over F_p.

The secret is split into N uniformly random values that sum to it; the last
value is computed to force the sum.  Reconstruction is a plain sum.

Unlike Shamir there is no threshold: every one of the N parts is needed,
and any N-1 of them are jointly uniform and say nothing about the secret.
Losing a single part loses the secret, so this scheme trades availability
for simplicity.  It is also the natural shape of a party's local
contribution inside the dealer-free triple protocols, where each party
holds one summand of a, b and c.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from beaver.crypto import field
from beaver.errors import InsufficientShares, InvalidSecretShare, InvalidThreshold


@dataclass(frozen=True)
class AdditiveShare:
    party_id: int
    value: int


def share_additive(secret: int, parties: int) -> List[AdditiveShare]:
    """Split *secret* into *parties* summands (party ids 0 … n-1)."""
    if parties < 1:
        raise InvalidThreshold(f"Need at least one party, got {parties}")
    field.validate(secret, "secret")

    shares: List[AdditiveShare] = []
    total = 0
    for i in range(parties - 1):
        v = field.random_element()
        total = field.add(total, v)
        shares.append(AdditiveShare(i, v))
    shares.append(AdditiveShare(parties - 1, field.sub(secret, total)))
    return shares


def reconstruct_additive(shares: Sequence[AdditiveShare]) -> int:
    """Sum all parts.  The caller must supply every part."""
    if not shares:
        raise InsufficientShares("Need at least one additive share")
    total = 0
    for s in shares:
        total = field.add(total, s.value)
    return total


def add_additive_shares(a: AdditiveShare, b: AdditiveShare) -> AdditiveShare:
    if a.party_id != b.party_id:
        raise InvalidSecretShare(f"party mismatch: {a.party_id} != {b.party_id}")
    return AdditiveShare(a.party_id, field.add(a.value, b.value))


def scalar_mul_additive(s: AdditiveShare, scalar: int) -> AdditiveShare:
    return AdditiveShare(s.party_id, field.mul(s.value, field.reduce(scalar)))
