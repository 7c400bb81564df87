"""Secure multiplication of Shamir-shared values with Beaver triples.

Protocol (computing z = x * y on shares, one triple (a, b, c)):
    1. Round 1:  each party i computes  d_i = x_i - a_i
                                        e_i = y_i - b_i
                 and publishes them.
    2. Open:     everyone reconstructs d = x - a and e = y - b.  These are
                 the only values revealed; a and b are uniform and used
                 once, so d and e say nothing about x and y.
    3. Round 2:  each party computes
                     z_i = c_i + d * b_i + e * a_i + d * e
                 and z_i is its share of x * y.

Why every party adds d*e: a public constant is the constant polynomial,
and Lagrange weights at 0 sum to 1, so adding it to every share adds it
to the secret exactly once.  Adding it at a single party would scale it by
that party's Lagrange weight instead.

The triple is consumed: feeding the same triple to two multiplications
reveals (x - x') and (y - y').
"""

from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

import structlog

from beaver.crypto import field, shamir
from beaver.crypto.shamir import Share
from beaver.errors import InvalidSecretShare, InvalidThreshold, ProtocolError
from beaver.triples.model import BeaverTriple, CompleteBeaverTriple

log = structlog.get_logger()


def masked_differences(x_share: Share, y_share: Share, record: BeaverTriple) -> Tuple[Share, Share]:
    """Party's Round-1 computation: its shares of d = x - a and e = y - b."""
    return shamir.sub_shares(x_share, record.a), shamir.sub_shares(y_share, record.b)


def product_share(d: int, e: int, record: BeaverTriple) -> Share:
    """Party's Round-2 computation: its share of x * y from the opened d, e."""
    z = shamir.add_shares(record.c, shamir.scalar_mul(record.b, d))
    z = shamir.add_shares(z, shamir.scalar_mul(record.a, e))
    return shamir.add_constant(z, field.mul(d, e))


def _align(
    x_shares: Sequence[Share],
    y_shares: Sequence[Share],
    triple: CompleteBeaverTriple,
    threshold: int,
) -> List[BeaverTriple]:
    if threshold < 1:
        raise InvalidThreshold(f"Invalid threshold: t={threshold}")
    if len(x_shares) != len(y_shares):
        raise InvalidThreshold(
            f"Share count mismatch: {len(x_shares)} x-shares, {len(y_shares)} y-shares"
        )
    if len(x_shares) < threshold or len(triple.shares) < threshold:
        raise InvalidThreshold(
            f"Need {threshold} shares, got {len(x_shares)} inputs and "
            f"{len(triple.shares)} triple records"
        )
    by_x: Dict[int, BeaverTriple] = {r.a.x: r for r in triple.shares.values()}
    records = []
    for xs, ys in zip(x_shares, y_shares):
        if xs.x != ys.x:
            raise InvalidSecretShare(f"x-coordinate mismatch: {xs.x} != {ys.x}")
        record = by_x.get(xs.x)
        if record is None or not record.is_consistent():
            raise InvalidSecretShare(f"No consistent triple record at x={xs.x}")
        records.append(record)
    return records


def secure_multiply(
    x_shares: Sequence[Share],
    y_shares: Sequence[Share],
    triple: CompleteBeaverTriple,
    threshold: int,
) -> List[Share]:
    """Shares of x * y, one per input party, in input order."""
    records = _align(x_shares, y_shares, triple, threshold)

    d_shares: List[Share] = []
    e_shares: List[Share] = []
    for xs, ys, record in zip(x_shares, y_shares, records):
        d_i, e_i = masked_differences(xs, ys, record)
        d_shares.append(d_i)
        e_shares.append(e_i)

    d = shamir.reconstruct(d_shares, threshold)
    e = shamir.reconstruct(e_shares, threshold)
    log.debug("beaver_multiply", triple_id=triple.id, parties=len(records))
    return [product_share(d, e, record) for record in records]


def batch_secure_multiply(
    xs: Sequence[Sequence[Share]],
    ys: Sequence[Sequence[Share]],
    triples: Sequence[CompleteBeaverTriple],
    threshold: int,
) -> List[List[Share]]:
    """Pairwise ``secure_multiply`` over equal-length lists."""
    if not len(xs) == len(ys) == len(triples):
        raise ProtocolError(
            f"Batch length mismatch: {len(xs)} x, {len(ys)} y, {len(triples)} triples"
        )
    return [secure_multiply(x, y, t, threshold) for x, y, t in zip(xs, ys, triples)]
