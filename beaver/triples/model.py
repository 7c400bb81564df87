"""Beaver triple model.

A Beaver triple is a tuple (a, b, c) of random field elements with
c = a * b mod p, Shamir-shared among the N parties.  Each party holds one
``BeaverTriple`` record (its shares of a, b and c at its own x-coordinate);
the ``CompleteBeaverTriple`` maps party id -> record for all N parties.

A triple is consumed by exactly one multiplication.  Reusing it reveals
the difference of the two masked operands and breaks secrecy; nothing here
can detect reuse, so it is the caller's responsibility.

Generators
----------
Three interchangeable backends produce triples under different trust
assumptions.  They share no base class; callers depend only on the
``BeaverTripleGenerator`` protocol below:

* ``TrustedPartyBeaverGenerator``: a dealer knows (a, b, c) in the clear.
* ``OLEBeaverGenerator``: dealer-free, pairwise OLE cross terms.
* ``BFVBeaverGenerator``: dealer-free, threshold homomorphic
  encryption with a multi-round message protocol.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field as dc_field, replace
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from beaver.crypto import field, shamir
from beaver.crypto.shamir import Share
from beaver.errors import MPCError

Reference = Tuple[int, int, int]


# -----------------------------------------------------------------------
# Triple ids
# -----------------------------------------------------------------------

_id_lock = threading.Lock()
_id_counter = itertools.count(1)


def next_triple_id() -> int:
    """Process-wide unique triple id; never repeats within a process."""
    with _id_lock:
        return next(_id_counter)


# -----------------------------------------------------------------------
# Per-party record and complete triple
# -----------------------------------------------------------------------


@dataclass(frozen=True)
class BeaverTriple:
    """One party's shares of (a, b, c)."""

    a: Share
    b: Share
    c: Share
    id: int

    def is_consistent(self) -> bool:
        """All three shares sit at the same x-coordinate."""
        return self.a.x == self.b.x == self.c.x

    def get_party_id(self) -> int:
        return self.a.x


@dataclass
class CompleteBeaverTriple:
    """Per-party records for all N parties of one triple.

    ``reference`` holds the clear (a, b, c) for testing and auditing only.
    Dealer-free backends leave it ``None`` unless explicitly asked to audit.
    """

    shares: Dict[int, BeaverTriple]
    reference: Optional[Reference] = None

    def get_share(self, party_id: int) -> Optional[BeaverTriple]:
        return self.shares.get(party_id)

    @property
    def id(self) -> Optional[int]:
        for record in self.shares.values():
            return record.id
        return None

    def party_ids(self) -> List[int]:
        return sorted(self.shares)

    def records(self, limit: Optional[int] = None) -> List[BeaverTriple]:
        """Records in ascending party-id order, optionally only the first *limit*."""
        ordered = [self.shares[pid] for pid in self.party_ids()]
        return ordered if limit is None else ordered[:limit]

    def without_reference(self) -> "CompleteBeaverTriple":
        return replace(self, reference=None)

    def verify(self, threshold: int) -> bool:
        """Structural and (if a reference is present) algebraic check.

        Fails closed: returns False instead of raising whenever the triple
        cannot be shown to be valid.
        """
        if threshold < 1 or len(self.shares) < threshold:
            return False
        if not all(record.is_consistent() for record in self.shares.values()):
            return False
        if self.reference is None:
            return True

        a, b, c = self.reference
        first = self.records(threshold)
        try:
            ra = shamir.reconstruct([r.a for r in first], threshold)
            rb = shamir.reconstruct([r.b for r in first], threshold)
            rc = shamir.reconstruct([r.c for r in first], threshold)
        except MPCError:
            return False
        return (ra, rb, rc) == (a, b, c) and c == field.mul(a, b)


def verify_triple_batch(triples: Sequence[CompleteBeaverTriple], threshold: int) -> bool:
    return all(t.verify(threshold) for t in triples)


# -----------------------------------------------------------------------
# Generator capability
# -----------------------------------------------------------------------


@runtime_checkable
class BeaverTripleGenerator(Protocol):
    def generate_single(self) -> CompleteBeaverTriple: ...

    def generate_batch(self, count: int) -> List[CompleteBeaverTriple]: ...

    def verify_triple(self, triple: CompleteBeaverTriple) -> bool: ...

    def get_party_count(self) -> int: ...

    def get_threshold(self) -> int: ...


# -----------------------------------------------------------------------
# Building complete triples
# -----------------------------------------------------------------------


def share_triple(
    a: int,
    b: int,
    c: int,
    threshold: int,
    parties: int,
    triple_id: Optional[int] = None,
    reference: Optional[Reference] = None,
) -> CompleteBeaverTriple:
    """Shamir-share clear (a, b, c); party ids are 1 … n."""
    tid = next_triple_id() if triple_id is None else triple_id
    a_shares = shamir.share(a, threshold, parties)
    b_shares = shamir.share(b, threshold, parties)
    c_shares = shamir.share(c, threshold, parties)
    return CompleteBeaverTriple(
        shares={
            i + 1: BeaverTriple(a_shares[i], b_shares[i], c_shares[i], tid)
            for i in range(parties)
        },
        reference=reference,
    )


@dataclass
class _Accumulator:
    a: List[Share] = dc_field(default_factory=list)
    b: List[Share] = dc_field(default_factory=list)
    c: List[Share] = dc_field(default_factory=list)


def assemble_triple(
    contributions: Sequence[Reference],
    threshold: int,
    triple_id: Optional[int] = None,
    reference: Optional[Reference] = None,
) -> CompleteBeaverTriple:
    """Sum-then-share: turn additive (a_i, b_i, c_i) summands into a Shamir triple.

    Contribution i is party i's local summand.  Every party Shamir-shares its
    own summand to all parties, and each recipient adds the pieces it got.
    By linearity the result is a sharing of (sum a_i, sum b_i, sum c_i),
    and no single party ever holds the clear values.
    """
    parties = len(contributions)
    shamir.validate_threshold(threshold, parties)
    tid = next_triple_id() if triple_id is None else triple_id

    per_party = [_Accumulator() for _ in range(parties)]
    for a_i, b_i, c_i in contributions:
        for comp, value in (("a", a_i), ("b", b_i), ("c", c_i)):
            for j, piece in enumerate(shamir.share(value, threshold, parties)):
                getattr(per_party[j], comp).append(piece)

    shares: Dict[int, BeaverTriple] = {}
    for j, acc in enumerate(per_party):
        summed = []
        for pieces in (acc.a, acc.b, acc.c):
            total = pieces[0]
            for piece in pieces[1:]:
                total = shamir.add_shares(total, piece)
            summed.append(total)
        shares[j + 1] = BeaverTriple(summed[0], summed[1], summed[2], tid)
    return CompleteBeaverTriple(shares=shares, reference=reference)
