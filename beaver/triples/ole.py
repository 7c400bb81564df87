"""OLE-based (dealer-free) Beaver triple backend.

Every party i samples its own a_i, b_i.  The product

    (sum_i a_i) * (sum_j b_j) = sum_i a_i*b_i + sum_{i != j} a_i*b_j

splits into local terms and cross terms.  Each cross term a_i*b_j runs
through one OLE: party j offers (alpha = b_j, beta = r_ij) with a fresh
mask r_ij, party i evaluates at a_i and learns a_i*b_j + r_ij.  Party i
adds that to its c_i, party j subtracts r_ij from its own.  Nobody sees a
partner's a or b, and the c_i are additive shares of a*b.

The harness then checks sum c_i = a*b and Shamir-shares the additive
contributions with ``assemble_triple``.  OLE is invoked per triple;
``generate_batch`` is a plain loop.
"""

from __future__ import annotations

from typing import List, Optional

import structlog

from beaver.config import PRIME
from beaver.crypto import field, shamir
from beaver.crypto.ole import ObliviousLinearEvaluation
from beaver.errors import CryptographicError, ProtocolError
from beaver.triples.model import CompleteBeaverTriple, Reference, assemble_triple, next_triple_id

log = structlog.get_logger()


class OLEBeaverGenerator:
    """Dealer-free generator; satisfies ``BeaverTripleGenerator``.

    ``audit=True`` attaches the clear (a, b, c) to each triple.  Leave it
    off outside of tests: no real party would ever hold that value.
    """

    def __init__(
        self,
        party_count: int,
        threshold: int,
        party_id: int = 0,
        audit: bool = False,
        ole: Optional[ObliviousLinearEvaluation] = None,
    ) -> None:
        shamir.validate_threshold(threshold, party_count)
        if party_id >= party_count:
            raise ProtocolError(f"party_id {party_id} out of range for {party_count} parties")
        self.party_count = party_count
        self.threshold = threshold
        self.party_id = party_id
        self.audit = audit
        self.ole = ole or ObliviousLinearEvaluation()

    def _product_shares(self, tid: int, a: List[int], b: List[int]) -> List[int]:
        n = self.party_count
        c = [field.mul(a[i], b[i]) for i in range(n)]
        for i in range(n):
            for j in range(n):
                if i == j:
                    continue
                tag = f"{tid}/a{i}*b{j}"
                mask = field.random_element()
                self.ole.offer(tag, b[j], mask)
                c[j] = field.sub(c[j], mask)
                c[i] = field.add(c[i], self.ole.evaluate(tag, a[i]))
        return c

    def generate_single(self) -> CompleteBeaverTriple:
        tid = next_triple_id()
        n = self.party_count
        a = [field.random_element() for _ in range(n)]
        b = [field.random_element() for _ in range(n)]
        c = self._product_shares(tid, a, b)

        a_sum = sum(a) % PRIME
        b_sum = sum(b) % PRIME
        c_sum = sum(c) % PRIME
        if c_sum != field.mul(a_sum, b_sum):
            raise CryptographicError(f"OLE product check failed for triple {tid}")

        reference: Optional[Reference] = (a_sum, b_sum, c_sum) if self.audit else None
        triple = assemble_triple(
            list(zip(a, b, c)), self.threshold, triple_id=tid, reference=reference
        )
        log.debug("ole_triple_generated", triple_id=tid, parties=n)
        return triple

    def generate_batch(self, count: int) -> List[CompleteBeaverTriple]:
        if count < 0:
            raise ProtocolError(f"Batch size must be non-negative, got {count}")
        return [self.generate_single() for _ in range(count)]

    def verify_triple(self, triple: CompleteBeaverTriple) -> bool:
        return triple.verify(self.threshold)

    def batch_verify(self, triples: List[CompleteBeaverTriple]) -> List[bool]:
        return [self.verify_triple(t) for t in triples]

    def get_party_count(self) -> int:
        return self.party_count

    def get_threshold(self) -> int:
        return self.threshold
