"""Trusted-party (dealer) Beaver triple backend.

The dealer samples a, b uniformly, computes c = a*b, Shamir-shares all
three and hands one (a, b, c) record to each party.  This is the
simplest and fastest backend and carries the weakest trust assumption:
the dealer sees (a, b, c) in the clear.  Use it only when the dealer is
trusted or is destroyed after setup.

Precomputation
--------------
With ``enable_precomputation`` the generator fills a ``TriplePool`` at
construction time and serves triples from it.  Once the pool drops below
half of ``pool_size`` it is refilled back to capacity.  The pool is the
only shared mutable structure in the package; every access goes through
its lock.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from beaver.config import DEFAULT_BATCH_SIZE, DEFAULT_POOL_SIZE
from beaver.crypto import field, shamir
from beaver.errors import CryptographicError, ProtocolError
from beaver.triples.model import CompleteBeaverTriple, share_triple

log = structlog.get_logger()


class TrustedPartyConfig(BaseModel):
    enable_precomputation: bool = True
    pool_size: int = Field(default=DEFAULT_POOL_SIZE, ge=0)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    enable_security_checks: bool = True


class TriplePool:
    """Lock-guarded FIFO of precomputed triples.

    Each method takes the lock exactly once.  Refills are reserved under
    the lock before the triples are dealt, which keeps the pool at or
    below capacity.  ``close`` empties the pool and rejects further use.
    """

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self._items: List[CompleteBeaverTriple] = []
        self._lock = threading.Lock()
        self._closed = False
        self._pending = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ProtocolError("Triple pool is closed")

    def pop(self) -> Optional[CompleteBeaverTriple]:
        with self._lock:
            self._ensure_open()
            return self._items.pop(0) if self._items else None

    def drain(self, count: int) -> List[CompleteBeaverTriple]:
        """Remove and return up to *count* triples."""
        with self._lock:
            self._ensure_open()
            taken = self._items[:count]
            del self._items[:count]
            return taken

    def extend(self, triples: Sequence[CompleteBeaverTriple]) -> None:
        with self._lock:
            self._ensure_open()
            self._items.extend(triples)

    def reserve_refill(self) -> int:
        """Claim a refill: triples missing to capacity if below half capacity, else 0.

        The claimed count stays pending until ``complete_refill``, and
        pending triples count towards the fill level, so concurrent callers
        never claim the same shortfall twice.
        """
        with self._lock:
            self._ensure_open()
            level = len(self._items) + self._pending
            if level < self.capacity / 2:
                missing = self.capacity - level
                self._pending += missing
                return missing
            return 0

    def complete_refill(self, reserved: int, triples: Sequence[CompleteBeaverTriple]) -> None:
        """Release a reservation of *reserved* and add the *triples* dealt for it."""
        if len(triples) > reserved:
            raise ProtocolError(f"Refill of {len(triples)} exceeds the {reserved} reserved")
        with self._lock:
            self._pending -= reserved
            self._ensure_open()
            self._items.extend(triples)

    def close(self) -> None:
        with self._lock:
            self._items.clear()
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class TrustedPartyBeaverGenerator:
    """Dealer-based generator; satisfies ``BeaverTripleGenerator``."""

    def __init__(
        self,
        party_count: int,
        threshold: int,
        party_id: int = 0,
        config: Optional[TrustedPartyConfig] = None,
    ) -> None:
        shamir.validate_threshold(threshold, party_count)
        if party_id >= party_count:
            raise ProtocolError(f"party_id {party_id} out of range for {party_count} parties")
        self.party_count = party_count
        self.threshold = threshold
        self.party_id = party_id
        self.config = config or TrustedPartyConfig()
        self.generated = 0
        self.pool: Optional[TriplePool] = None

        if self.config.enable_precomputation and self.config.pool_size > 0:
            self.pool = TriplePool(self.config.pool_size)
            self._replenish()

    # -- dealer ------------------------------------------------------------

    def _raw_triple(self) -> tuple:
        a = field.random_element()
        b = field.random_element()
        c = field.mul(a, b)
        if self.config.enable_security_checks and not self._check_raw(a, b, c):
            raise CryptographicError("Dealer produced an invalid raw triple")
        self.generated += 1
        return a, b, c

    @staticmethod
    def _check_raw(a: int, b: int, c: int) -> bool:
        if not all(field.is_element(v) for v in (a, b, c)):
            return False
        return a != 0 and b != 0 and c == field.mul(a, b)

    def _deal(self) -> CompleteBeaverTriple:
        a, b, c = self._raw_triple()
        return share_triple(a, b, c, self.threshold, self.party_count, reference=(a, b, c))

    def _replenish(self) -> None:
        pool = self.pool
        if pool is None:
            return
        missing = pool.reserve_refill()
        if not missing:
            return
        fresh: List[CompleteBeaverTriple] = []
        try:
            fresh = [self._deal() for _ in range(missing)]
        finally:
            pool.complete_refill(missing, fresh)
        log.info("triple_pool_filled", added=missing, size=len(pool))

    # -- BeaverTripleGenerator --------------------------------------------

    def generate_single(self) -> CompleteBeaverTriple:
        if self.pool is not None:
            triple = self.pool.pop()
            if triple is not None:
                self._replenish()
                return triple
        return self._deal()

    def generate_batch(self, count: int) -> List[CompleteBeaverTriple]:
        if count < 0:
            raise ProtocolError(f"Batch size must be non-negative, got {count}")
        triples: List[CompleteBeaverTriple] = []
        if self.pool is not None:
            triples.extend(self.pool.drain(count))
        triples.extend(self._deal() for _ in range(count - len(triples)))
        self._replenish()
        log.debug("trusted_batch_generated", count=count)
        return triples

    def generate_in_batches(self, count: int) -> List[CompleteBeaverTriple]:
        """Generate *count* triples in chunks of ``config.batch_size``."""
        triples: List[CompleteBeaverTriple] = []
        remaining = count
        while remaining > 0:
            chunk = min(remaining, self.config.batch_size)
            triples.extend(self.generate_batch(chunk))
            remaining -= chunk
        return triples

    def verify_triple(self, triple: CompleteBeaverTriple) -> bool:
        return triple.verify(self.threshold)

    def get_party_count(self) -> int:
        return self.party_count

    def get_threshold(self) -> int:
        return self.threshold

    def close(self) -> None:
        if self.pool is not None:
            self.pool.close()
            self.pool = None

    def __enter__(self) -> "TrustedPartyBeaverGenerator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class TrustedPartyAuditor:
    """Post-hoc checks on triples handed out by a dealer."""

    def __init__(self, party_count: int, threshold: int) -> None:
        self.party_count = party_count
        self.threshold = threshold

    def audit_cryptographic_properties(self, triples: Sequence[CompleteBeaverTriple]) -> bool:
        for triple in triples:
            if len(triple.shares) != self.party_count:
                return False
            if not triple.verify(self.threshold):
                return False
        return True

    def audit_statistical_properties(self, triples: Sequence[CompleteBeaverTriple]) -> bool:
        """Reference values must satisfy c = a*b, be nonzero and never repeat.

        Over a 61-bit field a repeated a or b is a sign of a broken RNG.
        Triples without a reference are skipped.
        """
        seen: Counter = Counter()
        for triple in triples:
            if triple.reference is None:
                continue
            a, b, c = triple.reference
            if c != field.mul(a, b) or a == 0 or b == 0:
                return False
            seen[("a", a)] += 1
            seen[("b", b)] += 1
        ok = all(n == 1 for n in seen.values())
        if not ok:
            log.warning("triple_audit_repeated_values", triples=len(triples))
        return ok
