"""Tests for the Beaver triple model."""

from __future__ import annotations

import threading

from beaver.config import PRIME
from beaver.crypto import field, shamir
from beaver.crypto.shamir import Share
from beaver.triples.model import (
    BeaverTriple,
    BeaverTripleGenerator,
    CompleteBeaverTriple,
    assemble_triple,
    next_triple_id,
    share_triple,
    verify_triple_batch,
)


def _clear_triple(a: int = 6, b: int = 7):
    return share_triple(a, b, field.mul(a, b), 2, 3, reference=(a, b, field.mul(a, b)))


# =========================================================================
# 1. Per-party record
# =========================================================================


class TestBeaverTriple:
    def test_consistent(self):
        t = BeaverTriple(Share(1, 2), Share(1, 3), Share(1, 4), id=1)
        assert t.is_consistent()
        assert t.get_party_id() == 1

    def test_inconsistent(self):
        t = BeaverTriple(Share(1, 2), Share(2, 3), Share(1, 4), id=1)
        assert not t.is_consistent()


# =========================================================================
# 2. Verification
# =========================================================================


class TestVerify:
    def test_valid_triple(self):
        triple = _clear_triple()
        assert triple.verify(2)
        assert sorted(triple.shares) == [1, 2, 3]

    def test_all_records_share_one_id(self):
        triple = _clear_triple()
        assert len({r.id for r in triple.shares.values()}) == 1

    def test_too_few_records(self):
        triple = _clear_triple()
        partial = CompleteBeaverTriple({1: triple.shares[1]}, triple.reference)
        assert not partial.verify(2)

    def test_zero_threshold_fails_closed(self):
        assert not _clear_triple().verify(0)

    def test_inconsistent_record(self):
        triple = _clear_triple()
        r = triple.shares[2]
        triple.shares[2] = BeaverTriple(r.a, Share(99, r.b.y), r.c, r.id)
        assert not triple.verify(2)

    def test_wrong_product_reference(self):
        a, b = 6, 7
        bad = share_triple(a, b, 43, 2, 3, reference=(a, b, 43))
        assert not bad.verify(2)

    def test_reference_mismatch(self):
        triple = _clear_triple()
        triple.reference = (1, 42, 42)
        assert not triple.verify(2)

    def test_without_reference_is_structural_only(self):
        triple = _clear_triple().without_reference()
        assert triple.reference is None
        assert triple.verify(2)

    def test_batch(self):
        assert verify_triple_batch([_clear_triple(), _clear_triple(2, 3)], 2)
        bad = share_triple(2, 3, 7, 2, 3, reference=(2, 3, 7))
        assert not verify_triple_batch([_clear_triple(), bad], 2)


# =========================================================================
# 3. Ids and assembly
# =========================================================================


class TestIdsAndAssembly:
    def test_ids_unique_across_threads(self):
        seen = []
        lock = threading.Lock()

        def worker():
            ids = [next_triple_id() for _ in range(200)]
            with lock:
                seen.extend(ids)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(seen) == len(set(seen)) == 1600

    def test_assemble_sums_contributions(self):
        contributions = [(1, 2, 5), (3, 4, 6), (PRIME - 1, 10, 9)]
        triple = assemble_triple(contributions, 2, triple_id=77)
        first = triple.records(2)
        assert shamir.reconstruct([r.a for r in first], 2) == 3
        assert shamir.reconstruct([r.b for r in first], 2) == 16
        assert shamir.reconstruct([r.c for r in first], 2) == 20
        assert triple.id == 77

    def test_assembled_product_verifies(self):
        a = [field.random_element() for _ in range(3)]
        b = [field.random_element() for _ in range(3)]
        ab = field.mul(sum(a) % PRIME, sum(b) % PRIME)
        c = [field.random_element(), field.random_element()]
        c.append(field.sub(ab, sum(c) % PRIME))
        triple = assemble_triple(
            list(zip(a, b, c)), 2, reference=(sum(a) % PRIME, sum(b) % PRIME, ab)
        )
        assert triple.verify(2)


class TestGeneratorProtocol:
    def test_backends_satisfy_protocol(self):
        from beaver.protocol.bfv import BFVBeaverGenerator
        from beaver.triples.ole import OLEBeaverGenerator
        from beaver.triples.trusted_party import TrustedPartyBeaverGenerator, TrustedPartyConfig
        from beaver.triples.two_party import TwoPartyBeaverGenerator

        generators = [
            TrustedPartyBeaverGenerator(3, 2, config=TrustedPartyConfig(enable_precomputation=False)),
            OLEBeaverGenerator(3, 2),
            TwoPartyBeaverGenerator(),
            BFVBeaverGenerator(),
        ]
        for gen in generators:
            assert isinstance(gen, BeaverTripleGenerator)
