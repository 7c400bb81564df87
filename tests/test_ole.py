"""Tests for the OLE functionality and the OLE-based triple backend."""

import pytest

from beaver.config import PRIME
from beaver.crypto import field
from beaver.crypto.ole import ObliviousLinearEvaluation
from beaver.errors import FieldRangeError, InvalidThreshold, ProtocolError
from beaver.triples.ole import OLEBeaverGenerator


class TestOLE:
    def test_evaluate_linear_function(self):
        ole = ObliviousLinearEvaluation()
        ole.offer("t", 3, 4)
        assert ole.evaluate("t", 5) == 19
        assert ole.evaluations == 1

    def test_wraps_mod_p(self):
        ole = ObliviousLinearEvaluation()
        ole.offer("t", PRIME - 1, 0)
        assert ole.evaluate("t", 2) == PRIME - 2

    def test_offer_is_single_use(self):
        ole = ObliviousLinearEvaluation()
        ole.offer("t", 1, 1)
        ole.evaluate("t", 1)
        with pytest.raises(ProtocolError):
            ole.evaluate("t", 1)

    def test_missing_offer(self):
        with pytest.raises(ProtocolError):
            ObliviousLinearEvaluation().evaluate("nope", 1)

    def test_duplicate_offer(self):
        ole = ObliviousLinearEvaluation()
        ole.offer("t", 1, 1)
        with pytest.raises(ProtocolError):
            ole.offer("t", 2, 2)

    def test_inputs_must_be_field_elements(self):
        ole = ObliviousLinearEvaluation()
        with pytest.raises(FieldRangeError):
            ole.offer("t", PRIME, 0)


class TestOLEBackend:
    def test_triple_verifies_with_audit(self):
        gen = OLEBeaverGenerator(3, 2, audit=True)
        triple = gen.generate_single()
        a, b, c = triple.reference
        assert c == field.mul(a, b)
        assert gen.verify_triple(triple)

    def test_no_reference_by_default(self):
        gen = OLEBeaverGenerator(3, 2)
        triple = gen.generate_single()
        assert triple.reference is None
        assert gen.verify_triple(triple)

    def test_uses_one_ole_per_cross_term(self):
        gen = OLEBeaverGenerator(4, 2)
        gen.generate_single()
        assert gen.ole.evaluations == 4 * 3
        assert gen.ole.pending() == 0

    def test_batch_is_a_loop(self):
        gen = OLEBeaverGenerator(3, 2, audit=True)
        triples = gen.generate_batch(4)
        assert len({t.id for t in triples}) == 4
        assert all(gen.batch_verify(triples))

    def test_larger_threshold(self):
        gen = OLEBeaverGenerator(5, 3, audit=True)
        assert gen.verify_triple(gen.generate_single())

    def test_invalid_parameters(self):
        with pytest.raises(InvalidThreshold):
            OLEBeaverGenerator(2, 3)
        with pytest.raises(ProtocolError):
            OLEBeaverGenerator(3, 2).generate_batch(-1)
