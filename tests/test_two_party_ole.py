"""Tests for the 7-step two-party OLE protocol."""

import pytest

from beaver.crypto import field
from beaver.crypto.ole import ObliviousLinearEvaluation
from beaver.errors import ProtocolError
from beaver.triples.two_party import (
    PartyRole,
    ProtocolStep,
    TwoPartyBeaverGenerator,
    TwoPartyOLEProtocol,
)


@pytest.fixture()
def pair():
    ole = ObliviousLinearEvaluation()
    return TwoPartyOLEProtocol(PartyRole.P1, ole), TwoPartyOLEProtocol(PartyRole.PN, ole)


def _run(p1, pn):
    p1.step1_2_generate_random_values()
    pn.step1_2_generate_random_values()
    p1.step3_4_first_ole()
    pn.step3_4_first_ole()
    pn.step5_6_second_ole()
    p1.step5_6_second_ole()
    return p1.step7_final_computation(), pn.step7_final_computation()


class TestStateMachine:
    def test_contributions_multiply(self, pair):
        p1, pn = pair
        (xa, ya, ca), (xb, yb, cb) = _run(p1, pn)
        a = field.add(xa, xb)
        b = field.add(ya, yb)
        assert field.add(ca, cb) == field.mul(a, b)
        assert p1.is_completed() and pn.is_completed()

    def test_step_order_enforced(self, pair):
        p1, _ = pair
        with pytest.raises(ProtocolError):
            p1.step3_4_first_ole()
        p1.step1_2_generate_random_values()
        with pytest.raises(ProtocolError):
            p1.step1_2_generate_random_values()
        with pytest.raises(ProtocolError):
            p1.step7_final_computation()

    def test_receiver_before_sender_fails(self, pair):
        p1, pn = pair
        p1.step1_2_generate_random_values()
        pn.step1_2_generate_random_values()
        with pytest.raises(ProtocolError):
            pn.step3_4_first_ole()

    def test_reset(self, pair):
        p1, pn = pair
        _run(p1, pn)
        p1.reset("next")
        assert p1.step is ProtocolStep.RANDOM_GENERATION
        assert p1.session == "next"


class TestGenerator:
    def test_triple_verifies(self):
        gen = TwoPartyBeaverGenerator(audit=True)
        triple = gen.generate_single()
        assert sorted(triple.shares) == [1, 2]
        assert gen.verify_triple(triple)
        a, b, c = triple.reference
        assert c == field.mul(a, b)

    def test_parameters(self):
        gen = TwoPartyBeaverGenerator()
        assert gen.get_party_count() == 2
        assert gen.get_threshold() == 2

    def test_batch(self):
        gen = TwoPartyBeaverGenerator()
        triples = gen.generate_batch(3)
        assert len({t.id for t in triples}) == 3
        assert all(gen.verify_triple(t) for t in triples)
