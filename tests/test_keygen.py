"""Tests for threshold key generation."""

from dataclasses import replace

import pytest

from beaver.config import PRIME
from beaver.crypto.bfv import BFVParams, SimulatedBFV, vec_add, vec_mul
from beaver.crypto.polynomial import interpolate_at
from beaver.errors import ProtocolError
from beaver.protocol.keygen import (
    ThresholdBFVKeyGen,
    check_key_shares,
    common_reference,
    public_key_digest,
)

DEGREE = 8


def _run_keygen(n=3, t=2, session="s1", verify_proofs=True):
    parties = [ThresholdBFVKeyGen(i, n, t, session, DEGREE, verify_proofs) for i in range(n)]
    contributions = [p.generate_contribution() for p in parties]
    for receiver in parties:
        for sender, contribution in zip(parties, contributions):
            if sender.party_id != receiver.party_id:
                receiver.add_contribution(contribution, sender.sub_share_for(receiver.party_id))
    return parties, [p.generate_keypair() for p in parties]


def _exchange_relin_shares(parties):
    for receiver in parties:
        for sender in parties:
            if sender.party_id != receiver.party_id:
                receiver.add_relin_share(sender.party_id, *sender.relin_share())
    return [p.relinearization_key() for p in parties]


def _secret(keys, t):
    first = [share for _, share in keys[:t]]
    return tuple(
        interpolate_at([(share.x, share.s[slot]) for share in first], 0) for slot in range(DEGREE)
    )


class TestKeyGeneration:
    def test_all_parties_agree_on_public_key(self):
        _, keys = _run_keygen()
        digests = {public_key_digest(pk) for pk, _ in keys}
        assert len(digests) == 1

    def test_shares_match_public_key(self):
        _, keys = _run_keygen(n=5, t=3)
        pk = keys[0][0]
        shares = [share for _, share in keys]
        assert check_key_shares(pk, shares, 3)
        assert check_key_shares(pk, shares[2:], 3)
        assert not check_key_shares(pk, shares[:2], 3)

    def test_keys_work_with_engine(self):
        parties, keys = _run_keygen()
        rlk = _exchange_relin_shares(parties)[0]
        engine = SimulatedBFV(BFVParams(degree=DEGREE))
        pk = keys[0][0]
        shares = [share for _, share in keys]
        ct = engine.relinearize(engine.multiply(engine.encrypt(pk, 11), engine.encrypt(pk, 12)), rlk)
        assert ct.size == 2
        assert engine.threshold_decrypt(shares[1:], ct, 2) == 132

    def test_share_coordinates(self):
        _, keys = _run_keygen()
        assert [share.x for _, share in keys] == [1, 2, 3]

    def test_common_reference_depends_on_session(self):
        assert common_reference("a", DEGREE) != common_reference("b", DEGREE)

    def test_missing_contributions(self):
        gen = ThresholdBFVKeyGen(0, 3, 2, "s", DEGREE)
        gen.generate_contribution()
        assert gen.contributions_count() == 1
        with pytest.raises(ProtocolError):
            gen.generate_keypair()

    def test_contribution_only_once(self):
        gen = ThresholdBFVKeyGen(0, 3, 2, "s", DEGREE)
        gen.generate_contribution()
        with pytest.raises(ProtocolError):
            gen.generate_contribution()

    def test_sub_share_before_contribution(self):
        with pytest.raises(ProtocolError):
            ThresholdBFVKeyGen(0, 3, 2, "s", DEGREE).sub_share_for(1)

    def test_reset(self):
        parties, _ = _run_keygen()
        parties[0].reset()
        assert parties[0].contributions_count() == 0


class TestRelinearisationKey:
    def test_key_folds_s_squared(self):
        parties, keys = _run_keygen(n=4, t=3)
        rlk = _exchange_relin_shares(parties)[0]
        s = _secret(keys, 3)
        assert vec_add(rlk.r0, vec_mul(rlk.r1, s)) == vec_mul(s, s)

    def test_all_parties_derive_the_same_key(self):
        parties, _ = _run_keygen()
        assert len(set(_exchange_relin_shares(parties))) == 1

    def test_share_needs_keypair(self):
        gen = ThresholdBFVKeyGen(0, 3, 2, "s", DEGREE)
        gen.generate_contribution()
        with pytest.raises(ProtocolError):
            gen.relin_share()

    def test_missing_share(self):
        parties, _ = _run_keygen()
        parties[0].add_relin_share(1, *parties[1].relin_share())
        with pytest.raises(ProtocolError):
            parties[0].relinearization_key()

    def test_duplicate_and_foreign_shares_rejected(self):
        parties, _ = _run_keygen()
        share = parties[1].relin_share()
        parties[0].add_relin_share(1, *share)
        with pytest.raises(ProtocolError):
            parties[0].add_relin_share(1, *share)
        with pytest.raises(ProtocolError):
            parties[0].add_relin_share(0, *share)
        with pytest.raises(ProtocolError):
            parties[0].add_relin_share(5, *share)

    def test_short_share_rejected(self):
        parties, _ = _run_keygen()
        share0, share1 = parties[1].relin_share()
        with pytest.raises(ProtocolError):
            parties[0].add_relin_share(1, share0[:-1], share1)

    def test_single_party(self):
        parties, keys = _run_keygen(n=1, t=1)
        rlk = parties[0].relinearization_key()
        s = keys[0][1].s
        assert vec_add(rlk.r0, vec_mul(rlk.r1, s)) == vec_mul(s, s)


class TestContributionChecks:
    @pytest.fixture()
    def setup(self):
        sender = ThresholdBFVKeyGen(1, 3, 2, "s", DEGREE)
        receiver = ThresholdBFVKeyGen(0, 3, 2, "s", DEGREE)
        receiver.generate_contribution()
        contribution = sender.generate_contribution()
        return receiver, contribution, sender.sub_share_for(0)

    def test_honest_contribution_accepted(self, setup):
        receiver, contribution, sub_share = setup
        receiver.add_contribution(contribution, sub_share)
        assert receiver.contributions_count() == 2

    def test_duplicate_rejected(self, setup):
        receiver, contribution, sub_share = setup
        receiver.add_contribution(contribution, sub_share)
        with pytest.raises(ProtocolError):
            receiver.add_contribution(contribution, sub_share)

    def test_wrong_length(self, setup):
        receiver, contribution, sub_share = setup
        short = replace(contribution, public_polynomial=contribution.public_polynomial[:-1])
        with pytest.raises(ProtocolError):
            receiver.add_contribution(short, sub_share)

    def test_out_of_range_coefficient(self, setup):
        receiver, contribution, sub_share = setup
        with pytest.raises(ProtocolError):
            receiver.add_contribution(contribution, (PRIME,) + tuple(sub_share[1:]))

    def test_bad_proof(self, setup):
        receiver, contribution, sub_share = setup
        with pytest.raises(ProtocolError):
            receiver.add_contribution(replace(contribution, proof="0" * 64), sub_share)

    def test_tampered_sub_share(self, setup):
        receiver, contribution, sub_share = setup
        bad = ((sub_share[0] + 1) % PRIME,) + tuple(sub_share[1:])
        with pytest.raises(ProtocolError):
            receiver.add_contribution(contribution, bad)

    def test_unknown_party(self, setup):
        receiver, contribution, sub_share = setup
        with pytest.raises(ProtocolError):
            receiver.add_contribution(replace(contribution, party_id=7), sub_share)

    def test_proof_checks_can_be_disabled(self):
        sender = ThresholdBFVKeyGen(1, 3, 2, "s", DEGREE)
        receiver = ThresholdBFVKeyGen(0, 3, 2, "s", DEGREE, verify_proofs=False)
        contribution = sender.generate_contribution()
        receiver.add_contribution(replace(contribution, proof="x"), sender.sub_share_for(0))
        assert receiver.contributions_count() == 1

    def test_own_contribution_rejected(self, setup):
        receiver, contribution, sub_share = setup
        with pytest.raises(ProtocolError):
            receiver.add_contribution(replace(contribution, party_id=0), sub_share)

    def test_tampered_relinearisation_part(self, setup):
        receiver, contribution, sub_share = setup
        bumped = ((contribution.relin_h0[0] + 1) % PRIME,) + contribution.relin_h0[1:]
        with pytest.raises(ProtocolError):
            receiver.add_contribution(replace(contribution, relin_h0=bumped), sub_share)

    def test_relinearisation_part_wrong_length(self, setup):
        receiver, contribution, sub_share = setup
        short = replace(contribution, relin_h1=contribution.relin_h1[:-1])
        with pytest.raises(ProtocolError):
            receiver.add_contribution(short, sub_share)
