"""Tests for the simulated BFV ciphertext algebra."""

import pytest

from beaver.config import PRIME
from beaver.crypto import field, shamir
from beaver.crypto.bfv import (
    BFVParams,
    Ciphertext,
    RelinKey,
    SecretKeyShare,
    SimulatedBFV,
    estimate_security_level,
    expand_seed,
    meets_security_target,
    validate_params,
    vec_mul,
    vec_neg,
)
from beaver.errors import CryptographicError, InsufficientShares


@pytest.fixture()
def engine():
    return SimulatedBFV(BFVParams(degree=8))


@pytest.fixture()
def keys(engine):
    return engine.keygen()


def _shared_key(sk, threshold, parties):
    """Shamir-share the secret key slot by slot."""
    per_slot = [shamir.share(v, threshold, parties) for v in sk.s]
    return [
        SecretKeyShare(j, j + 1, tuple(per_slot[slot][j].y for slot in range(len(sk.s))))
        for j in range(parties)
    ]


class TestAlgebra:
    def test_encrypt_decrypt(self, engine, keys):
        pk, sk = keys
        assert engine.decrypt(sk, engine.encrypt(pk, 12345)) == 12345

    def test_public_key_shape(self, keys):
        pk, sk = keys
        assert pk.b == vec_neg(vec_mul(pk.a, sk.s))

    def test_encryption_is_randomised(self, engine, keys):
        pk, _ = keys
        assert engine.encrypt(pk, 5) != engine.encrypt(pk, 5)

    def test_add_sub(self, engine, keys):
        pk, sk = keys
        x, y = engine.encrypt(pk, 40), engine.encrypt(pk, 2)
        assert engine.decrypt(sk, engine.add(x, y)) == 42
        assert engine.decrypt(sk, engine.sub(y, x)) == field.sub(2, 40)

    def test_multiply_grows_ciphertext(self, engine, keys):
        pk, sk = keys
        prod = engine.multiply(engine.encrypt(pk, 6), engine.encrypt(pk, 7))
        assert prod.size == 3
        assert engine.decrypt(sk, prod) == 42

    def test_relinearize_restores_two_components(self, engine, keys):
        pk, sk = keys
        prod = engine.multiply(engine.encrypt(pk, 6), engine.encrypt(pk, 7))
        relin = engine.relinearize(prod, engine.relin_keygen(sk))
        assert relin.size == 2
        assert engine.decrypt(sk, relin) == 42

    def test_relinearize_leaves_fresh_ciphertext(self, engine, keys):
        pk, sk = keys
        ct = engine.encrypt(pk, 9)
        assert engine.relinearize(ct, engine.relin_keygen(sk)) is ct

    def test_relinearize_rejects_bad_input(self, engine, keys):
        pk, sk = keys
        rlk = engine.relin_keygen(sk)
        ct = engine.encrypt(pk, 2)
        cube = engine.multiply(engine.multiply(ct, ct), ct)
        with pytest.raises(CryptographicError):
            engine.relinearize(cube, rlk)
        with pytest.raises(CryptographicError):
            engine.relinearize(engine.multiply(ct, ct), RelinKey(rlk.r0[:2], rlk.r1[:2]))

    def test_sub_mixed_sizes(self, engine, keys):
        pk, sk = keys
        prod = engine.multiply(engine.encrypt(pk, 6), engine.encrypt(pk, 7))
        assert engine.decrypt(sk, engine.sub(prod, engine.encrypt(pk, 2))) == 40

    def test_sum(self, engine, keys):
        pk, sk = keys
        total = engine.sum([engine.encrypt(pk, v) for v in (1, 2, 3, 4)])
        assert engine.decrypt(sk, total) == 10

    def test_dimension_mismatch(self, engine, keys):
        pk, _ = keys
        other = SimulatedBFV(BFVParams(degree=4))
        opk, _ = other.keygen()
        with pytest.raises(CryptographicError):
            engine.add(engine.encrypt(pk, 1), other.encrypt(opk, 1))
        with pytest.raises(CryptographicError):
            engine.encrypt(opk, 1)

    def test_from_lists_validation(self):
        with pytest.raises(CryptographicError):
            Ciphertext.from_lists([])
        with pytest.raises(CryptographicError):
            Ciphertext.from_lists([[1, 2], [3]])
        ct = Ciphertext.from_lists([[1, 2], [3, 4]])
        assert Ciphertext.from_lists(ct.as_lists()) == ct

    def test_expand_seed_deterministic(self):
        assert expand_seed(b"s", 5) == expand_seed(b"s", 5)
        assert expand_seed(b"s", 5) != expand_seed(b"t", 5)


class TestThresholdDecryption:
    def test_fresh_ciphertext_needs_t(self, engine, keys):
        pk, sk = keys
        shares = _shared_key(sk, 2, 3)
        ct = engine.encrypt(pk, 99)
        assert engine.required_partials(ct, 2) == 2
        assert engine.threshold_decrypt(shares[1:], ct, 2) == 99

    def test_product_needs_2t_minus_1(self, engine, keys):
        pk, sk = keys
        shares = _shared_key(sk, 2, 3)
        prod = engine.multiply(engine.encrypt(pk, 6), engine.encrypt(pk, 7))
        assert engine.required_partials(prod, 2) == 3
        assert engine.threshold_decrypt(shares, prod, 2) == 42
        with pytest.raises(InsufficientShares):
            engine.threshold_decrypt(shares[:2], prod, 2)

    def test_relinearised_product_needs_t(self, engine, keys):
        pk, sk = keys
        shares = _shared_key(sk, 2, 3)
        prod = engine.multiply(engine.encrypt(pk, 6), engine.encrypt(pk, 7))
        relin = engine.relinearize(prod, engine.relin_keygen(sk))
        assert engine.required_partials(relin, 2) == 2
        assert engine.threshold_decrypt(shares[:2], relin, 2) == 42

    def test_partial_outside_participants(self, engine, keys):
        pk, sk = keys
        shares = _shared_key(sk, 2, 3)
        with pytest.raises(CryptographicError):
            engine.partial_decrypt(shares[0], engine.encrypt(pk, 1), [2, 3])


class TestParams:
    def test_defaults_are_usable(self):
        assert validate_params(BFVParams()) == BFVParams()

    def test_plaintext_modulus_must_be_field_prime(self):
        with pytest.raises(CryptographicError):
            validate_params(BFVParams(plaintext_modulus=65537))
        with pytest.raises(CryptographicError):
            SimulatedBFV(BFVParams(plaintext_modulus=65537))

    def test_security_level_must_be_positive(self):
        with pytest.raises(CryptographicError):
            validate_params(BFVParams(security_level=0))

    def test_zero_degree_rejected(self):
        with pytest.raises(CryptographicError):
            validate_params(
                BFVParams.model_construct(degree=0, plaintext_modulus=PRIME, security_level=128)
            )

    def test_security_estimate_grows_with_degree(self):
        small = estimate_security_level(BFVParams(degree=16))
        large = estimate_security_level(BFVParams(degree=4096))
        assert small < large
        assert large == 93

    def test_security_target(self):
        assert not meets_security_target(BFVParams(degree=16))
        assert meets_security_target(BFVParams(degree=4096, security_level=80))
        assert not meets_security_target(BFVParams(degree=4096, security_level=128))
