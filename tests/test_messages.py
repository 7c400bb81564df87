"""Tests for protocol message parsing and structural validation."""

import json

import pytest
from pydantic import ValidationError

from beaver.config import PRIME
from beaver.errors import ProtocolError
from beaver.protocol.messages import (
    AggregatedResult,
    CShareContribution,
    EncryptedShares,
    KeyGenContribution,
    PartialDecryption,
    ProtocolAbort,
    ProtocolComplete,
    ProtocolRound,
    PublicKeyBroadcast,
    dump_message,
    message_round,
    parse_message,
    validate_message,
)


def _encrypted(sender=1, enc_a=None, enc_b=None):
    return EncryptedShares(
        sender=sender,
        enc_a_i=enc_a if enc_a is not None else [[1, 2], [3, 4]],
        enc_b_i=enc_b if enc_b is not None else [[5, 6], [7, 8]],
        commitment="abc",
    )


def _public_key(**overrides):
    fields = dict(
        sender=0, a=[1, 2], b=[3, 4], verification="v", relin_share0=[5, 6], relin_share1=[7, 8]
    )
    fields.update(overrides)
    return PublicKeyBroadcast(**fields)


class TestParsing:
    def test_roundtrip_through_json(self):
        msg = _encrypted()
        parsed = parse_message(json.dumps(dump_message(msg)))
        assert isinstance(parsed, EncryptedShares)
        assert parsed == msg

    def test_dispatch_on_kind(self):
        data = {"kind": "protocol_complete", "sender": 2, "triple_id": 7}
        parsed = parse_message(data)
        assert isinstance(parsed, ProtocolComplete)
        assert parsed.success is True

    def test_unknown_kind(self):
        with pytest.raises(ProtocolError):
            parse_message({"kind": "nonsense", "sender": 0})

    def test_missing_field(self):
        with pytest.raises(ProtocolError):
            parse_message({"kind": "encrypted_shares", "sender": 0})

    def test_negative_sender(self):
        with pytest.raises(ProtocolError):
            parse_message({"kind": "protocol_complete", "sender": -1, "triple_id": 1})

    def test_invalid_json(self):
        with pytest.raises(ProtocolError):
            parse_message("{not json")

    def test_messages_are_immutable(self):
        msg = _encrypted()
        with pytest.raises(ValidationError):
            msg.sender = 5


class TestRounds:
    def test_message_rounds(self):
        assert message_round(_encrypted()) is ProtocolRound.ENCRYPTED_SHARES
        done = ProtocolComplete(sender=2, triple_id=1)
        assert message_round(done) is ProtocolRound.TRIPLE_RECONSTRUCTION

    def test_abort_names_its_round(self):
        abort = ProtocolAbort(sender=0, reason="x", round=ProtocolRound.C_SHARE_COMPUTATION)
        assert message_round(abort) is ProtocolRound.C_SHARE_COMPUTATION

    def test_round_order(self):
        assert ProtocolRound.THRESHOLD_KEYGEN.next() is ProtocolRound.ENCRYPTED_SHARES
        assert ProtocolRound.TRIPLE_RECONSTRUCTION.next() is None


class TestValidation:
    def test_well_formed_messages_pass(self):
        validate_message(_encrypted(), expected_sender=1)
        validate_message(
            AggregatedResult(sender=0, enc_a=[[1]], enc_b=[[2]], enc_ab=[[3], [4], [5]])
        )
        validate_message(CShareContribution(sender=0, running=[[1, 1]], enc_c_i=[[2, 2]]))
        validate_message(_public_key())

    def test_sender_mismatch(self):
        with pytest.raises(ProtocolError):
            validate_message(_encrypted(sender=1), expected_sender=2)

    def test_empty_ciphertext(self):
        with pytest.raises(ProtocolError):
            validate_message(_encrypted(enc_a=[]))

    def test_ragged_ciphertext(self):
        with pytest.raises(ProtocolError):
            validate_message(_encrypted(enc_a=[[1, 2], [3]]))

    def test_dimension_mismatch_between_ciphertexts(self):
        with pytest.raises(ProtocolError):
            validate_message(_encrypted(enc_a=[[1, 2, 3]]))

    def test_value_outside_field(self):
        with pytest.raises(ProtocolError):
            validate_message(_encrypted(enc_b=[[PRIME, 0]]))

    def test_keygen_shapes(self):
        good = KeyGenContribution(
            sender=0,
            recipient=1,
            public_polynomial=[1, 2],
            commitments=[[1, 2], [3, 4]],
            proof="p",
            relin_h0=[7, 8],
            relin_h1=[9, 10],
            sub_share=[5, 6],
        )
        validate_message(good)
        bad = good.model_copy(update={"sub_share": [5]})
        with pytest.raises(ProtocolError):
            validate_message(bad)
        with pytest.raises(ProtocolError):
            validate_message(good.model_copy(update={"relin_h1": [PRIME, 0]}))

    def test_public_key_shapes(self):
        with pytest.raises(ProtocolError):
            validate_message(_public_key(b=[3]))
        with pytest.raises(ProtocolError):
            validate_message(_public_key(relin_share1=[1, 2, 3]))

    def test_partial_decryption_participants(self):
        ok = PartialDecryption(sender=0, x=1, decryption_share=[9], participants=[1, 2, 3])
        validate_message(ok)
        with pytest.raises(ProtocolError):
            validate_message(ok.model_copy(update={"participants": [2, 3]}))
        with pytest.raises(ProtocolError):
            validate_message(ok.model_copy(update={"participants": [1, 1, 2]}))

    def test_abort_needs_reason(self):
        with pytest.raises(ProtocolError):
            validate_message(
                ProtocolAbort(sender=0, reason="", round=ProtocolRound.THRESHOLD_KEYGEN)
            )
