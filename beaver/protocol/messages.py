"""Messages exchanged by the BFV triple protocol.

The set is closed: every message is one of the pydantic models below,
discriminated by its ``kind`` field, so ``parse_message`` turns a JSON
body into exactly one concrete type or fails.  Ciphertexts travel as
lists of component vectors.

Every message names its ``sender``.  ``validate_message`` checks what a
receiver can check without any protocol state (non-empty payloads,
matching dimensions, field range, sender consistency) and raises
``ProtocolError``.  A message must pass it before a context buffers it.
"""

from __future__ import annotations

import enum
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from beaver.crypto import field
from beaver.errors import ProtocolError

CiphertextWire = List[List[int]]


class ProtocolRound(str, enum.Enum):
    THRESHOLD_KEYGEN = "threshold_keygen"
    ENCRYPTED_SHARES = "encrypted_shares"
    HOMOMORPHIC_AGGREGATION = "homomorphic_aggregation"
    C_SHARE_COMPUTATION = "c_share_computation"
    TRIPLE_RECONSTRUCTION = "triple_reconstruction"

    def next(self) -> Optional["ProtocolRound"]:
        order = list(ProtocolRound)
        idx = order.index(self)
        return order[idx + 1] if idx + 1 < len(order) else None


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: int = Field(ge=0)
    session_id: str = "default"


class KeyGenContribution(_Message):
    """Broadcast keygen data plus the recipient's private sub-share."""

    kind: Literal["keygen_contribution"] = "keygen_contribution"
    recipient: int = Field(ge=0)
    public_polynomial: List[int]
    commitments: List[List[int]]
    proof: str
    relin_h0: List[int]
    relin_h1: List[int]
    sub_share: List[int]


class PublicKeyBroadcast(_Message):
    """Announces the derived public key so peers can confirm agreement.

    Also carries the sender's share of the relinearisation key.
    """

    kind: Literal["public_key_broadcast"] = "public_key_broadcast"
    a: List[int]
    b: List[int]
    verification: str
    relin_share0: List[int]
    relin_share1: List[int]


class EncryptedShares(_Message):
    kind: Literal["encrypted_shares"] = "encrypted_shares"
    enc_a_i: CiphertextWire
    enc_b_i: CiphertextWire
    commitment: str


class AggregatedResult(_Message):
    """Party 0's Enc(sum a_i), Enc(sum b_i) and Enc(a*b)."""

    kind: Literal["aggregated_result"] = "aggregated_result"
    enc_a: CiphertextWire
    enc_b: CiphertextWire
    enc_ab: CiphertextWire


class CShareContribution(_Message):
    """Running ciphertext Enc(ab - c_0 - ... - c_i) and Enc(c_i)."""

    kind: Literal["c_share_contribution"] = "c_share_contribution"
    running: CiphertextWire
    enc_c_i: CiphertextWire


class PartialDecryption(_Message):
    kind: Literal["partial_decryption"] = "partial_decryption"
    x: int = Field(gt=0)
    decryption_share: List[int]
    participants: List[int]


class ProtocolComplete(_Message):
    kind: Literal["protocol_complete"] = "protocol_complete"
    triple_id: int
    success: bool = True
    error_message: Optional[str] = None


class ProtocolAbort(_Message):
    kind: Literal["protocol_abort"] = "protocol_abort"
    reason: str
    round: ProtocolRound


BFVBeaverMessage = Annotated[
    Union[
        KeyGenContribution,
        PublicKeyBroadcast,
        EncryptedShares,
        AggregatedResult,
        CShareContribution,
        PartialDecryption,
        ProtocolComplete,
        ProtocolAbort,
    ],
    Field(discriminator="kind"),
]

_adapter: TypeAdapter = TypeAdapter(BFVBeaverMessage)

# Round each message kind belongs to.  ProtocolAbort names its own round.
MESSAGE_ROUNDS: Dict[str, ProtocolRound] = {
    "keygen_contribution": ProtocolRound.THRESHOLD_KEYGEN,
    "public_key_broadcast": ProtocolRound.THRESHOLD_KEYGEN,
    "encrypted_shares": ProtocolRound.ENCRYPTED_SHARES,
    "aggregated_result": ProtocolRound.HOMOMORPHIC_AGGREGATION,
    "c_share_contribution": ProtocolRound.C_SHARE_COMPUTATION,
    "partial_decryption": ProtocolRound.TRIPLE_RECONSTRUCTION,
    "protocol_complete": ProtocolRound.TRIPLE_RECONSTRUCTION,
}


def message_round(message: BaseModel) -> ProtocolRound:
    if isinstance(message, ProtocolAbort):
        return message.round
    return MESSAGE_ROUNDS[message.kind]


def parse_message(data: Any) -> BaseModel:
    """Decode a dict (or JSON string) into a concrete message model."""
    try:
        if isinstance(data, (str, bytes)):
            return _adapter.validate_json(data)
        return _adapter.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed protocol message: {exc.error_count()} error(s)") from exc


def dump_message(message: BaseModel) -> Dict[str, Any]:
    return message.model_dump(mode="json")


# -----------------------------------------------------------------------
# Structural validation
# -----------------------------------------------------------------------


def _check_vector(values: List[int], what: str, width: Optional[int] = None) -> None:
    if not values:
        raise ProtocolError(f"{what} is empty")
    if width is not None and len(values) != width:
        raise ProtocolError(f"{what} has dimension {len(values)}, expected {width}")
    if not all(field.is_element(v) for v in values):
        raise ProtocolError(f"{what} has a value outside the field")


def _check_ciphertext(ct: CiphertextWire, what: str) -> int:
    if not ct:
        raise ProtocolError(f"{what} has no components")
    width = len(ct[0])
    for i, comp in enumerate(ct):
        _check_vector(comp, f"{what}[{i}]", width)
    return width


def _same_width(widths: Iterable[int], what: str) -> None:
    if len(set(widths)) > 1:
        raise ProtocolError(f"{what}: ciphertext dimensions differ")


def validate_message(message: BaseModel, expected_sender: Optional[int] = None) -> None:
    """Raise ``ProtocolError`` unless *message* is structurally sound."""
    if expected_sender is not None and message.sender != expected_sender:
        raise ProtocolError(
            f"Message sender mismatch: expected {expected_sender}, got {message.sender}"
        )

    if isinstance(message, KeyGenContribution):
        _check_vector(message.public_polynomial, "public_polynomial")
        width = len(message.public_polynomial)
        if not message.commitments:
            raise ProtocolError("commitments are empty")
        for i, c in enumerate(message.commitments):
            _check_vector(c, f"commitments[{i}]", width)
        _check_vector(message.relin_h0, "relin_h0", width)
        _check_vector(message.relin_h1, "relin_h1", width)
        _check_vector(message.sub_share, "sub_share", width)
        if not message.proof:
            raise ProtocolError("proof is empty")
    elif isinstance(message, PublicKeyBroadcast):
        _check_vector(message.a, "a")
        _check_vector(message.b, "b", len(message.a))
        _check_vector(message.relin_share0, "relin_share0", len(message.a))
        _check_vector(message.relin_share1, "relin_share1", len(message.a))
    elif isinstance(message, EncryptedShares):
        _same_width(
            [_check_ciphertext(message.enc_a_i, "enc_a_i"), _check_ciphertext(message.enc_b_i, "enc_b_i")],
            "EncryptedShares",
        )
        if not message.commitment:
            raise ProtocolError("commitment is empty")
    elif isinstance(message, AggregatedResult):
        _same_width(
            [
                _check_ciphertext(message.enc_a, "enc_a"),
                _check_ciphertext(message.enc_b, "enc_b"),
                _check_ciphertext(message.enc_ab, "enc_ab"),
            ],
            "AggregatedResult",
        )
    elif isinstance(message, CShareContribution):
        _same_width(
            [_check_ciphertext(message.running, "running"), _check_ciphertext(message.enc_c_i, "enc_c_i")],
            "CShareContribution",
        )
    elif isinstance(message, PartialDecryption):
        _check_vector(message.decryption_share, "decryption_share")
        if message.x not in message.participants:
            raise ProtocolError("partial decryption x is not among its participants")
        if len(set(message.participants)) != len(message.participants):
            raise ProtocolError("duplicate participants in partial decryption")
    elif isinstance(message, ProtocolAbort):
        if not message.reason:
            raise ProtocolError("abort reason is empty")
