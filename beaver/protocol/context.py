"""Per-party state of one BFV triple run.

The context is a small state machine: a ``ProtocolPhase``, the current
``ProtocolRound`` and a buffer of received messages keyed by
(sender, round).  Phase changes go through ``transition``, which accepts
only the edges in ``ALLOWED_TRANSITIONS``; anything else is a
``ProtocolError``.  ``fail`` moves to ``Failed`` from any live phase and
``reset`` returns a finished or failed context to ``Initialized``.

Round completeness (``has_required_messages``):

    THRESHOLD_KEYGEN         every party except self
    ENCRYPTED_SHARES         every party except self
    HOMOMORPHIC_AGGREGATION  party 0
    C_SHARE_COMPUTATION      parties 0 .. n-2
    TRIPLE_RECONSTRUCTION    last party: parties 0 .. n-2 (partial decryptions)
                             others:     party n-1 (completion notice)

A party buffers its own outgoing messages too, which is how party 0
satisfies the aggregation round and parties 0 .. n-2 the C-share round.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field as dc_field
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

import structlog
from pydantic import BaseModel, Field

from beaver.config import NUM_PARTIES, THRESHOLD
from beaver.crypto.bfv import (
    BFVParams,
    Ciphertext,
    PublicKey,
    RelinKey,
    SecretKeyShare,
    validate_params,
)
from beaver.errors import InvalidThreshold, ProtocolError
from beaver.protocol.messages import ProtocolRound, message_round, validate_message
from beaver.protocol.transcript import ProtocolTranscript

log = structlog.get_logger()

UNBUFFERED_KINDS = frozenset({"public_key_broadcast", "protocol_abort"})


class BFVBeaverConfig(BaseModel):
    party_count: int = Field(default=NUM_PARTIES, ge=1)
    threshold: int = Field(default=THRESHOLD, ge=1)
    bfv_params: BFVParams = Field(default_factory=BFVParams)
    enable_zk_proofs: bool = True

    def check(self) -> "BFVBeaverConfig":
        """Raise ``InvalidThreshold`` unless 1 <= t <= n.

        Unusable BFV parameters raise ``CryptographicError``.
        """
        if self.threshold > self.party_count:
            raise InvalidThreshold(
                f"Invalid threshold: t={self.threshold}, n={self.party_count}"
            )
        validate_params(self.bfv_params)
        return self


class ProtocolPhase(str, enum.Enum):
    INITIALIZED = "initialized"
    KEY_GENERATION = "key_generation"
    WAITING_FOR_SHARES = "waiting_for_shares"
    HOMOMORPHIC_COMPUTATION = "homomorphic_computation"
    C_SHARE_GENERATION = "c_share_generation"
    FINAL_DECRYPTION = "final_decryption"
    COMPLETED = "completed"
    FAILED = "failed"


P = ProtocolPhase

ALLOWED_TRANSITIONS: Dict[ProtocolPhase, FrozenSet[ProtocolPhase]] = {
    P.INITIALIZED: frozenset({P.KEY_GENERATION}),
    P.KEY_GENERATION: frozenset({P.WAITING_FOR_SHARES}),
    P.WAITING_FOR_SHARES: frozenset({P.HOMOMORPHIC_COMPUTATION}),
    P.HOMOMORPHIC_COMPUTATION: frozenset({P.C_SHARE_GENERATION}),
    P.C_SHARE_GENERATION: frozenset({P.FINAL_DECRYPTION}),
    P.FINAL_DECRYPTION: frozenset({P.COMPLETED}),
    P.COMPLETED: frozenset(),
    P.FAILED: frozenset(),
}


@dataclass
class BFVBeaverProtocolContext:
    config: BFVBeaverConfig
    party_id: int
    session_id: str = "default"
    phase: ProtocolPhase = ProtocolPhase.INITIALIZED
    failure_reason: Optional[str] = None
    current_round: ProtocolRound = ProtocolRound.THRESHOLD_KEYGEN
    received: Dict[Tuple[int, ProtocolRound], BaseModel] = dc_field(default_factory=dict)
    public_key: Optional[PublicKey] = None
    secret_key_share: Optional[SecretKeyShare] = None
    relin_key: Optional[RelinKey] = None
    my_shares: Optional[Tuple[int, int]] = None
    my_c_share: Optional[int] = None
    aggregated: Optional[Tuple[Ciphertext, Ciphertext, Ciphertext]] = None
    triple_id: Optional[int] = None
    transcript: ProtocolTranscript = dc_field(default_factory=ProtocolTranscript)

    def __post_init__(self) -> None:
        self.config.check()
        if not 0 <= self.party_id < self.config.party_count:
            raise ProtocolError(
                f"party_id {self.party_id} out of range for {self.config.party_count} parties"
            )

    # -- roles -------------------------------------------------------------

    @property
    def party_count(self) -> int:
        return self.config.party_count

    @property
    def last_party(self) -> int:
        return self.config.party_count - 1

    @property
    def is_aggregator(self) -> bool:
        return self.party_id == 0

    @property
    def is_last(self) -> bool:
        return self.party_id == self.last_party

    # -- phases ------------------------------------------------------------

    def transition(self, target: ProtocolPhase) -> None:
        if target is ProtocolPhase.FAILED:
            raise ProtocolError("Use fail() to enter the failed phase")
        if target not in ALLOWED_TRANSITIONS[self.phase]:
            raise ProtocolError(
                f"Party {self.party_id}: illegal transition {self.phase.value} -> {target.value}"
            )
        self.transcript.record(
            "phase", party=self.party_id, from_phase=self.phase.value, to_phase=target.value
        )
        log.debug("bfv_phase", party=self.party_id, phase=target.value)
        self.phase = target

    def require_phase(self, *phases: ProtocolPhase) -> None:
        if self.phase not in phases:
            expected = ", ".join(p.value for p in phases)
            raise ProtocolError(
                f"Party {self.party_id}: expected phase {expected}, at {self.phase.value}"
            )

    def fail(self, reason: str) -> None:
        if self.phase in (ProtocolPhase.COMPLETED, ProtocolPhase.FAILED):
            return
        self.transcript.record("failed", party=self.party_id, reason=reason)
        log.warning("bfv_protocol_failed", party=self.party_id, reason=reason)
        self.phase = ProtocolPhase.FAILED
        self.failure_reason = reason

    @property
    def is_failed(self) -> bool:
        return self.phase is ProtocolPhase.FAILED

    # -- rounds ------------------------------------------------------------

    def advance_round(self) -> ProtocolRound:
        nxt = self.current_round.next()
        if nxt is None:
            raise ProtocolError(f"Party {self.party_id}: no round after {self.current_round.value}")
        self.current_round = nxt
        self.transcript.record("round", party=self.party_id, round=nxt.value)
        return nxt

    def advance_to(self, target: ProtocolRound) -> None:
        """Advance round by round until *target*; never moves backwards."""
        order = list(ProtocolRound)
        if order.index(target) < order.index(self.current_round):
            raise ProtocolError(
                f"Party {self.party_id}: cannot go back from {self.current_round.value} to {target.value}"
            )
        while self.current_round is not target:
            self.advance_round()

    # -- messages ----------------------------------------------------------

    def add_message(self, message: BaseModel, transport_sender: Optional[int] = None) -> None:
        """Validate and buffer *message*.  Raises ``ProtocolError`` on rejection."""
        if self.is_failed:
            raise ProtocolError(f"Party {self.party_id}: protocol failed ({self.failure_reason})")
        if message.kind in UNBUFFERED_KINDS:
            raise ProtocolError(f"{message.kind} messages are handled on receipt, not buffered")
        validate_message(message, transport_sender)
        if not 0 <= message.sender < self.party_count:
            raise ProtocolError(f"Message from unknown party {message.sender}")
        if message.session_id != self.session_id:
            raise ProtocolError(
                f"Message for session {message.session_id!r}, expected {self.session_id!r}"
            )
        rnd = message_round(message)
        order = list(ProtocolRound)
        if order.index(rnd) < order.index(self.current_round):
            raise ProtocolError(f"Late message for finished round {rnd.value}")
        key = (message.sender, rnd)
        if key in self.received:
            raise ProtocolError(f"Duplicate {rnd.value} message from party {message.sender}")
        self.received[key] = message
        self.transcript.record(
            "message", party=self.party_id, sender=message.sender, kind=message.kind, round=rnd.value
        )

    def get_message(self, sender: int, rnd: ProtocolRound) -> Optional[BaseModel]:
        return self.received.get((sender, rnd))

    def messages_for(self, rnd: ProtocolRound) -> Dict[int, BaseModel]:
        return {sender: m for (sender, r), m in self.received.items() if r is rnd}

    def required_senders(self, rnd: Optional[ProtocolRound] = None) -> Set[int]:
        rnd = rnd or self.current_round
        everyone = set(range(self.party_count))
        if rnd in (ProtocolRound.THRESHOLD_KEYGEN, ProtocolRound.ENCRYPTED_SHARES):
            return everyone - {self.party_id}
        if rnd is ProtocolRound.HOMOMORPHIC_AGGREGATION:
            return {0}
        if rnd is ProtocolRound.C_SHARE_COMPUTATION:
            return set(range(self.party_count - 1))
        if self.is_last:
            return set(range(self.party_count - 1))
        return {self.last_party}

    def missing_senders(self, rnd: Optional[ProtocolRound] = None) -> List[int]:
        rnd = rnd or self.current_round
        present = set(self.messages_for(rnd))
        return sorted(self.required_senders(rnd) - present)

    def has_required_messages(self, rnd: Optional[ProtocolRound] = None) -> bool:
        return not self.missing_senders(rnd)

    def require_messages(self, rnd: ProtocolRound) -> None:
        missing = self.missing_senders(rnd)
        if missing:
            raise ProtocolError(
                f"Party {self.party_id}: round {rnd.value} still missing parties {missing}"
            )

    # -- lifecycle ---------------------------------------------------------

    def reset(self, session_id: Optional[str] = None) -> None:
        """Discard all run state, including derived keys."""
        self.transcript.record("reset", party=self.party_id)
        if session_id is not None:
            self.session_id = session_id
        self.phase = ProtocolPhase.INITIALIZED
        self.failure_reason = None
        self.current_round = ProtocolRound.THRESHOLD_KEYGEN
        self.received.clear()
        self.public_key = None
        self.secret_key_share = None
        self.relin_key = None
        self.my_shares = None
        self.my_c_share = None
        self.aggregated = None
        self.triple_id = None

    def status(self) -> Dict[str, object]:
        return {
            "party_id": self.party_id,
            "session_id": self.session_id,
            "phase": self.phase.value,
            "failure_reason": self.failure_reason,
            "round": self.current_round.value,
            "buffered": len(self.received),
            "missing": self.missing_senders(),
            "transcript_head": self.transcript.head,
        }
