"""Two-party OLE triple protocol (n = 2, t = 2).

P1 holds (x_A, y_A), PN holds (x_B, y_B).  The triple is

    a = x_A + x_B,   b = y_A + y_B,
    c = x_A*y_A + x_B*y_B + x_A*y_B + x_B*y_A

and the two cross terms come from two OLE calls:

    OLE 1: P1 sends (x_A, r1), PN evaluates at y_B -> x_A*y_B + r1
    OLE 2: PN sends (x_B, r2), P1 evaluates at y_A -> x_B*y_A + r2

so that c_A = x_A*y_A - r1 + OLE2 and c_B = x_B*y_B + OLE1 - r2 add to c.

Each party runs a 7-step state machine:

    1-2  RANDOM_GENERATION   sample x, y
    3-4  FIRST_OLE           P1 offers, PN evaluates
    5-6  SECOND_OLE          PN offers, P1 evaluates
    7    FINAL_COMPUTATION   local additive contribution (x, y, c)

Calling a step out of order raises ``ProtocolError``.  Within a step the
OLE sender must act before the receiver.
"""

from __future__ import annotations

import enum
from typing import List, Optional, Tuple

import structlog

from beaver.crypto import field
from beaver.crypto.ole import ObliviousLinearEvaluation
from beaver.errors import CryptographicError, ProtocolError
from beaver.triples.model import CompleteBeaverTriple, assemble_triple, next_triple_id

log = structlog.get_logger()

TWO_PARTY_THRESHOLD = 2
TWO_PARTY_COUNT = 2


class PartyRole(str, enum.Enum):
    P1 = "P1"
    PN = "PN"


class ProtocolStep(str, enum.Enum):
    RANDOM_GENERATION = "random_generation"
    FIRST_OLE = "first_ole"
    SECOND_OLE = "second_ole"
    FINAL_COMPUTATION = "final_computation"
    COMPLETED = "completed"


class TwoPartyOLEProtocol:
    """One party's side of the two-party protocol."""

    def __init__(
        self,
        role: PartyRole,
        ole: ObliviousLinearEvaluation,
        session: str = "0",
    ) -> None:
        self.role = role
        self.ole = ole
        self.session = session
        self.step = ProtocolStep.RANDOM_GENERATION
        self._x: Optional[int] = None
        self._y: Optional[int] = None
        self._mask: Optional[int] = None
        self._received: Optional[int] = None

    def _require(self, expected: ProtocolStep) -> None:
        if self.step != expected:
            raise ProtocolError(
                f"{self.role.value}: expected step {expected.value}, at {self.step.value}"
            )

    def _tag(self, which: str) -> str:
        return f"{self.session}/{which}"

    def step1_2_generate_random_values(self) -> None:
        self._require(ProtocolStep.RANDOM_GENERATION)
        self._x = field.random_element()
        self._y = field.random_element()
        self.step = ProtocolStep.FIRST_OLE

    def step3_4_first_ole(self) -> None:
        self._require(ProtocolStep.FIRST_OLE)
        if self.role is PartyRole.P1:
            self._mask = field.random_element()
            self.ole.offer(self._tag("ole1"), self._x, self._mask)
        else:
            self._received = self.ole.evaluate(self._tag("ole1"), self._y)
        self.step = ProtocolStep.SECOND_OLE

    def step5_6_second_ole(self) -> None:
        self._require(ProtocolStep.SECOND_OLE)
        if self.role is PartyRole.PN:
            self._mask = field.random_element()
            self.ole.offer(self._tag("ole2"), self._x, self._mask)
        else:
            self._received = self.ole.evaluate(self._tag("ole2"), self._y)
        self.step = ProtocolStep.FINAL_COMPUTATION

    def step7_final_computation(self) -> Tuple[int, int, int]:
        """This party's additive contribution (a_i, b_i, c_i)."""
        self._require(ProtocolStep.FINAL_COMPUTATION)
        local = field.mul(self._x, self._y)
        c = field.add(field.sub(local, self._mask), self._received)
        self.step = ProtocolStep.COMPLETED
        return self._x, self._y, c

    def reset(self, session: Optional[str] = None) -> None:
        if session is not None:
            self.session = session
        self.step = ProtocolStep.RANDOM_GENERATION
        self._x = self._y = self._mask = self._received = None

    def is_completed(self) -> bool:
        return self.step is ProtocolStep.COMPLETED


class TwoPartyBeaverGenerator:
    """Runs both sides in-process; satisfies ``BeaverTripleGenerator``."""

    def __init__(self, verify: bool = True, audit: bool = False) -> None:
        self.verify = verify
        self.audit = audit
        self.ole = ObliviousLinearEvaluation()
        self.p1 = TwoPartyOLEProtocol(PartyRole.P1, self.ole)
        self.pn = TwoPartyOLEProtocol(PartyRole.PN, self.ole)

    def execute_two_party_protocol(self) -> CompleteBeaverTriple:
        tid = next_triple_id()
        for party in (self.p1, self.pn):
            party.reset(str(tid))

        self.p1.step1_2_generate_random_values()
        self.pn.step1_2_generate_random_values()
        # OLE 1: P1 sends, PN receives
        self.p1.step3_4_first_ole()
        self.pn.step3_4_first_ole()
        # OLE 2: PN sends, P1 receives
        self.pn.step5_6_second_ole()
        self.p1.step5_6_second_ole()
        contrib_a = self.p1.step7_final_computation()
        contrib_b = self.pn.step7_final_computation()

        a = field.add(contrib_a[0], contrib_b[0])
        b = field.add(contrib_a[1], contrib_b[1])
        c = field.add(contrib_a[2], contrib_b[2])
        if c != field.mul(a, b):
            raise CryptographicError(f"Two-party OLE product check failed for triple {tid}")

        triple = assemble_triple(
            [contrib_a, contrib_b],
            TWO_PARTY_THRESHOLD,
            triple_id=tid,
            reference=(a, b, c) if self.audit else None,
        )
        if self.verify and not triple.verify(TWO_PARTY_THRESHOLD):
            raise CryptographicError(f"Two-party triple {tid} failed verification")
        log.debug("two_party_triple_generated", triple_id=tid)
        return triple

    def generate_single(self) -> CompleteBeaverTriple:
        return self.execute_two_party_protocol()

    def generate_batch(self, count: int) -> List[CompleteBeaverTriple]:
        if count < 0:
            raise ProtocolError(f"Batch size must be non-negative, got {count}")
        return [self.execute_two_party_protocol() for _ in range(count)]

    def verify_triple(self, triple: CompleteBeaverTriple) -> bool:
        return triple.verify(TWO_PARTY_THRESHOLD)

    def get_party_count(self) -> int:
        return TWO_PARTY_COUNT

    def get_threshold(self) -> int:
        return TWO_PARTY_THRESHOLD
