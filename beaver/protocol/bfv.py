"""BFV-based (fully distributed) Beaver triple protocol.

Each ``BFVBeaverParty`` owns one protocol context and exposes the
protocol steps as methods.  A step checks the caller's role and the
current phase before doing anything.  A step invoked out of order or by
the wrong party raises ``ProtocolError`` and leaves the context untouched.
Steps return the messages they produce; delivering them is the caller's
job (``InMemoryRouter`` here, ``beaver.party`` over HTTP).

    1    step1_keygen_contributions / step1_finalize_keygen   all parties
    2    step2_generate_random_shares                         all parties
    3    step3_encrypt_shares                                 all parties
    4    step4_homomorphic_sum                                party 0
    5    step5_homomorphic_multiply                           party 0
         accept_aggregate                                     parties 1 .. n-1
    6-7  step6_7_c_share                                      parties 0 .. n-2, in order
         partial_decryption                                   parties 0 .. n-2
    8    step8_final_decryption                               party n-1
         accept_completion                                    parties 0 .. n-2

Key generation also yields a relinearisation key, so the product Enc(a*b)
is folded back to two components in step 5 and its threshold decryption
needs t partials, the same as a fresh ciphertext.

Party i ends with an additive contribution (a_i, b_i, c_i) where c_i is
random for i < n-1 and c_{n-1} = ab - sum c_i comes out of the threshold
decryption.  ``BFVBeaverGenerator`` turns the n contributions into a
Shamir-shared triple with ``assemble_triple``, so a and b are the full
sums of all a_i and b_i.  Before assembling, the generator checks that
every (a_i, b_i) opens the commitment its party broadcast in step 3.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel

from beaver.config import PRIME
from beaver.crypto import field
from beaver.crypto.bfv import (
    Ciphertext,
    CiphertextAlgebra,
    RelinKey,
    SimulatedBFV,
    estimate_security_level,
    meets_security_target,
)
from beaver.errors import CryptographicError, MPCError, ProtocolError
from beaver.protocol.context import BFVBeaverConfig, BFVBeaverProtocolContext, ProtocolPhase
from beaver.protocol.keygen import KeyContribution, ThresholdBFVKeyGen, party_x, public_key_digest
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
    validate_message,
)
from beaver.triples.model import CompleteBeaverTriple, assemble_triple, next_triple_id

log = structlog.get_logger()

Phase = ProtocolPhase
Round = ProtocolRound


def share_commitment(a_i: int, b_i: int, party_id: int, nonce: bytes) -> str:
    """Hash commitment to a party's (a_i, b_i)."""
    h = hashlib.sha256()
    h.update(nonce)
    for v in (a_i, b_i, party_id):
        h.update(v.to_bytes(8, "big"))
    return h.hexdigest()


class BFVBeaverParty:
    def __init__(
        self,
        party_id: int,
        config: Optional[BFVBeaverConfig] = None,
        engine: Optional[CiphertextAlgebra] = None,
        session_id: str = "default",
    ) -> None:
        self.config = config or BFVBeaverConfig()
        self.context = BFVBeaverProtocolContext(self.config, party_id, session_id)
        self.engine = engine or SimulatedBFV(self.config.bfv_params)
        self.keygen = self._new_keygen()
        self._announced_keys: Dict[int, str] = {}
        self._opening: Optional[bytes] = None

    def _new_keygen(self) -> ThresholdBFVKeyGen:
        return ThresholdBFVKeyGen(
            self.party_id,
            self.config.party_count,
            self.config.threshold,
            session_id=self.context.session_id,
            degree=self.config.bfv_params.degree,
            verify_proofs=self.config.enable_zk_proofs,
        )

    @property
    def party_id(self) -> int:
        return self.context.party_id

    @property
    def phase(self) -> ProtocolPhase:
        return self.context.phase

    def _envelope(self) -> dict:
        return {"sender": self.party_id, "session_id": self.context.session_id}

    def _reject(self, reason: str, exc_type=ProtocolError) -> MPCError:
        """Fail the run because of bad peer data and return the error to raise."""
        self.context.fail(reason)
        return exc_type(reason)

    def _decode(self, components: Sequence[Sequence[int]], what: str) -> Ciphertext:
        try:
            return Ciphertext.from_lists(components)
        except CryptographicError as exc:
            raise self._reject(f"{what}: {exc}", CryptographicError) from exc

    # -- inbound -----------------------------------------------------------

    def receive(self, message: BaseModel, transport_sender: Optional[int] = None) -> None:
        """Accept one message from a peer.  Raises ``ProtocolError`` on rejection."""
        if isinstance(message, ProtocolAbort):
            validate_message(message, transport_sender)
            self.context.transcript.record("abort", party=self.party_id, sender=message.sender)
            self.context.fail(f"aborted by party {message.sender}: {message.reason}")
            return
        if isinstance(message, PublicKeyBroadcast):
            validate_message(message, transport_sender)
            if message.session_id != self.context.session_id:
                raise ProtocolError(f"Public key for session {message.session_id!r}")
            self.keygen.add_relin_share(message.sender, message.relin_share0, message.relin_share1)
            self._announced_keys[message.sender] = message.verification
            if self.context.public_key is not None:
                self._check_announced_keys()
            return
        if isinstance(message, KeyGenContribution) and message.recipient != self.party_id:
            raise ProtocolError(
                f"Keygen message for party {message.recipient} delivered to {self.party_id}"
            )
        self.context.add_message(message, transport_sender)

    def _check_announced_keys(self) -> None:
        mine = public_key_digest(self.context.public_key)
        for sender, digest in self._announced_keys.items():
            if digest != mine:
                raise self._reject(f"party {sender} derived a different public key")

    # -- step 1: threshold key generation ----------------------------------

    def step1_keygen_contributions(self) -> List[KeyGenContribution]:
        """One keygen message per peer, each carrying that peer's sub-share."""
        self.context.require_phase(Phase.INITIALIZED)
        self.context.transition(Phase.KEY_GENERATION)
        contribution = self.keygen.generate_contribution()
        return [
            KeyGenContribution(
                **self._envelope(),
                recipient=j,
                public_polynomial=list(contribution.public_polynomial),
                commitments=[list(c) for c in contribution.commitments],
                proof=contribution.proof,
                relin_h0=list(contribution.relin_h0),
                relin_h1=list(contribution.relin_h1),
                sub_share=list(self.keygen.sub_share_for(j)),
            )
            for j in range(self.config.party_count)
            if j != self.party_id
        ]

    def step1_finalize_keygen(self) -> PublicKeyBroadcast:
        ctx = self.context
        ctx.require_phase(Phase.KEY_GENERATION)
        ctx.require_messages(Round.THRESHOLD_KEYGEN)
        for sender, msg in sorted(ctx.messages_for(Round.THRESHOLD_KEYGEN).items()):
            contribution = KeyContribution(
                party_id=sender,
                public_polynomial=tuple(msg.public_polynomial),
                commitments=tuple(tuple(c) for c in msg.commitments),
                proof=msg.proof,
                relin_h0=tuple(msg.relin_h0),
                relin_h1=tuple(msg.relin_h1),
            )
            try:
                self.keygen.add_contribution(contribution, msg.sub_share)
            except ProtocolError as exc:
                raise self._reject(str(exc)) from exc

        pk, key_share = self.keygen.generate_keypair()
        ctx.public_key = pk
        ctx.secret_key_share = key_share
        self._check_announced_keys()
        ctx.transition(Phase.WAITING_FOR_SHARES)
        ctx.advance_round()
        share0, share1 = self.keygen.relin_share()
        return PublicKeyBroadcast(
            **self._envelope(),
            a=list(pk.a),
            b=list(pk.b),
            verification=public_key_digest(pk),
            relin_share0=list(share0),
            relin_share1=list(share1),
        )

    # -- steps 2-3: local randomness and encryption -------------------------

    def step2_generate_random_shares(self) -> None:
        self.context.require_phase(Phase.WAITING_FOR_SHARES)
        if self.context.my_shares is not None:
            raise ProtocolError(f"Party {self.party_id} already sampled a_i, b_i")
        self.context.my_shares = (field.random_element(), field.random_element())

    def step3_encrypt_shares(self) -> EncryptedShares:
        ctx = self.context
        ctx.require_phase(Phase.WAITING_FOR_SHARES)
        if ctx.my_shares is None:
            raise ProtocolError(f"Party {self.party_id}: a_i, b_i not sampled yet")
        if ctx.get_message(self.party_id, Round.ENCRYPTED_SHARES) is not None:
            raise ProtocolError(f"Party {self.party_id} already sent its encrypted shares")
        a_i, b_i = ctx.my_shares
        self._opening = field.random_bytes(16)
        msg = EncryptedShares(
            **self._envelope(),
            enc_a_i=self.engine.encrypt(ctx.public_key, a_i).as_lists(),
            enc_b_i=self.engine.encrypt(ctx.public_key, b_i).as_lists(),
            commitment=share_commitment(a_i, b_i, self.party_id, self._opening),
        )
        ctx.add_message(msg)
        return msg

    # -- steps 4-5: aggregation (party 0) -----------------------------------

    def _relinearization_key(self) -> RelinKey:
        """Assemble the relinearisation key once every share has arrived."""
        ctx = self.context
        if ctx.relin_key is None:
            ctx.relin_key = self.keygen.relinearization_key()
        return ctx.relin_key

    def _sum_encrypted_shares(self) -> Tuple[Ciphertext, Ciphertext]:
        received = self.context.messages_for(Round.ENCRYPTED_SHARES)
        enc_a = self.engine.sum(
            [self._decode(received[p].enc_a_i, f"enc_a_{p}") for p in sorted(received)]
        )
        enc_b = self.engine.sum(
            [self._decode(received[p].enc_b_i, f"enc_b_{p}") for p in sorted(received)]
        )
        return enc_a, enc_b

    def step4_homomorphic_sum(self) -> None:
        ctx = self.context
        if not ctx.is_aggregator:
            raise ProtocolError(f"Only party 0 may aggregate; called by party {self.party_id}")
        ctx.require_phase(Phase.WAITING_FOR_SHARES)
        if ctx.get_message(self.party_id, Round.ENCRYPTED_SHARES) is None:
            raise ProtocolError("Party 0 has not encrypted its own shares yet")
        ctx.require_messages(Round.ENCRYPTED_SHARES)

        enc_a, enc_b = self._sum_encrypted_shares()
        ctx.aggregated = (enc_a, enc_b, None)
        ctx.transition(Phase.HOMOMORPHIC_COMPUTATION)
        ctx.advance_round()
        log.info("bfv_shares_aggregated", party=self.party_id, contributions=ctx.party_count)

    def step5_homomorphic_multiply(self) -> AggregatedResult:
        """Enc(a*b), relinearised back to two components."""
        ctx = self.context
        if not ctx.is_aggregator:
            raise ProtocolError(f"Only party 0 may multiply; called by party {self.party_id}")
        ctx.require_phase(Phase.HOMOMORPHIC_COMPUTATION)
        rlk = self._relinearization_key()
        enc_a, enc_b, _ = ctx.aggregated
        enc_ab = self.engine.relinearize(self.engine.multiply(enc_a, enc_b), rlk)
        ctx.aggregated = (enc_a, enc_b, enc_ab)
        msg = AggregatedResult(
            **self._envelope(),
            enc_a=enc_a.as_lists(),
            enc_b=enc_b.as_lists(),
            enc_ab=enc_ab.as_lists(),
        )
        ctx.add_message(msg)
        ctx.transition(Phase.C_SHARE_GENERATION)
        ctx.advance_round()
        return msg

    def accept_aggregate(self) -> None:
        ctx = self.context
        if ctx.is_aggregator:
            raise ProtocolError("Party 0 produces the aggregate, it does not accept one")
        ctx.require_phase(Phase.WAITING_FOR_SHARES)
        if ctx.get_message(self.party_id, Round.ENCRYPTED_SHARES) is None:
            raise ProtocolError(f"Party {self.party_id} has not sent its encrypted shares")
        ctx.require_messages(Round.ENCRYPTED_SHARES)
        ctx.require_messages(Round.HOMOMORPHIC_AGGREGATION)
        rlk = self._relinearization_key()
        msg = ctx.get_message(0, Round.HOMOMORPHIC_AGGREGATION)
        enc_a = self._decode(msg.enc_a, "enc_a")
        enc_b = self._decode(msg.enc_b, "enc_b")
        enc_ab = self._decode(msg.enc_ab, "enc_ab")
        if (enc_a, enc_b) != self._sum_encrypted_shares():
            raise self._reject("party 0 aggregated shares that were never broadcast")
        if enc_ab != self.engine.relinearize(self.engine.multiply(enc_a, enc_b), rlk):
            raise self._reject("party 0 sent an inconsistent product ciphertext")
        ctx.aggregated = (enc_a, enc_b, enc_ab)
        ctx.transition(Phase.HOMOMORPHIC_COMPUTATION)
        ctx.transition(Phase.C_SHARE_GENERATION)
        ctx.advance_to(Round.C_SHARE_COMPUTATION)

    # -- steps 6-7: C-share chain ------------------------------------------

    def _running_ciphertext(self, upto: int) -> Ciphertext:
        """Enc(ab - c_0 - ... - c_upto); ``upto = -1`` is Enc(ab) itself."""
        if upto < 0:
            return self.context.aggregated[2]
        msg = self.context.get_message(upto, Round.C_SHARE_COMPUTATION)
        if msg is None:
            raise ProtocolError(f"Waiting for the C-share of party {upto}")
        return self._decode(msg.running, f"running_{upto}")

    def final_ciphertext(self) -> Ciphertext:
        """Walk the whole C-share chain, checking every link."""
        current = self._running_ciphertext(-1)
        for pid in range(self.config.party_count - 1):
            msg = self.context.get_message(pid, Round.C_SHARE_COMPUTATION)
            if msg is None:
                raise ProtocolError(f"Waiting for the C-share of party {pid}")
            expected = self.engine.sub(current, self._decode(msg.enc_c_i, f"enc_c_{pid}"))
            current = self._decode(msg.running, f"running_{pid}")
            if current != expected:
                raise self._reject(f"party {pid} broke the C-share chain")
        return current

    def step6_7_c_share(self) -> CShareContribution:
        ctx = self.context
        if ctx.is_last:
            raise ProtocolError("The last party derives its c share by decryption")
        ctx.require_phase(Phase.C_SHARE_GENERATION)
        if ctx.my_c_share is not None:
            raise ProtocolError(f"Party {self.party_id} already contributed its C-share")
        running = self._running_ciphertext(self.party_id - 1)
        c_i = field.random_element()
        enc_c_i = self.engine.encrypt(ctx.public_key, c_i)
        msg = CShareContribution(
            **self._envelope(),
            running=self.engine.sub(running, enc_c_i).as_lists(),
            enc_c_i=enc_c_i.as_lists(),
        )
        ctx.add_message(msg)
        ctx.my_c_share = c_i
        return msg

    def _participants(self) -> List[int]:
        return [party_x(j) for j in range(self.config.party_count)]

    def partial_decryption(self) -> PartialDecryption:
        ctx = self.context
        if ctx.is_last:
            raise ProtocolError("The last party combines partial decryptions")
        ctx.require_phase(Phase.C_SHARE_GENERATION)
        if ctx.my_c_share is None:
            raise ProtocolError(f"Party {self.party_id} has not contributed its C-share")
        ctx.require_messages(Round.C_SHARE_COMPUTATION)
        ct = self.final_ciphertext()
        participants = self._participants()
        share = self.engine.partial_decrypt(ctx.secret_key_share, ct, participants)
        ctx.transition(Phase.FINAL_DECRYPTION)
        ctx.advance_to(Round.TRIPLE_RECONSTRUCTION)
        return PartialDecryption(
            **self._envelope(),
            x=ctx.secret_key_share.x,
            decryption_share=list(share),
            participants=participants,
        )

    # -- step 8: final decryption (last party) -------------------------------

    def step8_final_decryption(self) -> ProtocolComplete:
        ctx = self.context
        if not ctx.is_last:
            raise ProtocolError(
                f"Only the last party may run the final decryption; called by party {self.party_id}"
            )
        ctx.require_phase(Phase.C_SHARE_GENERATION)
        if ctx.my_shares is None:
            raise ProtocolError(f"Party {self.party_id}: a_i, b_i not sampled yet")
        ctx.require_messages(Round.C_SHARE_COMPUTATION)
        ctx.require_messages(Round.TRIPLE_RECONSTRUCTION)

        ct = self.final_ciphertext()
        participants = self._participants()
        partials = {
            ctx.secret_key_share.x: self.engine.partial_decrypt(
                ctx.secret_key_share, ct, participants
            )
        }
        for sender, msg in ctx.messages_for(Round.TRIPLE_RECONSTRUCTION).items():
            if msg.x != party_x(sender) or msg.participants != participants:
                raise self._reject(f"party {sender} sent a partial decryption for the wrong set")
            partials[msg.x] = tuple(msg.decryption_share)

        ctx.transition(Phase.FINAL_DECRYPTION)
        ctx.advance_to(Round.TRIPLE_RECONSTRUCTION)
        try:
            ctx.my_c_share = self.engine.combine_partials(ct, partials, self.config.threshold)
        except MPCError as exc:
            raise self._reject(f"final decryption failed: {exc}", type(exc)) from exc
        ctx.triple_id = next_triple_id()
        ctx.transition(Phase.COMPLETED)
        log.info("bfv_final_decryption_done", party=self.party_id, triple_id=ctx.triple_id)
        return ProtocolComplete(**self._envelope(), triple_id=ctx.triple_id)

    def accept_completion(self) -> None:
        ctx = self.context
        if ctx.is_last:
            raise ProtocolError("The last party announces completion, it does not accept it")
        ctx.require_phase(Phase.FINAL_DECRYPTION)
        ctx.require_messages(Round.TRIPLE_RECONSTRUCTION)
        msg = ctx.get_message(ctx.last_party, Round.TRIPLE_RECONSTRUCTION)
        if not msg.success:
            raise self._reject(msg.error_message or "last party reported failure")
        ctx.triple_id = msg.triple_id
        ctx.transition(Phase.COMPLETED)

    # -- results and lifecycle ---------------------------------------------

    def local_contribution(self) -> Tuple[int, int, int]:
        """This party's additive (a_i, b_i, c_i); only after completion."""
        self.context.require_phase(Phase.COMPLETED)
        a_i, b_i = self.context.my_shares
        return a_i, b_i, self.context.my_c_share

    def share_opening(self) -> Tuple[int, int, bytes]:
        """(a_i, b_i, nonce) opening the step-3 commitment; only after completion."""
        self.context.require_phase(Phase.COMPLETED)
        a_i, b_i = self.context.my_shares
        return a_i, b_i, self._opening

    def check_opening(self, sender: int, a_i: int, b_i: int, nonce: bytes) -> bool:
        """True iff (a_i, b_i, nonce) opens the commitment *sender* broadcast."""
        msg = self.context.get_message(sender, Round.ENCRYPTED_SHARES)
        if msg is None:
            return False
        return msg.commitment == share_commitment(a_i, b_i, sender, nonce)

    def abort(self, reason: str) -> ProtocolAbort:
        msg = ProtocolAbort(**self._envelope(), reason=reason, round=self.context.current_round)
        self.context.fail(reason)
        return msg

    def reset(self, session_id: Optional[str] = None) -> None:
        self.context.reset(session_id)
        self.keygen = self._new_keygen()
        self._announced_keys.clear()
        self._opening = None


class InMemoryRouter:
    """Delivers messages between parties living in one process."""

    def __init__(self, parties: Sequence[BFVBeaverParty]) -> None:
        self.parties = {p.party_id: p for p in parties}
        self.delivered = 0

    def send(self, message: BaseModel, recipient: int) -> None:
        self.parties[recipient].receive(message, transport_sender=message.sender)
        self.delivered += 1

    def send_all(self, messages: Sequence[KeyGenContribution]) -> None:
        for msg in messages:
            self.send(msg, msg.recipient)

    def broadcast(self, message: BaseModel) -> None:
        for pid in self.parties:
            if pid != message.sender:
                self.send(message, pid)


class BFVBeaverGenerator:
    """Runs n ``BFVBeaverParty`` instances in-process; satisfies ``BeaverTripleGenerator``.

    Every triple uses a fresh session and therefore a fresh threshold key.
    ``audit=True`` attaches the clear (a, b, c) for tests.
    """

    def __init__(
        self,
        config: Optional[BFVBeaverConfig] = None,
        engine: Optional[CiphertextAlgebra] = None,
        audit: bool = False,
    ) -> None:
        self.config = (config or BFVBeaverConfig()).check()
        self.engine = engine or SimulatedBFV(self.config.bfv_params)
        self.audit = audit
        self.last_parties: List[BFVBeaverParty] = []
        params = self.config.bfv_params
        if not meets_security_target(params):
            log.warning(
                "bfv_params_below_security_target",
                degree=params.degree,
                estimated_bits=estimate_security_level(params),
                target_bits=params.security_level,
            )

    def run_protocol(self) -> List[BFVBeaverParty]:
        session = secrets.token_hex(8)
        n = self.config.party_count
        parties = [BFVBeaverParty(i, self.config, self.engine, session) for i in range(n)]
        self.last_parties = parties
        router = InMemoryRouter(parties)
        leader, last = parties[0], parties[-1]

        try:
            for p in parties:
                router.send_all(p.step1_keygen_contributions())
            for p in parties:
                router.broadcast(p.step1_finalize_keygen())
            for p in parties:
                p.step2_generate_random_shares()
                router.broadcast(p.step3_encrypt_shares())
            leader.step4_homomorphic_sum()
            router.broadcast(leader.step5_homomorphic_multiply())
            for p in parties[1:]:
                p.accept_aggregate()
            for p in parties[:-1]:
                router.broadcast(p.step6_7_c_share())
            for p in parties[:-1]:
                router.send(p.partial_decryption(), last.party_id)
            router.broadcast(last.step8_final_decryption())
            for p in parties[:-1]:
                p.accept_completion()
        except MPCError as exc:
            for p in parties:
                p.context.fail(str(exc))
            raise
        log.debug("bfv_protocol_run", session=session, messages=router.delivered)
        return parties

    @staticmethod
    def check_openings(parties: Sequence[BFVBeaverParty]) -> None:
        """Every party's (a_i, b_i) must open the commitment it broadcast."""
        verifier = parties[0]
        for p in parties:
            a_i, b_i, nonce = p.share_opening()
            if not verifier.check_opening(p.party_id, a_i, b_i, nonce):
                raise CryptographicError(
                    f"Party {p.party_id}: shares do not open the step-3 commitment"
                )

    def generate_single(self) -> CompleteBeaverTriple:
        parties = self.run_protocol()
        self.check_openings(parties)
        contributions = [p.local_contribution() for p in parties]
        a = sum(c[0] for c in contributions) % PRIME
        b = sum(c[1] for c in contributions) % PRIME
        c = sum(c[2] for c in contributions) % PRIME
        if c != field.mul(a, b):
            raise CryptographicError("BFV product check failed")
        return assemble_triple(
            contributions,
            self.config.threshold,
            triple_id=parties[-1].context.triple_id,
            reference=(a, b, c) if self.audit else None,
        )

    def generate_batch(self, count: int) -> List[CompleteBeaverTriple]:
        if count < 0:
            raise ProtocolError(f"Batch size must be non-negative, got {count}")
        return [self.generate_single() for _ in range(count)]

    def verify_triple(self, triple: CompleteBeaverTriple) -> bool:
        return triple.verify(self.config.threshold)

    def get_party_count(self) -> int:
        return self.config.party_count

    def get_threshold(self) -> int:
        return self.config.threshold
