"""Threshold key generation for the BFV triple backend.

Every party i picks a random slot-wise polynomial f_i of degree t-1 and
publishes:

* its public polynomial    p_i = -a * f_i(0)          (slot-wise)
* linear commitments       C_ik = g * coeff_ik        (one vector per coefficient)
* relinearisation parts    h0_i = -u_i * a' + f_i(0),  h1_i = f_i(0) * a'
* a proof                  SHA-256 over (i, p_i, C_i, h0_i, h1_i)

and privately sends f_i(x_j) to every party j (x_j = j + 1).  The common
reference vectors ``a`` and ``a'`` are expanded from the session id, so
every party derives the same ones without a round.

Once all n contributions are in, each party j computes

    public key   (a, b = sum_i p_i)         = (a, -a * s),  s = sum_i f_i(0)
    key share    s_j = sum_i f_i(x_j)       = F(x_j),       F = sum_i f_i

F has degree t-1 and F(0) = s, so the shares are a Shamir sharing of the
secret key that nobody ever assembles.  Decryption combines them with
Lagrange weights (see ``SimulatedBFV.partial_decrypt``).

The relinearisation key needs a second exchange.  With h0 = sum h0_i =
-u*a' + s and h1 = sum h1_i = s*a', party j publishes

    (f_j(0) * h0,  (u_j - f_j(0)) * h1)

Summing both parts over every party gives r0 = s^2 - s^2*a', and with
r1 = h1 = s*a' the pair satisfies r0 + r1*s = s^2.  The second exchange
rides on the public key broadcast.

The commitments are linear in the coefficients, so a recipient can check
that its sub-share lies on the committed polynomial:

    g * f_i(x_j) == sum_k C_ik * x_j^k

and that the public polynomial matches the committed constant term:

    g * p_i == -a * C_i0

They catch malformed or inconsistent contributions; they do not hide the
coefficients and are not a substitute for real zero-knowledge proofs.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from beaver.config import BFV_DEGREE, COMMITMENT_BASE
from beaver.crypto import field, shamir
from beaver.crypto.bfv import (
    PublicKey,
    RelinKey,
    SecretKeyShare,
    Vector,
    expand_seed,
    random_vector,
    vec_add,
    vec_mul,
    vec_neg,
    vec_scale,
    vec_sub,
    zeros,
)
from beaver.crypto.polynomial import interpolate_at
from beaver.errors import ProtocolError

log = structlog.get_logger()


def party_x(party_id: int) -> int:
    """Shamir x-coordinate of a party's key share (party ids start at 0)."""
    return party_id + 1


def common_reference(session_id: str, degree: int) -> Vector:
    return expand_seed(f"beaver-keygen/{session_id}".encode(), degree)


def relin_reference(session_id: str, degree: int) -> Vector:
    return expand_seed(f"beaver-relin/{session_id}".encode(), degree)


def contribution_proof(
    party_id: int, public_polynomial: Sequence[int], commitments, relin_h0, relin_h1
) -> str:
    payload = json.dumps(
        {
            "party_id": party_id,
            "public_polynomial": list(public_polynomial),
            "commitments": [list(c) for c in commitments],
            "relin_h0": list(relin_h0),
            "relin_h1": list(relin_h1),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode()).hexdigest()


def _evaluate(coefficients: Sequence[Vector], x: int, degree: int) -> Vector:
    acc = zeros(degree)
    for coeff in reversed(coefficients):
        acc = vec_add(vec_scale(acc, x), coeff)
    return acc


@dataclass(frozen=True)
class KeyContribution:
    """The broadcast part of one party's keygen contribution."""

    party_id: int
    public_polynomial: Vector
    commitments: Tuple[Vector, ...]
    proof: str
    relin_h0: Vector
    relin_h1: Vector


class ThresholdBFVKeyGen:
    def __init__(
        self,
        party_id: int,
        party_count: int,
        threshold: int,
        session_id: str = "default",
        degree: int = BFV_DEGREE,
        verify_proofs: bool = True,
    ) -> None:
        shamir.validate_threshold(threshold, party_count)
        self.verify_proofs = verify_proofs
        self.party_id = party_id
        self.party_count = party_count
        self.threshold = threshold
        self.degree = degree
        self.a = common_reference(session_id, degree)
        self.relin_a = relin_reference(session_id, degree)
        # _coefficients[k] is the slot vector of coefficient k of f_i
        self._coefficients: Optional[List[Vector]] = None
        self._relin_mask: Optional[Vector] = None
        self._contributions: Dict[int, KeyContribution] = {}
        self._sub_shares: Dict[int, Vector] = {}
        # (h0, h1), known once every contribution is in
        self._relin_base: Optional[Tuple[Vector, Vector]] = None
        self._relin_shares: Dict[int, Tuple[Vector, Vector]] = {}

    # -- own contribution ------------------------------------------------

    def generate_contribution(self) -> KeyContribution:
        if self._coefficients is not None:
            raise ProtocolError(f"Party {self.party_id} already generated its contribution")
        coefficients = [random_vector(self.degree) for _ in range(self.threshold)]
        mask = random_vector(self.degree)
        secret = coefficients[0]
        public = vec_neg(vec_mul(self.a, secret))
        commitments = tuple(vec_scale(c, COMMITMENT_BASE) for c in coefficients)
        relin_h0 = vec_add(vec_neg(vec_mul(mask, self.relin_a)), secret)
        relin_h1 = vec_mul(secret, self.relin_a)
        contribution = KeyContribution(
            party_id=self.party_id,
            public_polynomial=public,
            commitments=commitments,
            proof=contribution_proof(self.party_id, public, commitments, relin_h0, relin_h1),
            relin_h0=relin_h0,
            relin_h1=relin_h1,
        )
        self._coefficients = coefficients
        self._relin_mask = mask
        self._contributions[self.party_id] = contribution
        self._sub_shares[self.party_id] = _evaluate(
            coefficients, party_x(self.party_id), self.degree
        )
        log.debug("keygen_contribution_generated", party=self.party_id)
        return contribution

    def sub_share_for(self, recipient: int) -> Vector:
        """f_i(x_j) for *recipient*; sent privately alongside the broadcast."""
        if self._coefficients is None:
            raise ProtocolError("Contribution not generated yet")
        if not 0 <= recipient < self.party_count:
            raise ProtocolError(f"Unknown recipient {recipient}")
        return _evaluate(self._coefficients, party_x(recipient), self.degree)

    # -- peers ------------------------------------------------------------

    def _check_vector(self, pid: int, values: Sequence[int], what: str) -> None:
        if len(values) != self.degree:
            raise ProtocolError(f"Party {pid}: {what} has wrong length")
        if not all(field.is_element(v) for v in values):
            raise ProtocolError(f"Party {pid}: {what} has a coefficient outside the field")

    def verify_contribution(self, contribution: KeyContribution, sub_share: Sequence[int]) -> None:
        """Raise ``ProtocolError`` unless *contribution* is well formed and consistent."""
        pid = contribution.party_id
        if not 0 <= pid < self.party_count:
            raise ProtocolError(f"Contribution from unknown party {pid}")
        if len(contribution.commitments) != self.threshold:
            raise ProtocolError(f"Party {pid}: commitments have wrong shape")
        self._check_vector(pid, contribution.public_polynomial, "public polynomial")
        for c in contribution.commitments:
            self._check_vector(pid, c, "commitment")
        self._check_vector(pid, contribution.relin_h0, "relinearisation part h0")
        self._check_vector(pid, contribution.relin_h1, "relinearisation part h1")
        self._check_vector(pid, sub_share, "sub-share")
        if not self.verify_proofs:
            return

        expected = contribution_proof(
            pid,
            contribution.public_polynomial,
            contribution.commitments,
            contribution.relin_h0,
            contribution.relin_h1,
        )
        if contribution.proof != expected:
            raise ProtocolError(f"Party {pid}: contribution proof does not verify")

        x = party_x(self.party_id)
        committed = zeros(self.degree)
        for k, c in enumerate(contribution.commitments):
            committed = vec_add(committed, vec_scale(c, field.pow_(x, k)))
        if vec_scale(tuple(sub_share), COMMITMENT_BASE) != committed:
            raise ProtocolError(f"Party {pid}: sub-share does not match commitments")

        lhs = vec_scale(contribution.public_polynomial, COMMITMENT_BASE)
        rhs = vec_neg(vec_mul(self.a, contribution.commitments[0]))
        if lhs != rhs:
            raise ProtocolError(f"Party {pid}: public polynomial does not match commitments")

    def add_contribution(self, contribution: KeyContribution, sub_share: Sequence[int]) -> None:
        pid = contribution.party_id
        if pid == self.party_id:
            raise ProtocolError(f"Party {pid} generates its own contribution locally")
        if pid in self._contributions:
            raise ProtocolError(f"Duplicate contribution from party {pid}")
        self.verify_contribution(contribution, sub_share)
        self._contributions[pid] = contribution
        self._sub_shares[pid] = tuple(sub_share)

    def has_all_contributions(self) -> bool:
        return len(self._contributions) == self.party_count

    def contributions_count(self) -> int:
        return len(self._contributions)

    def generate_keypair(self) -> Tuple[PublicKey, SecretKeyShare]:
        if not self.has_all_contributions():
            missing = sorted(set(range(self.party_count)) - set(self._contributions))
            raise ProtocolError(f"Missing keygen contributions from parties {missing}")
        b = zeros(self.degree)
        s = zeros(self.degree)
        h0 = zeros(self.degree)
        h1 = zeros(self.degree)
        for pid in range(self.party_count):
            contribution = self._contributions[pid]
            b = vec_add(b, contribution.public_polynomial)
            s = vec_add(s, self._sub_shares[pid])
            h0 = vec_add(h0, contribution.relin_h0)
            h1 = vec_add(h1, contribution.relin_h1)
        self._relin_base = (h0, h1)
        secret = self._coefficients[0]
        self._relin_shares[self.party_id] = (
            vec_mul(secret, h0),
            vec_mul(vec_sub(self._relin_mask, secret), h1),
        )
        log.info("threshold_keypair_derived", party=self.party_id, parties=self.party_count)
        return PublicKey(self.a, b), SecretKeyShare(self.party_id, party_x(self.party_id), s)

    # -- relinearisation key ----------------------------------------------

    def relin_share(self) -> Tuple[Vector, Vector]:
        """This party's second-exchange share; available after ``generate_keypair``."""
        if self._relin_base is None:
            raise ProtocolError(f"Party {self.party_id} has not derived its key pair yet")
        return self._relin_shares[self.party_id]

    def add_relin_share(self, party_id: int, share0: Sequence[int], share1: Sequence[int]) -> None:
        if not 0 <= party_id < self.party_count or party_id == self.party_id:
            raise ProtocolError(f"Relinearisation share from unexpected party {party_id}")
        if party_id in self._relin_shares:
            raise ProtocolError(f"Duplicate relinearisation share from party {party_id}")
        self._check_vector(party_id, share0, "relinearisation share")
        self._check_vector(party_id, share1, "relinearisation share")
        self._relin_shares[party_id] = (tuple(share0), tuple(share1))

    def relinearization_key(self) -> RelinKey:
        if self._relin_base is None:
            raise ProtocolError(f"Party {self.party_id} has not derived its key pair yet")
        missing = sorted(set(range(self.party_count)) - set(self._relin_shares))
        if missing:
            raise ProtocolError(f"Missing relinearisation shares from parties {missing}")
        r0 = zeros(self.degree)
        for share0, share1 in self._relin_shares.values():
            r0 = vec_add(r0, vec_add(share0, share1))
        return RelinKey(r0, self._relin_base[1])

    def reset(self) -> None:
        self._coefficients = None
        self._relin_mask = None
        self._contributions.clear()
        self._sub_shares.clear()
        self._relin_base = None
        self._relin_shares.clear()


def public_key_digest(pk: PublicKey) -> str:
    payload = json.dumps({"a": list(pk.a), "b": list(pk.b)}, separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()


def check_key_shares(pk: PublicKey, shares: Sequence[SecretKeyShare], threshold: int) -> bool:
    """True iff the first *threshold* shares interpolate to s with b = -a*s.

    Test and audit helper: it assembles the secret key in the clear.
    """
    if len(shares) < threshold:
        return False
    first = shares[:threshold]
    if any(len(s.s) != pk.degree for s in first):
        return False
    s = tuple(
        interpolate_at([(share.x, share.s[slot]) for share in first], 0)
        for slot in range(pk.degree)
    )
    return pk.b == vec_neg(vec_mul(pk.a, s))
