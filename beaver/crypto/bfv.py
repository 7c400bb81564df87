"""Ciphertext algebra for the BFV triple backend.

The triple protocol only relies on the algebraic contract of a
homomorphic scheme:

    Dec(Enc(x) + Enc(y)) = x + y
    Dec(Enc(x) - Enc(y)) = x - y
    Dec(Enc(x) * Enc(y)) = x * y

plus threshold decryption: each key-share holder produces a partial
decryption and the partials combine into the plaintext.
``CiphertextAlgebra`` states that contract; any engine that honours it can
drive ``beaver.protocol.bfv``.

``SimulatedBFV`` is the engine shipped here.  It is an RLWE-shaped,
noise-free simulation over F_p slot vectors:

* secret key  s (one vector, Shamir-shared slot-wise among the parties)
* public key  (a, b = -a*s)
* Enc(m)      = (m + r*b, r*a)               for fresh random r
* Dec(c)      = sum_k c_k * s^k              (slot 0 carries the value)
* c * d       = polynomial product of the component lists
* relin key   (r0, r1) with r0 + r1*s = s^2

Multiplication grows a ciphertext to three components; ``relinearize``
folds the s^2 component back through the relinearisation key.  A
ciphertext of size k needs (k-1)(t-1)+1 partial decryptions, so a
relinearised product needs t, like a fresh ciphertext.

THE SIMULATION PROVIDES NO SECURITY: without noise, a ciphertext and the
public key give away the plaintext by linear algebra.  It exists to
exercise the protocol, not to protect data.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Protocol, Sequence, Tuple

from pydantic import BaseModel, Field

from beaver.config import BFV_DEGREE, PRIME
from beaver.crypto import field
from beaver.crypto.polynomial import lagrange_coefficient
from beaver.errors import CryptographicError, InsufficientShares

Vector = Tuple[int, ...]


class BFVParams(BaseModel):
    degree: int = Field(default=BFV_DEGREE, ge=1)
    plaintext_modulus: int = PRIME
    security_level: int = 128


# Lattice dimension below which no noise setting reaches 80-bit security.
MIN_SECURE_DEGREE = 1024


def validate_params(params: BFVParams) -> BFVParams:
    """Raise ``CryptographicError`` unless the engine can run with *params*.

    Plaintexts are field elements, so the plaintext modulus must be PRIME.
    """
    if params.degree < 1:
        raise CryptographicError(f"BFV degree must be positive, got {params.degree}")
    if params.plaintext_modulus != PRIME:
        raise CryptographicError(
            f"Plaintext modulus {params.plaintext_modulus} is not the field prime {PRIME}"
        )
    if params.security_level < 1:
        raise CryptographicError(
            f"Target security level must be positive, got {params.security_level}"
        )
    return params


def estimate_security_level(params: BFVParams) -> int:
    """Heuristic bit security: log2(degree) * sqrt(log2(modulus))."""
    return int(math.log2(params.degree) * math.sqrt(math.log2(params.plaintext_modulus)))


def meets_security_target(params: BFVParams) -> bool:
    if params.degree < MIN_SECURE_DEGREE:
        return False
    return estimate_security_level(params) >= params.security_level


# -----------------------------------------------------------------------
# Key and ciphertext records
# -----------------------------------------------------------------------


@dataclass(frozen=True)
class PublicKey:
    a: Vector
    b: Vector

    @property
    def degree(self) -> int:
        return len(self.a)


@dataclass(frozen=True)
class SecretKey:
    """The full secret key; only exists in single-party tests."""

    s: Vector


@dataclass(frozen=True)
class SecretKeyShare:
    """One party's Shamir share of the secret key, slot by slot."""

    party_id: int
    x: int
    s: Vector


@dataclass(frozen=True)
class RelinKey:
    """(r0, r1) with r0 + r1*s = s^2, slot-wise."""

    r0: Vector
    r1: Vector


@dataclass(frozen=True)
class Ciphertext:
    components: Tuple[Vector, ...]

    @property
    def size(self) -> int:
        return len(self.components)

    @property
    def degree(self) -> int:
        return len(self.components[0])

    def as_lists(self) -> List[List[int]]:
        return [list(c) for c in self.components]

    @classmethod
    def from_lists(cls, components: Sequence[Sequence[int]]) -> "Ciphertext":
        if not components:
            raise CryptographicError("Ciphertext needs at least one component")
        width = len(components[0])
        if width == 0 or any(len(c) != width for c in components):
            raise CryptographicError("Ciphertext components differ in dimension")
        if any(not field.is_element(v) for c in components for v in c):
            raise CryptographicError("Ciphertext coefficient outside the field")
        return cls(tuple(tuple(c) for c in components))


# -----------------------------------------------------------------------
# Slot-vector helpers
# -----------------------------------------------------------------------


def zeros(degree: int) -> Vector:
    return (0,) * degree


def random_vector(degree: int) -> Vector:
    return tuple(field.random_element() for _ in range(degree))


def vec_add(u: Vector, v: Vector) -> Vector:
    return tuple(field.add(x, y) for x, y in zip(u, v))


def vec_sub(u: Vector, v: Vector) -> Vector:
    return tuple(field.sub(x, y) for x, y in zip(u, v))


def vec_mul(u: Vector, v: Vector) -> Vector:
    return tuple(field.mul(x, y) for x, y in zip(u, v))


def vec_neg(u: Vector) -> Vector:
    return tuple(field.neg(x) for x in u)


def vec_scale(u: Vector, k: int) -> Vector:
    return tuple(field.mul(x, k) for x in u)


def expand_seed(seed: bytes, degree: int) -> Vector:
    """Deterministic field vector from *seed* (SHA-256 in counter mode)."""
    out = []
    counter = 0
    while len(out) < degree:
        digest = hashlib.sha256(seed + counter.to_bytes(4, "big")).digest()
        out.append(int.from_bytes(digest[:8], "big") % PRIME)
        counter += 1
    return tuple(out)


def encode(value: int, degree: int) -> Vector:
    return (field.validate(value, "plaintext"),) + zeros(degree - 1)


# -----------------------------------------------------------------------
# Capability interface
# -----------------------------------------------------------------------


class CiphertextAlgebra(Protocol):
    def encrypt(self, pk: PublicKey, value: int) -> Ciphertext: ...

    def add(self, x: Ciphertext, y: Ciphertext) -> Ciphertext: ...

    def sub(self, x: Ciphertext, y: Ciphertext) -> Ciphertext: ...

    def multiply(self, x: Ciphertext, y: Ciphertext) -> Ciphertext: ...

    def relinearize(self, ct: Ciphertext, rlk: RelinKey) -> Ciphertext: ...

    def partial_decrypt(
        self, share: SecretKeyShare, ct: Ciphertext, participants: Sequence[int]
    ) -> Vector: ...

    def combine_partials(
        self, ct: Ciphertext, partials: Mapping[int, Vector], threshold: int
    ) -> int: ...


# -----------------------------------------------------------------------
# Simulated engine
# -----------------------------------------------------------------------


class SimulatedBFV:
    """Noise-free reference engine.  Not secure; see module docstring."""

    def __init__(self, params: BFVParams | None = None) -> None:
        self.params = validate_params(params or BFVParams())

    @property
    def degree(self) -> int:
        return self.params.degree

    # -- keys --------------------------------------------------------------

    def keygen(self) -> Tuple[PublicKey, SecretKey]:
        s = random_vector(self.degree)
        a = random_vector(self.degree)
        return PublicKey(a, vec_neg(vec_mul(a, s))), SecretKey(s)

    def relin_keygen(self, sk: SecretKey) -> RelinKey:
        """Single-holder relinearisation key; the threshold one comes from keygen."""
        r1 = random_vector(self.degree)
        return RelinKey(vec_sub(vec_mul(sk.s, sk.s), vec_mul(r1, sk.s)), r1)

    # -- encryption --------------------------------------------------------

    def encrypt(self, pk: PublicKey, value: int) -> Ciphertext:
        if pk.degree != self.degree:
            raise CryptographicError(
                f"Public key degree {pk.degree} != engine degree {self.degree}"
            )
        r = random_vector(self.degree)
        c0 = vec_add(encode(value, self.degree), vec_mul(r, pk.b))
        c1 = vec_mul(r, pk.a)
        return Ciphertext((c0, c1))

    def decrypt(self, sk: SecretKey, ct: Ciphertext) -> int:
        self._check(ct)
        acc = zeros(self.degree)
        power = (1,) * self.degree
        for comp in ct.components:
            acc = vec_add(acc, vec_mul(comp, power))
            power = vec_mul(power, sk.s)
        return acc[0]

    # -- homomorphic operations -------------------------------------------

    def _check(self, *cts: Ciphertext) -> None:
        for ct in cts:
            if ct.degree != self.degree:
                raise CryptographicError(
                    f"Ciphertext dimension {ct.degree} != engine degree {self.degree}"
                )

    def _pad(self, ct: Ciphertext, size: int) -> List[Vector]:
        return list(ct.components) + [zeros(self.degree)] * (size - ct.size)

    def add(self, x: Ciphertext, y: Ciphertext) -> Ciphertext:
        self._check(x, y)
        size = max(x.size, y.size)
        return Ciphertext(
            tuple(vec_add(u, v) for u, v in zip(self._pad(x, size), self._pad(y, size)))
        )

    def sub(self, x: Ciphertext, y: Ciphertext) -> Ciphertext:
        self._check(x, y)
        size = max(x.size, y.size)
        return Ciphertext(
            tuple(vec_sub(u, v) for u, v in zip(self._pad(x, size), self._pad(y, size)))
        )

    def multiply(self, x: Ciphertext, y: Ciphertext) -> Ciphertext:
        self._check(x, y)
        out = [zeros(self.degree) for _ in range(x.size + y.size - 1)]
        for i, u in enumerate(x.components):
            for j, v in enumerate(y.components):
                out[i + j] = vec_add(out[i + j], vec_mul(u, v))
        return Ciphertext(tuple(out))

    def relinearize(self, ct: Ciphertext, rlk: RelinKey) -> Ciphertext:
        """(c0, c1, c2) -> (c0 + c2*r0, c1 + c2*r1); size-2 input is returned as is."""
        self._check(ct)
        if len(rlk.r0) != self.degree or len(rlk.r1) != self.degree:
            raise CryptographicError("Relinearisation key has wrong dimension")
        if ct.size <= 2:
            return ct
        if ct.size > 3:
            raise CryptographicError(f"Cannot relinearise a size-{ct.size} ciphertext")
        c0, c1, c2 = ct.components
        return Ciphertext((vec_add(c0, vec_mul(c2, rlk.r0)), vec_add(c1, vec_mul(c2, rlk.r1))))

    def sum(self, cts: Sequence[Ciphertext]) -> Ciphertext:
        if not cts:
            raise CryptographicError("Cannot sum an empty ciphertext list")
        total = cts[0]
        for ct in cts[1:]:
            total = self.add(total, ct)
        return total

    # -- threshold decryption ---------------------------------------------

    @staticmethod
    def required_partials(ct: Ciphertext, threshold: int) -> int:
        """Partials needed: the key-power polynomial has degree (size-1)(t-1)."""
        return (ct.size - 1) * (threshold - 1) + 1

    def partial_decrypt(
        self, share: SecretKeyShare, ct: Ciphertext, participants: Sequence[int]
    ) -> Vector:
        """lambda_j * sum_{k>=1} c_k * s_j^k over the participant x-coordinates."""
        self._check(ct)
        if share.x not in participants:
            raise CryptographicError(f"Share x={share.x} is not among the participants")
        xs = list(participants)
        lam = lagrange_coefficient(xs.index(share.x), xs, 0)
        acc = zeros(self.degree)
        power = share.s
        for comp in ct.components[1:]:
            acc = vec_add(acc, vec_mul(comp, power))
            power = vec_mul(power, share.s)
        return vec_scale(acc, lam)

    def combine_partials(
        self, ct: Ciphertext, partials: Mapping[int, Vector], threshold: int
    ) -> int:
        """c_0 plus the partials; *partials* is keyed by share x-coordinate."""
        self._check(ct)
        needed = self.required_partials(ct, threshold)
        if len(partials) < needed:
            raise InsufficientShares(
                f"Need {needed} partial decryptions, got {len(partials)}"
            )
        acc = ct.components[0]
        for vector in partials.values():
            if len(vector) != self.degree:
                raise CryptographicError("Partial decryption has wrong dimension")
            acc = vec_add(acc, tuple(vector))
        return acc[0]

    def threshold_decrypt(
        self, shares: Sequence[SecretKeyShare], ct: Ciphertext, threshold: int
    ) -> int:
        """Run partial decryption for *shares* and combine, in one call."""
        participants = [s.x for s in shares]
        partials: Dict[int, Vector] = {
            s.x: self.partial_decrypt(s, ct, participants) for s in shares
        }
        return self.combine_partials(ct, partials, threshold)
