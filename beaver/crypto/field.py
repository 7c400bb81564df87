"""Prime-field arithmetic F_p.

All values are Python ints reduced mod PRIME.  Python ints are unbounded,
so products never overflow before reduction.
"""

from __future__ import annotations

import secrets

from beaver.config import PRIME
from beaver.errors import CryptographicError, FieldRangeError


def add(a: int, b: int) -> int:
    """Field addition."""
    return (a + b) % PRIME


def sub(a: int, b: int) -> int:
    """Field subtraction (wraps through PRIME, never negative)."""
    return (a - b) % PRIME


def mul(a: int, b: int) -> int:
    """Field multiplication."""
    return (a * b) % PRIME


def inv(a: int) -> int:
    """Multiplicative inverse via the extended Euclidean algorithm."""
    old_r, r = a % PRIME, PRIME
    old_s, s = 1, 0
    while r != 0:
        q = old_r // r
        old_r, r = r, old_r - q * r
        old_s, s = s, old_s - q * s
    if old_r != 1:
        raise CryptographicError(f"No modular inverse exists for {a} mod p")
    return old_s % PRIME


def div(a: int, b: int) -> int:
    """Field division a / b."""
    return mul(a, inv(b))


def neg(a: int) -> int:
    """Additive inverse."""
    return (-a) % PRIME


def pow_(a: int, e: int) -> int:
    """Field exponentiation."""
    return pow(a, e, PRIME)


def reduce(a: int) -> int:
    """Reduce an integer into [0, PRIME)."""
    return a % PRIME


def is_element(value: int) -> bool:
    return 0 <= value < PRIME


def validate(value: int, what: str = "value") -> int:
    """Return *value* unchanged if it is a field element, else raise."""
    if not is_element(value):
        raise FieldRangeError(f"{what} must lie in [0, p), got {value}")
    return value


def random_element() -> int:
    """Return a uniform random element in [0, PRIME)."""
    return secrets.randbelow(PRIME)


def random_nonzero() -> int:
    """Return a uniform random element in [1, PRIME)."""
    return 1 + secrets.randbelow(PRIME - 1)


def random_bytes(n: int) -> bytes:
    return secrets.token_bytes(n)
