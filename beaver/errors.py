"""Error taxonomy for the MPC core.

Every failure is raised to the immediate caller.  Nothing in this package
retries or recovers on its own: a silently repaired step inside a
cryptographic protocol can hide a security-relevant fault.

Verification helpers (``CompleteBeaverTriple.verify`` and the generators'
``verify_triple``) are the exception: they answer ``False`` instead of
raising, so "could not run" stays distinguishable from "ran, result invalid".
"""

from __future__ import annotations


class MPCError(Exception):
    """Base class for all errors raised by this package."""


class InvalidThreshold(MPCError, ValueError):
    """t == 0, t > n, or thresholds of related calls disagree."""

    def __init__(self, message: str = "Invalid threshold") -> None:
        super().__init__(message)


class InsufficientShares(MPCError):
    """Fewer shares than the threshold were supplied for reconstruction."""

    def __init__(self, message: str = "Insufficient shares for reconstruction") -> None:
        super().__init__(message)


class InvalidSecretShare(MPCError):
    """Operand shares that must be aligned carry different x-coordinates."""

    def __init__(self, message: str = "Invalid secret share") -> None:
        super().__init__(message)


class CryptographicError(MPCError):
    """Failed inverse, ciphertext dimension mismatch, failed product check."""


class ProtocolError(MPCError):
    """Out-of-order or wrong-party step, missing or malformed message."""


class FieldRangeError(MPCError, ValueError):
    """A value that must be a field element lies outside [0, PRIME)."""
