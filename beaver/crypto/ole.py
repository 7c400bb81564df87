"""Oblivious Linear Evaluation (ideal functionality).

OLE is a two-party primitive: the sender holds (alpha, beta), the receiver
holds x, and the receiver learns alpha*x + beta and nothing else while the
sender learns nothing.  This module models the ideal functionality: a
trusted box that both sides talk to.  Each offer is consumed by exactly
one evaluation.

Usage::

    ole = ObliviousLinearEvaluation()
    ole.offer("t1/a0*b1", alpha, beta)    # sender
    v = ole.evaluate("t1/a0*b1", x)        # receiver -> alpha*x + beta
"""

from __future__ import annotations

from typing import Dict, Tuple

import structlog

from beaver.crypto import field
from beaver.errors import ProtocolError

log = structlog.get_logger()


class ObliviousLinearEvaluation:
    def __init__(self) -> None:
        self._offers: Dict[str, Tuple[int, int]] = {}
        self.evaluations = 0

    def offer(self, tag: str, alpha: int, beta: int) -> None:
        """Sender side: register the linear function alpha*x + beta under *tag*."""
        if tag in self._offers:
            raise ProtocolError(f"OLE offer {tag!r} already pending")
        field.validate(alpha, "alpha")
        field.validate(beta, "beta")
        self._offers[tag] = (alpha, beta)

    def evaluate(self, tag: str, x: int) -> int:
        """Receiver side: learn alpha*x + beta for the offer under *tag*."""
        try:
            alpha, beta = self._offers.pop(tag)
        except KeyError:
            raise ProtocolError(f"No OLE offer pending for {tag!r}") from None
        field.validate(x, "x")
        self.evaluations += 1
        log.debug("ole_evaluated", tag=tag)
        return field.add(field.mul(alpha, x), beta)

    def pending(self) -> int:
        return len(self._offers)
