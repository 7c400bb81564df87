"""Party node FastAPI application.

Each node hosts one ``BFVBeaverParty`` (index from env var PARTY_INDEX)
and accepts protocol messages from its peers.  The protocol steps
themselves are driven locally; the node only receives.

Endpoints:
- POST /messages   – validate and buffer one protocol message
                     400 if malformed, 409 if it violates the protocol
- GET  /status     – phase, round, missing senders, transcript head
- POST /abort      – fail the local run and return the abort message
- GET  /health     – liveness
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel

from beaver.errors import ProtocolError
from beaver.logs import configure_logging
from beaver.protocol.bfv import BFVBeaverParty
from beaver.protocol.context import BFVBeaverConfig
from beaver.protocol.messages import dump_message, parse_message, validate_message

log = structlog.get_logger()


class AbortRequest(BaseModel):
    reason: str


class PartyState:
    """Per-node mutable state."""

    def __init__(
        self,
        index: int,
        config: Optional[BFVBeaverConfig] = None,
        session_id: str = "default",
    ) -> None:
        self.index = index
        self.party = BFVBeaverParty(index, config, session_id=session_id)
        self.accepted = 0
        self.rejected = 0


def create_app(state: PartyState | None = None) -> FastAPI:
    """Factory that creates a party node app.

    If *state* is not provided a new ``PartyState`` is created from the
    ``PARTY_INDEX`` environment variable.
    """
    if state is None:
        configure_logging()
        state = PartyState(int(os.environ.get("PARTY_INDEX", "0")))

    app = FastAPI(title=f"Beaver Party {state.index}")

    @app.post("/messages")
    async def post_message(
        body: Dict[str, Any],
        x_beaver_sender: Optional[int] = Header(default=None),
    ):
        try:
            message = parse_message(body)
            validate_message(message, x_beaver_sender)
        except ProtocolError as exc:
            state.rejected += 1
            raise HTTPException(400, str(exc))
        try:
            state.party.receive(message, transport_sender=x_beaver_sender)
        except ProtocolError as exc:
            state.rejected += 1
            log.warning("message_rejected", party=state.index, kind=message.kind, sender=message.sender)
            raise HTTPException(409, str(exc))
        state.accepted += 1
        return {"status": "accepted", "party": state.index, "kind": message.kind}

    @app.get("/status")
    async def status():
        info = state.party.context.status()
        info["accepted"] = state.accepted
        info["rejected"] = state.rejected
        return info

    @app.post("/abort")
    async def abort(req: AbortRequest):
        message = state.party.abort(req.reason)
        return {"status": "aborted", "party": state.index, "message": dump_message(message)}

    @app.get("/health")
    async def health():
        return {"status": "ok", "party": state.index}

    return app
