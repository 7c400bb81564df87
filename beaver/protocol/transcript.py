"""Hash-chained protocol transcript.

Every BFV party context records accepted messages and phase transitions
here.  Each entry carries the SHA-256 hash of the previous one, so
tampering with any recorded step is detectable.  Entries are kept in
memory; only metadata (kinds, senders, rounds, phases) is recorded, never
ciphertexts or key material.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List

GENESIS = "0" * 64


@dataclass
class TranscriptEntry:
    timestamp: float
    event: str
    data: Dict[str, Any]
    prev_hash: str
    entry_hash: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "event": self.event,
            "data": self.data,
            "prev_hash": self.prev_hash,
            "entry_hash": self.entry_hash,
        }


def _digest(timestamp: float, event: str, data: Dict[str, Any], prev_hash: str) -> str:
    payload = json.dumps(
        {"timestamp": timestamp, "event": event, "data": data, "prev_hash": prev_hash},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode()).hexdigest()


class ProtocolTranscript:
    """Append-only record of one party's protocol run."""

    def __init__(self) -> None:
        self._entries: List[TranscriptEntry] = []
        self._head = GENESIS

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def head(self) -> str:
        return self._head

    def record(self, event: str, **data: Any) -> TranscriptEntry:
        ts = time.time()
        entry = TranscriptEntry(
            timestamp=ts,
            event=event,
            data=data,
            prev_hash=self._head,
            entry_hash=_digest(ts, event, data, self._head),
        )
        self._entries.append(entry)
        self._head = entry.entry_hash
        return entry

    def entries(self) -> List[Dict[str, Any]]:
        return [e.as_dict() for e in self._entries]

    def events(self) -> List[str]:
        return [e.event for e in self._entries]

    def verify_chain(self) -> bool:
        prev = GENESIS
        for e in self._entries:
            if e.prev_hash != prev:
                return False
            if e.entry_hash != _digest(e.timestamp, e.event, e.data, e.prev_hash):
                return False
            prev = e.entry_hash
        return True
