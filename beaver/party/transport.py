"""HTTP transport between party nodes.

Posts protocol messages to peers' ``/messages`` endpoint.  The transport
does not retry: any connection failure or non-2xx answer becomes a
``ProtocolError`` for the caller, who decides whether to abort the run.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog
from pydantic import BaseModel

from beaver.config import PARTY_URLS, TRANSPORT_TIMEOUT
from beaver.errors import ProtocolError
from beaver.protocol.messages import dump_message

log = structlog.get_logger()


class HttpTransport:
    def __init__(
        self,
        party_id: int,
        urls: Optional[Sequence[str]] = None,
        timeout: float = TRANSPORT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.party_id = party_id
        self.urls = list(urls if urls is not None else PARTY_URLS)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, message: BaseModel, recipient: int) -> Dict[str, Any]:
        if not 0 <= recipient < len(self.urls):
            raise ProtocolError(f"No URL configured for party {recipient}")
        url = f"{self.urls[recipient]}/messages"
        try:
            resp = await self._client.post(
                url,
                json=dump_message(message),
                headers={"X-Beaver-Sender": str(message.sender)},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text
            raise ProtocolError(
                f"Party {recipient} rejected {message.kind} ({exc.response.status_code}): {detail}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProtocolError(f"Cannot reach party {recipient}: {exc}") from exc
        log.debug("message_sent", kind=message.kind, sender=message.sender, recipient=recipient)
        return resp.json()

    async def broadcast(self, message: BaseModel) -> Dict[int, Dict[str, Any]]:
        """Send *message* to every peer except its sender."""
        replies: Dict[int, Dict[str, Any]] = {}
        for recipient in range(len(self.urls)):
            if recipient == message.sender:
                continue
            replies[recipient] = await self.send(message, recipient)
        return replies

    async def send_all(self, messages: Sequence[BaseModel]) -> List[Dict[str, Any]]:
        """Deliver point-to-point messages, each to its ``recipient``."""
        return [await self.send(m, m.recipient) for m in messages]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
