"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Server-Sent Events transport: server → client messages over a push stream,
client → server messages via ``POST <messages_path>?sessionId=...``.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import AsyncIterator
from typing import Any

from ..errors import TransportWriteFailure
from .base import TransportClient

_CLOSE = object()


def format_event(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


class SSEClient(TransportClient):
    """
    SSE peer backed by a bounded outbound queue.

    A full queue means the consumer stopped reading; the write fails and the
    client is dropped rather than buffering without bound.
    """

    kind = "sse"

    def __init__(
        self,
        *,
        messages_path: str,
        max_queue: int = 256,
        heartbeat_s: float = 30.0,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        super().__init__(f"sse-{self.session_id}")
        self.messages_path = messages_path
        self.heartbeat_s = heartbeat_s
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_queue)

    def open(self) -> None:
        """Queue the ``endpoint`` event telling the client where to POST."""
        endpoint = json.dumps(
            {
                "endpoint": f"{self.messages_path}?sessionId={self.session_id}",
                "sessionId": self.session_id,
            }
        )
        self._queue.put_nowait(format_event("endpoint", endpoint))
        self.mark_ready()

    async def _write(self, message: dict[str, Any] | list[Any]) -> None:
        try:
            self._queue.put_nowait(format_event("message", json.dumps(message, default=str)))
        except asyncio.QueueFull as exc:
            raise TransportWriteFailure(self.client_id, "outbound queue full") from exc

    async def _close(self) -> None:
        # Drop the oldest frame if needed so the stream always sees the sentinel.
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSE)

    async def events(self) -> AsyncIterator[str]:
        """Yield encoded SSE frames until the client is closed."""
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=self.heartbeat_s)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue
            if item is _CLOSE:
                return
            yield item
