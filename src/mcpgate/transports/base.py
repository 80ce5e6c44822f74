"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Transport-agnostic client state and inbound message handling.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from ..errors import PARSE_ERROR, TransportWriteFailure

logger = logging.getLogger("mcpgate.transports")

PayloadHandler = Callable[[Any], Awaitable[Any]]
WriteFailureHook = Callable[["TransportClient", TransportWriteFailure], Awaitable[None]]


class ClientState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class TransportClient:
    """
    One connected MCP client.

    Subclasses implement ``_write`` (deliver one JSON message) and may
    override ``_close``. Any write failure moves the client to ``CLOSED``
    and surfaces as ``TransportWriteFailure``. When a response write fails,
    ``on_write_failure`` (set by the server on attach) is awaited so the
    client is dropped from the registry.
    """

    kind = "base"

    def __init__(self, client_id: str | None = None) -> None:
        self.client_id = client_id or f"{self.kind}-{uuid.uuid4().hex[:12]}"
        self.state = ClientState.CONNECTING
        self._tasks: set[asyncio.Task[None]] = set()
        self.on_write_failure: WriteFailureHook | None = None

    @property
    def is_ready(self) -> bool:
        return self.state is ClientState.READY

    def mark_ready(self) -> None:
        if self.state is ClientState.CONNECTING:
            self.state = ClientState.READY

    async def send(self, message: dict[str, Any] | list[Any]) -> None:
        if self.state is ClientState.CLOSED:
            raise TransportWriteFailure(self.client_id, "client is closed")
        try:
            await self._write(message)
        except TransportWriteFailure:
            self.state = ClientState.CLOSED
            raise
        except Exception as exc:
            self.state = ClientState.CLOSED
            raise TransportWriteFailure(self.client_id, str(exc) or type(exc).__name__) from exc

    async def close(self) -> None:
        if self.state is ClientState.CLOSED:
            return
        self.state = ClientState.CLOSED
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        await self._close()

    async def _write(self, message: dict[str, Any] | list[Any]) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        return None

    def spawn(self, text: str, handler: PayloadHandler) -> None:
        """Handle one inbound message concurrently with others on this client."""
        task = asyncio.create_task(self.handle_text(text, handler))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_text(self, text: str, handler: PayloadHandler) -> None:
        """Decode one inbound message, dispatch it and write any response back."""
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            response: Any = {
                "jsonrpc": "2.0",
                "id": None,
                "error": {"code": PARSE_ERROR, "message": "Parse error"},
            }
        else:
            response = await handler(payload)

        if response is not None:
            await self.respond(response)

    async def respond(self, response: Any) -> None:
        """Write one response; a failed write hands the client to ``on_write_failure``."""
        if self.state is ClientState.CLOSED:
            return
        try:
            await self.send(response)
        except TransportWriteFailure as exc:
            logger.warning("%s", exc)
            if self.on_write_failure is not None:
                await self.on_write_failure(self, exc)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.client_id} {self.state.value}>"
