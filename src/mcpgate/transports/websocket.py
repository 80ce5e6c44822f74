"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

WebSocket transport: one JSON-RPC message (or batch) per text frame.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from .base import ClientState, PayloadHandler, TransportClient

logger = logging.getLogger("mcpgate.transports")


class WebSocketClient(TransportClient):
    """WebSocket peer; ready once the handshake is accepted."""

    kind = "ws"

    def __init__(self, websocket: WebSocket, *, client_id: str | None = None) -> None:
        super().__init__(client_id)
        self._websocket = websocket

    async def accept(self) -> None:
        await self._websocket.accept()
        self.mark_ready()

    async def _write(self, message: dict[str, Any] | list[Any]) -> None:
        await self._websocket.send_text(json.dumps(message, default=str))

    async def _close(self) -> None:
        if self._websocket.application_state is WebSocketState.CONNECTED:
            await self._websocket.close()

    async def serve(self, handler: PayloadHandler) -> None:
        """Receive frames until the peer disconnects; requests run concurrently."""
        try:
            while self.state is not ClientState.CLOSED:
                text = await self._websocket.receive_text()
                self.spawn(text, handler)
        except WebSocketDisconnect:
            logger.info("WebSocket client %s disconnected", self.client_id)
