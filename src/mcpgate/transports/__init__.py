"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Transport package.

Contains the shared client state machine and the stdio, WebSocket and SSE
client implementations.
"""

from .base import ClientState, TransportClient
from .sse import SSEClient
from .stdio import StdioClient, open_stdio_streams
from .websocket import WebSocketClient

__all__ = [
    "ClientState",
    "SSEClient",
    "StdioClient",
    "TransportClient",
    "WebSocketClient",
    "open_stdio_streams",
]
