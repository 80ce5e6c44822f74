"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Error hierarchy for the gateway, bridges and hot-reload pipeline.
"""

from __future__ import annotations

from typing import Any

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class GatewayError(RuntimeError):
    """Base gateway error. ``code`` is the JSON-RPC code reported to MCP clients."""

    code: int = INTERNAL_ERROR

    def to_jsonrpc_error(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class ProtocolError(GatewayError):
    """Raised for malformed JSON-RPC envelopes."""

    code = INVALID_REQUEST


class MethodNotFound(GatewayError):
    """Raised when a JSON-RPC method has no handler."""

    code = METHOD_NOT_FOUND


class InvalidParams(GatewayError):
    """Raised when method params are missing or have the wrong shape."""

    code = INVALID_PARAMS


class ResourceNotFound(InvalidParams):
    """Raised when a resource URI, prompt or tool name is unknown."""


class ToolInvocationError(GatewayError):
    """Raised when a route handler behind a tool raises."""

    code = INTERNAL_ERROR


class RouteLoadError(GatewayError):
    """Raised when the route loader cannot build a complete route table."""


class ReloadFailure(GatewayError):
    """Raised (and logged) when a reload cycle fails; the previous table stays active."""


class TransportWriteFailure(GatewayError):
    """Raised when a write to a connected client fails; the client is dropped."""

    def __init__(self, client_id: str, message: str) -> None:
        super().__init__(f"write to client '{client_id}' failed: {message}")
        self.client_id = client_id


class FramingError(GatewayError):
    """Raised when a bridge byte stream cannot be split into messages."""


class BridgeError(GatewayError):
    """Base error for bridge (child process) failures."""


class BridgeNotFound(BridgeError):
    """Raised when a bridge id or bridge tool is unknown."""

    code = INVALID_PARAMS


class BridgeUnavailable(BridgeError):
    """Raised when a bridge is not running and must be restarted explicitly."""


class BridgeTimeout(BridgeError):
    """Raised when a bridge does not answer within the configured window."""


class BridgeCrashed(BridgeError):
    """Raised for requests still pending when the bridge process exits."""


class BridgeOverloaded(BridgeError):
    """Raised when a bridge already has the maximum number of pending requests."""


class BridgeRemoteError(BridgeError):
    """Raised when a bridge answers with a JSON-RPC error object."""

    def __init__(self, bridge_id: str, error: dict[str, Any]) -> None:
        message = error.get("message") if isinstance(error.get("message"), str) else ""
        super().__init__(message or f"bridge '{bridge_id}' returned an error")
        self.bridge_id = bridge_id
        self.error = dict(error)
        raw_code = error.get("code")
        self.code = raw_code if isinstance(raw_code, int) else INTERNAL_ERROR

    def to_jsonrpc_error(self) -> dict[str, Any]:
        # Relayed verbatim to MCP clients.
        out = dict(self.error)
        out.setdefault("code", self.code)
        out.setdefault("message", str(self))
        return out
