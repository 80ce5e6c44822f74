"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Protocol-layer helpers for MCP JSON-RPC request handling.

The handler is transport-agnostic: stdio, WebSocket, SSE and HTTP POST all
feed decoded payloads into ``handle_payload`` and write back what it returns.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol

from .errors import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    GatewayError,
    InvalidParams,
    MethodNotFound,
    ProtocolError,
)
from .metrics import (
    ERRORS_TOTAL,
    REQUESTS_TOTAL,
    RESPONSE_SECONDS,
    TOOL_CALLS_TOTAL,
    MetricsSink,
    NoOpMetrics,
)
from .registry import get_prompt, read_resource

if TYPE_CHECKING:
    from .adapter import ToolDescriptor
    from .registry import PromptDescriptor, ResourceDescriptor

logger = logging.getLogger("mcpgate.protocol")

MCP_PROTOCOL_VERSION = "2024-11-05"


def jsonrpc_response(id: Any, result: Any) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 success response."""
    return {"jsonrpc": "2.0", "id": id, "result": result}


def jsonrpc_error(
    id: Any,
    code: int,
    message: str,
    data: Any = None,
) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 error response."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": id, "error": error}


class Catalog(Protocol):
    """What the protocol handler needs from the gateway."""

    async def list_tools(self) -> list["ToolDescriptor"]: ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]: ...

    async def list_resources(self) -> list["ResourceDescriptor"]: ...

    async def list_prompts(self) -> list["PromptDescriptor"]: ...

    async def cache_stats(self) -> dict[str, Any]: ...


MethodHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class MCPProtocolHandler:
    """
    Handles MCP methods and JSON-RPC envelope validation.

    Methods are looked up in a dispatch table, so adding one is a single
    entry in ``_methods``.
    """

    def __init__(
        self,
        *,
        catalog: Catalog,
        server_name: str,
        server_version: str,
        instructions: str | None = None,
        metrics: MetricsSink | None = None,
    ) -> None:
        self._catalog = catalog
        self._metrics: MetricsSink = metrics or NoOpMetrics()
        self._server_name = server_name
        self._server_version = server_version
        self._instructions = instructions
        self._methods: dict[str, MethodHandler] = {
            "initialize": self.handle_initialize,
            "ping": self._empty,
            "notifications/initialized": self._empty,
            "tools/list": self.handle_tools_list,
            "tools/call": self.handle_tools_call,
            "resources/list": self.handle_resources_list,
            "resources/read": self.handle_resources_read,
            "resources/templates/list": self.handle_resource_templates_list,
            "prompts/list": self.handle_prompts_list,
            "prompts/get": self.handle_prompts_get,
            "cache/stats": self.handle_cache_stats,
        }

    @property
    def methods(self) -> list[str]:
        return list(self._methods)

    async def handle_payload(self, payload: Any) -> Any:
        """Handle a single message or a batch; ``None`` when nothing is owed back."""
        if isinstance(payload, list):
            if not payload:
                return jsonrpc_error(None, INVALID_REQUEST, "Invalid Request")
            responses = []
            for item in payload:
                response = await self.handle_message(item)
                if response is not None:
                    responses.append(response)
            return responses or None
        return await self.handle_message(payload)

    async def handle_message(self, message: Any) -> dict[str, Any] | None:
        """Route one JSON-RPC 2.0 message to the appropriate MCP method."""
        msg_id = message.get("id") if isinstance(message, dict) else None
        started = time.perf_counter()
        method = "invalid"
        try:
            method, params = self._validate(message)
            result = await self._methods[method](params)
        except ProtocolError as exc:
            self._record(method, started, exc)
            return {"jsonrpc": "2.0", "id": msg_id, "error": exc.to_jsonrpc_error()}
        except GatewayError as exc:
            logger.info("MCP method %s failed: %s", method, exc)
            self._record(method, started, exc)
            if msg_id is None:
                return None
            return {"jsonrpc": "2.0", "id": msg_id, "error": exc.to_jsonrpc_error()}
        except Exception as exc:
            logger.exception("Error handling MCP method %s", method)
            self._record(method, started, exc)
            if msg_id is None:
                return None
            return jsonrpc_error(msg_id, INTERNAL_ERROR, str(exc) or type(exc).__name__)

        self._record(method, started)
        if msg_id is None:
            return None
        return jsonrpc_response(msg_id, result)

    def _validate(self, message: Any) -> tuple[str, dict[str, Any]]:
        """
        Check the envelope and return ``(method, params)``.

        Raises:
            ProtocolError: Not a JSON-RPC 2.0 request. Answered even when
                the message carries no id.
            MethodNotFound: No handler for the method.
            InvalidParams: ``params`` is present but not an object.
        """
        if not isinstance(message, dict):
            raise ProtocolError("Invalid Request")
        if message.get("jsonrpc") != "2.0":
            raise ProtocolError("Invalid JSON-RPC version")
        method = message.get("method")
        if not method or not isinstance(method, str):
            raise ProtocolError("Missing method")
        if method not in self._methods:
            raise MethodNotFound(f"Method not found: {method}")
        params = message.get("params")
        if params is None:
            return method, {}
        if not isinstance(params, dict):
            raise InvalidParams("'params' must be an object")
        return method, params

    def _record(self, method: str, started: float, error: BaseException | None = None) -> None:
        self._metrics.incr(REQUESTS_TOTAL, tags={"method": method})
        self._metrics.observe(RESPONSE_SECONDS, time.perf_counter() - started)
        if method == "tools/call":
            self._metrics.incr(TOOL_CALLS_TOTAL)
        if error is not None:
            self._metrics.incr(ERRORS_TOTAL, tags={"type": type(error).__name__})

    async def _empty(self, params: dict[str, Any]) -> dict[str, Any]:
        _ = params
        return {}

    async def handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle ``initialize`` and return server capabilities."""
        _ = params
        return {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {
                "tools": {"listChanged": True},
                "resources": {"listChanged": True},
                "prompts": {"listChanged": True},
            },
            "serverInfo": {
                "name": self._server_name,
                "version": self._server_version,
            },
            **({"instructions": self._instructions} if self._instructions else {}),
        }

    async def handle_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        _ = params
        tools = await self._catalog.list_tools()
        return {"tools": [tool.to_dict() for tool in tools]}

    async def handle_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        tool_name = params.get("name")
        if not tool_name or not isinstance(tool_name, str):
            raise InvalidParams("Missing 'name' in tools/call params")

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidParams("'arguments' must be an object")

        return await self._catalog.call_tool(tool_name, arguments)

    async def handle_resources_list(self, params: dict[str, Any]) -> dict[str, Any]:
        _ = params
        resources = await self._catalog.list_resources()
        return {"resources": [resource.to_dict() for resource in resources]}

    async def handle_resource_templates_list(self, params: dict[str, Any]) -> dict[str, Any]:
        _ = params
        resources = await self._catalog.list_resources()
        templates = [r.to_template_dict() for r in resources if r.has_parameters]
        return {"resourceTemplates": templates, "total": len(templates)}

    async def handle_resources_read(self, params: dict[str, Any]) -> dict[str, Any]:
        uri = params.get("uri")
        if not uri or not isinstance(uri, str):
            raise InvalidParams("Missing 'uri' in resources/read params")
        arguments = _optional_object(params, "arguments")

        resources = await self._catalog.list_resources()
        match = next((r for r in resources if r.uri == uri), None)
        return read_resource(match, uri, arguments)

    async def handle_prompts_list(self, params: dict[str, Any]) -> dict[str, Any]:
        _ = params
        prompts = await self._catalog.list_prompts()
        return {"prompts": [prompt.to_dict() for prompt in prompts]}

    async def handle_prompts_get(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not name or not isinstance(name, str):
            raise InvalidParams("Missing 'name' in prompts/get params")
        arguments = _optional_object(params, "arguments")

        prompts = await self._catalog.list_prompts()
        match = next((p for p in prompts if p.name == name), None)
        return get_prompt(match, name, arguments)

    async def handle_cache_stats(self, params: dict[str, Any]) -> dict[str, Any]:
        _ = params
        return await self._catalog.cache_stats()


def _optional_object(params: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise InvalidParams(f"'{key}' must be an object")
    return value
