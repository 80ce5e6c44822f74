"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Multi-transport gateway built on FastAPI.

One ``GatewayServer`` serves the same MCP dispatch over:
- ``POST /mcp`` (JSON-RPC request/response, batches allowed)
- ``GET /mcp/sse`` + ``POST /mcp/messages?sessionId=`` (Server-Sent Events)
- ``WS /mcp/ws`` (WebSocket)
- stdio (``serve_stdio``)

It also exposes the bridge REST surface and dispatches plain REST requests
to the current route table.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any

from fastapi import APIRouter, FastAPI, Request, WebSocket
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .adapter import SOURCE_CACHED, ToolDescriptor, merge_tools
from .bridge import BridgeManager
from .cache import CacheManager
from .config import GatewayConfig
from .errors import (
    INVALID_REQUEST,
    PARSE_ERROR,
    BridgeError,
    BridgeNotFound,
    GatewayError,
    InvalidParams,
    ResourceNotFound,
    ToolInvocationError,
    TransportWriteFailure,
)
from .metrics import GatewayMetrics, create_metrics
from .notifications import BroadcastReport, NotificationManager
from .protocol import MCPProtocolHandler, jsonrpc_error
from .registry import PromptDescriptor, PromptStore, ResourceDescriptor, ResourceStore
from .routes import HTTP_METHODS, RouteDescriptor, RouteRequest, RouteTable, invoke_route
from .transports import SSEClient, StdioClient, TransportClient, WebSocketClient, open_stdio_streams

logger = logging.getLogger("mcpgate.server")

LifecycleHook = Callable[[], Awaitable[None] | None]

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class CallToolBody(BaseModel):
    """Body of ``POST /bridge/call-tool``; ``server`` is accepted for ``bridgeId``."""

    model_config = ConfigDict(extra="allow")

    toolName: str | None = None
    bridgeId: str | None = None
    server: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)

    @property
    def target(self) -> str | None:
        return self.bridgeId or self.server


def build_route_request(arguments: dict[str, Any], headers: dict[str, str] | None = None) -> RouteRequest:
    """Turn ``tools/call`` arguments into the request a REST call would build."""
    params = arguments.get("params") or {}
    query = arguments.get("query") or {}
    if not isinstance(params, dict):
        raise InvalidParams("'arguments.params' must be an object")
    if not isinstance(query, dict):
        raise InvalidParams("'arguments.query' must be an object")
    return RouteRequest(
        params={str(k): str(v) for k, v in params.items()},
        query=dict(query),
        body=arguments.get("body"),
        headers=dict(headers or {}),
    )


def result_content(output: Any) -> list[dict[str, Any]]:
    if isinstance(output, str):
        return [{"type": "text", "text": output}]
    if output is None:
        return [{"type": "text", "text": ""}]
    return [{"type": "text", "text": json.dumps(output, default=str)}]


class GatewayServer:
    """
    Owns the route table reference, the catalogue sources, the connected
    clients and the FastAPI app.

    The route table is an immutable snapshot replaced by ``swap_route_table``;
    every request reads the reference once, so it observes exactly one
    generation.

    Usage::

        server = GatewayServer(routes=loader.load_routes())
        server.run()

    Args:
        config: Gateway configuration.
        routes: Initial route list.
        resources: Static resources.
        prompts: Static prompts.
        cache_manager: Optional source of cached resources, prompts and tools.
        bridge_manager: Optional bridge manager.
        metrics: Request metrics; built from ``config.metrics_backend`` when omitted.
    """

    def __init__(
        self,
        *,
        config: GatewayConfig | None = None,
        routes: Iterable[RouteDescriptor] = (),
        resources: ResourceStore | None = None,
        prompts: PromptStore | None = None,
        cache_manager: CacheManager | None = None,
        bridge_manager: BridgeManager | None = None,
        metrics: GatewayMetrics | None = None,
    ) -> None:
        self._config = config or GatewayConfig()
        self.metrics = metrics or create_metrics(self._config.metrics_backend)
        self._route_table = RouteTable(generation=0, routes=tuple(routes))
        self.resources = resources or ResourceStore()
        self.prompts = prompts or PromptStore()
        self.cache_manager = cache_manager
        self.bridge_manager = bridge_manager
        if bridge_manager is not None:
            bridge_manager.set_catalogue_hook(self.publish_tools_changed)

        self._clients: dict[str, TransportClient] = {}
        self._sse_clients: dict[str, SSEClient] = {}
        self._startup_hooks: list[LifecycleHook] = []
        self._shutdown_hooks: list[LifecycleHook] = []

        self.notifications = NotificationManager(
            self.clients,
            on_failure=self._on_client_failure,
            write_timeout_s=self._config.notify_write_timeout_s,
        )
        self.protocol = MCPProtocolHandler(
            catalog=self,
            server_name=self._config.name,
            server_version=self._config.version,
            instructions=self._config.instructions,
            metrics=self.metrics,
        )
        self._app = self._create_app()

    @property
    def app(self) -> FastAPI:
        """
        The FastAPI application instance.

        Use this for testing::

            from fastapi.testclient import TestClient
            client = TestClient(server.app)
        """
        return self._app

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def route_table(self) -> RouteTable:
        return self._route_table

    # ------------------------------------------------------------------
    # Route table and clients
    # ------------------------------------------------------------------

    def swap_route_table(self, routes: Iterable[RouteDescriptor]) -> RouteTable:
        """Publish a new generation; in-flight requests keep the one they read."""
        table = self._route_table.successor(tuple(routes))
        self._route_table = table
        logger.info("Route table generation %d: %d routes", table.generation, len(table.routes))
        return table

    def clients(self) -> list[TransportClient]:
        return list(self._clients.values())

    def attach(self, client: TransportClient) -> None:
        self._clients[client.client_id] = client
        client.on_write_failure = self._on_client_failure
        if isinstance(client, SSEClient):
            self._sse_clients[client.session_id] = client
        logger.info("Client attached: %s", client.client_id)

    async def detach(self, client: TransportClient) -> None:
        known = self._clients.pop(client.client_id, None)
        if isinstance(client, SSEClient):
            self._sse_clients.pop(client.session_id, None)
        await client.close()
        if known is not None:
            logger.info("Client detached: %s", client.client_id)

    async def _on_client_failure(self, client: TransportClient, failure: TransportWriteFailure) -> None:
        _ = failure
        await self.detach(client)

    def add_startup_hook(self, hook: LifecycleHook) -> None:
        self._startup_hooks.append(hook)

    def add_shutdown_hook(self, hook: LifecycleHook) -> None:
        self._shutdown_hooks.append(hook)

    # ------------------------------------------------------------------
    # Catalogue (consumed by the protocol handler)
    # ------------------------------------------------------------------

    async def list_tools(self) -> list[ToolDescriptor]:
        """Merged view: static routes, then cached tools, then bridge tools."""
        return await self._merged_tools(self._route_table)

    async def _merged_tools(self, table: RouteTable) -> list[ToolDescriptor]:
        bridge_tools = self.bridge_manager.catalogue_tools() if self.bridge_manager else []
        return merge_tools(table.tools, await self._cached_tools(), bridge_tools)

    async def _cached_tools(self) -> list[ToolDescriptor]:
        get_tools = getattr(self.cache_manager, "get_tools", None)
        if get_tools is None:
            return []
        found = get_tools()
        if inspect.isawaitable(found):
            found = await found
        return [replace(tool, source=SOURCE_CACHED) for tool in found or []]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        table = self._route_table
        tool = next((t for t in await self._merged_tools(table) if t.name == name), None)
        if tool is None:
            raise ResourceNotFound(f"Tool not found: {name}")

        if tool.is_bridge:
            if self.bridge_manager is None:
                raise BridgeNotFound(f"Bridge not found: {tool.bridge_id}")
            return await self.bridge_manager.call_tool(
                tool.remote_name or tool.name,
                arguments,
                bridge_id=tool.bridge_id,
            )

        route = table.find(tool.method or "", tool.path or "")
        if route is None:
            raise ResourceNotFound(f"No route backs tool: {name}")
        request = build_route_request(arguments)
        try:
            output = await invoke_route(route, request)
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("Tool %s failed", name)
            raise ToolInvocationError(str(exc) or type(exc).__name__) from exc
        return {"content": result_content(output), "isError": False}

    async def list_resources(self) -> list[ResourceDescriptor]:
        static = self.resources.list()
        uris = {resource.uri for resource in static}
        merged = list(static)
        for resource in await self._cached("get_resources"):
            if resource.uri not in uris:
                uris.add(resource.uri)
                merged.append(resource)
        return merged

    async def list_prompts(self) -> list[PromptDescriptor]:
        static = self.prompts.list()
        names = {prompt.name for prompt in static}
        merged = list(static)
        for prompt in await self._cached("get_prompts"):
            if prompt.name not in names:
                names.add(prompt.name)
                merged.append(prompt)
        return merged

    async def cache_stats(self) -> dict[str, Any]:
        if self.cache_manager is None:
            return {"enabled": False}
        return {"enabled": True, **await self.cache_manager.get_cache_stats()}

    async def _cached(self, method: str) -> list[Any]:
        if self.cache_manager is None:
            return []
        return list(await getattr(self.cache_manager, method)())

    def clear_cache(self) -> None:
        clear = getattr(self.cache_manager, "clear_cache", None)
        if clear is not None:
            clear("all")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def publish_tools_changed(self) -> BroadcastReport:
        tools = await self.list_tools()
        return await self.notifications.notify_tools_changed([t.to_dict() for t in tools])

    async def publish_resources_changed(self) -> BroadcastReport:
        resources = await self.list_resources()
        return await self.notifications.notify_resources_changed([r.to_dict() for r in resources])

    async def publish_prompts_changed(self) -> BroadcastReport:
        prompts = await self.list_prompts()
        return await self.notifications.notify_prompts_changed([p.to_dict() for p in prompts])

    # ------------------------------------------------------------------
    # Transports
    # ------------------------------------------------------------------

    async def serve_stdio(
        self,
        reader: asyncio.StreamReader | None = None,
        writer: Any | None = None,
    ) -> None:
        """Serve newline-delimited JSON-RPC until stdin reaches EOF."""
        if reader is None or writer is None:
            reader, writer = await open_stdio_streams(self._config.max_message_bytes)
        client = StdioClient(reader, writer)
        self.attach(client)
        try:
            await client.serve(self.protocol.handle_payload)
        finally:
            await self.detach(client)

    def _create_router(self) -> APIRouter:
        """Build an APIRouter containing gateway routes."""
        router = APIRouter()
        config = self._config

        if config.enable_health:

            @router.get(config.health_path)
            async def health():
                return {
                    "status": "ok",
                    "server": config.name,
                    "version": config.version,
                    "generation": self._route_table.generation,
                    "routes_count": len(self._route_table.routes),
                    "clients": len(self._clients),
                    "bridges": self.bridge_manager.status() if self.bridge_manager else {},
                    "metrics": self.metrics.snapshot(),
                }

        @router.post(config.mcp_path)
        async def mcp_endpoint(request: Request):
            """Main JSON-RPC 2.0 endpoint."""
            try:
                body = await request.json()
            except json.JSONDecodeError:
                return JSONResponse(jsonrpc_error(None, PARSE_ERROR, "Parse error"), status_code=200)

            if isinstance(body, list) and not config.allow_batch_requests:
                return JSONResponse(
                    jsonrpc_error(None, INVALID_REQUEST, "Batch requests disabled"),
                    status_code=200,
                )
            result = await self.protocol.handle_payload(body)
            if result is None:
                return Response(status_code=204)
            return JSONResponse(result, status_code=200)

        @router.get(f"{config.mcp_path}/tools")
        async def list_tools_endpoint():
            tools = await self.list_tools()
            return JSONResponse({"tools": [tool.to_dict() for tool in tools]})

        if config.enable_sse:

            @router.get(config.sse_path)
            async def sse_endpoint(request: Request):
                """SSE transport; responses to posted messages arrive on this stream."""
                _ = request
                client = SSEClient(
                    messages_path=config.messages_path,
                    max_queue=config.sse_queue_size,
                    heartbeat_s=config.sse_heartbeat_s,
                )
                client.open()
                self.attach(client)

                async def event_stream():
                    try:
                        async for frame in client.events():
                            yield frame
                    finally:
                        await self.detach(client)

                return StreamingResponse(
                    event_stream(),
                    media_type="text/event-stream",
                    headers=_SSE_HEADERS,
                )

            @router.post(config.messages_path)
            async def sse_messages(request: Request, sessionId: str | None = None):
                client = self._sse_clients.get(sessionId or "")
                if client is None or not client.is_ready:
                    return JSONResponse({"error": "Unknown session"}, status_code=404)
                try:
                    body = await request.json()
                except json.JSONDecodeError:
                    return JSONResponse({"error": "Parse error"}, status_code=400)

                result = await self.protocol.handle_payload(body)
                if result is not None:
                    try:
                        await client.send(result)
                    except TransportWriteFailure as exc:
                        logger.warning("%s", exc)
                        await self.detach(client)
                        return JSONResponse({"error": str(exc)}, status_code=410)
                return Response(status_code=202)

        if config.enable_ws:

            @router.websocket(config.ws_path)
            async def ws_endpoint(websocket: WebSocket):
                client = WebSocketClient(websocket)
                await client.accept()
                self.attach(client)
                try:
                    await client.serve(self.protocol.handle_payload)
                finally:
                    await self.detach(client)

        @router.get("/bridge/list-tools")
        async def bridge_list_tools():
            if self.bridge_manager is None:
                return {"servers": {}}
            return {"servers": await self.bridge_manager.list_tools()}

        @router.post("/bridge/call-tool")
        async def bridge_call_tool(request: Request):
            try:
                raw = await request.json()
                body = CallToolBody.model_validate(raw if isinstance(raw, dict) else {})
            except json.JSONDecodeError:
                return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
            except ValidationError as exc:
                return JSONResponse({"error": str(exc)}, status_code=400)

            if not body.toolName:
                return JSONResponse({"error": "toolName required"}, status_code=400)
            if self.bridge_manager is None:
                return JSONResponse({"error": "No bridges configured"}, status_code=404)
            try:
                result = await self.bridge_manager.call_tool(
                    body.toolName,
                    body.args,
                    bridge_id=body.target,
                )
            except BridgeNotFound as exc:
                return JSONResponse({"error": str(exc)}, status_code=404)
            except BridgeError as exc:
                return JSONResponse({"error": str(exc)}, status_code=500)
            return JSONResponse(jsonable_encoder(result))

        return router

    def _create_rest_router(self) -> APIRouter:
        """Catch-all dispatch of plain REST requests to the current route table."""
        router = APIRouter()

        @router.api_route("/{full_path:path}", methods=list(HTTP_METHODS))
        async def rest_dispatch(request: Request, full_path: str):
            table = self._route_table
            found = table.match(request.method, "/" + full_path)
            if found is None:
                return JSONResponse({"error": "Not found"}, status_code=404)
            route, params = found

            body: Any = None
            raw = await request.body()
            if raw:
                try:
                    body = json.loads(raw)
                except json.JSONDecodeError:
                    body = raw.decode("utf-8", errors="replace")

            route_request = RouteRequest(
                params=params,
                query=dict(request.query_params),
                body=body,
                headers=dict(request.headers),
            )
            try:
                output = await invoke_route(route, route_request)
            except Exception as exc:
                logger.exception("Route %s %s failed", route.method, route.path)
                return JSONResponse({"error": str(exc) or type(exc).__name__}, status_code=500)
            return JSONResponse(jsonable_encoder(output))

        return router

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        _ = app
        for hook in self._startup_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result
        try:
            yield
        finally:
            for hook in reversed(self._shutdown_hooks):
                try:
                    result = hook()
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("Shutdown hook failed")
            for client in self.clients():
                await self.detach(client)
            if self.bridge_manager is not None:
                await self.bridge_manager.stop_all()

    def _create_app(self) -> FastAPI:
        """Build the FastAPI application with gateway routes."""
        app = FastAPI(
            title=self._config.name,
            version=self._config.version,
            description="mcpgate - REST and MCP gateway with hot reload",
            lifespan=self.lifespan,
        )
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self._config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        app.include_router(self._create_router())
        if self._config.enable_rest:
            app.include_router(self._create_rest_router())
        return app

    def run(self, **kwargs: Any) -> None:
        """
        Start the gateway using uvicorn.

        Args:
            **kwargs: Additional arguments passed to ``uvicorn.run()``.
        """
        import uvicorn

        uvicorn.run(
            self._app,
            host=kwargs.pop("host", self._config.host),
            port=kwargs.pop("port", self._config.port),
            **kwargs,
        )
