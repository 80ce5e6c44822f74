"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

mcpgate: serve file-defined handlers as REST routes and MCP tools, keep both
in sync on file changes, and republish tools of external MCP bridges.
"""

from .adapter import ToolDescriptor, adapt_routes, merge_tools, to_tool
from .app import Gateway, create_gateway
from .bridge import BridgeClient, BridgeConfig, BridgeManager, FrameParser, encode_frame
from .cache import CacheManager, FileCacheManager
from .config import GatewayConfig
from .errors import (
    BridgeCrashed,
    BridgeError,
    BridgeNotFound,
    BridgeOverloaded,
    BridgeRemoteError,
    BridgeTimeout,
    BridgeUnavailable,
    FramingError,
    GatewayError,
    InvalidParams,
    MethodNotFound,
    ProtocolError,
    ReloadFailure,
    ResourceNotFound,
    RouteLoadError,
    ToolInvocationError,
    TransportWriteFailure,
)
from .notifications import BroadcastReport, NotificationManager
from .protocol import MCPProtocolHandler
from .registry import (
    PromptDescriptor,
    PromptStore,
    ResourceDescriptor,
    ResourceStore,
    make_prompt,
    make_resource,
)
from .reload import HotReloadCoordinator, ReloadResult
from .routes import FileRouteLoader, RouteDescriptor, RouteLoader, RouteRequest, RouteTable
from .server import GatewayServer
from .transports import ClientState, SSEClient, StdioClient, TransportClient, WebSocketClient
from .watcher import PollingFileWatcher

__version__ = "0.1.0"

__all__ = [
    "BridgeClient",
    "BridgeConfig",
    "BridgeCrashed",
    "BridgeError",
    "BridgeManager",
    "BridgeNotFound",
    "BridgeOverloaded",
    "BridgeRemoteError",
    "BridgeTimeout",
    "BridgeUnavailable",
    "BroadcastReport",
    "CacheManager",
    "ClientState",
    "FileCacheManager",
    "FileRouteLoader",
    "FrameParser",
    "FramingError",
    "Gateway",
    "GatewayConfig",
    "GatewayError",
    "GatewayServer",
    "HotReloadCoordinator",
    "InvalidParams",
    "MCPProtocolHandler",
    "MethodNotFound",
    "NotificationManager",
    "PollingFileWatcher",
    "PromptDescriptor",
    "PromptStore",
    "ProtocolError",
    "ReloadFailure",
    "ReloadResult",
    "ResourceDescriptor",
    "ResourceNotFound",
    "ResourceStore",
    "RouteDescriptor",
    "RouteLoadError",
    "RouteLoader",
    "RouteRequest",
    "RouteTable",
    "SSEClient",
    "StdioClient",
    "ToolDescriptor",
    "ToolInvocationError",
    "TransportClient",
    "TransportWriteFailure",
    "WebSocketClient",
    "adapt_routes",
    "create_gateway",
    "encode_frame",
    "make_prompt",
    "make_resource",
    "merge_tools",
    "to_tool",
]
