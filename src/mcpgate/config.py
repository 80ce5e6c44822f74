"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Gateway settings and explicit config loading.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class GatewayConfig:
    """
    Configuration for the gateway.

    Attributes:
        name: Server name advertised during ``initialize``.
        version: Server version string.
        host: Bind host for the HTTP server.
        port: Bind port for the HTTP server.
        instructions: Optional instructions returned by ``initialize``.
        cors_origins: Allowed CORS origins.
        api_dir: Root of the file-defined route handlers.
        mcp_dir: Root holding ``resources/`` and ``prompts/`` for the cache manager.
        bridge_config_path: ``mcpServers`` JSON file describing bridges.
        mcp_path: JSON-RPC endpoint path.
        sse_path: SSE stream path.
        messages_path: SSE message POST path.
        ws_path: WebSocket endpoint path.
        health_path: Health endpoint path.
        enable_sse: Whether to expose the SSE transport.
        enable_ws: Whether to expose the WebSocket transport.
        enable_health: Whether to expose the health endpoint.
        enable_rest: Whether to dispatch REST requests to the route table.
        allow_batch_requests: Whether JSON-RPC batches are accepted over HTTP.
        hot_reload: Whether to watch ``api_dir`` and reload on change.
        reload_debounce_s: Quiet period before a batch of changes is reloaded.
        watch_interval_s: Polling interval of the file watcher.
        notify_write_timeout_s: Per-client write timeout for broadcasts.
        sse_queue_size: Outbound queue bound of each SSE client.
        sse_heartbeat_s: Interval between SSE heartbeat comments.
        bridge_timeout_s: Default per-request bridge timeout.
        bridge_list_timeout_s: Overall window of a bridge ``list_tools`` sweep.
        bridge_max_pending: Outstanding request bound per bridge.
        bridge_tool_prefix: Publish bridge tools as ``<bridge>__<tool>`` instead of
            the remote name, so equally named tools of two bridges both show up.
        max_message_bytes: Longest stdio line accepted before it is rejected.
        metrics_backend: ``"memory"`` (default) or ``"prometheus"``.
    """

    name: str = "mcpgate"
    version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 8887
    instructions: str | None = None
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    api_dir: str = "api"
    mcp_dir: str | None = "mcp"
    bridge_config_path: str | None = "mcp-bridge.json"
    mcp_path: str = "/mcp"
    sse_path: str = "/mcp/sse"
    messages_path: str = "/mcp/messages"
    ws_path: str = "/mcp/ws"
    health_path: str = "/health"
    enable_sse: bool = True
    enable_ws: bool = True
    enable_health: bool = True
    enable_rest: bool = True
    allow_batch_requests: bool = True
    hot_reload: bool = True
    reload_debounce_s: float = 0.3
    watch_interval_s: float = 0.5
    notify_write_timeout_s: float = 5.0
    sse_queue_size: int = 256
    sse_heartbeat_s: float = 30.0
    bridge_timeout_s: float = 30.0
    bridge_list_timeout_s: float = 10.0
    bridge_max_pending: int = 64
    bridge_tool_prefix: bool = False
    max_message_bytes: int = 16 * 1024 * 1024
    metrics_backend: str = "memory"

    @staticmethod
    def from_env() -> "GatewayConfig":
        """Load settings from environment variables."""
        defaults = GatewayConfig()
        return GatewayConfig(
            name=os.getenv("MCPGATE_NAME", defaults.name),
            version=os.getenv("MCPGATE_VERSION", defaults.version),
            host=os.getenv("MCPGATE_HOST", defaults.host),
            port=int(os.getenv("MCPGATE_PORT", str(defaults.port))),
            instructions=os.getenv("MCPGATE_INSTRUCTIONS") or None,
            cors_origins=_env_list("MCPGATE_CORS_ORIGINS", defaults.cors_origins),
            api_dir=os.getenv("MCPGATE_API_DIR", defaults.api_dir),
            mcp_dir=os.getenv("MCPGATE_MCP_DIR", defaults.mcp_dir or "") or None,
            bridge_config_path=os.getenv(
                "MCPGATE_BRIDGE_CONFIG_PATH", defaults.bridge_config_path or ""
            )
            or None,
            enable_sse=_env_bool("MCPGATE_ENABLE_SSE", defaults.enable_sse),
            enable_ws=_env_bool("MCPGATE_ENABLE_WS", defaults.enable_ws),
            enable_rest=_env_bool("MCPGATE_ENABLE_REST", defaults.enable_rest),
            hot_reload=_env_bool("MCPGATE_HOT_RELOAD", defaults.hot_reload),
            reload_debounce_s=float(
                os.getenv("MCPGATE_RELOAD_DEBOUNCE_S", str(defaults.reload_debounce_s))
            ),
            watch_interval_s=float(
                os.getenv("MCPGATE_WATCH_INTERVAL_S", str(defaults.watch_interval_s))
            ),
            notify_write_timeout_s=float(
                os.getenv("MCPGATE_NOTIFY_WRITE_TIMEOUT_S", str(defaults.notify_write_timeout_s))
            ),
            sse_queue_size=int(os.getenv("MCPGATE_SSE_QUEUE_SIZE", str(defaults.sse_queue_size))),
            bridge_timeout_s=float(
                os.getenv("MCPGATE_BRIDGE_TIMEOUT_S", str(defaults.bridge_timeout_s))
            ),
            bridge_list_timeout_s=float(
                os.getenv("MCPGATE_BRIDGE_LIST_TIMEOUT_S", str(defaults.bridge_list_timeout_s))
            ),
            bridge_max_pending=int(
                os.getenv("MCPGATE_BRIDGE_MAX_PENDING", str(defaults.bridge_max_pending))
            ),
            bridge_tool_prefix=_env_bool("MCPGATE_BRIDGE_TOOL_PREFIX", defaults.bridge_tool_prefix),
            max_message_bytes=int(
                os.getenv("MCPGATE_MAX_MESSAGE_BYTES", str(defaults.max_message_bytes))
            ),
            metrics_backend=os.getenv("MCPGATE_METRICS_BACKEND", defaults.metrics_backend),
        )
