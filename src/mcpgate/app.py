"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Wiring of loader, server, cache, bridges, watcher and reload coordinator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .bridge import BridgeManager, load_bridge_config
from .cache import FileCacheManager
from .config import GatewayConfig
from .errors import BridgeError, RouteLoadError
from .metrics import create_metrics
from .reload import HotReloadCoordinator
from .routes import FileRouteLoader, RouteLoader
from .server import GatewayServer
from .watcher import PollingFileWatcher

logger = logging.getLogger("mcpgate")

CONTENT_PATTERNS = ("*.md", "*.markdown", "*.txt", "*.json", "*.yaml", "*.yml", "*.html", "*.csv")


@dataclass
class Gateway:
    """Assembled gateway components."""

    config: GatewayConfig
    server: GatewayServer
    loader: RouteLoader
    coordinator: HotReloadCoordinator
    route_watcher: PollingFileWatcher | None = None
    content_watcher: PollingFileWatcher | None = None
    bridge_watcher: PollingFileWatcher | None = None

    async def start(self) -> None:
        await self.coordinator.start()
        if self.route_watcher is not None:
            await self.route_watcher.start()
        if self.content_watcher is not None:
            await self.content_watcher.start()
        if self.bridge_watcher is not None:
            await self.bridge_watcher.start()

    async def stop(self) -> None:
        if self.bridge_watcher is not None:
            await self.bridge_watcher.stop()
        if self.content_watcher is not None:
            await self.content_watcher.stop()
        if self.route_watcher is not None:
            await self.route_watcher.stop()
        await self.coordinator.stop()

    async def _content_changed(self, path: str, event: str) -> None:
        logger.info("MCP content %s: %s", event, path)
        self.server.clear_cache()
        await self.server.publish_resources_changed()
        await self.server.publish_prompts_changed()

    async def reload_bridges(self) -> None:
        """
        Re-read the bridge config file and reconcile running bridges.

        An unreadable file is logged and the current bridges stay as they are.
        """
        manager = self.server.bridge_manager
        if manager is None or not self.config.bridge_config_path:
            return
        try:
            configs = load_bridge_config(
                self.config.bridge_config_path,
                default_timeout_s=self.config.bridge_timeout_s,
                default_max_pending=self.config.bridge_max_pending,
            )
        except BridgeError as exc:
            logger.error("Bridge config reload failed, keeping current bridges: %s", exc)
            return
        report = await manager.apply_configs(configs)
        if report.changed:
            await self.server.publish_tools_changed()

    async def _bridge_config_changed(self, path: str, event: str) -> None:
        logger.info("Bridge config %s: %s", event, path)
        await self.reload_bridges()


def create_gateway(
    config: GatewayConfig | None = None,
    *,
    loader: RouteLoader | None = None,
) -> Gateway:
    """
    Build a ready-to-run gateway from configuration.

    Startup and shutdown of the watchers and the coordinator are registered
    as server lifespan hooks; stdio callers drive ``Gateway.start``/``stop``.
    """
    config = config or GatewayConfig.from_env()
    loader = loader or FileRouteLoader(config.api_dir)

    try:
        routes = loader.load_routes()
    except RouteLoadError as exc:
        logger.error("Initial route load failed, starting with no routes: %s", exc)
        routes = []

    cache_manager = None
    if config.mcp_dir and Path(config.mcp_dir).is_dir():
        cache_manager = FileCacheManager(config.mcp_dir)

    metrics = create_metrics(config.metrics_backend)
    bridge_manager = None
    if config.bridge_config_path:
        bridge_options = {
            "list_timeout_s": config.bridge_list_timeout_s,
            "tool_prefix": config.bridge_tool_prefix,
            "metrics": metrics,
        }
        try:
            bridge_manager = BridgeManager.from_file(
                config.bridge_config_path,
                default_timeout_s=config.bridge_timeout_s,
                default_max_pending=config.bridge_max_pending,
                **bridge_options,
            )
        except BridgeError as exc:
            logger.error("Bridge config ignored: %s", exc)
            bridge_manager = BridgeManager(**bridge_options)

    server = GatewayServer(
        config=config,
        routes=routes,
        cache_manager=cache_manager,
        bridge_manager=bridge_manager,
        metrics=metrics,
    )
    coordinator = HotReloadCoordinator(loader, server, debounce_s=config.reload_debounce_s)
    gateway = Gateway(config=config, server=server, loader=loader, coordinator=coordinator)

    if config.hot_reload:
        gateway.route_watcher = PollingFileWatcher(
            config.api_dir,
            coordinator.queue_change,
            interval_s=config.watch_interval_s,
        )
        if cache_manager is not None:
            gateway.content_watcher = PollingFileWatcher(
                cache_manager.base_path,
                gateway._content_changed,
                interval_s=config.watch_interval_s,
                patterns=CONTENT_PATTERNS,
            )
        if bridge_manager is not None and config.bridge_config_path:
            bridge_path = Path(config.bridge_config_path).resolve()
            gateway.bridge_watcher = PollingFileWatcher(
                bridge_path.parent,
                gateway._bridge_config_changed,
                interval_s=config.watch_interval_s,
                patterns=(bridge_path.name,),
                recursive=False,
            )

    server.add_startup_hook(gateway.start)
    server.add_shutdown_hook(gateway.stop)
    return gateway
