"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Lifecycle and routing for all configured bridges.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..adapter import ToolDescriptor, bridge_tool
from ..errors import BridgeError, BridgeNotFound, BridgeUnavailable
from ..metrics import BRIDGE_REQUESTS_TOTAL, MetricsSink, NoOpMetrics
from .client import BridgeClient
from .config import (
    DEFAULT_BRIDGE_TIMEOUT_S,
    DEFAULT_MAX_PENDING,
    BridgeConfig,
    load_bridge_config,
)

logger = logging.getLogger("mcpgate.bridge")

ClientFactory = Callable[[BridgeConfig], BridgeClient]
CatalogueHook = Callable[[], Any]


@dataclass(frozen=True, slots=True)
class BridgeReloadReport:
    """Outcome of ``apply_configs``; bridge ids per action."""

    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    restarted: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.restarted)


class BridgeManager:
    """
    Starts bridges on demand and republishes their tools.

    Bridges are started lazily by ``ensure_bridges``. A bridge that crashed is
    never restarted implicitly; ``restart_bridge`` must be called. The tool
    catalogue is the last successful ``tools/list`` answer per bridge and is
    refreshed only by ``list_tools`` or a (re)start. With ``tool_prefix`` the
    catalogue names tools ``<bridge>__<tool>``.
    """

    def __init__(
        self,
        configs: dict[str, BridgeConfig] | None = None,
        *,
        list_timeout_s: float = 10.0,
        client_factory: ClientFactory = BridgeClient,
        on_catalogue_change: CatalogueHook | None = None,
        tool_prefix: bool = False,
        metrics: MetricsSink | None = None,
    ) -> None:
        self._configs: dict[str, BridgeConfig] = dict(configs or {})
        self._clients: dict[str, BridgeClient] = {}
        self._catalogue: dict[str, list[ToolDescriptor]] = {}
        self._start_errors: dict[str, str] = {}
        self._list_timeout_s = list_timeout_s
        self._client_factory = client_factory
        self._on_catalogue_change = on_catalogue_change
        self._tool_prefix = tool_prefix
        self._metrics: MetricsSink = metrics or NoOpMetrics()
        self._lock = asyncio.Lock()

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        *,
        default_timeout_s: float = DEFAULT_BRIDGE_TIMEOUT_S,
        default_max_pending: int = DEFAULT_MAX_PENDING,
        list_timeout_s: float = 10.0,
        tool_prefix: bool = False,
        metrics: MetricsSink | None = None,
    ) -> "BridgeManager":
        configs = load_bridge_config(
            path,
            default_timeout_s=default_timeout_s,
            default_max_pending=default_max_pending,
        )
        return cls(
            configs,
            list_timeout_s=list_timeout_s,
            tool_prefix=tool_prefix,
            metrics=metrics,
        )

    @property
    def bridge_ids(self) -> list[str]:
        return list(self._configs)

    @property
    def configs(self) -> dict[str, BridgeConfig]:
        return dict(self._configs)

    def set_catalogue_hook(self, hook: CatalogueHook | None) -> None:
        self._on_catalogue_change = hook

    def get(self, bridge_id: str) -> BridgeClient | None:
        return self._clients.get(bridge_id)

    def status(self) -> dict[str, dict[str, Any]]:
        out: dict[str, dict[str, Any]] = {}
        for bridge_id, config in self._configs.items():
            client = self._clients.get(bridge_id)
            entry: dict[str, Any] = {
                "disabled": config.disabled,
                "running": bool(client and client.is_running),
                "tools": len(self._catalogue.get(bridge_id, [])),
            }
            if client is not None and client.last_exit_code is not None:
                entry["exitCode"] = client.last_exit_code
            if bridge_id in self._start_errors:
                entry["error"] = self._start_errors[bridge_id]
            out[bridge_id] = entry
        return out

    def catalogue_tools(self) -> list[ToolDescriptor]:
        """Last known bridge tools, in configuration order."""
        tools: list[ToolDescriptor] = []
        for bridge_id in self._configs:
            tools.extend(self._catalogue.get(bridge_id, []))
        return tools

    async def ensure_bridges(self) -> dict[str, str]:
        """
        Start every enabled bridge that was never started.

        Returns start errors keyed by bridge id. Failures are isolated: one
        bridge failing to start does not prevent the others.
        """
        async with self._lock:
            pending = [
                config
                for bridge_id, config in self._configs.items()
                if not config.disabled
                and bridge_id not in self._clients
                and bridge_id not in self._start_errors
            ]
            results = await asyncio.gather(
                *(self._start(config) for config in pending),
                return_exceptions=True,
            )
        for config, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.warning("Bridge %s failed to start: %s", config.bridge_id, result)
        return dict(self._start_errors)

    async def add_bridge(self, config: BridgeConfig, *, start: bool = True) -> None:
        if config.bridge_id in self._configs:
            await self.remove_bridge(config.bridge_id)
        self._configs[config.bridge_id] = config
        if start and not config.disabled:
            await self._start(config)

    async def remove_bridge(self, bridge_id: str) -> None:
        if bridge_id not in self._configs:
            raise BridgeNotFound(f"Bridge not found: {bridge_id}")
        client = self._clients.pop(bridge_id, None)
        if client is not None:
            await client.stop()
        self._configs.pop(bridge_id, None)
        self._start_errors.pop(bridge_id, None)
        had_tools = bool(self._catalogue.pop(bridge_id, None))
        if had_tools:
            await self._catalogue_changed()

    async def restart_bridge(self, bridge_id: str) -> None:
        config = self._configs.get(bridge_id)
        if config is None:
            raise BridgeNotFound(f"Bridge not found: {bridge_id}")
        client = self._clients.pop(bridge_id, None)
        if client is not None:
            await client.stop()
        self._start_errors.pop(bridge_id, None)
        await self._start(config)

    async def apply_configs(self, configs: dict[str, BridgeConfig]) -> BridgeReloadReport:
        """
        Reconcile running bridges with a freshly loaded configuration.

        Bridges missing from ``configs`` are stopped and dropped, new ones are
        added and bridges whose settings changed are restarted. Unchanged
        bridges keep running untouched. New and restarted bridges are started
        through ``ensure_bridges``, so one failing to start does not affect
        the others.
        """
        removed = [bridge_id for bridge_id in self._configs if bridge_id not in configs]
        added: list[str] = []
        restarted: list[str] = []
        for bridge_id in removed:
            await self.remove_bridge(bridge_id)
        for bridge_id, config in configs.items():
            current = self._configs.get(bridge_id)
            if current == config:
                continue
            if current is None:
                added.append(bridge_id)
            else:
                restarted.append(bridge_id)
            await self.add_bridge(config, start=False)

        report = BridgeReloadReport(
            added=tuple(added), removed=tuple(removed), restarted=tuple(restarted)
        )
        if report.changed:
            logger.info(
                "Bridge config applied: added=%s removed=%s restarted=%s",
                list(report.added),
                list(report.removed),
                list(report.restarted),
            )
            await self.ensure_bridges()
        return report

    async def stop_all(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        await asyncio.gather(*(client.stop() for client in clients), return_exceptions=True)

    async def list_tools(self, timeout_s: float | None = None) -> dict[str, dict[str, Any]]:
        """
        Query every enabled bridge in parallel.

        Bridges that answer within the overall window report ``{"tools": [...]}``;
        the rest report ``{"error": message}``. The catalogue is updated for
        the bridges that answered.
        """
        await self.ensure_bridges()
        window = self._list_timeout_s if timeout_s is None else timeout_s

        servers: dict[str, dict[str, Any]] = {}
        tasks: dict[str, asyncio.Task[list[dict[str, Any]]]] = {}
        for bridge_id, config in self._configs.items():
            if config.disabled:
                continue
            client = self._clients.get(bridge_id)
            if client is None or not client.is_running:
                servers[bridge_id] = {
                    "error": self._start_errors.get(bridge_id)
                    or f"bridge '{bridge_id}' is not running"
                }
                continue
            tasks[bridge_id] = asyncio.create_task(client.list_tools(timeout_s=window))

        if tasks:
            _, still_running = await asyncio.wait(tasks.values(), timeout=window)
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

        changed = False
        for bridge_id, task in tasks.items():
            if task.cancelled():
                servers[bridge_id] = {"error": f"bridge '{bridge_id}' timed out after {window}s"}
                continue
            error = task.exception()
            if error is not None:
                servers[bridge_id] = {"error": str(error) or type(error).__name__}
                continue
            rows = task.result()
            servers[bridge_id] = {"tools": rows}
            changed = self._store_catalogue(bridge_id, rows) or changed

        if changed:
            await self._catalogue_changed()
        return {bridge_id: servers[bridge_id] for bridge_id in self._configs if bridge_id in servers}

    async def call_tool(
        self,
        tool_name: str,
        args: dict[str, Any] | None = None,
        bridge_id: str | None = None,
    ) -> Any:
        """
        Forward ``tools/call`` to ``bridge_id``, or to the bridge whose
        catalogue lists ``tool_name``.

        Raises:
            BridgeNotFound: Unknown bridge id, or no bridge offers the tool.
            BridgeUnavailable: The bridge is not running.
        """
        if bridge_id is None:
            bridge_id = self._owner_of(tool_name)
            if bridge_id is None:
                await self.list_tools()
                bridge_id = self._owner_of(tool_name)
            if bridge_id is None:
                raise BridgeNotFound(f"Tool not found on any bridge: {tool_name}")
        elif bridge_id not in self._configs:
            raise BridgeNotFound(f"Bridge not found: {bridge_id}")

        config = self._configs[bridge_id]
        if config.disabled:
            raise BridgeUnavailable(f"bridge '{bridge_id}' is disabled")
        if bridge_id not in self._clients:
            await self.ensure_bridges()
        client = self._clients.get(bridge_id)
        if client is None or not client.is_running:
            raise BridgeUnavailable(
                self._start_errors.get(bridge_id) or f"bridge '{bridge_id}' is not running"
            )
        self._metrics.incr(BRIDGE_REQUESTS_TOTAL, tags={"bridge": bridge_id})
        return await client.call_tool(tool_name, dict(args or {}))

    def _owner_of(self, tool_name: str) -> str | None:
        for bridge_id in self._configs:
            for tool in self._catalogue.get(bridge_id, []):
                if tool.remote_name == tool_name:
                    return bridge_id
        return None

    async def _start(self, config: BridgeConfig) -> None:
        client = self._client_factory(config)
        try:
            await client.start()
        except BridgeError as exc:
            self._start_errors[config.bridge_id] = str(exc)
            raise
        self._clients[config.bridge_id] = client
        self._start_errors.pop(config.bridge_id, None)

        try:
            rows = await client.list_tools()
        except BridgeError as exc:
            logger.warning("Bridge %s started but tools/list failed: %s", config.bridge_id, exc)
            return
        if self._store_catalogue(config.bridge_id, rows):
            await self._catalogue_changed()

    def _store_catalogue(self, bridge_id: str, rows: list[dict[str, Any]]) -> bool:
        tools = []
        for row in rows:
            tool = bridge_tool(bridge_id, row, prefix=self._tool_prefix)
            if tool is not None:
                tools.append(tool)
        previous = self._catalogue.get(bridge_id)
        self._catalogue[bridge_id] = tools
        return previous != tools

    async def _catalogue_changed(self) -> None:
        if self._on_catalogue_change is None:
            return
        try:
            result = self._on_catalogue_change()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Bridge catalogue hook failed")
