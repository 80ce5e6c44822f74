"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Fan-out of MCP list-changed notifications to every connected client.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .errors import TransportWriteFailure
from .transports.base import TransportClient

logger = logging.getLogger("mcpgate.notifications")

ClientsProvider = Callable[[], Iterable[TransportClient]]
FailureHook = Callable[[TransportClient, TransportWriteFailure], Any]


@dataclass(frozen=True, slots=True)
class BroadcastReport:
    """Outcome of one broadcast: delivered client ids and per-client failures."""

    delivered: tuple[str, ...] = ()
    failed: tuple[TransportWriteFailure, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return not self.failed


def build_notification(kind: str, items: list[dict[str, Any]]) -> dict[str, Any]:
    """``kind`` is ``tools``, ``resources`` or ``prompts``."""
    return {
        "jsonrpc": "2.0",
        "method": f"notifications/{kind}Changed",
        "params": {kind: items},
    }


class NotificationManager:
    """
    Broadcast notifications to every READY client.

    Each client gets its own write with ``write_timeout_s``; a failure on one
    client is logged, passed to ``on_failure`` (normally: detach the client)
    and never blocks or aborts delivery to the others.
    """

    def __init__(
        self,
        clients_provider: ClientsProvider,
        *,
        on_failure: FailureHook | None = None,
        write_timeout_s: float = 5.0,
    ) -> None:
        self._clients_provider = clients_provider
        self._on_failure = on_failure
        self._write_timeout_s = write_timeout_s

    async def broadcast(self, message: dict[str, Any]) -> BroadcastReport:
        clients = [client for client in self._clients_provider() if client.is_ready]
        if not clients:
            return BroadcastReport()

        outcomes = await asyncio.gather(*(self._send_one(client, message) for client in clients))

        delivered: list[str] = []
        failed: list[TransportWriteFailure] = []
        for client, failure in zip(clients, outcomes):
            if failure is None:
                delivered.append(client.client_id)
                continue
            failed.append(failure)
            logger.warning("Dropping client after failed notification: %s", failure)
            await self._report_failure(client, failure)

        return BroadcastReport(delivered=tuple(delivered), failed=tuple(failed))

    async def notify_tools_changed(self, tools: list[dict[str, Any]]) -> BroadcastReport:
        return await self.broadcast(build_notification("tools", tools))

    async def notify_resources_changed(self, resources: list[dict[str, Any]]) -> BroadcastReport:
        return await self.broadcast(build_notification("resources", resources))

    async def notify_prompts_changed(self, prompts: list[dict[str, Any]]) -> BroadcastReport:
        return await self.broadcast(build_notification("prompts", prompts))

    async def notify_route_changes(self, tools: list[dict[str, Any]]) -> BroadcastReport:
        """Route changes surface to MCP clients as a tool list change."""
        return await self.notify_tools_changed(tools)

    async def _send_one(
        self,
        client: TransportClient,
        message: dict[str, Any],
    ) -> TransportWriteFailure | None:
        try:
            await asyncio.wait_for(client.send(message), timeout=self._write_timeout_s)
        except TransportWriteFailure as exc:
            return exc
        except asyncio.TimeoutError:
            return TransportWriteFailure(
                client.client_id, f"write timed out after {self._write_timeout_s}s"
            )
        return None

    async def _report_failure(self, client: TransportClient, failure: TransportWriteFailure) -> None:
        if self._on_failure is None:
            return
        try:
            result = self._on_failure(client, failure)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Failure hook raised for client %s", client.client_id)
