"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Hot-reload coordinator: debounces file changes into batches and applies
them one at a time (clear loader cache → rebuild → swap → notify).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import ReloadFailure
from .routes import RouteLoader

if TYPE_CHECKING:
    from .server import GatewayServer

logger = logging.getLogger("mcpgate.reload")

CHANGE_EVENTS = ("added", "changed", "removed")

ReloadCallback = Callable[["ReloadResult"], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class ReloadResult:
    """Outcome of one reload cycle."""

    changes: dict[str, str] = field(default_factory=dict)
    generation: int | None = None
    error: ReloadFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class HotReloadCoordinator:
    """
    Turn a stream of file events into serialized reload cycles.

    ``queue_change`` merges an event into the pending batch (one entry per
    path, latest event wins) and restarts the quiet-period timer. When the
    timer fires the batch is queued for a single worker, so cycles never
    overlap and run in arrival order. A failed cycle leaves the current route
    table in place, records ``last_error`` and is not retried.
    """

    def __init__(
        self,
        loader: RouteLoader,
        server: "GatewayServer",
        *,
        debounce_s: float = 0.3,
        on_reload: ReloadCallback | None = None,
    ) -> None:
        self._loader = loader
        self._server = server
        self._debounce_s = debounce_s
        self._on_reload = on_reload
        self._pending: dict[str, str] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._batches: asyncio.Queue[dict[str, str]] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._busy = False
        self._idle = asyncio.Event()
        self._idle.set()
        self.last_error: ReloadFailure | None = None
        self.last_result: ReloadResult | None = None
        self.reload_count = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending_changes(self) -> dict[str, str]:
        return dict(self._pending)

    async def start(self) -> None:
        self._ensure_worker()

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        worker = self._worker
        self._worker = None
        if worker is not None and not worker.done():
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
        self._busy = False
        self._idle.set()

    def queue_change(self, path: str, event: str = "changed") -> None:
        """Record a change and restart the quiet period. Must run on the event loop."""
        if event not in CHANGE_EVENTS:
            raise ValueError(f"unknown change event '{event}', expected one of {CHANGE_EVENTS}")
        self._pending[str(path)] = event
        self._idle.clear()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self._debounce_s, self._close_batch)

    def flush(self) -> None:
        """Close the pending batch now instead of waiting for the quiet period."""
        if self._timer is not None:
            self._timer.cancel()
        self._close_batch()

    async def wait_idle(self) -> None:
        """Wait until no change is pending, queued or being applied."""
        await self._idle.wait()

    def _close_batch(self) -> None:
        self._timer = None
        if not self._pending:
            self._mark_idle_if_done()
            return
        batch = dict(self._pending)
        self._pending.clear()
        self._ensure_worker()
        self._batches.put_nowait(batch)

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    def _mark_idle_if_done(self) -> None:
        if (
            not self._busy
            and self._timer is None
            and not self._pending
            and self._batches.empty()
        ):
            self._idle.set()

    async def _run(self) -> None:
        while True:
            batch = await self._batches.get()
            self._busy = True
            try:
                result = await self.reload(batch)
                await self._notify_callback(result)
            finally:
                self._busy = False
                self._batches.task_done()
                self._mark_idle_if_done()

    async def reload(self, changes: dict[str, str] | None = None) -> ReloadResult:
        """Run one reload cycle for ``changes`` (path → event)."""
        changes = dict(changes or {})
        self.reload_count += 1
        logger.info("Reloading routes for %d change(s)", len(changes))

        try:
            for path in changes:
                self._loader.clear_cache(path)
            routes = self._loader.load_routes()
            if inspect.isawaitable(routes):
                routes = await routes
        except Exception as exc:
            failure = ReloadFailure(f"reload failed, keeping current routes: {exc}")
            failure.__cause__ = exc
            logger.error("%s", failure, exc_info=exc)
            self.last_error = failure
            self.last_result = ReloadResult(changes=changes, error=failure)
            return self.last_result

        table = self._server.swap_route_table(routes)
        self.last_error = None
        self.last_result = ReloadResult(changes=changes, generation=table.generation)

        try:
            self._server.clear_cache()
            await self._server.publish_tools_changed()
            await self._server.publish_resources_changed()
            await self._server.publish_prompts_changed()
        except Exception:
            logger.exception("Post-reload notification failed (generation %d)", table.generation)
        return self.last_result

    async def _notify_callback(self, result: ReloadResult) -> None:
        if self._on_reload is None:
            return
        try:
            outcome = self._on_reload(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Reload callback failed")
