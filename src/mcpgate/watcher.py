"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Polling file watcher keyed on filesystem stat signatures.
"""

from __future__ import annotations

import asyncio
import fnmatch
import inspect
import logging
import os
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path

logger = logging.getLogger("mcpgate.watcher")

ChangeHandler = Callable[[str, str], Awaitable[None] | None]
StatSignature = tuple[int, int, int]

_IGNORED_DIRS = {"__pycache__", "node_modules"}


class PollingFileWatcher:
    """
    Report ``added``/``changed``/``removed`` events under ``root``.

    A file counts as changed when its (`mtime_ns`, `size`, `inode`) signature
    differs from the previous poll. Hidden entries and ``__pycache__`` are
    ignored. With ``recursive=False`` only files directly under ``root`` are
    considered.
    """

    def __init__(
        self,
        root: str | Path,
        on_change: ChangeHandler,
        *,
        interval_s: float = 0.5,
        patterns: Iterable[str] = ("*.py",),
        recursive: bool = True,
    ) -> None:
        self.root = Path(root).resolve()
        self.interval_s = interval_s
        self.patterns = tuple(patterns)
        self.recursive = recursive
        self._on_change = on_change
        self._snapshot: dict[str, StatSignature] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._snapshot = await asyncio.to_thread(self.scan)
        self._task = asyncio.create_task(self._loop())
        logger.info("Watching %s (%d files)", self.root, len(self._snapshot))

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    def scan(self) -> dict[str, StatSignature]:
        found: dict[str, StatSignature] = {}
        if not self.root.is_dir():
            return found
        for dirpath, dirnames, filenames in os.walk(self.root):
            if not self.recursive:
                dirnames.clear()
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d not in _IGNORED_DIRS
            )
            for filename in filenames:
                if filename.startswith("."):
                    continue
                if not any(fnmatch.fnmatch(filename, pattern) for pattern in self.patterns):
                    continue
                full = os.path.join(dirpath, filename)
                try:
                    stat = os.stat(full)
                except FileNotFoundError:
                    continue
                found[full] = (stat.st_mtime_ns, stat.st_size, stat.st_ino)
        return found

    async def poll_once(self) -> list[tuple[str, str]]:
        """Compare against the previous scan and emit the differences."""
        current = await asyncio.to_thread(self.scan)
        previous = self._snapshot
        self._snapshot = current

        events: list[tuple[str, str]] = []
        for path in sorted(current.keys() - previous.keys()):
            events.append((path, "added"))
        for path in sorted(current.keys() & previous.keys()):
            if current[path] != previous[path]:
                events.append((path, "changed"))
        for path in sorted(previous.keys() - current.keys()):
            events.append((path, "removed"))

        for path, event in events:
            logger.debug("File %s: %s", event, path)
            result = self._on_change(path, event)
            if inspect.isawaitable(result):
                await result
        return events

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.poll_once()
            except Exception:
                logger.exception("File watcher poll failed for %s", self.root)
