"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Cache manager contract plus a file-backed implementation for resources and prompts.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .registry import (
    PromptDescriptor,
    ResourceDescriptor,
    make_prompt,
    make_resource,
)

logger = logging.getLogger("mcpgate.cache")

CACHE_KINDS = ("resources", "prompts", "all")

_MIME_TYPES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".txt": "text/plain",
    ".json": "application/json",
    ".yaml": "text/yaml",
    ".yml": "text/yaml",
    ".html": "text/html",
    ".csv": "text/csv",
}


@runtime_checkable
class CacheManager(Protocol):
    """
    Source of cached resources and prompts.

    Implementations may also expose ``get_tools()`` (cached tool descriptors)
    and ``clear_cache(kind)``; callers check for them with ``hasattr``.
    """

    async def get_resources(self) -> list[ResourceDescriptor]: ...

    async def get_prompts(self) -> list[PromptDescriptor]: ...

    async def get_cache_stats(self) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class _FileEntry:
    stat_signature: tuple[int, int, int]
    descriptor: Any


@dataclass(slots=True)
class _KindStats:
    hits: int = 0
    misses: int = 0
    errors: int = 0

    def to_dict(self, cache_size: int) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "cacheSize": cache_size,
        }


@dataclass(slots=True)
class _KindCache:
    directory: Path
    entries: dict[Path, _FileEntry] = field(default_factory=dict)
    stats: _KindStats = field(default_factory=_KindStats)


class FileCacheManager:
    """
    Read resources from ``<base>/resources`` and prompts from ``<base>/prompts``.

    Each file is parsed once and kept until its stat signature changes or the
    cache is cleared. Resources are exposed as ``resource://<file name>``;
    prompts are named after the file stem.
    """

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path).resolve()
        self._lock = threading.RLock()
        self._caches = {
            "resources": _KindCache(self.base_path / "resources"),
            "prompts": _KindCache(self.base_path / "prompts"),
        }
        self._last_cleared: float | None = None

    async def get_resources(self) -> list[ResourceDescriptor]:
        return await asyncio.to_thread(self._scan, "resources")

    async def get_prompts(self) -> list[PromptDescriptor]:
        return await asyncio.to_thread(self._scan, "prompts")

    async def get_cache_stats(self) -> dict[str, Any]:
        with self._lock:
            out: dict[str, Any] = {
                kind: cache.stats.to_dict(len(cache.entries))
                for kind, cache in self._caches.items()
            }
        out["basePath"] = str(self.base_path)
        out["lastCleared"] = self._last_cleared
        return out

    def clear_cache(self, kind: str = "all") -> None:
        if kind not in CACHE_KINDS:
            raise ValueError(f"unknown cache kind '{kind}', expected one of {CACHE_KINDS}")
        with self._lock:
            for name, cache in self._caches.items():
                if kind in ("all", name):
                    cache.entries.clear()
            self._last_cleared = time.time()
        logger.debug("Cleared %s cache under %s", kind, self.base_path)

    def _scan(self, kind: str) -> list[Any]:
        cache = self._caches[kind]
        if not cache.directory.is_dir():
            return []

        found: list[Any] = []
        seen: set[Path] = set()
        for file_path in sorted(cache.directory.iterdir()):
            if file_path.name.startswith(".") or not file_path.is_file():
                continue
            if file_path.suffix.lower() not in _MIME_TYPES:
                continue
            seen.add(file_path)
            descriptor = self._load(kind, cache, file_path)
            if descriptor is not None:
                found.append(descriptor)

        with self._lock:
            for stale in set(cache.entries) - seen:
                cache.entries.pop(stale, None)
        return found

    def _load(self, kind: str, cache: _KindCache, file_path: Path) -> Any:
        try:
            stat = file_path.stat()
        except OSError:
            return None
        signature = (stat.st_mtime_ns, stat.st_size, stat.st_ino)

        with self._lock:
            entry = cache.entries.get(file_path)
            if entry is not None and entry.stat_signature == signature:
                cache.stats.hits += 1
                return entry.descriptor
            cache.stats.misses += 1

        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read %s %s: %s", kind[:-1], file_path, exc)
            with self._lock:
                cache.stats.errors += 1
            return None

        if kind == "resources":
            descriptor: Any = make_resource(
                f"resource://{file_path.name}",
                content,
                name=file_path.stem,
                description=f"{file_path.suffix.lstrip('.')} resource: {file_path.stem}",
                mime_type=_MIME_TYPES[file_path.suffix.lower()],
                source="cached",
            )
        else:
            descriptor = make_prompt(
                file_path.stem,
                content,
                description=f"{file_path.suffix.lstrip('.')} prompt",
                source="cached",
            )

        with self._lock:
            cache.entries[file_path] = _FileEntry(signature, descriptor)
        return descriptor
