"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

File-system route loader: ``api/users/[id]/get.py`` becomes ``GET /users/{id}``.
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType

from ..errors import RouteLoadError
from .types import HTTP_METHODS, RouteDescriptor

logger = logging.getLogger("mcpgate.routes")


@dataclass(frozen=True, slots=True)
class _ModuleCacheEntry:
    """Loaded handler module keyed by a filesystem stat signature."""

    stat_signature: tuple[int, int, int]
    module: ModuleType


class FileRouteLoader:
    """
    Discover route handlers from a directory tree of Python files.

    Each file is named after its HTTP method (``get.py``, ``post.py``, ...) and
    must define ``handler``. Optional module attributes: ``description``,
    ``params_schema``, ``query_schema``, ``body_schema``, ``output_schema`` and
    ``tags``. Bracketed directories (``[id]``) become path placeholders.

    Modules are cached by stat signature (`mtime_ns`, `size`, `inode`);
    ``clear_cache`` drops one entry so the next load re-imports it.
    """

    def __init__(self, api_dir: str | Path) -> None:
        self.api_dir = Path(api_dir).resolve()
        self._lock = threading.RLock()
        self._module_cache: dict[Path, _ModuleCacheEntry] = {}
        self.errors: list[str] = []

    def clear_cache(self, path: str) -> None:
        resolved = Path(path).resolve()
        with self._lock:
            self._module_cache.pop(resolved, None)

    def load_routes(self) -> list[RouteDescriptor]:
        """
        Rebuild the full, ordered route list.

        Raises:
            RouteLoadError: If any handler file fails to import or lacks ``handler``.
        """
        routes: list[RouteDescriptor] = []
        errors: list[str] = []
        seen: set[Path] = set()

        for file_path in self._discover():
            seen.add(file_path)
            try:
                routes.append(self._route_from_file(file_path))
            except Exception as exc:  # noqa: BLE001
                errors.append(f"{file_path.relative_to(self.api_dir)}: {exc}")

        with self._lock:
            for stale in set(self._module_cache) - seen:
                self._module_cache.pop(stale, None)

        self.errors = errors
        if errors:
            raise RouteLoadError("failed to load routes: " + "; ".join(errors))

        routes.sort(key=lambda r: (r.path, HTTP_METHODS.index(r.method)))
        logger.info("Loaded %d routes from %s", len(routes), self.api_dir)
        return routes

    def _discover(self) -> list[Path]:
        if not self.api_dir.is_dir():
            return []
        found = []
        for candidate in sorted(self.api_dir.rglob("*.py")):
            relative = candidate.relative_to(self.api_dir)
            if any(part.startswith((".", "_")) for part in relative.parts):
                continue
            if candidate.stem.upper() not in HTTP_METHODS:
                continue
            found.append(candidate)
        return found

    def _route_from_file(self, file_path: Path) -> RouteDescriptor:
        module = self._load_module(file_path)
        handler = getattr(module, "handler", None)
        if not callable(handler):
            raise RouteLoadError("module does not define a callable 'handler'")

        relative = file_path.relative_to(self.api_dir)
        segments = [_segment(part) for part in relative.parent.parts]
        path = "/" + "/".join(segments)

        input_schema = {}
        for key in ("params", "query", "body"):
            schema = getattr(module, f"{key}_schema", None)
            if isinstance(schema, dict):
                input_schema[key] = schema

        output_schema = getattr(module, "output_schema", None)
        tags = getattr(module, "tags", None) or ()
        return RouteDescriptor(
            method=file_path.stem.upper(),
            path=path,
            handler=handler,
            input_schema=input_schema,
            output_schema=output_schema if isinstance(output_schema, dict) else None,
            tags=tuple(str(tag) for tag in tags),
            description=str(getattr(module, "description", "") or ""),
            source_file=str(file_path),
        )

    def _load_module(self, file_path: Path) -> ModuleType:
        stat = file_path.stat()
        signature = (stat.st_mtime_ns, stat.st_size, stat.st_ino)

        with self._lock:
            entry = self._module_cache.get(file_path)
            if entry is not None and entry.stat_signature == signature:
                return entry.module

        digest = hashlib.sha256(str(file_path).encode("utf-8")).hexdigest()[:16]
        spec = importlib.util.spec_from_file_location(f"mcpgate_routes_{digest}", file_path)
        if spec is None or spec.loader is None:
            raise RouteLoadError(f"cannot import {file_path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        with self._lock:
            self._module_cache[file_path] = _ModuleCacheEntry(
                stat_signature=signature,
                module=module,
            )
        return module


def _segment(part: str) -> str:
    if part.startswith("[") and part.endswith("]"):
        return "{" + part[1:-1] + "}"
    return part
