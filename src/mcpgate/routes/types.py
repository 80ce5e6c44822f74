"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Route descriptors, immutable route-table snapshots and the loader contract.
"""

from __future__ import annotations

import asyncio
import inspect
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from functools import cached_property, lru_cache
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..adapter import ToolDescriptor

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True, slots=True)
class RouteRequest:
    """
    Request handed to a route handler.

    Built the same way by REST dispatch and by MCP ``tools/call`` so both
    surfaces observe identical handler behavior.
    """

    params: dict[str, str] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


RouteHandler = Callable[[RouteRequest], Any]


@dataclass(frozen=True, slots=True)
class RouteDescriptor:
    """
    One discovered operation, identified by ``(method, path)``.

    Attributes:
        method: Upper-case HTTP method.
        path: Path template using ``{name}`` placeholders.
        handler: Callable invoked with a ``RouteRequest`` (sync or async).
        input_schema: Optional ``params``/``query``/``body`` JSON schemas.
        output_schema: Optional JSON schema of the handler result.
        tags: Free-form tags copied onto the tool descriptor.
        description: Human-readable summary.
        source_file: File the route was loaded from, when file-backed.
    """

    method: str
    path: str
    handler: RouteHandler
    input_schema: Mapping[str, Any] = field(default_factory=dict)
    output_schema: Mapping[str, Any] | None = None
    tags: tuple[str, ...] = ()
    description: str = ""
    source_file: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.method.upper(), self.path)

    @property
    def path_params(self) -> list[str]:
        return _PLACEHOLDER.findall(self.path)

    def match(self, method: str, path: str) -> dict[str, str] | None:
        """Return extracted path params when ``method``/``path`` hit this route."""
        if method.upper() != self.method.upper():
            return None
        found = _compile_path(self.path).fullmatch(path.rstrip("/") or "/")
        if found is None:
            return None
        return found.groupdict()


@lru_cache(maxsize=1024)
def _compile_path(template: str) -> re.Pattern[str]:
    normalized = template.rstrip("/") or "/"
    pattern = ""
    last = 0
    for item in _PLACEHOLDER.finditer(normalized):
        pattern += re.escape(normalized[last : item.start()])
        pattern += f"(?P<{item.group(1)}>[^/]+)"
        last = item.end()
    pattern += re.escape(normalized[last:])
    return re.compile(pattern)


@dataclass(frozen=True)
class RouteTable:
    """
    Immutable snapshot of one route-table generation.

    The server swaps whole snapshots; nothing mutates one in place, so a
    reader holding a reference always sees a single consistent generation.
    """

    generation: int = 0
    routes: tuple[RouteDescriptor, ...] = ()

    @cached_property
    def tools(self) -> tuple["ToolDescriptor", ...]:
        from ..adapter import adapt_routes

        return tuple(adapt_routes(self.routes))

    def find(self, method: str, path: str) -> RouteDescriptor | None:
        for route in self.routes:
            if route.key == (method.upper(), path):
                return route
        return None

    def match(self, method: str, path: str) -> tuple[RouteDescriptor, dict[str, str]] | None:
        for route in self.routes:
            params = route.match(method, path)
            if params is not None:
                return route, params
        return None

    def successor(self, routes: list[RouteDescriptor] | tuple[RouteDescriptor, ...]) -> "RouteTable":
        return RouteTable(generation=self.generation + 1, routes=tuple(routes))


@runtime_checkable
class RouteLoader(Protocol):
    """Provider of the ordered route list plus a per-file cache invalidation hook."""

    def load_routes(self) -> list[RouteDescriptor] | Awaitable[list[RouteDescriptor]]: ...

    def clear_cache(self, path: str) -> None: ...


async def invoke_route(route: RouteDescriptor, request: RouteRequest) -> Any:
    """Run a route handler; sync handlers run in a worker thread."""
    if inspect.iscoroutinefunction(route.handler):
        return await route.handler(request)
    result = await asyncio.to_thread(route.handler, request)
    if inspect.isawaitable(result):
        return await result
    return result
