"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Route → MCP tool descriptor adaptation.

Everything here is a pure transform: no network or file I/O, and the same
route always yields an equal descriptor.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .routes.types import RouteDescriptor

NAME_SEPARATOR = "_"

SOURCE_STATIC = "static"
SOURCE_CACHED = "cached"
BRIDGE_SOURCE_PREFIX = "bridge:"

_NON_NAME_CHARS = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """
    MCP-visible tool, derived from a route or a bridge catalogue entry.

    Attributes:
        name: Unique tool name within the merged view.
        description: Human-readable description.
        input_schema: JSON schema of the ``arguments`` object.
        output_schema: Optional JSON schema of the result.
        source: ``"static"``, ``"cached"`` or ``"bridge:<bridgeId>"``.
        method: HTTP method of the backing route (route-backed tools).
        path: Path template of the backing route (route-backed tools).
        tags: Tags copied from the route or bridge.
        bridge_id: Owning bridge (bridge-backed tools).
        remote_name: Tool name as known by the bridge (bridge-backed tools).
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    output_schema: dict[str, Any] | None = None
    source: str = SOURCE_STATIC
    method: str | None = None
    path: str | None = None
    tags: tuple[str, ...] = ()
    bridge_id: str | None = None
    remote_name: str | None = None

    @property
    def is_bridge(self) -> bool:
        return self.source.startswith(BRIDGE_SOURCE_PREFIX)

    def to_dict(self) -> dict[str, Any]:
        """Serialize with MCP camelCase keys; optional fields only when set."""
        out: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
        if self.output_schema is not None:
            out["outputSchema"] = self.output_schema
        out["source"] = self.source
        if self.method is not None:
            out["method"] = self.method
            out["path"] = self.path
        if self.tags:
            out["tags"] = list(self.tags)
        return out


def derive_tool_name(method: str, path: str) -> str:
    """``GET /users/{id}`` → ``get_users_id``."""
    raw = f"{method}{NAME_SEPARATOR}{path}".lower()
    name = _NON_NAME_CHARS.sub(NAME_SEPARATOR, raw).strip(NAME_SEPARATOR)
    return name or method.lower()


def build_input_schema(route: RouteDescriptor) -> dict[str, Any]:
    """Nest path params, query and body schemas under fixed top-level keys."""
    properties: dict[str, Any] = {}
    required: list[str] = []
    declared = dict(route.input_schema or {})

    placeholders = route.path_params
    if placeholders or isinstance(declared.get("params"), dict):
        params_schema = declared.get("params")
        if not isinstance(params_schema, dict):
            params_schema = {
                "type": "object",
                "properties": {
                    name: {"type": "string", "description": f"{name} path parameter"}
                    for name in placeholders
                },
                "required": list(placeholders),
            }
        properties["params"] = params_schema
        if placeholders:
            required.append("params")

    query_schema = declared.get("query")
    if isinstance(query_schema, dict):
        properties["query"] = query_schema

    body_schema = declared.get("body")
    if isinstance(body_schema, dict):
        properties["body"] = body_schema
        if body_schema.get("required"):
            required.append("body")

    return {
        "type": "object",
        "properties": properties,
        "required": required,
    }


def to_tool(
    route: RouteDescriptor,
    taken: set[str] | None = None,
    *,
    source: str = SOURCE_STATIC,
) -> ToolDescriptor:
    """
    Adapt one route.

    When ``taken`` is given, the name is suffixed (``_2``, ``_3``, ...) until it
    is unused, and the final name is added to ``taken``.
    """
    base = derive_tool_name(route.method, route.path)
    name = base
    if taken is not None:
        suffix = 2
        while name in taken:
            name = f"{base}{NAME_SEPARATOR}{suffix}"
            suffix += 1
        taken.add(name)

    description = route.description or f"Execute {route.method.upper()} request to {route.path}"
    return ToolDescriptor(
        name=name,
        description=description,
        input_schema=build_input_schema(route),
        output_schema=dict(route.output_schema) if route.output_schema else None,
        source=source,
        method=route.method.upper(),
        path=route.path,
        tags=tuple(route.tags) or ("api",),
    )


def adapt_routes(
    routes: Iterable[RouteDescriptor],
    *,
    source: str = SOURCE_STATIC,
) -> list[ToolDescriptor]:
    """Adapt a batch in table order; names are unique within the batch."""
    taken: set[str] = set()
    return [to_tool(route, taken, source=source) for route in routes]


def bridge_tool(bridge_id: str, row: dict[str, Any], *, prefix: bool = False) -> ToolDescriptor | None:
    """Normalize one ``tools/list`` row returned by a bridge; ``None`` when unusable."""
    if not isinstance(row, dict):
        return None
    remote_name = row.get("name")
    if not isinstance(remote_name, str) or not remote_name.strip():
        return None

    schema = row.get("inputSchema")
    output = row.get("outputSchema")
    description = row.get("description")
    name = remote_name
    if prefix:
        safe = _NON_NAME_CHARS.sub(NAME_SEPARATOR, bridge_id.lower()).strip(NAME_SEPARATOR)
        name = f"{safe or 'bridge'}__{remote_name}"
    return ToolDescriptor(
        name=name,
        description=description if isinstance(description, str) else remote_name,
        input_schema=normalize_json_schema(schema),
        output_schema=output if isinstance(output, dict) else None,
        source=f"{BRIDGE_SOURCE_PREFIX}{bridge_id}",
        tags=("bridge", bridge_id),
        bridge_id=bridge_id,
        remote_name=remote_name,
    )


def merge_tools(*groups: Iterable[ToolDescriptor]) -> list[ToolDescriptor]:
    """Concatenate groups in order; on a name collision the first-registered tool wins."""
    merged: list[ToolDescriptor] = []
    seen: set[str] = set()
    for group in groups:
        for tool in group:
            if tool.name in seen:
                continue
            seen.add(tool.name)
            merged.append(tool)
    return merged


def normalize_json_schema(schema: Any) -> dict[str, Any]:
    """Ensure an object-shaped schema for remote tool definitions."""
    if not isinstance(schema, dict):
        return {"type": "object", "properties": {}}

    out = dict(schema)
    out["type"] = "object"
    properties_raw = out.get("properties")
    if isinstance(properties_raw, dict):
        out["properties"] = {
            str(key): (value if isinstance(value, dict) else {})
            for key, value in properties_raw.items()
        }
    else:
        out["properties"] = {}

    required_raw = out.get("required")
    if isinstance(required_raw, list):
        out["required"] = [
            name for name in required_raw if isinstance(name, str) and name in out["properties"]
        ]
    else:
        out.pop("required", None)
    return out
