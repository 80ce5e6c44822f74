from __future__ import annotations

from mcpgate.adapter import (
    adapt_routes,
    bridge_tool,
    derive_tool_name,
    merge_tools,
    normalize_json_schema,
    to_tool,
)
from mcpgate.routes import RouteDescriptor


def _handler(request):
    return {"ok": True}


def _route(method: str, path: str, **kwargs) -> RouteDescriptor:
    return RouteDescriptor(method=method, path=path, handler=_handler, **kwargs)


def test_derive_tool_name_flattens_method_and_path():
    assert derive_tool_name("GET", "/users/{id}") == "get_users_id"
    assert derive_tool_name("POST", "/users") == "post_users"
    assert derive_tool_name("DELETE", "/a/:b/[c]") == "delete_a_b_c"
    assert derive_tool_name("GET", "/") == "get"


def test_adapt_routes_suffixes_colliding_names_in_table_order():
    tools = adapt_routes(
        [
            _route("GET", "/a-b"),
            _route("GET", "/a_b"),
            _route("GET", "/a/b"),
            _route("GET", "/c"),
        ]
    )
    assert [tool.name for tool in tools] == ["get_a_b", "get_a_b_2", "get_a_b_3", "get_c"]
    assert len({tool.name for tool in tools}) == len(tools)


def test_to_tool_skips_suffixes_already_taken():
    taken = {"get_x", "get_x_2"}
    tool = to_tool(_route("GET", "/x"), taken)
    assert tool.name == "get_x_3"
    assert "get_x_3" in taken


def test_to_tool_builds_nested_input_schema():
    route = _route(
        "PUT",
        "/users/{id}",
        input_schema={
            "query": {"type": "object", "properties": {"notify": {"type": "boolean"}}},
            "body": {
                "type": "object",
                "properties": {"name": {"type": "string"}},
                "required": ["name"],
            },
        },
        tags=("users",),
    )
    tool = to_tool(route)

    schema = tool.input_schema
    assert schema["type"] == "object"
    assert set(schema["properties"]) == {"params", "query", "body"}
    assert schema["properties"]["params"]["required"] == ["id"]
    assert schema["required"] == ["params", "body"]
    assert tool.description == "Execute PUT request to /users/{id}"
    assert tool.tags == ("users",)
    assert tool.to_dict()["method"] == "PUT"


def test_to_tool_without_placeholders_has_no_required_params():
    tool = to_tool(_route("GET", "/users", description="List users"))
    assert tool.input_schema == {"type": "object", "properties": {}, "required": []}
    assert tool.description == "List users"
    assert tool.tags == ("api",)


def test_to_tool_is_deterministic():
    route = _route("GET", "/users/{id}", output_schema={"type": "object"})
    assert to_tool(route) == to_tool(route)
    assert to_tool(route).to_dict() == to_tool(route).to_dict()


def test_merge_tools_keeps_first_registered_name():
    static = adapt_routes([_route("GET", "/users")])
    cached = adapt_routes([_route("GET", "/users", description="cached copy")], source="cached")
    bridged = [bridge_tool("files", {"name": "get_users"}), bridge_tool("files", {"name": "read"})]

    merged = merge_tools(static, cached, bridged)

    assert [(tool.name, tool.source) for tool in merged] == [
        ("get_users", "static"),
        ("read", "bridge:files"),
    ]


def test_bridge_tool_normalizes_remote_rows():
    tool = bridge_tool(
        "fs",
        {
            "name": "read_file",
            "inputSchema": {"properties": {"path": {"type": "string"}, "bad": 3}, "required": ["path", "x"]},
        },
    )
    assert tool is not None
    assert tool.description == "read_file"
    assert tool.input_schema == {
        "type": "object",
        "properties": {"path": {"type": "string"}, "bad": {}},
        "required": ["path"],
    }
    assert tool.bridge_id == "fs"
    assert tool.remote_name == "read_file"
    assert tool.is_bridge

    prefixed = bridge_tool("My Server", {"name": "read"}, prefix=True)
    assert prefixed is not None and prefixed.name == "my_server__read"

    assert bridge_tool("fs", {"description": "no name"}) is None
    assert bridge_tool("fs", "garbage") is None


def test_normalize_json_schema_defaults_to_empty_object():
    assert normalize_json_schema(None) == {"type": "object", "properties": {}}
