from __future__ import annotations

import asyncio

from mcpgate.adapter import ToolDescriptor
from mcpgate.metrics import GatewayMetrics
from mcpgate.registry import PromptStore, ResourceStore, make_prompt, make_resource
from mcpgate.routes import RouteDescriptor
from mcpgate.server import GatewayServer


def run_async(coro):
    return asyncio.run(coro)


def _get_user(request):
    return {"id": request.params["id"], "verbose": request.query.get("verbose", False)}


async def _explode(request):
    raise ValueError("database unavailable")


def _server(**kwargs) -> GatewayServer:
    routes = [
        RouteDescriptor(method="GET", path="/users/{id}", handler=_get_user),
        RouteDescriptor(method="POST", path="/explode", handler=_explode),
    ]
    return GatewayServer(routes=routes, **kwargs)


def _handle(server: GatewayServer, message):
    return run_async(server.protocol.handle_payload(message))


def test_envelope_errors_use_invalid_request_code():
    server = _server()

    assert _handle(server, "nope")["error"]["code"] == -32600
    assert _handle(server, "nope")["id"] is None

    wrong_version = _handle(server, {"jsonrpc": "1.0", "id": 4, "method": "ping"})
    assert wrong_version["error"]["code"] == -32600
    assert wrong_version["id"] == 4

    missing_method = _handle(server, {"jsonrpc": "2.0", "id": "abc"})
    assert missing_method == {
        "jsonrpc": "2.0",
        "id": "abc",
        "error": {"code": -32600, "message": "Missing method"},
    }


def test_unknown_method_echoes_id():
    response = _handle(_server(), {"jsonrpc": "2.0", "id": 9, "method": "tools/destroy"})
    assert response["id"] == 9
    assert response["error"] == {"code": -32601, "message": "Method not found: tools/destroy"}


def test_notifications_get_no_response():
    server = _server()
    assert _handle(server, {"jsonrpc": "2.0", "method": "notifications/initialized"}) is None
    assert _handle(server, {"jsonrpc": "2.0", "method": "does/not/exist"}) is None


def test_initialize_advertises_list_changed_capabilities():
    response = _handle(_server(), {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
    result = response["result"]
    assert result["protocolVersion"] == "2024-11-05"
    assert result["serverInfo"] == {"name": "mcpgate", "version": "0.1.0"}
    for capability in ("tools", "resources", "prompts"):
        assert result["capabilities"][capability] == {"listChanged": True}


def test_tools_call_invokes_route_handler():
    response = _handle(
        _server(),
        {
            "jsonrpc": "2.0",
            "id": 2,
            "method": "tools/call",
            "params": {
                "name": "get_users_id",
                "arguments": {"params": {"id": "42"}, "query": {"verbose": True}},
            },
        },
    )
    assert response["result"] == {
        "content": [{"type": "text", "text": '{"id": "42", "verbose": true}'}],
        "isError": False,
    }


def test_tools_call_error_codes():
    server = _server()

    unknown = _handle(
        server,
        {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": "nope"}},
    )
    assert unknown["error"] == {"code": -32602, "message": "Tool not found: nope"}

    missing_name = _handle(server, {"jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": {}})
    assert missing_name["error"]["code"] == -32602

    bad_args = _handle(
        server,
        {
            "jsonrpc": "2.0",
            "id": 5,
            "method": "tools/call",
            "params": {"name": "get_users_id", "arguments": [1, 2]},
        },
    )
    assert bad_args["error"]["code"] == -32602

    failing = _handle(
        server,
        {"jsonrpc": "2.0", "id": 6, "method": "tools/call", "params": {"name": "post_explode"}},
    )
    assert failing["id"] == 6
    assert failing["error"] == {"code": -32603, "message": "database unavailable"}


def test_batch_returns_responses_for_requests_only():
    responses = _handle(
        _server(),
        [
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 2, "method": "unknown"},
        ],
    )
    assert [r["id"] for r in responses] == [1, 2]
    assert responses[0]["result"] == {}
    assert responses[1]["error"]["code"] == -32601

    assert _handle(_server(), [])["error"]["code"] == -32600


def test_resources_templates_and_read():
    resources = ResourceStore(
        [
            make_resource("resource://guide.md", "# Guide", mime_type="text/markdown"),
            make_resource("resource://greeting.txt", "Hello {{ name }} from {{ team }}"),
        ]
    )
    server = _server(resources=resources)

    listed = _handle(server, {"jsonrpc": "2.0", "id": 1, "method": "resources/list"})
    assert [r["uri"] for r in listed["result"]["resources"]] == [
        "resource://guide.md",
        "resource://greeting.txt",
    ]

    templates = _handle(server, {"jsonrpc": "2.0", "id": 2, "method": "resources/templates/list"})
    assert templates["result"]["total"] == 1
    template = templates["result"]["resourceTemplates"][0]
    assert template["uriTemplate"] == "resource://greeting.txt"
    assert template["parameters"] == ["name", "team"]
    assert template["parameterCount"] == 2

    read = _handle(
        server,
        {
            "jsonrpc": "2.0",
            "id": 3,
            "method": "resources/read",
            "params": {"uri": "resource://greeting.txt", "arguments": {"name": "Ada"}},
        },
    )
    assert read["result"]["contents"] == [
        {
            "uri": "resource://greeting.txt",
            "mimeType": "text/plain",
            "text": "Hello Ada from {{ team }}",
        }
    ]
    assert read["result"]["template"]["parameters"] == ["name", "team"]

    plain = _handle(
        server,
        {"jsonrpc": "2.0", "id": 4, "method": "resources/read", "params": {"uri": "resource://guide.md"}},
    )
    assert plain["result"]["contents"][0]["text"] == "# Guide"
    assert "template" not in plain["result"]

    missing = _handle(
        server,
        {"jsonrpc": "2.0", "id": 5, "method": "resources/read", "params": {"uri": "resource://gone"}},
    )
    assert missing["error"] == {"code": -32602, "message": "Resource not found: resource://gone"}


def test_prompts_list_and_get():
    prompts = PromptStore([make_prompt("review", "Review {{ file }} carefully", description="Code review")])
    server = _server(prompts=prompts)

    listed = _handle(server, {"jsonrpc": "2.0", "id": 1, "method": "prompts/list"})
    assert listed["result"]["prompts"][0]["arguments"][0]["name"] == "file"

    got = _handle(
        server,
        {
            "jsonrpc": "2.0",
            "id": 2,
            "method": "prompts/get",
            "params": {"name": "review", "arguments": {"file": "main.py"}},
        },
    )
    assert got["result"]["messages"][0]["content"]["text"] == "Review main.py carefully"

    missing = _handle(
        server,
        {"jsonrpc": "2.0", "id": 3, "method": "prompts/get", "params": {"name": "nope"}},
    )
    assert missing["error"]["code"] == -32602


class _FakeCache:
    def __init__(self) -> None:
        self.cleared: list[str] = []

    async def get_resources(self):
        return [
            make_resource("resource://guide.md", "cached guide", source="cached"),
            make_resource("resource://extra.md", "extra", source="cached"),
        ]

    async def get_prompts(self):
        return []

    async def get_cache_stats(self):
        return {"resources": {"hits": 1}}

    async def get_tools(self):
        return [
            ToolDescriptor(
                name="get_users_id",
                description="shadowed",
                input_schema={"type": "object", "properties": {}},
            ),
            ToolDescriptor(
                name="get_report",
                description="cached only",
                input_schema={"type": "object", "properties": {}},
            ),
        ]

    def clear_cache(self, kind: str = "all") -> None:
        self.cleared.append(kind)


def test_static_entries_win_over_cached_ones():
    cache = _FakeCache()
    resources = ResourceStore([make_resource("resource://guide.md", "static guide")])
    server = _server(resources=resources, cache_manager=cache)

    tools = _handle(server, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})["result"]["tools"]
    assert [(t["name"], t["source"]) for t in tools] == [
        ("get_users_id", "static"),
        ("post_explode", "static"),
        ("get_report", "cached"),
    ]

    listed = _handle(server, {"jsonrpc": "2.0", "id": 2, "method": "resources/list"})
    assert [(r["uri"], r["source"]) for r in listed["result"]["resources"]] == [
        ("resource://guide.md", "static"),
        ("resource://extra.md", "cached"),
    ]

    stats = _handle(server, {"jsonrpc": "2.0", "id": 3, "method": "cache/stats"})
    assert stats["result"] == {"enabled": True, "resources": {"hits": 1}}

    server.clear_cache()
    assert cache.cleared == ["all"]


def test_cache_stats_without_cache_manager():
    response = _handle(_server(), {"jsonrpc": "2.0", "id": 1, "method": "cache/stats"})
    assert response["result"] == {"enabled": False}


def test_metrics_count_requests_tool_calls_and_error_types():
    metrics = GatewayMetrics()
    server = _server(metrics=metrics)

    _handle(server, {"jsonrpc": "2.0", "id": 1, "method": "ping"})
    _handle(server, {"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
    _handle(
        server,
        {
            "jsonrpc": "2.0",
            "id": 3,
            "method": "tools/call",
            "params": {"name": "get_users_id", "arguments": {"params": {"id": "1"}}},
        },
    )
    _handle(
        server,
        {"jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": {"name": "post_explode"}},
    )
    _handle(server, {"jsonrpc": "2.0", "id": 5, "method": "tools/destroy"})
    _handle(server, {"jsonrpc": "1.0", "id": 6, "method": "ping"})
    _handle(server, {"jsonrpc": "2.0", "id": 7, "method": "ping", "params": [1]})
    _handle(server, {"jsonrpc": "2.0", "method": "notifications/initialized"})

    snapshot = metrics.snapshot()
    assert snapshot["requests"] == 8
    assert snapshot["toolCalls"] == 2
    assert snapshot["errors"] == 4
    assert snapshot["methods"] == {
        "ping": 1,
        "tools/list": 1,
        "tools/call": 2,
        "invalid": 3,
        "notifications/initialized": 1,
    }
    assert snapshot["errorTypes"] == {
        "ToolInvocationError": 1,
        "MethodNotFound": 1,
        "ProtocolError": 1,
        "InvalidParams": 1,
    }
    assert snapshot["averageResponseMs"] >= 0.0
    assert snapshot["lastActivity"] is not None


def test_params_of_wrong_shape_are_rejected_before_dispatch():
    response = _handle(_server(), {"jsonrpc": "2.0", "id": 8, "method": "ping", "params": [1]})
    assert response == {
        "jsonrpc": "2.0",
        "id": 8,
        "error": {"code": -32602, "message": "'params' must be an object"},
    }
    assert _handle(_server(), {"jsonrpc": "2.0", "method": "ping", "params": "x"}) is None
