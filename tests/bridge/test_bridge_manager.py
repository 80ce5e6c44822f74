from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

from mcpgate.bridge import BridgeConfig, BridgeManager, load_bridge_config, parse_bridge_config
from mcpgate.bridge.config import bridge_env_overrides
from mcpgate.errors import BridgeError, BridgeNotFound, BridgeUnavailable
from mcpgate.metrics import BRIDGE_REQUESTS_TOTAL, GatewayMetrics
from mcpgate.server import GatewayServer

FAKE_BRIDGE = str(Path(__file__).with_name("fake_bridge.py"))


def run_async(coro):
    return asyncio.run(coro)


def _bridge(bridge_id: str, *extra: str, **overrides) -> BridgeConfig:
    return BridgeConfig(
        bridge_id=bridge_id,
        command=sys.executable,
        args=(FAKE_BRIDGE, *extra),
        **overrides,
    )


def test_parse_bridge_config_reads_cursor_style_entries():
    configs = parse_bridge_config(
        {
            "mcpServers": {
                "chrome": {
                    "command": "npx",
                    "args": ["-y", "chrome-devtools-mcp"],
                    "env": {"DEBUG": 1},
                    "timeout": 2500,
                },
                "lines": {"command": "node", "framing": "NDJSON", "disabled": True},
            }
        }
    )

    assert list(configs) == ["chrome", "lines"]
    chrome = configs["chrome"]
    assert chrome.args == ("-y", "chrome-devtools-mcp")
    assert chrome.env == {"DEBUG": "1"}
    assert chrome.timeout_s == 2.5
    assert chrome.framing == "content-length"
    assert configs["lines"].framing == "ndjson"
    assert configs["lines"].disabled is True


def test_parse_bridge_config_rejects_bad_entries():
    with pytest.raises(BridgeError):
        parse_bridge_config({"mcpServers": {"x": {"args": []}}})
    with pytest.raises(BridgeError):
        parse_bridge_config({"mcpServers": {"x": {"command": "a", "framing": "xml"}}})


def test_load_bridge_config_missing_file_means_no_bridges(tmp_path: Path):
    assert load_bridge_config(tmp_path / "absent.json") == {}

    path = tmp_path / "bridges.json"
    path.write_text(json.dumps({"mcpServers": {"a": {"command": "run-a"}}}), encoding="utf-8")
    assert list(load_bridge_config(path)) == ["a"]


def test_list_tools_returns_partial_results_within_window():
    async def scenario():
        manager = BridgeManager(
            {
                "good": _bridge("good"),
                "slow": _bridge("slow", "--slow-list", "1.0"),
                "broken": BridgeConfig(bridge_id="broken", command="/nonexistent/bridge"),
                "off": _bridge("off", disabled=True),
            },
            list_timeout_s=5.0,
        )
        try:
            await manager.ensure_bridges()
            # The start-time catalogue sweep of "slow" already happened; make
            # the next sweep time out by asking for a tighter window.
            return await manager.list_tools(timeout_s=0.2), manager.status()
        finally:
            await manager.stop_all()

    servers, status = run_async(scenario())

    assert list(servers) == ["good", "slow", "broken"]
    assert [tool["name"] for tool in servers["good"]["tools"]] == ["echo", "slow", "crash", "fail"]
    assert "timed out" in servers["slow"]["error"]
    assert "failed to spawn" in servers["broken"]["error"]
    assert status["off"]["running"] is False
    assert status["good"]["running"] is True


def test_call_tool_routes_by_catalogue_and_bridge_id():
    async def scenario():
        manager = BridgeManager(
            {
                "alpha": _bridge("alpha", "--extra-tool", "alpha_only"),
                "beta": _bridge("beta", "--ndjson", "--extra-tool", "beta_only", framing="ndjson"),
            }
        )
        try:
            by_catalogue = await manager.call_tool("beta_only", {})
            by_id = await manager.call_tool("echo", {"text": "b"}, bridge_id="beta")
            with pytest.raises(BridgeNotFound):
                await manager.call_tool("echo", {}, bridge_id="gamma")
            with pytest.raises(BridgeNotFound):
                await manager.call_tool("nobody_has_this", {})
            names = [tool.name for tool in manager.catalogue_tools()]
            sources = {tool.source for tool in manager.catalogue_tools()}
            return by_catalogue, by_id, names, sources
        finally:
            await manager.stop_all()

    by_catalogue, by_id, names, sources = run_async(scenario())

    assert by_catalogue["content"][0]["text"] == "beta_only"
    assert by_id["content"][0]["text"] == "b"
    assert "alpha_only" in names and "beta_only" in names
    assert sources == {"bridge:alpha", "bridge:beta"}


def test_crashed_bridge_is_not_restarted_implicitly():
    async def scenario():
        manager = BridgeManager({"solo": _bridge("solo")})
        try:
            await manager.ensure_bridges()
            with pytest.raises(BridgeError):
                await manager.call_tool("crash", {}, bridge_id="solo")
            await manager.ensure_bridges()
            with pytest.raises(BridgeUnavailable):
                await manager.call_tool("echo", {"text": "x"}, bridge_id="solo")

            await manager.restart_bridge("solo")
            return await manager.call_tool("echo", {"text": "back"}, bridge_id="solo")
        finally:
            await manager.stop_all()

    result = run_async(scenario())
    assert result["content"][0]["text"] == "back"


def test_catalogue_hook_fires_when_bridge_tools_change():
    calls: list[str] = []

    async def scenario():
        manager = BridgeManager(on_catalogue_change=lambda: calls.append("changed"))
        try:
            await manager.add_bridge(_bridge("late"))
            await manager.list_tools()
            await manager.remove_bridge("late")
        finally:
            await manager.stop_all()
        return manager.catalogue_tools()

    assert run_async(scenario()) == []
    # Start publishes the catalogue, an unchanged re-list does not, removal does.
    assert calls == ["changed", "changed"]


def test_bridge_env_overrides_map_prefixed_variables():
    environ = {
        "MCPGATE_SERVER.github.token": "t0k",
        "MCPGATE_SERVER.github.api.url": "https://api.example",
        "MCPGATE_SERVER.github.": "ignored",
        "MCPGATE_SERVER.other.token": "not-mine",
        "GITHUB_TOKEN": "unrelated",
    }
    assert bridge_env_overrides("GitHub", environ) == {
        "TOKEN": "t0k",
        "API_URL": "https://api.example",
    }

    configs = parse_bridge_config(
        {"mcpServers": {"github": {"command": "gh-mcp", "env": {"TOKEN": "from-file", "KEEP": "1"}}}},
        environ=environ,
    )
    assert configs["github"].env == {
        "TOKEN": "t0k",
        "KEEP": "1",
        "API_URL": "https://api.example",
    }


def test_injected_environment_reaches_the_bridge_process():
    configs = parse_bridge_config(
        {"mcpServers": {"envy": {"command": sys.executable, "args": [FAKE_BRIDGE]}}},
        environ={"MCPGATE_SERVER.envy.secret.key": "s3cret"},
    )

    async def scenario():
        manager = BridgeManager(configs)
        try:
            return await manager.call_tool("env", {"key": "SECRET_KEY"}, bridge_id="envy")
        finally:
            await manager.stop_all()

    assert run_async(scenario())["content"][0]["text"] == "s3cret"


def test_apply_configs_adds_removes_and_restarts_only_what_changed():
    async def scenario():
        manager = BridgeManager(
            {"keep": _bridge("keep"), "drop": _bridge("drop"), "change": _bridge("change")}
        )
        try:
            await manager.ensure_bridges()
            keep_client = manager.get("keep")
            change_client = manager.get("change")

            report = await manager.apply_configs(
                {
                    "keep": _bridge("keep"),
                    "change": _bridge("change", "--extra-tool", "fresh"),
                    "new": _bridge("new"),
                }
            )
            unchanged = await manager.apply_configs(manager.configs)
            return (
                report,
                unchanged,
                manager.get("keep") is keep_client,
                manager.get("change") is not change_client,
                manager.bridge_ids,
                [tool.name for tool in manager.catalogue_tools() if tool.bridge_id == "change"],
                manager.status()["new"]["running"],
            )
        finally:
            await manager.stop_all()

    report, unchanged, kept, replaced, bridge_ids, change_tools, new_running = run_async(scenario())

    assert report.added == ("new",)
    assert report.removed == ("drop",)
    assert report.restarted == ("change",)
    assert not unchanged.changed
    assert kept and replaced
    assert bridge_ids == ["keep", "change", "new"]
    assert "fresh" in change_tools
    assert new_running is True


def test_prefixed_bridge_tools_route_through_the_server():
    metrics = GatewayMetrics()

    async def scenario():
        manager = BridgeManager({"my-server": _bridge("my-server")}, tool_prefix=True, metrics=metrics)
        server = GatewayServer(bridge_manager=manager, metrics=metrics)
        try:
            await manager.ensure_bridges()
            names = [tool.name for tool in await server.list_tools()]
            result = await server.call_tool("my_server__echo", {"text": "hi"})
            return names, result
        finally:
            await manager.stop_all()

    names, result = run_async(scenario())

    assert names == ["my_server__echo", "my_server__slow", "my_server__crash", "my_server__fail"]
    assert result["content"][0]["text"] == "hi"
    assert metrics.by_tag(BRIDGE_REQUESTS_TOTAL, "bridge") == {"my-server": 1}
