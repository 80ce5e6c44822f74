from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from mcpgate.bridge import BridgeClient, BridgeConfig
from mcpgate.errors import (
    BridgeCrashed,
    BridgeOverloaded,
    BridgeRemoteError,
    BridgeTimeout,
    BridgeUnavailable,
)

FAKE_BRIDGE = str(Path(__file__).with_name("fake_bridge.py"))


def run_async(coro):
    return asyncio.run(coro)


def _config(bridge_id: str = "fake", *extra: str, **overrides) -> BridgeConfig:
    return BridgeConfig(
        bridge_id=bridge_id,
        command=sys.executable,
        args=(FAKE_BRIDGE, *extra),
        **overrides,
    )


def test_bridge_client_handshake_lists_and_calls_tools():
    async def scenario():
        client = BridgeClient(_config())
        await client.start()
        try:
            assert client.is_running
            assert client.server_info["serverInfo"]["name"] == "fake-bridge"
            assert client.server_info["protocolVersion"] == "2024-11-05"

            tools = await client.list_tools()
            assert [tool["name"] for tool in tools] == ["echo", "slow", "crash", "fail"]

            result = await client.call_tool("echo", {"text": "hi"})
            assert result == {"content": [{"type": "text", "text": "hi"}], "isError": False}
        finally:
            await client.stop()
        assert not client.is_running

    run_async(scenario())


def test_bridge_client_speaks_ndjson_when_configured():
    async def scenario():
        client = BridgeClient(_config("nd", "--ndjson", framing="ndjson"))
        await client.start()
        try:
            result = await client.call_tool("echo", {"text": "lines"})
            assert result["content"][0]["text"] == "lines"
        finally:
            await client.stop()

    run_async(scenario())


def test_bridge_client_relays_remote_error_object():
    async def scenario():
        client = BridgeClient(_config())
        await client.start()
        try:
            with pytest.raises(BridgeRemoteError) as excinfo:
                await client.call_tool("fail", {})
        finally:
            await client.stop()
        return excinfo.value

    error = run_async(scenario())
    assert error.code == -32000
    assert error.to_jsonrpc_error() == {
        "code": -32000,
        "message": "tool failed",
        "data": {"tool": "fail"},
    }


def test_bridge_client_times_out_then_succeeds_after_restart():
    async def scenario():
        client = BridgeClient(_config())
        await client.start()
        try:
            with pytest.raises(BridgeTimeout):
                await client.call_tool("slow", {"seconds": 2}, timeout_s=0.2)
            assert client.pending_count == 0

            await client.stop()
            await client.start()
            result = await client.call_tool("echo", {"text": "again"}, timeout_s=5)
            assert result["content"][0]["text"] == "again"
        finally:
            await client.stop()

    run_async(scenario())


def test_bridge_client_fails_pending_requests_when_process_exits():
    async def scenario():
        client = BridgeClient(_config())
        await client.start()
        try:
            with pytest.raises(BridgeCrashed):
                await client.call_tool("crash", {}, timeout_s=5)
            assert client.pending_count == 0
            assert not client.is_running
            assert client.last_exit_code == 3

            with pytest.raises(BridgeUnavailable):
                await client.call_tool("echo", {"text": "x"})
        finally:
            await client.stop()

    run_async(scenario())


def test_bridge_client_rejects_requests_beyond_max_pending():
    async def scenario():
        client = BridgeClient(_config(max_pending=1))
        await client.start()
        try:
            slow = asyncio.create_task(client.call_tool("slow", {"seconds": 0.5}, timeout_s=5))
            await asyncio.sleep(0.1)
            with pytest.raises(BridgeOverloaded):
                await client.call_tool("echo", {"text": "x"})
            result = await slow
            assert result["content"][0]["text"] == "done"
        finally:
            await client.stop()

    run_async(scenario())


def test_bridge_client_reports_spawn_failure():
    async def scenario():
        client = BridgeClient(
            BridgeConfig(bridge_id="missing", command="/nonexistent/mcpgate-bridge-binary")
        )
        with pytest.raises(BridgeUnavailable):
            await client.start()
        assert not client.is_running

    run_async(scenario())
