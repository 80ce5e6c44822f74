from __future__ import annotations

import asyncio

import pytest

from mcpgate.errors import ReloadFailure, RouteLoadError
from mcpgate.reload import HotReloadCoordinator
from mcpgate.routes import FileRouteLoader, RouteDescriptor
from mcpgate.server import GatewayServer
from mcpgate.transports import TransportClient
from mcpgate.watcher import PollingFileWatcher


def run_async(coro):
    return asyncio.run(coro)


def _handler(request):
    return "ok"


def _route(path: str) -> RouteDescriptor:
    return RouteDescriptor(method="GET", path=path, handler=_handler)


class FakeLoader:
    def __init__(self, routes, *, delay_s: float = 0.0) -> None:
        self.routes = list(routes)
        self.delay_s = delay_s
        self.cleared: list[str] = []
        self.loads = 0
        self.active = 0
        self.max_active = 0
        self.fail_with: Exception | None = None

    def clear_cache(self, path: str) -> None:
        self.cleared.append(path)

    async def load_routes(self):
        self.loads += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            if self.fail_with is not None:
                raise self.fail_with
            return list(self.routes)
        finally:
            self.active -= 1


class RecordingClient(TransportClient):
    kind = "test"

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[dict] = []
        self.mark_ready()

    async def _write(self, message):
        self.sent.append(message)

    def methods(self) -> list[str]:
        return [message["method"] for message in self.sent]


def test_changes_within_quiet_period_form_one_batch():
    async def scenario():
        loader = FakeLoader([_route("/a")])
        server = GatewayServer()
        results = []
        coordinator = HotReloadCoordinator(
            loader, server, debounce_s=0.05, on_reload=results.append
        )

        coordinator.queue_change("api/a/get.py", "added")
        coordinator.queue_change("api/b/get.py", "changed")
        coordinator.queue_change("api/a/get.py", "changed")
        assert coordinator.pending_changes == {
            "api/a/get.py": "changed",
            "api/b/get.py": "changed",
        }
        await coordinator.wait_idle()
        await coordinator.stop()
        return loader, server, coordinator, results

    loader, server, coordinator, results = run_async(scenario())
    assert coordinator.reload_count == 1
    assert loader.loads == 1
    assert sorted(loader.cleared) == ["api/a/get.py", "api/b/get.py"]
    assert server.route_table.generation == 1
    assert len(results) == 1 and results[0].ok
    assert results[0].generation == 1


def test_unknown_event_is_rejected():
    async def scenario():
        coordinator = HotReloadCoordinator(FakeLoader([]), GatewayServer())
        with pytest.raises(ValueError):
            coordinator.queue_change("x.py", "renamed")

    run_async(scenario())


def test_cycles_run_one_at_a_time_in_order():
    async def scenario():
        loader = FakeLoader([_route("/a")], delay_s=0.05)
        server = GatewayServer()
        coordinator = HotReloadCoordinator(loader, server, debounce_s=10.0)

        coordinator.queue_change("one.py")
        coordinator.flush()
        coordinator.queue_change("two.py")
        coordinator.flush()
        coordinator.queue_change("three.py")
        coordinator.flush()
        await coordinator.wait_idle()
        await coordinator.stop()
        return loader, server, coordinator

    loader, server, coordinator = run_async(scenario())
    assert loader.max_active == 1
    assert loader.cleared == ["one.py", "two.py", "three.py"]
    assert server.route_table.generation == 3
    assert coordinator.last_result.changes == {"three.py": "changed"}


def test_failed_reload_keeps_current_table():
    async def scenario():
        loader = FakeLoader([_route("/a"), _route("/b")])
        server = GatewayServer(routes=[_route("/a")])
        client = RecordingClient()
        server.attach(client)
        coordinator = HotReloadCoordinator(loader, server)

        loader.fail_with = RouteLoadError("syntax error in b/get.py")
        failed = await coordinator.reload({"b/get.py": "added"})
        state_after_failure = (server.route_table.generation, len(client.sent))

        loader.fail_with = None
        succeeded = await coordinator.reload({"b/get.py": "changed"})
        return failed, state_after_failure, succeeded, server, coordinator, client

    failed, state_after_failure, succeeded, server, coordinator, client = run_async(scenario())
    assert not failed.ok
    assert isinstance(failed.error, ReloadFailure)
    assert "keeping current routes" in str(failed.error)
    assert "syntax error" in str(failed.error)
    assert state_after_failure == (0, 0)

    assert succeeded.ok
    assert coordinator.last_error is None
    assert server.route_table.generation == 1
    assert [tool.name for tool in server.route_table.tools] == ["get_a", "get_b"]
    assert client.methods() == [
        "notifications/toolsChanged",
        "notifications/resourcesChanged",
        "notifications/promptsChanged",
    ]


def test_deleted_route_file_removes_tool_and_notifies_once(tmp_path):
    api = tmp_path / "api"
    (api / "users").mkdir(parents=True)
    (api / "users" / "get.py").write_text("def handler(request):\n    return []\n", encoding="utf-8")
    (api / "users" / "post.py").write_text("def handler(request):\n    return {}\n", encoding="utf-8")

    async def scenario():
        loader = FileRouteLoader(api)
        server = GatewayServer(routes=loader.load_routes())
        client = RecordingClient()
        server.attach(client)
        coordinator = HotReloadCoordinator(loader, server, debounce_s=0.05)
        watcher = PollingFileWatcher(api, coordinator.queue_change)
        watcher._snapshot = watcher.scan()

        before = [tool.name for tool in await server.list_tools()]
        (api / "users" / "post.py").unlink()
        events = await watcher.poll_once()
        await coordinator.wait_idle()
        after = [tool.name for tool in await server.list_tools()]
        await coordinator.stop()
        return before, events, after, client

    before, events, after, client = run_async(scenario())
    assert before == ["get_users", "post_users"]
    assert [event for _, event in events] == ["removed"]
    assert after == ["get_users"]
    tool_notifications = [m for m in client.sent if m["method"] == "notifications/toolsChanged"]
    assert len(tool_notifications) == 1
    assert [tool["name"] for tool in tool_notifications[0]["params"]["tools"]] == ["get_users"]


def test_watcher_reports_added_changed_removed(tmp_path):
    (tmp_path / "keep.py").write_text("a = 1\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored\n", encoding="utf-8")
    (tmp_path / "__pycache__").mkdir()
    (tmp_path / "__pycache__" / "cached.py").write_text("", encoding="utf-8")
    seen: list[tuple[str, str]] = []

    async def on_change(path, event):
        seen.append((path, event))

    async def scenario():
        watcher = PollingFileWatcher(tmp_path, on_change)
        watcher._snapshot = watcher.scan()
        assert await watcher.poll_once() == []

        (tmp_path / "keep.py").write_text("a = 1234\n", encoding="utf-8")
        (tmp_path / "new.py").write_text("b = 2\n", encoding="utf-8")
        (tmp_path / ".hidden.py").write_text("c = 3\n", encoding="utf-8")
        first = await watcher.poll_once()

        (tmp_path / "keep.py").unlink()
        second = await watcher.poll_once()
        return first, second

    first, second = run_async(scenario())
    keep = str(tmp_path.resolve() / "keep.py")
    new = str(tmp_path.resolve() / "new.py")
    assert first == [(new, "added"), (keep, "changed")]
    assert second == [(keep, "removed")]
    assert seen == first + second


def test_batch_queued_during_an_inflight_reload_runs_after_it():
    async def scenario():
        loader = FakeLoader([_route("/a")], delay_s=0.1)
        server = GatewayServer()
        results = []
        coordinator = HotReloadCoordinator(
            loader, server, debounce_s=10.0, on_reload=results.append
        )

        coordinator.queue_change("first.py")
        coordinator.flush()
        for _ in range(200):
            if loader.active == 1:
                break
            await asyncio.sleep(0.005)
        assert loader.active == 1

        coordinator.queue_change("second.py", "added")
        coordinator.flush()
        await coordinator.wait_idle()
        await coordinator.stop()
        return loader, server, results

    loader, server, results = run_async(scenario())
    assert loader.max_active == 1
    assert loader.loads == 2
    assert loader.cleared == ["first.py", "second.py"]
    assert [result.changes for result in results] == [
        {"first.py": "changed"},
        {"second.py": "added"},
    ]
    assert [result.generation for result in results] == [1, 2]
    assert server.route_table.generation == 2
