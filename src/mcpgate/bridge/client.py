"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Framed JSON-RPC client for one bridge child process.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
from typing import Any

from ..errors import (
    METHOD_NOT_FOUND,
    BridgeCrashed,
    BridgeError,
    BridgeOverloaded,
    BridgeRemoteError,
    BridgeTimeout,
    BridgeUnavailable,
)
from .config import BridgeConfig
from .framing import FrameParser, encode_frame

logger = logging.getLogger("mcpgate.bridge")

BRIDGE_PROTOCOL_VERSION = "2024-11-05"
READ_CHUNK_BYTES = 64 * 1024
STOP_GRACE_S = 5.0


class BridgeClient:
    """
    Owns one bridge process and its pending-request map.

    The process lives exactly as long as the client is started. When the
    process exits every pending request fails with ``BridgeCrashed`` and the
    client stays unavailable until ``start()`` is called again.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        client_name: str = "mcpgate",
        client_version: str = "0.1.0",
        init_timeout_s: float = 10.0,
    ) -> None:
        self.config = config
        self._client_name = client_name
        self._client_version = client_version
        self._init_timeout_s = init_timeout_s
        self._process: asyncio.subprocess.Process | None = None
        self._parser = FrameParser()
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._ids = itertools.count(1)
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()
        self._alive = False
        self.server_info: dict[str, Any] = {}
        self.last_exit_code: int | None = None

    @property
    def bridge_id(self) -> str:
        return self.config.bridge_id

    @property
    def is_running(self) -> bool:
        return self._alive and self._process is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        """Spawn the process and run the ``initialize`` handshake."""
        if self.is_running:
            return

        env = {**os.environ, **self.config.env}
        logger.info(
            "Starting bridge %s: %s %s",
            self.bridge_id,
            self.config.command,
            " ".join(self.config.args),
        )
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.config.command,
                *self.config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.config.cwd,
                env=env,
            )
        except OSError as exc:
            raise BridgeUnavailable(f"bridge '{self.bridge_id}' failed to spawn: {exc}") from exc

        self._parser.reset()
        self._alive = True
        self.last_exit_code = None
        self._reader_task = asyncio.create_task(self._read_stdout(self._process))
        self._stderr_task = asyncio.create_task(self._read_stderr(self._process))

        try:
            result = await self.rpc_request(
                "initialize",
                {
                    "protocolVersion": BRIDGE_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {
                        "name": self._client_name,
                        "version": self._client_version,
                    },
                },
                timeout_s=self._init_timeout_s,
            )
            await self.notify("notifications/initialized")
        except Exception:
            await self.stop()
            raise

        self.server_info = result if isinstance(result, dict) else {}
        logger.info("Bridge %s initialized", self.bridge_id)

    async def stop(self) -> None:
        process = self._process
        if process is None:
            return
        self._alive = False

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=STOP_GRACE_S)
            except asyncio.TimeoutError:
                logger.warning("Bridge %s ignored SIGTERM; killing", self.bridge_id)
                process.kill()
                await process.wait()

        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        self._fail_pending(f"bridge '{self.bridge_id}' was stopped")
        self.last_exit_code = process.returncode
        self._process = None
        self._reader_task = None
        self._stderr_task = None
        logger.info("Bridge %s stopped", self.bridge_id)

    async def rpc_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout_s: float | None = None,
    ) -> Any:
        """
        Send one request and wait for its response.

        Raises:
            BridgeUnavailable: The process is not running.
            BridgeOverloaded: ``max_pending`` requests are already outstanding.
            BridgeTimeout: No response within ``timeout_s``.
            BridgeCrashed: The process exited while the request was pending.
            BridgeRemoteError: The bridge answered with a JSON-RPC error.
        """
        if not self.is_running:
            raise BridgeUnavailable(f"bridge '{self.bridge_id}' is not running")
        if len(self._pending) >= self.config.max_pending:
            raise BridgeOverloaded(
                f"bridge '{self.bridge_id}' has {len(self._pending)} pending requests"
            )

        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        timeout = self.config.timeout_s if timeout_s is None else timeout_s
        try:
            await self._write(message)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise BridgeTimeout(
                f"bridge '{self.bridge_id}' timed out after {timeout}s waiting for '{method}'"
            ) from exc
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._write(message)

    async def list_tools(self, *, timeout_s: float | None = None) -> list[dict[str, Any]]:
        result = await self.rpc_request("tools/list", {}, timeout_s=timeout_s)
        tools = result.get("tools") if isinstance(result, dict) else None
        return [tool for tool in tools or [] if isinstance(tool, dict)]

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any],
        *,
        timeout_s: float | None = None,
    ) -> Any:
        return await self.rpc_request(
            "tools/call",
            {"name": name, "arguments": arguments},
            timeout_s=timeout_s,
        )

    async def _write(self, message: dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None or not self._alive:
            raise BridgeUnavailable(f"bridge '{self.bridge_id}' is not running")
        frame = encode_frame(message, self.config.framing)
        try:
            async with self._write_lock:
                process.stdin.write(frame)
                await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise BridgeCrashed(f"bridge '{self.bridge_id}' closed its stdin: {exc}") from exc

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while True:
            chunk = await process.stdout.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            for message in self._parser.feed(chunk):
                await self._dispatch(message)

        returncode = await process.wait()
        if self._process is process:
            self._alive = False
            self.last_exit_code = returncode
            logger.warning("Bridge %s exited with code %s", self.bridge_id, returncode)
            self._fail_pending(f"bridge '{self.bridge_id}' exited with code {returncode}")

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        while True:
            line = await process.stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.info("[bridge %s] %s", self.bridge_id, text)

    async def _dispatch(self, message: dict[str, Any]) -> None:
        msg_id = message.get("id")
        method = message.get("method")

        if method is not None:
            if msg_id is None:
                logger.debug("Bridge %s notification: %s", self.bridge_id, method)
                return
            # Server → client requests (sampling, roots, ...) are not supported.
            try:
                await self._write(
                    {
                        "jsonrpc": "2.0",
                        "id": msg_id,
                        "error": {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"},
                    }
                )
            except BridgeError as exc:
                logger.warning("Bridge %s: could not reject %s: %s", self.bridge_id, method, exc)
            return

        future = self._pending.get(msg_id) if isinstance(msg_id, int) else None
        if future is None or future.done():
            logger.debug("Bridge %s sent a response for unknown id %r", self.bridge_id, msg_id)
            return
        error = message.get("error")
        if isinstance(error, dict):
            future.set_exception(BridgeRemoteError(self.bridge_id, error))
        else:
            future.set_result(message.get("result"))

    def _fail_pending(self, reason: str) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(BridgeCrashed(reason))
