"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Newline-delimited JSON-RPC over a pair of byte streams (normally the
process's own stdin/stdout).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from ..errors import ProtocolError
from .base import ClientState, PayloadHandler, TransportClient

logger = logging.getLogger("mcpgate.transports")

MAX_MESSAGE_BYTES = 16 * 1024 * 1024


class StdioClient(TransportClient):
    """
    Stdio peer; ready as soon as it exists.

    A line longer than the reader's limit is answered with an
    ``Invalid Request`` error (id ``null``) and skipped; serving continues
    with the next line.
    """

    kind = "stdio"

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: Any,
        *,
        client_id: str | None = None,
    ) -> None:
        super().__init__(client_id)
        self._reader = reader
        self._writer = writer
        self._write_lock = asyncio.Lock()
        self.mark_ready()

    async def _write(self, message: dict[str, Any] | list[Any]) -> None:
        line = json.dumps(message, separators=(",", ":"), default=str) + "\n"
        async with self._write_lock:
            self._writer.write(line.encode("utf-8"))
            await self._writer.drain()

    async def _close(self) -> None:
        close = getattr(self._writer, "close", None)
        if callable(close):
            close()

    async def serve(self, handler: PayloadHandler) -> None:
        """Read lines until EOF; each line is one JSON-RPC message or batch."""
        while self.state is not ClientState.CLOSED:
            try:
                raw = await self._reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as exc:
                raw = exc.partial
                if not raw:
                    break
            except asyncio.LimitOverrunError as exc:
                await self._skip_line(exc.consumed)
                await self._reject_oversized()
                continue
            text = raw.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            self.spawn(text, handler)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Stdio client %s reached EOF", self.client_id)

    async def _skip_line(self, consumed: int) -> None:
        # Bytes of the oversized line may still be arriving.
        while True:
            await self._reader.readexactly(consumed)
            try:
                await self._reader.readuntil(b"\n")
                return
            except asyncio.IncompleteReadError:
                return
            except asyncio.LimitOverrunError as exc:
                consumed = exc.consumed

    async def _reject_oversized(self) -> None:
        failure = ProtocolError("Request too large")
        logger.warning("Stdio client %s: %s", self.client_id, failure)
        await self.respond({"jsonrpc": "2.0", "id": None, "error": failure.to_jsonrpc_error()})


async def open_stdio_streams(
    limit: int = MAX_MESSAGE_BYTES,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Wrap the process's stdin/stdout in asyncio streams; ``limit`` bounds one line."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=limit)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    transport, protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout
    )
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer
