"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Framing for JSON-RPC over a child process's stdio.

Outgoing messages use ``Content-Length`` framing or newline-delimited JSON.
The incoming parser accepts both, because real MCP servers speak either one.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any

from ..errors import FramingError

logger = logging.getLogger("mcpgate.bridge")

FRAMING_CONTENT_LENGTH = "content-length"
FRAMING_NDJSON = "ndjson"
FRAMINGS = (FRAMING_CONTENT_LENGTH, FRAMING_NDJSON)

MAX_HEADER_BYTES = 8 * 1024
MAX_BODY_BYTES = 16 * 1024 * 1024

_CONTENT_LENGTH_LINE = re.compile(rb"content-length[ \t]*:", re.IGNORECASE)


def encode_frame(message: dict[str, Any], framing: str = FRAMING_CONTENT_LENGTH) -> bytes:
    """Serialize one message for the wire."""
    payload = json.dumps(message, separators=(",", ":"), default=str).encode("utf-8")
    if framing == FRAMING_NDJSON:
        return payload + b"\n"
    if framing != FRAMING_CONTENT_LENGTH:
        raise FramingError(f"unknown framing '{framing}', expected one of {FRAMINGS}")
    return f"Content-Length: {len(payload)}\r\n\r\n".encode("ascii") + payload


class ParserState(str, Enum):
    AWAITING_HEADER = "awaiting_header"
    AWAITING_BODY = "awaiting_body"


class FrameParser:
    """
    Incremental parser turning arbitrary byte chunks into JSON-RPC messages.

    ``feed`` may be called with partial headers, partial bodies or several
    messages at once; it returns every complete message so far. In the
    header state a line starting with ``{`` or ``[`` is taken as one NDJSON
    message and a line starting with ``Content-Length:`` opens a header
    block. Any other line is informational output and dropped.

    Malformed input never aborts a ``feed``: the offending header block or
    line is discarded, ``errors`` is incremented and parsing resumes at the
    next line, so messages around the damage are still returned.
    """

    def __init__(
        self,
        *,
        max_header_bytes: int = MAX_HEADER_BYTES,
        max_body_bytes: int = MAX_BODY_BYTES,
    ) -> None:
        self.max_header_bytes = max_header_bytes
        self.max_body_bytes = max_body_bytes
        self.state = ParserState.AWAITING_HEADER
        self.expected_length = 0
        self.errors = 0
        self._skip_line = False
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self.state = ParserState.AWAITING_HEADER
        self.expected_length = 0
        self._skip_line = False
        self._buffer.clear()

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        """Consume ``chunk`` and return the messages it completed."""
        self._buffer.extend(chunk)
        messages: list[dict[str, Any]] = []
        while True:
            if self.state is ParserState.AWAITING_BODY:
                if len(self._buffer) < self.expected_length:
                    break
                body = bytes(self._buffer[: self.expected_length])
                del self._buffer[: self.expected_length]
                self.state = ParserState.AWAITING_HEADER
                self.expected_length = 0
                self._emit(body, messages)
                continue
            try:
                progressed = self._consume_header(messages)
            except FramingError as exc:
                self.errors += 1
                logger.warning("Discarding malformed bridge output: %s", exc)
                self._skip_line = True
                continue
            if not progressed:
                break
        return messages

    def _consume_header(self, messages: list[dict[str, Any]]) -> bool:
        if self._skip_line:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                self._buffer.clear()
                return False
            del self._buffer[: newline + 1]
            self._skip_line = False

        lead = len(self._buffer) - len(self._buffer.lstrip())
        if lead:
            del self._buffer[:lead]
        if not self._buffer:
            return False

        newline = self._buffer.find(b"\n")
        if self._buffer[:1] in (b"{", b"["):
            if newline < 0:
                if len(self._buffer) > self.max_body_bytes:
                    raise FramingError("newline-delimited message exceeds size limit")
                return False
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            self._emit(line, messages)
            return True

        first_line = self._buffer if newline < 0 else self._buffer[:newline]
        if not _CONTENT_LENGTH_LINE.match(first_line):
            if newline < 0:
                # A partial line may still grow into a Content-Length header.
                if len(self._buffer) > self.max_header_bytes:
                    raise FramingError("line exceeds header size limit")
                return False
            dropped = bytes(first_line).decode("utf-8", errors="replace").strip()
            del self._buffer[: newline + 1]
            logger.debug("Skipping non-protocol output: %s", dropped)
            return True

        end, sep_len = _find_header_end(self._buffer)
        if end < 0:
            if len(self._buffer) > self.max_header_bytes:
                raise FramingError("header exceeds size limit")
            return False
        if end > self.max_header_bytes:
            raise FramingError("header exceeds size limit")

        block = bytes(self._buffer[:end]).decode("ascii", errors="replace")
        del self._buffer[: end + sep_len]

        length: int | None = None
        for line in block.splitlines():
            name, _, value = line.partition(":")
            if name.strip().lower() == "content-length":
                try:
                    length = int(value.strip())
                except ValueError:
                    self.errors += 1
                    logger.warning(
                        "Discarding header block with invalid Content-Length: %r",
                        value.strip(),
                    )
                    return True

        if length is None or length < 0 or length > self.max_body_bytes:
            self.errors += 1
            logger.warning("Discarding header block with Content-Length out of range: %s", length)
            return True

        self.state = ParserState.AWAITING_BODY
        self.expected_length = length
        return True


    def _emit(self, raw: bytes, messages: list[dict[str, Any]]) -> None:
        try:
            decoded = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Dropping undecodable bridge message: %s", exc)
            return
        if isinstance(decoded, dict):
            messages.append(decoded)
        elif isinstance(decoded, list):
            messages.extend(item for item in decoded if isinstance(item, dict))


def _find_header_end(buffer: bytearray) -> tuple[int, int]:
    candidates = []
    for separator in (b"\r\n\r\n", b"\n\n"):
        index = buffer.find(separator)
        if index >= 0:
            candidates.append((index, len(separator)))
    if not candidates:
        return -1, 0
    return min(candidates)
