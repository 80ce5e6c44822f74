"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Bridge package.

Contains stdio framing, the per-process JSON-RPC client and the manager that
republishes bridge tools.
"""

from .client import BridgeClient
from .config import BridgeConfig, bridge_env_overrides, load_bridge_config, parse_bridge_config
from .framing import (
    FRAMING_CONTENT_LENGTH,
    FRAMING_NDJSON,
    FrameParser,
    ParserState,
    encode_frame,
)
from .manager import BridgeManager, BridgeReloadReport

__all__ = [
    "FRAMING_CONTENT_LENGTH",
    "FRAMING_NDJSON",
    "BridgeClient",
    "BridgeConfig",
    "BridgeManager",
    "BridgeReloadReport",
    "FrameParser",
    "ParserState",
    "bridge_env_overrides",
    "encode_frame",
    "load_bridge_config",
    "parse_bridge_config",
]
