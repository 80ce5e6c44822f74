"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Bridge process configuration, loaded from a Cursor-compatible ``mcpServers`` file.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from ..errors import BridgeError
from .framing import FRAMING_CONTENT_LENGTH, FRAMINGS

logger = logging.getLogger("mcpgate.bridge")

DEFAULT_BRIDGE_TIMEOUT_S = 30.0
DEFAULT_MAX_PENDING = 64
BRIDGE_ENV_PREFIX = "MCPGATE_SERVER"


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """
    How to spawn and talk to one bridge.

    Attributes:
        bridge_id: Key under ``mcpServers``.
        command: Executable to spawn.
        args: Command arguments.
        cwd: Working directory for the child process.
        env: Extra environment variables layered over the gateway's own.
        disabled: Skip this bridge in ``ensure_bridges``.
        framing: Outgoing framing, ``content-length`` or ``ndjson``.
        timeout_s: Default per-request timeout.
        max_pending: Bound on concurrently outstanding requests.
    """

    bridge_id: str
    command: str
    args: tuple[str, ...] = ()
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    disabled: bool = False
    framing: str = FRAMING_CONTENT_LENGTH
    timeout_s: float = DEFAULT_BRIDGE_TIMEOUT_S
    max_pending: int = DEFAULT_MAX_PENDING

    @classmethod
    def from_dict(
        cls,
        bridge_id: str,
        raw: dict[str, Any],
        *,
        default_timeout_s: float = DEFAULT_BRIDGE_TIMEOUT_S,
        default_max_pending: int = DEFAULT_MAX_PENDING,
    ) -> "BridgeConfig":
        if not isinstance(raw, dict):
            raise BridgeError(f"bridge '{bridge_id}' config must be an object")
        command = raw.get("command")
        if not isinstance(command, str) or not command.strip():
            raise BridgeError(f"bridge '{bridge_id}' requires a 'command'")

        args = raw.get("args") or []
        if not isinstance(args, list):
            raise BridgeError(f"bridge '{bridge_id}' 'args' must be a list")
        env = raw.get("env") or {}
        if not isinstance(env, dict):
            raise BridgeError(f"bridge '{bridge_id}' 'env' must be an object")

        framing = str(raw.get("framing") or FRAMING_CONTENT_LENGTH).lower()
        if framing not in FRAMINGS:
            raise BridgeError(
                f"bridge '{bridge_id}' has unknown framing '{framing}', expected one of {FRAMINGS}"
            )

        # Cursor-style configs give ``timeout`` in milliseconds.
        timeout_raw = raw.get("timeout")
        timeout_s = default_timeout_s
        if isinstance(timeout_raw, (int, float)) and timeout_raw > 0:
            timeout_s = float(timeout_raw) / 1000.0

        max_pending = raw.get("maxPending", default_max_pending)
        if not isinstance(max_pending, int) or max_pending < 1:
            raise BridgeError(f"bridge '{bridge_id}' 'maxPending' must be a positive integer")

        cwd = raw.get("cwd")
        return cls(
            bridge_id=bridge_id,
            command=command,
            args=tuple(str(arg) for arg in args),
            cwd=str(cwd) if cwd else None,
            env={str(k): str(v) for k, v in env.items()},
            disabled=bool(raw.get("disabled", False)),
            framing=framing,
            timeout_s=timeout_s,
            max_pending=max_pending,
        )


def bridge_env_overrides(
    bridge_id: str, environ: Mapping[str, str] | None = None
) -> dict[str, str]:
    """
    Environment for one bridge taken from the gateway's own environment.

    ``MCPGATE_SERVER.<bridge>.<param>`` (bridge id lowercased) becomes
    ``<PARAM>`` in the child, with dots in ``param`` turned into underscores:
    ``MCPGATE_SERVER.github.token`` sets ``TOKEN`` for bridge ``github``.
    """
    source = os.environ if environ is None else environ
    prefix = f"{BRIDGE_ENV_PREFIX}.{bridge_id.lower()}."
    overrides: dict[str, str] = {}
    for key, value in source.items():
        if key.startswith(prefix) and len(key) > len(prefix):
            overrides[key[len(prefix) :].upper().replace(".", "_")] = value
    return overrides


def parse_bridge_config(
    document: dict[str, Any],
    *,
    default_timeout_s: float = DEFAULT_BRIDGE_TIMEOUT_S,
    default_max_pending: int = DEFAULT_MAX_PENDING,
    environ: Mapping[str, str] | None = None,
) -> dict[str, BridgeConfig]:
    """
    Parse an ``mcpServers`` document.

    Variables found by ``bridge_env_overrides`` are layered over each
    entry's ``env``, so a value in the environment wins over the file.
    """
    servers = document.get("mcpServers") if isinstance(document, dict) else None
    if servers is None:
        return {}
    if not isinstance(servers, dict):
        raise BridgeError("'mcpServers' must be an object")
    configs: dict[str, BridgeConfig] = {}
    for bridge_id, raw in servers.items():
        config = BridgeConfig.from_dict(
            str(bridge_id),
            raw,
            default_timeout_s=default_timeout_s,
            default_max_pending=default_max_pending,
        )
        overrides = bridge_env_overrides(config.bridge_id, environ)
        if overrides:
            config = replace(config, env={**config.env, **overrides})
        configs[config.bridge_id] = config
    return configs


def load_bridge_config(
    path: str | Path,
    *,
    default_timeout_s: float = DEFAULT_BRIDGE_TIMEOUT_S,
    default_max_pending: int = DEFAULT_MAX_PENDING,
    environ: Mapping[str, str] | None = None,
) -> dict[str, BridgeConfig]:
    """Read ``path``; a missing file means no bridges."""
    config_path = Path(path)
    if not config_path.is_file():
        logger.info("No bridge config at %s", config_path)
        return {}
    try:
        document = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise BridgeError(f"invalid bridge config {config_path}: {exc}") from exc
    return parse_bridge_config(
        document,
        default_timeout_s=default_timeout_s,
        default_max_pending=default_max_pending,
        environ=environ,
    )
