"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Command-line entry point.

Usage examples:
  python -m mcpgate --api-dir api --port 8887
  python -m mcpgate --stdio --api-dir api
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace

from .app import Gateway, create_gateway
from .config import GatewayConfig


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mcpgate", description="REST and MCP gateway")
    parser.add_argument("--stdio", action="store_true", help="serve MCP over stdin/stdout")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--api-dir", type=str, default=None)
    parser.add_argument("--mcp-dir", type=str, default=None)
    parser.add_argument("--bridge-config", type=str, default=None)
    parser.add_argument("--no-hot-reload", action="store_true")
    parser.add_argument("--log-level", type=str, default="INFO")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> GatewayConfig:
    config = GatewayConfig.from_env()
    overrides = {
        "host": args.host,
        "port": args.port,
        "api_dir": args.api_dir,
        "mcp_dir": args.mcp_dir,
        "bridge_config_path": args.bridge_config,
    }
    config = replace(config, **{k: v for k, v in overrides.items() if v is not None})
    if args.no_hot_reload:
        config = replace(config, hot_reload=False)
    return config


async def run_stdio(gateway: Gateway) -> None:
    await gateway.start()
    try:
        await gateway.server.serve_stdio()
    finally:
        await gateway.stop()
        if gateway.server.bridge_manager is not None:
            await gateway.server.bridge_manager.stop_all()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    # stdout carries protocol traffic in stdio mode.
    logging.basicConfig(
        stream=sys.stderr,
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    gateway = create_gateway(build_config(args))
    if args.stdio:
        asyncio.run(run_stdio(gateway))
    else:
        gateway.server.run()


if __name__ == "__main__":
    main()
