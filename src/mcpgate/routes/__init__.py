"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Route table package.

Contains route descriptors, immutable route-table snapshots and the
file-system route loader.
"""

from .loader import FileRouteLoader
from .types import (
    HTTP_METHODS,
    RouteDescriptor,
    RouteLoader,
    RouteRequest,
    RouteTable,
    invoke_route,
)

__all__ = [
    "HTTP_METHODS",
    "FileRouteLoader",
    "RouteDescriptor",
    "RouteLoader",
    "RouteRequest",
    "RouteTable",
    "invoke_route",
]
