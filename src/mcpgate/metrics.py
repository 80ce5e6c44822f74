"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Request metrics for the gateway.

``GatewayMetrics`` keeps counters and recent response times in memory so
``/health`` can report them. ``PrometheusGatewayMetrics``
additionally exports the same counters through ``prometheus_client``.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Mapping
from typing import Any, Protocol

REQUESTS_TOTAL = "mcp_requests_total"
ERRORS_TOTAL = "mcp_errors_total"
TOOL_CALLS_TOTAL = "mcp_tool_calls_total"
BRIDGE_REQUESTS_TOTAL = "mcp_bridge_requests_total"
RESPONSE_SECONDS = "mcp_response_seconds"

METRICS_BACKENDS = ("memory", "prometheus")

RECENT_RESPONSES = 100


class MetricsSink(Protocol):
    """Minimal metrics interface used by the protocol handler and bridges."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        """Increment a counter metric."""

    def observe(
        self, name: str, value: float, *, tags: Mapping[str, str] | None = None
    ) -> None:
        """Record one sample of a timing metric."""


class NoOpMetrics:
    """Default metrics sink when no metrics backend is provided."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        _ = name
        _ = value
        _ = tags

    def observe(
        self, name: str, value: float, *, tags: Mapping[str, str] | None = None
    ) -> None:
        _ = name
        _ = value
        _ = tags


def _key(name: str, tags: Mapping[str, str] | None) -> tuple[str, tuple[tuple[str, str], ...]]:
    return name, tuple(sorted((tags or {}).items()))


class GatewayMetrics:
    """In-memory counters; the default sink."""

    def __init__(self) -> None:
        self.started_at = time.time()
        self._counters: dict[tuple[str, tuple[tuple[str, str], ...]], int] = {}
        self._samples: deque[float] = deque(maxlen=RECENT_RESPONSES)
        self.last_activity: float | None = None

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        key = _key(name, tags)
        self._counters[key] = self._counters.get(key, 0) + value
        self.last_activity = time.time()

    def observe(
        self, name: str, value: float, *, tags: Mapping[str, str] | None = None
    ) -> None:
        _ = tags
        if name == RESPONSE_SECONDS:
            self._samples.append(value)

    def total(self, name: str) -> int:
        return sum(count for (metric, _), count in self._counters.items() if metric == name)

    def by_tag(self, name: str, tag: str) -> dict[str, int]:
        out: dict[str, int] = {}
        for (metric, tags), count in self._counters.items():
            if metric != name:
                continue
            value = dict(tags).get(tag)
            if value is not None:
                out[value] = out.get(value, 0) + count
        return out

    def snapshot(self) -> dict[str, Any]:
        average_ms = (
            sum(self._samples) / len(self._samples) * 1000.0 if self._samples else 0.0
        )
        return {
            "uptimeS": round(time.time() - self.started_at, 3),
            "requests": self.total(REQUESTS_TOTAL),
            "errors": self.total(ERRORS_TOTAL),
            "toolCalls": self.total(TOOL_CALLS_TOTAL),
            "bridgeRequests": self.total(BRIDGE_REQUESTS_TOTAL),
            "averageResponseMs": round(average_ms, 3),
            "methods": self.by_tag(REQUESTS_TOTAL, "method"),
            "errorTypes": self.by_tag(ERRORS_TOTAL, "type"),
            "lastActivity": self.last_activity,
        }


class PrometheusGatewayMetrics(GatewayMetrics):
    """
    Prometheus-backed gateway metrics adapter.

    Requires `prometheus_client` package. In-memory counters are still kept
    so the health snapshot works the same with either backend.
    """

    def __init__(self, *, namespace: str = "mcpgate") -> None:
        super().__init__()
        try:
            from prometheus_client import Counter, Histogram
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise RuntimeError(
                "PrometheusGatewayMetrics requires `prometheus_client` to be installed."
            ) from exc

        self._Counter = Counter
        self._Histogram = Histogram
        self._namespace = namespace
        self._collectors: dict[str, Any] = {}

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        super().incr(name, value, tags=tags)
        self._labelled(self._Counter, name, tags).inc(value)

    def observe(
        self, name: str, value: float, *, tags: Mapping[str, str] | None = None
    ) -> None:
        super().observe(name, value, tags=tags)
        self._labelled(self._Histogram, name, tags).observe(value)

    def _labelled(self, kind: Any, name: str, tags: Mapping[str, str] | None) -> Any:
        label_names = tuple(sorted((tags or {}).keys()))
        key = f"{name}|{','.join(label_names)}"
        collector = self._collectors.get(key)
        if collector is None:
            collector = kind(
                name=name,
                documentation=f"mcpgate metric {name}",
                namespace=self._namespace,
                labelnames=label_names,
            )
            self._collectors[key] = collector
        if label_names:
            return collector.labels(*[str((tags or {})[label]) for label in label_names])
        return collector


def create_metrics(backend: str = "memory") -> GatewayMetrics:
    if backend == "prometheus":
        return PrometheusGatewayMetrics()
    if backend != "memory":
        raise ValueError(f"unknown metrics backend '{backend}', expected one of {METRICS_BACKENDS}")
    return GatewayMetrics()
