"""Bus call counters and a Prometheus exporter for thing-access drivers."""

from __future__ import annotations

import logging
import threading
from wsgiref.simple_server import WSGIServer

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest, start_http_server

logger = logging.getLogger("thingaccess.metrics")

OUTCOME_OK = "ok"
OUTCOME_ERROR = "error"


class BusMetrics:
    """Counters for edge bus traffic and gauges for device population."""

    def __init__(self, module_name: str, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._module = module_name
        self._calls = Counter(
            "thingaccess_bus_calls",
            "Remote method calls issued on the edge bus",
            ["module", "member", "outcome"],
            registry=self.registry,
        )
        self._signals = Counter(
            "thingaccess_bus_signals",
            "Signals emitted on the edge bus",
            ["module", "member"],
            registry=self.registry,
        )
        self._inbound = Counter(
            "thingaccess_inbound_calls",
            "Method calls received from the gateway",
            ["module", "member", "outcome"],
            registry=self.registry,
        )
        self._registered = Gauge(
            "thingaccess_things_registered",
            "Things currently registered with the gateway",
            ["module"],
            registry=self.registry,
        )
        self._connected = Gauge(
            "thingaccess_things_connected",
            "Things currently online",
            ["module"],
            registry=self.registry,
        )

    def record_call(self, member: str, ok: bool) -> None:
        outcome = OUTCOME_OK if ok else OUTCOME_ERROR
        self._calls.labels(self._module, member, outcome).inc()

    def record_signal(self, member: str) -> None:
        self._signals.labels(self._module, member).inc()

    def record_inbound(self, member: str, ok: bool) -> None:
        outcome = OUTCOME_OK if ok else OUTCOME_ERROR
        self._inbound.labels(self._module, member, outcome).inc()

    def set_population(self, registered: int, connected: int) -> None:
        self._registered.labels(self._module).set(registered)
        self._connected.labels(self._module).set(connected)

    def render(self) -> bytes:
        return generate_latest(self.registry)



class PrometheusExporter:
    """Serves the driver registry over HTTP from a background thread."""

    def __init__(self, metrics: BusMetrics, host: str, port: int) -> None:
        self._metrics = metrics
        self._host = host
        self._port = port
        self._server: WSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        if self._server is None:
            return self._port
        return self._server.server_port

    @property
    def running(self) -> bool:
        return self._server is not None

    def start(self) -> None:
        if self._server is not None:
            return
        self._server, self._thread = start_http_server(self._port, addr=self._host, registry=self._metrics.registry)
        logger.info("Metrics available on http://%s:%d/metrics", self._host, self.port)

    def stop(self) -> None:
        server, thread = self._server, self._thread
        self._server = self._thread = None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=5)


__all__ = ["BusMetrics", "PrometheusExporter"]
