# -*- coding: utf-8 -*-

from __future__ import annotations
from typing import Optional, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest


class Metrics:
    """The two application series, on their own registry so /metrics exposes nothing else."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.requests = Counter(
            "echo_requests", "Total number of echo requests",
            ["method", "uri", "protocol"], registry=self.registry,
        )
        self.latency = Histogram(
            "http_server_requests_seconds", "HTTP request latency in seconds",
            ["method", "uri", "protocol"], registry=self.registry,
        )

    def observe(self, method: str, uri: str, protocol: str, seconds: float) -> None:
        self.requests.labels(method, uri, protocol).inc()
        self.latency.labels(method, uri, protocol).observe(seconds)

    def render(self) -> Tuple[bytes, str]:
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
