"""Metrics collection primitives for the persona gateway."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


@dataclass
class ChatEvent:
    """Structured metrics payload for one chat request."""

    persona: str
    status: str
    provider: Optional[str]
    duration_ms: float
    response_filtered: bool = False
    error_code: Optional[str] = None


@dataclass
class SecurityEvent:
    """Outcome of a single security check."""

    check: str
    outcome: str
    pattern: Optional[str] = None


class MetricsCollector(Protocol):
    """Protocol for collecting metrics events."""

    def record(self, event: ChatEvent) -> None:
        """Persist or emit the chat event."""

    def record_security(self, event: SecurityEvent) -> None:
        """Persist or emit the security decision."""


class LoggingMetricsCollector(MetricsCollector):
    """Default metrics collector that logs structured events."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("persona_gateway.metrics")

    def record(self, event: ChatEvent) -> None:
        payload = {
            "persona": event.persona,
            "status": event.status,
            "provider": event.provider,
            "duration_ms": round(event.duration_ms, 3),
            "response_filtered": event.response_filtered,
            "error_code": event.error_code,
        }
        self._logger.info("chat_metrics", extra={"metrics": payload})

    def record_security(self, event: SecurityEvent) -> None:
        payload = {"check": event.check, "outcome": event.outcome, "pattern": event.pattern}
        self._logger.info("security_metrics", extra={"metrics": payload})


class PrometheusMetricsCollector(MetricsCollector):
    """Metrics collector backed by Prometheus client library."""

    def __init__(
        self,
        *,
        port: Optional[int] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._registry = registry or CollectorRegistry()
        self._events = Counter(
            "persona_gateway_chat_events_total",
            "Total chat requests by outcome",
            ["persona", "status", "provider", "error_code"],
            registry=self._registry,
        )
        self._duration = Histogram(
            "persona_gateway_chat_duration_seconds",
            "Chat handling duration",
            ["persona", "status", "provider"],
            registry=self._registry,
        )
        self._security = Counter(
            "persona_gateway_security_checks_total",
            "Security pipeline decisions",
            ["check", "outcome", "pattern"],
            registry=self._registry,
        )
        if port is not None:
            start_http_server(port, registry=self._registry)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record(self, event: ChatEvent) -> None:
        provider = event.provider or "unknown"
        status = "filtered" if event.response_filtered and event.status == "success" else event.status
        self._events.labels(
            persona=event.persona,
            status=status,
            provider=provider,
            error_code=event.error_code or "none",
        ).inc()
        self._duration.labels(
            persona=event.persona,
            status=status,
            provider=provider,
        ).observe(max(event.duration_ms / 1000.0, 0.0))

    def record_security(self, event: SecurityEvent) -> None:
        self._security.labels(
            check=event.check,
            outcome=event.outcome,
            pattern=event.pattern or "none",
        ).inc()


class SecurityMetrics:
    """Process-wide counters of blocked and accepted requests.

    Counts are observability only. Increments happen under a lock so
    concurrent requests never lose updates.
    """

    def __init__(self, collector: Optional[MetricsCollector] = None) -> None:
        self._lock = threading.Lock()
        self._collector = collector
        self.blocked_count = 0
        self.safe_count = 0
        self.filtered_count = 0
        self.pattern_hits: Dict[str, int] = {}
        self.started_at = datetime.now(timezone.utc).isoformat()

    def record_blocked(self, pattern: str) -> None:
        with self._lock:
            self.blocked_count += 1
            self.pattern_hits[pattern] = self.pattern_hits.get(pattern, 0) + 1
        if self._collector is not None:
            self._collector.record_security(SecurityEvent(check="input", outcome="blocked", pattern=pattern))

    def record_safe(self) -> None:
        with self._lock:
            self.safe_count += 1
        if self._collector is not None:
            self._collector.record_security(SecurityEvent(check="input", outcome="safe"))

    def record_filtered(self, pattern: str) -> None:
        with self._lock:
            self.filtered_count += 1
        if self._collector is not None:
            self._collector.record_security(SecurityEvent(check="response", outcome="filtered", pattern=pattern))

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            blocked = self.blocked_count
            safe = self.safe_count
            total = blocked + safe
            return {
                "blocked_requests": blocked,
                "safe_requests": safe,
                "total_requests": total,
                "suspicious_patterns": dict(self.pattern_hits),
                "filtered_responses": self.filtered_count,
                "block_rate": blocked / total if total else 0.0,
                "uptime_since": self.started_at,
            }


def create_metrics_collector(backend: str, port: Optional[int] = None) -> MetricsCollector:
    """Instantiate the collector named by ``METRICS_BACKEND``."""
    if backend == "prometheus":
        return PrometheusMetricsCollector(port=port)
    return LoggingMetricsCollector()
