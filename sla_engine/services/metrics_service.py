"""
Prometheus-compatible metrics service for the SLA engine.

Tracks HTTP request counts and latencies alongside engine activity:
state transitions, escalations, scheduler runs and live SSE subscribers.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from prometheus_client import (
    CollectorRegistry,
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from sla_engine.core.clock import utcnow
from sla_engine.core.config import settings

logger = logging.getLogger(__name__)


# Define histogram buckets for response times (in seconds)
RESPONSE_TIME_BUCKETS = (
    0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0
)

# Scheduler runs touch every pending instance, so they get a wider range
SCHEDULER_RUN_BUCKETS = (
    0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0
)


@dataclass
class RequestStats:
    """Statistics for a single endpoint."""
    total_requests: int = 0
    total_errors: int = 0
    total_duration_seconds: float = 0.0
    max_duration_seconds: float = 0.0
    status_codes: Dict[int, int] = field(default_factory=lambda: defaultdict(int))
    last_request_time: Optional[datetime] = None

    def record(self, duration_seconds: float, status_code: int):
        self.total_requests += 1
        self.total_duration_seconds += duration_seconds
        self.max_duration_seconds = max(self.max_duration_seconds, duration_seconds)
        self.status_codes[status_code] += 1
        self.last_request_time = utcnow()

        if status_code >= 500:
            self.total_errors += 1

    @property
    def avg_duration_seconds(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_duration_seconds / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "total_errors": self.total_errors,
            "avg_duration_ms": round(self.avg_duration_seconds * 1000, 2),
            "max_duration_ms": round(self.max_duration_seconds * 1000, 2),
            "status_codes": dict(self.status_codes),
            "last_request_time": self.last_request_time.isoformat() if self.last_request_time else None
        }


class MetricsCollector:
    """
    Collects and exports application metrics.

    Each collector owns its registry so a fresh one can be built in tests
    without clashing with the process-wide instance.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self._lock = threading.Lock()
        self._start_time = utcnow()
        self.registry = registry or CollectorRegistry()

        self._endpoint_stats: Dict[str, RequestStats] = defaultdict(RequestStats)
        self._global_stats = RequestStats()
        self._transition_counts: Dict[str, int] = defaultdict(int)
        self._escalation_counts: Dict[int, int] = defaultdict(int)

        self._init_prometheus_metrics()

        logger.info("MetricsCollector initialized")

    def _init_prometheus_metrics(self):
        """Initialize Prometheus metric collectors."""
        self.app_info = Info(
            "sla_engine_app",
            "SLA engine application information",
            registry=self.registry
        )
        self.app_info.info({
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "app_name": settings.APP_NAME
        })

        # HTTP
        self.request_counter = Counter(
            "sla_engine_http_requests_total",
            "Total number of HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )
        self.request_duration = Histogram(
            "sla_engine_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=RESPONSE_TIME_BUCKETS,
            registry=self.registry
        )

        # Engine
        self.transition_counter = Counter(
            "sla_engine_transitions_total",
            "SLA instance transitions by event type",
            ["event_type"],
            registry=self.registry
        )
        self.escalation_counter = Counter(
            "sla_engine_escalations_total",
            "Escalations fired by level",
            ["level"],
            registry=self.registry
        )
        self.delivery_failure_counter = Counter(
            "sla_engine_delivery_failures_total",
            "Escalation or broadcast deliveries that failed",
            ["channel"],
            registry=self.registry
        )

        # Scheduler
        self.scheduler_run_duration = Histogram(
            "sla_engine_scheduler_run_duration_seconds",
            "Recomputation run duration in seconds",
            buckets=SCHEDULER_RUN_BUCKETS,
            registry=self.registry
        )
        self.instance_error_counter = Counter(
            "sla_engine_instance_errors_total",
            "Instances that failed during a recomputation run",
            registry=self.registry
        )
        self.pending_instances_gauge = Gauge(
            "sla_engine_pending_instances",
            "Non-terminal SLA instances seen by the last run",
            registry=self.registry
        )

        # SSE
        self.sse_subscribers_gauge = Gauge(
            "sla_engine_sse_subscribers",
            "Connected SSE subscribers",
            registry=self.registry
        )

        self.uptime_gauge = Gauge(
            "sla_engine_uptime_seconds",
            "Application uptime in seconds",
            registry=self.registry
        )

    def record_request(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        duration_seconds: float
    ):
        """
        Record metrics for a completed HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: Request path
            status_code: HTTP response status code
            duration_seconds: Request duration in seconds
        """
        normalized_endpoint = self._normalize_endpoint(endpoint)

        with self._lock:
            self._global_stats.record(duration_seconds, status_code)
            self._endpoint_stats[normalized_endpoint].record(duration_seconds, status_code)

        self.request_counter.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code)
        ).inc()
        self.request_duration.labels(
            method=method,
            endpoint=normalized_endpoint
        ).observe(duration_seconds)

    def _normalize_endpoint(self, endpoint: str) -> str:
        """Replace dynamic path segments (ids) with a placeholder to bound label cardinality."""
        if not endpoint:
            return "/"

        normalized = []
        for segment in endpoint.split("/"):
            if not segment:
                continue
            normalized.append("{id}" if self._is_dynamic_segment(segment) else segment)

        return "/" + "/".join(normalized) if normalized else "/"

    def _is_dynamic_segment(self, segment: str) -> bool:
        # UUID
        if len(segment) == 36 and segment.count("-") == 4:
            return True
        return segment.isdigit()

    def record_transition(self, event_type: str):
        with self._lock:
            self._transition_counts[event_type] += 1
        self.transition_counter.labels(event_type=event_type).inc()

    def record_escalation(self, level: int):
        with self._lock:
            self._escalation_counts[level] += 1
        self.escalation_counter.labels(level=str(level)).inc()

    def record_delivery_failure(self, channel: str):
        self.delivery_failure_counter.labels(channel=channel).inc()

    def record_scheduler_run(self, duration_seconds: float, pending: int, errors: int):
        """Record one completed recomputation run."""
        self.scheduler_run_duration.observe(duration_seconds)
        self.pending_instances_gauge.set(pending)
        if errors:
            self.instance_error_counter.inc(errors)

    def set_sse_subscribers(self, count: int):
        self.sse_subscribers_gauge.set(count)

    def get_prometheus_metrics(self) -> bytes:
        """Generate Prometheus-format metrics output."""
        uptime = (utcnow() - self._start_time).total_seconds()
        self.uptime_gauge.set(uptime)
        return generate_latest(self.registry)

    def get_prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def get_stats_summary(self) -> Dict[str, Any]:
        """JSON-serializable summary of request and engine statistics."""
        with self._lock:
            uptime_seconds = (utcnow() - self._start_time).total_seconds()

            slowest_endpoints = sorted(
                [
                    {"endpoint": ep, **stats.to_dict()}
                    for ep, stats in self._endpoint_stats.items()
                    if stats.total_requests > 0
                ],
                key=lambda x: x["avg_duration_ms"],
                reverse=True
            )[:5]

            return {
                "application": {
                    "name": settings.APP_NAME,
                    "version": settings.APP_VERSION,
                    "environment": settings.ENVIRONMENT,
                    "uptime_seconds": round(uptime_seconds, 2),
                    "start_time": self._start_time.isoformat()
                },
                "requests": {
                    "total": self._global_stats.total_requests,
                    "errors": self._global_stats.total_errors,
                    "avg_duration_ms": round(self._global_stats.avg_duration_seconds * 1000, 2),
                    "by_status_code": dict(self._global_stats.status_codes)
                },
                "engine": {
                    "transitions": dict(self._transition_counts),
                    "escalations_by_level": {str(k): v for k, v in self._escalation_counts.items()},
                },
                "slowest_endpoints": slowest_endpoints,
            }

    def reset_stats(self):
        """Reset internal statistics (for testing purposes)."""
        with self._lock:
            self._endpoint_stats.clear()
            self._global_stats = RequestStats()
            self._transition_counts.clear()
            self._escalation_counts.clear()
            self._start_time = utcnow()


# Global metrics collector instance
metrics_collector = MetricsCollector()
