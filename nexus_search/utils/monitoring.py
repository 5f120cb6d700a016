"""
Monitoring and metrics collection for the crawl pipeline and search engine.
"""

import logging
from typing import Dict, Optional, Any

from prometheus_client import Counter, Histogram, CollectorRegistry, start_http_server


class MetricsCollector:
    """Owns the Prometheus registry and metric families."""

    def __init__(self, enable_server: bool = False, prometheus_port: int = 8000,
                 registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.enable_server = enable_server
        self.prometheus_port = prometheus_port
        self.registry = registry or CollectorRegistry()

        self.messages_handled = Counter(
            'nexus_messages_handled_total',
            'Pipeline messages handled',
            ['topic'],
            registry=self.registry
        )
        self.messages_dropped = Counter(
            'nexus_messages_dropped_total',
            'Malformed pipeline messages dropped',
            ['topic'],
            registry=self.registry
        )
        self.message_failures = Counter(
            'nexus_message_failures_total',
            'Pipeline messages whose handling raised',
            ['topic'],
            registry=self.registry
        )
        self.pages_visited = Counter(
            'nexus_pages_visited_total',
            'Pages fetched and analyzed successfully',
            registry=self.registry
        )
        self.pages_failed = Counter(
            'nexus_pages_failed_total',
            'Pages whose fetch or analysis failed',
            registry=self.registry
        )
        self.batch_duration = Histogram(
            'nexus_batch_duration_seconds',
            'Wall time of one worker pool batch',
            registry=self.registry
        )
        self.nodes_inserted = Counter(
            'nexus_nodes_inserted_total',
            'Webpage records upserted into the graph',
            registry=self.registry
        )
        self.search_stage_duration = Histogram(
            'nexus_search_stage_seconds',
            'Latency of a hybrid retrieval stage',
            ['stage'],
            registry=self.registry
        )

        self.logger.info("Prometheus metrics initialized")

    def start_server(self):
        """Start the Prometheus metrics HTTP server."""
        if not self.enable_server:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def get_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0.0 when it was never recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0


class CrawlerMonitor:
    """High-level monitoring interface used by the pipeline components."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.logger = logging.getLogger(__name__)

    def record_message(self, topic: str):
        self.metrics.messages_handled.labels(topic=topic).inc()

    def record_dropped_message(self, topic: str):
        self.metrics.messages_dropped.labels(topic=topic).inc()

    def record_message_failure(self, topic: str):
        self.metrics.message_failures.labels(topic=topic).inc()

    def record_page_visited(self):
        self.metrics.pages_visited.inc()

    def record_page_failed(self):
        self.metrics.pages_failed.inc()

    def record_batch(self, duration: float):
        self.metrics.batch_duration.observe(duration)

    def record_nodes_inserted(self, count: int):
        self.metrics.nodes_inserted.inc(count)

    def record_search_stage(self, stage: str, duration: float):
        self.metrics.search_stage_duration.labels(stage=stage).observe(duration)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the pipeline counters."""
        return {
            'pages_visited': self.metrics.get_value('nexus_pages_visited_total'),
            'pages_failed': self.metrics.get_value('nexus_pages_failed_total'),
            'nodes_inserted': self.metrics.get_value('nexus_nodes_inserted_total'),
        }


def initialize_monitoring(enable_server: bool = False, prometheus_port: int = 8000) -> CrawlerMonitor:
    """Create a monitor with its own registry."""
    metrics_collector = MetricsCollector(enable_server, prometheus_port)
    return CrawlerMonitor(metrics_collector)
