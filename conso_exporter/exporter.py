"""Prometheus metrics exporter module.

This module handles:
- Defining operational Prometheus metrics for synchronization runs
- Exposing metrics HTTP server on configurable port
- Updating metrics from a RunReport
"""

import logging
import time
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, start_http_server

from conso_exporter.models import RunReport

# Configure module logger
logger = logging.getLogger(__name__)


class SyncMetrics:
    """Prometheus exporter for synchronization runs.

    Exposes the following metrics:
    - conso_account_fetch_success: Whether the last fetch of an account succeeded
    - conso_account_points: Points gathered for an account in the last run
    - conso_load_curve_window_failures_total: Load curve weeks that could not be fetched
    - conso_run_success: Whether the last run's InfluxDB write succeeded
    - conso_run_timestamp: Unix timestamp of the last run
    - conso_run_duration_seconds: Duration of the last run
    - conso_points_written: Points written by the last run

    Attributes:
        port: HTTP server port (default 9121)
    """

    def __init__(self, port: int = 9121, registry: Optional[CollectorRegistry] = None):
        """Initialize the exporter.

        Args:
            port: Port to run the HTTP server on
            registry: Optional custom registry for testing. If None, uses default REGISTRY.
        """
        self.port = port
        self._registry = registry if registry is not None else REGISTRY
        self._server_started = False

        self._account_success = Gauge(
            'conso_account_fetch_success',
            'Whether the last fetch for the account succeeded (1=success, 0=failure)',
            ['provider', 'meter_id'],
            registry=self._registry
        )

        self._account_points = Gauge(
            'conso_account_points',
            'Number of points gathered for the account in the last run',
            ['provider', 'meter_id'],
            registry=self._registry
        )

        self._window_failures = Counter(
            'conso_load_curve_window_failures',
            'Load curve sub-windows that could not be fetched',
            ['meter_id'],
            registry=self._registry
        )

        # Operational metrics (no labels)
        self._run_success = Gauge(
            'conso_run_success',
            'Whether the last run wrote its points (1=success, 0=failure)',
            registry=self._registry
        )

        self._run_timestamp = Gauge(
            'conso_run_timestamp',
            'Unix timestamp of the last run',
            registry=self._registry
        )

        self._run_duration = Gauge(
            'conso_run_duration_seconds',
            'Duration of the last run in seconds',
            registry=self._registry
        )

        self._points_written = Gauge(
            'conso_points_written',
            'Number of points written by the last run',
            registry=self._registry
        )

    def record_run(self, report: RunReport, duration: float) -> None:
        """Update all metrics after a run.

        Args:
            report: Outcome of the run
            duration: How long the run took in seconds
        """
        for outcome in report.outcomes:
            labels = {"provider": outcome.provider, "meter_id": outcome.meter_id}
            self._account_success.labels(**labels).set(1 if outcome.success else 0)
            self._account_points.labels(**labels).set(outcome.point_count)
            if outcome.skipped_windows:
                self._window_failures.labels(meter_id=outcome.meter_id).inc(len(outcome.skipped_windows))

        self._run_success.set(1 if report.write_ok else 0)
        self._run_timestamp.set(time.time())
        self._run_duration.set(duration)
        self._points_written.set(report.points_written)

    def start(self) -> None:
        """Start the HTTP server to expose metrics.

        The server runs in a daemon thread and exposes metrics at:
        http://localhost:{port}/metrics
        """
        if self._server_started:
            logger.warning("Prometheus server already started")
            return

        logger.info(f"Starting Prometheus HTTP server on port {self.port}")
        start_http_server(self.port, registry=self._registry)
        self._server_started = True
