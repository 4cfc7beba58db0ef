"""CloudWatch custom metrics emitter with background batching.

Publishes per-call metrics (count, latency, errors) for every external
dependency the pipeline talks to (Anthropic, the vector store, the durable
stores) plus action outcome counts per action type.

* Data points are collected in a thread-safe in-memory buffer.
* When ``METRICS_ENABLED=true`` a daemon thread flushes the buffer to
  CloudWatch every ``FLUSH_INTERVAL_SECONDS``.
* Otherwise metrics are only logged at DEBUG level.

>>> from src.services.metrics import metrics
>>> metrics.record_success("anthropic", "generate", latency_ms=812.0)
>>> metrics.record_action_outcome("book_appointment", "completed", latency_ms=40.0)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "RagActionAgent"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dim(name: str, value: str) -> dict[str, str]:
    return {"Name": name, "Value": value}


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None
        self._flush_thread: threading.Thread | None = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful external call."""
        now = datetime.now(UTC)
        self._append(self._point(
            "ExternalAPI/RequestCount", 1, "Count", now,
            [_dim("Service", service), _dim("Status", "success")],
        ))
        self._append(self._point(
            "ExternalAPI/Latency", latency_ms, "Milliseconds", now,
            [_dim("Service", service), _dim("Operation", operation)],
        ))
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed external call."""
        now = datetime.now(UTC)
        self._append(self._point(
            "ExternalAPI/RequestCount", 1, "Count", now,
            [_dim("Service", service), _dim("Status", "failure")],
        ))
        self._append(self._point(
            "ExternalAPI/ErrorCount", 1, "Count", now,
            [_dim("Service", service), _dim("ErrorType", error_type)],
        ))
        if latency_ms > 0:
            self._append(self._point(
                "ExternalAPI/Latency", latency_ms, "Milliseconds", now,
                [_dim("Service", service), _dim("Operation", operation)],
            ))
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    def record_action_outcome(self, action_type: str, status: str, latency_ms: float = 0) -> None:
        """Record the final status of one executed action."""
        now = datetime.now(UTC)
        self._append(self._point(
            "Actions/Outcome", 1, "Count", now,
            [_dim("ActionType", action_type), _dim("Status", status)],
        ))
        if latency_ms > 0:
            self._append(self._point(
                "Actions/Latency", latency_ms, "Milliseconds", now,
                [_dim("ActionType", action_type)],
            ))
        logger.debug("Metric: action %s %s latency=%.1fms", action_type, status, latency_ms)

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    @staticmethod
    def _point(
        name: str,
        value: float,
        unit: str,
        timestamp: datetime,
        dimensions: list[dict[str, str]],
    ) -> dict[str, Any]:
        return {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": timestamp,
            "Value": value,
            "Unit": unit,
        }

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        self._flush_thread = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        self._flush_thread.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


metrics = MetricsClient()
