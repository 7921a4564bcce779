"""
Prometheus metrics collection service
Provides counters and histograms for admission, webhook and reconciler monitoring
"""
from typing import Dict, Optional
from collections import defaultdict
from threading import Lock
import logging

logger = logging.getLogger(__name__)


class MetricsCollector:
    """
    Thread-safe metrics collector for Prometheus format
    Uses in-memory storage (lightweight, no external dependencies)
    """

    MAX_HISTOGRAM_VALUES = 1000

    def __init__(self):
        """Initialize metrics collector"""
        self._lock = Lock()
        self._counters: Dict[str, float] = defaultdict(float)
        self._histograms: Dict[str, list] = defaultdict(list)
        # counter_name -> {(("label", "value"), ...): value}
        self._labeled_counters: Dict[str, Dict[tuple, float]] = defaultdict(lambda: defaultdict(float))

    @staticmethod
    def _histogram_key(name: str, labels: Optional[Dict[str, str]]) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def increment_counter(self, name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None):
        """
        Increment a counter metric

        Args:
            name: Metric name (e.g., "admission_requests_total")
            value: Increment value (default: 1.0)
            labels: Optional labels dict (e.g., {"outcome": "admitted"})
        """
        with self._lock:
            if labels:
                label_tuple = tuple(sorted(labels.items()))
                self._labeled_counters[name][label_tuple] += value
            else:
                self._counters[name] += value

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """
        Record a histogram value (for timing metrics)

        Args:
            name: Metric name (e.g., "reconciler_run_seconds")
            value: Value to record (e.g., 0.123 for 123ms)
            labels: Optional labels dict
        """
        with self._lock:
            key = self._histogram_key(name, labels)
            values = self._histograms[key]
            values.append(value)
            if len(values) > self.MAX_HISTOGRAM_VALUES:
                self._histograms[key] = values[-self.MAX_HISTOGRAM_VALUES:]

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Get current counter value"""
        with self._lock:
            if labels:
                label_tuple = tuple(sorted(labels.items()))
                return self._labeled_counters[name].get(label_tuple, 0.0)
            return self._counters.get(name, 0.0)

    def get_histogram_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """
        Get histogram statistics (count, sum, min, max, avg)

        Returns:
            Dict with count, sum, min, max, avg
        """
        with self._lock:
            values = self._histograms.get(self._histogram_key(name, labels), [])
            if not values:
                return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0}
            return {
                "count": len(values),
                "sum": sum(values),
                "min": min(values),
                "max": max(values),
                "avg": sum(values) / len(values),
            }

    def reset(self):
        """Drop all recorded values"""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
            self._labeled_counters.clear()

    def format_prometheus(self) -> str:
        """
        Format metrics in Prometheus text format

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        with self._lock:
            for name, value in sorted(self._counters.items()):
                lines.append(f"{name} {value}")

            for name, label_dict in sorted(self._labeled_counters.items()):
                for label_tuple, value in sorted(label_dict.items()):
                    label_str = ",".join(f'{k}="{v}"' for k, v in label_tuple)
                    lines.append(f"{name}{{{label_str}}} {value}")

            # Histograms rendered as summaries
            for key, values in sorted(self._histograms.items()):
                if not values:
                    continue
                sorted_values = sorted(values)
                count = len(sorted_values)
                quantiles = {
                    "0.5": sorted_values[int(count * 0.5)],
                    "0.95": sorted_values[min(int(count * 0.95), count - 1)],
                    "0.99": sorted_values[min(int(count * 0.99), count - 1)],
                }
                if "{" in key:
                    base_name, label_part = key.split("{", 1)
                    label_part = label_part.rstrip("}")
                    lines.append(f"{base_name}_count{{{label_part}}} {count}")
                    lines.append(f"{base_name}_sum{{{label_part}}} {sum(values)}")
                    for q, v in quantiles.items():
                        lines.append(f'{base_name}{{{label_part},quantile="{q}"}} {v}')
                else:
                    lines.append(f"{key}_count {count}")
                    lines.append(f"{key}_sum {sum(values)}")
                    for q, v in quantiles.items():
                        lines.append(f'{key}{{quantile="{q}"}} {v}')

        return "\n".join(lines) + "\n"


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector instance"""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def increment_counter(name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None):
    """Convenience function to increment counter"""
    get_metrics_collector().increment_counter(name, value, labels)


def record_histogram(name: str, value: float, labels: Optional[Dict[str, str]] = None):
    """Convenience function to record histogram"""
    get_metrics_collector().record_histogram(name, value, labels)


class AdmissionMetrics:
    """Helpers for admission path metrics"""

    @staticmethod
    def record_outcome(outcome: str):
        increment_counter("admission_requests_total", labels={"outcome": outcome})

    @staticmethod
    def record_debit(admitted: bool):
        increment_counter("usage_debits_total", labels={"result": "admitted" if admitted else "rejected"})


class WebhookMetrics:
    """Helpers for webhook ingestion metrics"""

    @staticmethod
    def record_received(source: str, result: str):
        increment_counter("webhook_events_total", labels={"source": source, "result": result})

    @staticmethod
    def record_dispatch(kind: str, ok: bool):
        increment_counter("webhook_dispatch_total", labels={"kind": kind, "status": "ok" if ok else "failed"})


class ReconcilerMetrics:
    """Helpers for billing reconciler metrics"""

    @staticmethod
    def record_run(status: str, candidates: int = 0, downgraded: int = 0, duration: Optional[float] = None):
        increment_counter("reconciler_runs_total", labels={"status": status})
        if candidates:
            increment_counter("reconciler_candidates_total", value=candidates)
        if downgraded:
            increment_counter("reconciler_downgrades_total", value=downgraded)
        if duration is not None:
            record_histogram("reconciler_run_seconds", duration)

    @staticmethod
    def record_skip(reason: str):
        increment_counter("reconciler_skipped_total", labels={"reason": reason})
