"""
Metrics

Metrics collection and export.

Labelled counters, histograms and gauges kept in a named registry.
Every primitive guards its values with a lock so the auto-save task and
the execution loop can both record safely.
"""

import threading
from typing import Any


def _labels_to_key(labels: dict[str, str] | None) -> tuple:
    """Convert labels dict to hashable key."""
    if not labels:
        return ()
    return tuple(sorted(labels.items()))


class Counter:
    """
    Counter metric.

    Monotonically increasing value.
    """

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._values: dict[tuple, float] = {}
        self._lock = threading.Lock()

    def inc(self, amount: float = 1, labels: dict[str, str] | None = None) -> None:
        """Increment counter."""
        if amount < 0:
            raise ValueError("counter can only increase")
        key = _labels_to_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount

    def get(self, labels: dict[str, str] | None = None) -> float:
        """Get counter value."""
        with self._lock:
            return self._values.get(_labels_to_key(labels), 0)

    def total(self) -> float:
        """Sum across every label combination."""
        with self._lock:
            return sum(self._values.values())

    def values(self) -> dict[tuple, float]:
        with self._lock:
            return dict(self._values)

    def by_label(self, label: str) -> dict[str, float]:
        """Aggregate values by one label's value."""
        result: dict[str, float] = {}
        for key, value in self.values().items():
            label_value = dict(key).get(label)
            if label_value is not None:
                result[label_value] = result.get(label_value, 0) + value
        return result


class Histogram:
    """
    Histogram metric.

    Tracks value distribution.
    """

    DEFAULT_BUCKETS = (
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
        30.0,
        60.0,
        300.0,
    )

    def __init__(
        self,
        name: str,
        description: str = "",
        buckets: tuple[float, ...] | None = None,
        labels: list[str] | None = None,
    ):
        self.name = name
        self.description = description
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self.label_names = labels or []

        self._counts: dict[tuple, list[int]] = {}
        self._sums: dict[tuple, float] = {}
        self._totals: dict[tuple, int] = {}
        self._lock = threading.Lock()

    def observe(self, value: float, labels: dict[str, str] | None = None) -> None:
        """Record an observation."""
        key = _labels_to_key(labels)

        with self._lock:
            if key not in self._counts:
                self._counts[key] = [0] * len(self.buckets)
                self._sums[key] = 0.0
                self._totals[key] = 0

            for i, bucket in enumerate(self.buckets):
                if value <= bucket:
                    self._counts[key][i] += 1

            self._sums[key] += value
            self._totals[key] += 1

    def get_stats(self, labels: dict[str, str] | None = None) -> dict:
        """Get histogram statistics."""
        key = _labels_to_key(labels)

        with self._lock:
            if self._totals.get(key, 0) == 0:
                return {}

            return {
                "count": self._totals[key],
                "sum": self._sums[key],
                "avg": self._sums[key] / self._totals[key],
                "buckets": dict(zip(self.buckets, self._counts[key])),
            }

    def average(self, labels: dict[str, str] | None = None) -> float:
        return self.get_stats(labels).get("avg", 0.0)

    def label_keys(self) -> list[tuple]:
        with self._lock:
            return list(self._totals)


class Gauge:
    """
    Gauge metric.

    Value that can go up and down.
    """

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._values: dict[tuple, float] = {}
        self._lock = threading.Lock()

    def set(self, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._values[_labels_to_key(labels)] = value

    def inc(self, amount: float = 1, labels: dict[str, str] | None = None) -> None:
        key = _labels_to_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount

    def dec(self, amount: float = 1, labels: dict[str, str] | None = None) -> None:
        self.inc(-amount, labels)

    def get(self, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._values.get(_labels_to_key(labels), 0)

    def values(self) -> dict[tuple, float]:
        with self._lock:
            return dict(self._values)


class MetricsCollector:
    """
    Metrics collection and registry.

    Central registry for all metrics.
    """

    def __init__(self, namespace: str = "goalengine"):
        self._namespace = namespace
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._gauges: dict[str, Gauge] = {}

        self._register_default_metrics()

    def counter(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
    ) -> Counter:
        """Get or create a counter."""
        full_name = f"{self._namespace}_{name}"
        if full_name not in self._counters:
            self._counters[full_name] = Counter(full_name, description, labels)
        return self._counters[full_name]

    def histogram(
        self,
        name: str,
        description: str = "",
        buckets: tuple[float, ...] | None = None,
        labels: list[str] | None = None,
    ) -> Histogram:
        """Get or create a histogram."""
        full_name = f"{self._namespace}_{name}"
        if full_name not in self._histograms:
            self._histograms[full_name] = Histogram(full_name, description, buckets, labels)
        return self._histograms[full_name]

    def gauge(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
    ) -> Gauge:
        """Get or create a gauge."""
        full_name = f"{self._namespace}_{name}"
        if full_name not in self._gauges:
            self._gauges[full_name] = Gauge(full_name, description, labels)
        return self._gauges[full_name]

    def _register_default_metrics(self) -> None:
        # Executions
        self.counter("executions_total", "Goal executions", ["status"])
        self.histogram("execution_duration_seconds", "Goal execution duration")

        # Decisions
        self.counter("decisions_total", "Decisions recorded", ["type"])
        self.histogram("decision_latency_seconds", "Decision latency", labels=["type"])

        # Tools
        self.counter("tool_calls_total", "Tool invocations", ["tool", "status"])
        self.histogram("tool_call_duration_seconds", "Tool call duration", labels=["tool"])

        # States
        self.counter("state_transitions_total", "State transitions", ["transition"])
        self.gauge("time_in_state_seconds", "Cumulative time per state", ["state"])

        # Tasks
        self.counter("tasks_total", "Task outcomes", ["outcome"])
        self.histogram("task_duration_seconds", "Completed task duration")

        # Reviews
        self.counter("reviews_total", "Reviews performed", ["decision"])
        self.histogram(
            "review_score",
            "Review score",
            buckets=(10.0, 20.0, 40.0, 60.0, 70.0, 80.0, 90.0, 100.0),
        )

        # Learnings
        self.counter("learnings_total", "Learnings", ["event"])
        self.histogram(
            "learning_confidence",
            "Confidence of stored learnings",
            buckets=(0.1, 0.25, 0.5, 0.7, 0.8, 0.9, 1.0),
        )

    def collect(self) -> dict:
        """Collect all metrics."""
        metrics: dict[str, Any] = {}

        for name, counter in self._counters.items():
            values = {}
            for key, value in counter.values().items():
                values[str(dict(key)) if key else "default"] = value
            metrics[name] = {"type": "counter", "values": values}

        for name, histogram in self._histograms.items():
            metrics[name] = {"type": "histogram", "stats": histogram.get_stats()}

        for name, gauge in self._gauges.items():
            values = {}
            for key, value in gauge.values().items():
                values[str(dict(key)) if key else "default"] = value
            metrics[name] = {"type": "gauge", "values": values}

        return metrics

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        for name, counter in self._counters.items():
            lines.append(f"# HELP {name} {counter.description}")
            lines.append(f"# TYPE {name} counter")
            for labels, value in counter.values().items():
                lines.append(f"{name}{self._format_labels(labels)} {value}")

        for name, histogram in self._histograms.items():
            lines.append(f"# HELP {name} {histogram.description}")
            lines.append(f"# TYPE {name} histogram")
            for labels in histogram.label_keys():
                stats = histogram.get_stats(dict(labels))
                label_str = self._format_labels(labels)
                lines.append(f"{name}_count{label_str} {stats['count']}")
                lines.append(f"{name}_sum{label_str} {stats['sum']}")

        for name, gauge in self._gauges.items():
            lines.append(f"# HELP {name} {gauge.description}")
            lines.append(f"# TYPE {name} gauge")
            for labels, value in gauge.values().items():
                lines.append(f"{name}{self._format_labels(labels)} {value}")

        return "\n".join(lines)

    def _format_labels(self, labels: tuple) -> str:
        if not labels:
            return ""
        label_pairs = [f'{k}="{v}"' for k, v in labels]
        return "{" + ",".join(label_pairs) + "}"
