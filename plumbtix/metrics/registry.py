"""In-process metric primitives and the registry that owns them."""
from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Callable, Dict, Iterable, Iterator, Mapping, Tuple

LabelValues = Tuple[str, ...]


class Metric:
    """Shared label handling for counters and distributions."""

    kind = "untyped"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._lock = Lock()

    def _key(self, labels: Mapping[str, str] | None) -> LabelValues:
        if not self.label_names:
            if labels:
                raise ValueError(f"Metric '{self.name}' does not accept labels")
            return ()
        if labels is None:
            raise ValueError(f"Metric '{self.name}' requires labels {self.label_names}")
        missing = [label for label in self.label_names if label not in labels]
        if missing:
            raise ValueError(f"Missing label '{missing[0]}' for metric '{self.name}'")
        return tuple(str(labels[label]) for label in self.label_names)

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:  # pragma: no cover - interface
        raise NotImplementedError


class CounterMetric(Metric):
    kind = "counter"

    def __init__(self, name: str, **kwargs) -> None:
        super().__init__(name, **kwargs)
        self._values: Dict[LabelValues, float] = defaultdict(float)

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] += amount

    def value(self, *, labels: Mapping[str, str] | None = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: {"value": value} for key, value in self._values.items()}


@dataclass
class DistributionStats:
    count: int = 0
    total: float = 0.0
    min: float | None = None
    max: float | None = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    def to_mapping(self) -> Mapping[str, float]:
        return {
            "count": float(self.count),
            "sum": self.total,
            "min": self.min or 0.0,
            "max": self.max or 0.0,
            "avg": self.total / self.count if self.count else 0.0,
        }


class DistributionMetric(Metric):
    kind = "summary"

    def __init__(self, name: str, **kwargs) -> None:
        super().__init__(name, **kwargs)
        self._values: Dict[LabelValues, DistributionStats] = defaultdict(DistributionStats)

    def observe(self, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key].observe(value)

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: stats.to_mapping() for key, stats in self._values.items()}


class MetricsRegistry:
    """Registry holding named metrics for the workflow and notification paths."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}
        self._lock = Lock()

    def _get_or_create(self, name: str, factory: Callable[[], Metric], expected: type) -> Metric:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = factory()
            metric = self._metrics[name]
        if not isinstance(metric, expected):
            raise TypeError(f"Metric '{name}' already exists with a different type")
        return metric

    def counter(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> CounterMetric:
        return self._get_or_create(  # type: ignore[return-value]
            name,
            lambda: CounterMetric(name, description=description, label_names=label_names),
            CounterMetric,
        )

    def distribution(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> DistributionMetric:
        return self._get_or_create(  # type: ignore[return-value]
            name,
            lambda: DistributionMetric(name, description=description, label_names=label_names),
            DistributionMetric,
        )

    def metrics(self) -> Tuple[Metric, ...]:
        with self._lock:
            return tuple(self._metrics.values())

    @contextmanager
    def time(self, name: str, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
        """Record the duration of the wrapped block into distribution ``name``."""

        metric = self.distribution(name)
        start = perf_counter()
        try:
            yield
        finally:
            metric.observe(perf_counter() - start, labels=labels)

    def render_prometheus(self) -> str:
        """Serialise all metrics in the Prometheus text exposition format."""

        lines: list[str] = []
        for metric in self.metrics():
            lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            for labels, values in metric.snapshot().items():
                label_text = ""
                if labels:
                    pairs = [f'{name}="{value}"' for name, value in zip(metric.label_names, labels)]
                    label_text = "{" + ",".join(pairs) + "}"
                if "value" in values:
                    lines.append(f"{metric.name}{label_text} {values['value']}")
                else:
                    lines.append(f"{metric.name}_count{label_text} {values['count']}")
                    lines.append(f"{metric.name}_sum{label_text} {values['sum']}")
        return "\n".join(lines) + "\n"
