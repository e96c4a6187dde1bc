"""
In-memory metric store shared by the sampler and the transmitter.
"""
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union

from loguru import logger


class MetricKind(str, Enum):
    """Kind of a metric. The value doubles as the URL path segment."""
    GAUGE = "gauge"
    COUNTER = "counter"


@dataclass(frozen=True)
class MetricValue:
    """A single metric value tagged with its kind."""
    kind: MetricKind
    value: Union[float, int]


@dataclass(frozen=True)
class MetricSnapshot:
    """Immutable point-in-time copy of a MetricStore."""
    gauges: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    counters: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    taken_at: float = 0.0

    def __len__(self) -> int:
        return len(self.gauges) + len(self.counters)

    def __iter__(self) -> Iterator[Tuple[str, MetricValue]]:
        for name, value in self.gauges.items():
            yield name, MetricValue(MetricKind.GAUGE, value)
        for name, value in self.counters.items():
            yield name, MetricValue(MetricKind.COUNTER, value)

    def to_dict(self) -> Dict[str, Dict[str, Union[float, int]]]:
        return {
            "gauges": dict(self.gauges),
            "counters": dict(self.counters),
        }


class MetricStore:
    """Thread-safe container of named gauges and counters.

    Every name maps to exactly one MetricValue, so a name can never be both
    a gauge and a counter. Writing a name with the other kind rebinds it to
    that kind (a counter restarts at 0). All reads and writes go through a
    single lock; snapshots are copies and can be iterated without holding it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._metrics: Dict[str, MetricValue] = {}

    def set_gauge(self, name: str, value: float) -> None:
        """Overwrite (or create) the gauge at ``name``."""
        with self._lock:
            self._set_gauge(name, value)

    def increment_counter(self, name: str, delta: int = 1) -> int:
        """Add ``delta`` to the counter at ``name``, creating it at 0 first.

        Returns:
            The new counter value
        """
        with self._lock:
            return self._increment_counter(name, delta)

    def record_sample(self, gauges: Mapping[str, float],
                      counter_deltas: Optional[Mapping[str, int]] = None) -> None:
        """Apply one sampling tick atomically.

        Readers observe either none or all of the writes.

        Args:
            gauges: Gauge values to overwrite
            counter_deltas: Increments to apply to counters
        """
        counter_deltas = counter_deltas or {}
        with self._lock:
            for name, value in gauges.items():
                self._set_gauge(name, value)
            for name, delta in counter_deltas.items():
                self._increment_counter(name, delta)

    def get(self, name: str) -> Optional[MetricValue]:
        with self._lock:
            return self._metrics.get(name)

    def snapshot(self) -> MetricSnapshot:
        """Return an immutable copy of all current gauges and counters."""
        with self._lock:
            items = list(self._metrics.items())

        gauges = {name: m.value for name, m in items if m.kind is MetricKind.GAUGE}
        counters = {name: m.value for name, m in items if m.kind is MetricKind.COUNTER}
        return MetricSnapshot(
            gauges=MappingProxyType(gauges),
            counters=MappingProxyType(counters),
            taken_at=time.time(),
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._metrics

    def _current(self, name: str, kind: MetricKind) -> Optional[MetricValue]:
        current = self._metrics.get(name)
        if current is not None and current.kind is not kind:
            logger.warning(f"Metric '{name}' was a {current.kind.value}, rebinding it as a {kind.value}")
            return None
        return current

    def _set_gauge(self, name: str, value: float) -> None:
        self._current(name, MetricKind.GAUGE)
        self._metrics[name] = MetricValue(MetricKind.GAUGE, float(value))

    def _increment_counter(self, name: str, delta: int) -> int:
        current = self._current(name, MetricKind.COUNTER)
        new_value = (current.value if current else 0) + int(delta)
        self._metrics[name] = MetricValue(MetricKind.COUNTER, new_value)
        return new_value
