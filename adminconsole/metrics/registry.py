"""In-memory labelled counters with Prometheus text export."""
from __future__ import annotations

import threading
import time
from collections import defaultdict
from typing import Dict, Tuple

LabelSet = Tuple[Tuple[str, str], ...]


def _labelset(labels: Dict[str, str] | None) -> LabelSet:
    return tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))


def _series(name: str, labelset: LabelSet) -> str:
    if not labelset:
        return name
    body = ",".join(f'{k}="{v}"' for k, v in labelset)
    return f"{name}{{{body}}}"


class MetricsRegistry:
    def __init__(self) -> None:
        # name -> label set -> value
        self.counters: Dict[str, Dict[LabelSet, float]] = defaultdict(lambda: defaultdict(float))
        self.start_time = time.time()
        self._lock = threading.Lock()

    def inc(self, name: str, labels: Dict[str, str] | None = None, value: float = 1.0) -> None:
        labelset = _labelset(labels)
        with self._lock:
            self.counters[name][labelset] += value

    def get(self, name: str, labels: Dict[str, str] | None = None) -> float:
        with self._lock:
            series = self.counters.get(name)
            if series is None:
                return 0.0
            return series.get(_labelset(labels), 0.0)

    def reset(self) -> None:
        with self._lock:
            self.counters.clear()

    def snapshot(self) -> dict:
        """Counters keyed by their exposition series name."""
        with self._lock:
            counters = {
                _series(name, labelset): val
                for name, series in self.counters.items()
                for labelset, val in series.items()
            }
        return {"uptime_sec": time.time() - self.start_time, "counters": counters}

    def export_prom_text(self) -> str:
        with self._lock:
            families = [(name, sorted(series.items())) for name, series in sorted(self.counters.items())]
        lines = []
        for name, series in families:
            lines.append(f"# TYPE {name} counter")
            lines.extend(f"{_series(name, labelset)} {val}" for labelset, val in series)
        return "\n".join(lines) + "\n"


METRICS = MetricsRegistry()

__all__ = ["METRICS", "MetricsRegistry"]
