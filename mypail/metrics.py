"""
In-process turn accounting for the companion backend.

Counts what each chat turn did (mode, reply source, mood band, trigger
category) and keeps running distributions of numeric readings such as the
combined mood and LLM latency. The orchestrator and text generator only
write; the gateway reads a JSON snapshot at /api/metrics.

Counters are flat string keys (``turns_emotion``, ``category_PRAISE``) so the
snapshot stays trivially serializable.
"""

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from typing import Any, Optional

# Upper edges of the buckets a distribution counts into; the mood scale is 0-100.
MOOD_BUCKETS = (25.0, 50.0, 75.0, 100.0)

# Recent readings retained per distribution
RECENT_WINDOW = 50


class _Distribution:
    """Running count/sum/min/max plus a short window of recent readings."""

    def __init__(self, buckets: tuple[float, ...] = ()) -> None:
        self.count = 0
        self.total = 0.0
        self.low: Optional[float] = None
        self.high: Optional[float] = None
        self.recent: deque[float] = deque(maxlen=RECENT_WINDOW)
        self.buckets = buckets
        self.bucket_counts = [0] * len(buckets)

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.low = value if self.low is None else min(self.low, value)
        self.high = value if self.high is None else max(self.high, value)
        self.recent.append(value)
        for i, edge in enumerate(self.buckets):
            if value <= edge:
                self.bucket_counts[i] += 1
                break

    def snapshot(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "count": self.count,
            "sum": round(self.total, 4),
            "avg": round(self.total / self.count, 4) if self.count else 0.0,
            "min": round(self.low, 4) if self.low is not None else 0.0,
            "max": round(self.high, 4) if self.high is not None else 0.0,
            "last": round(self.recent[-1], 4) if self.recent else None,
        }
        if self.buckets:
            data["buckets"] = {
                f"le_{edge:g}": n for edge, n in zip(self.buckets, self.bucket_counts)
            }
        return data


class MetricsRegistry:
    """Counters, gauges and distributions behind one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Counter[str] = Counter()
        self._gauges: dict[str, float] = {}
        self._distributions: dict[str, _Distribution] = {}
        self._created = time.monotonic()

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] += value

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = value

    def observe(self, name: str, value: float, buckets: tuple[float, ...] = ()) -> None:
        """Add a reading. Buckets are fixed by the first observation of a name."""
        with self._lock:
            dist = self._distributions.get(name)
            if dist is None:
                dist = self._distributions[name] = _Distribution(buckets)
            dist.observe(value)

    def track_turn(
        self,
        *,
        mode: str,
        source: str,
        emotion_state: Optional[str] = None,
        category: Optional[str] = None,
        combined: Optional[float] = None,
    ) -> None:
        """
        Record one completed chat turn.

        source is where the reply came from: "static", "llm" or "fallback".
        Plain-mode turns carry no mood fields and only bump the mode and
        source counters.
        """
        keys = ["turns_total", f"turns_{mode}", f"responses_{source}"]
        if emotion_state:
            keys.append(f"state_{emotion_state}")
        if category:
            keys.append(f"category_{category}")
        with self._lock:
            self._counters.update(keys)
        if combined is not None:
            self.observe("combined_mood", combined, buckets=MOOD_BUCKETS)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "uptime_seconds": round(time.monotonic() - self._created, 1),
                "counters": {k: v for k, v in self._counters.items() if v},
                "gauges": dict(self._gauges),
                "histograms": {
                    name: dist.snapshot() for name, dist in self._distributions.items()
                },
            }
