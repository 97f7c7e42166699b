"""
Per-region and overall query-count totals kept as rolling series.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from loguru import logger

from ..utils.metric_record import RecordSnapshot

DEFAULT_CAPACITY = 200
OVERALL = "overall"


class RollingSeries:
    """Fixed-capacity sample history, newest first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._data: deque[float] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._data)

    def push(self, value: float) -> None:
        # appendleft on a bounded deque drops the oldest sample from the right
        self._data.appendleft(float(value))

    def latest(self) -> Optional[float]:
        return self._data[0] if self._data else None

    def values(self) -> List[float]:
        return list(self._data)


@dataclass
class AggregateTick:
    overall: int
    regions: Dict[str, int]
    unassigned: int = 0
    timestamp: float = field(default_factory=time.time)


class Aggregator:
    """
    Sums query counts across the fleet once per tick. Regions not listed at
    construction contribute to the overall total only.
    """

    def __init__(self, regions: Iterable[str], capacity: int = DEFAULT_CAPACITY) -> None:
        self.regions: List[str] = list(regions)
        self.capacity = capacity
        self._lock = threading.Lock()
        self._overall = RollingSeries(capacity)
        self._by_region: Dict[str, RollingSeries] = {r: RollingSeries(capacity) for r in self.regions}
        self._last: Optional[AggregateTick] = None

    def tick(self, snapshots: Iterable[RecordSnapshot]) -> AggregateTick:
        totals: Dict[str, int] = {r: 0 for r in self.regions}
        overall = 0
        unassigned = 0
        for snap in snapshots:
            overall += snap.query_count
            if snap.region in totals:
                totals[snap.region] += snap.query_count
            else:
                unassigned += snap.query_count
        result = AggregateTick(overall=overall, regions=totals, unassigned=unassigned)
        with self._lock:
            self._overall.push(overall)
            for r, total in totals.items():
                self._by_region[r].push(total)
            self._last = result
        logger.trace("Aggregate tick overall={} regions={} unassigned={}", overall, totals, unassigned)
        return result

    @property
    def last_tick(self) -> Optional[AggregateTick]:
        with self._lock:
            return self._last

    def series(self) -> Dict[str, List[float]]:
        """Copies of every series keyed by 'overall' and region name."""
        with self._lock:
            out = {OVERALL: self._overall.values()}
            for r in self.regions:
                out[r] = self._by_region[r].values()
        return out
