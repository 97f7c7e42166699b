"""
Per-instance metric record shared between a poller and the dashboard.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Optional

from .inventory import InstanceDescriptor

# Fields only the owning poller may write
SAMPLED_FIELDS = (
    "query_count",
    "item_count",
    "slave_io_running",
    "slave_sql_running",
    "seconds_behind_master",
    "master_log_file",
    "master_log_position",
    "last_sample_time",
    "query_latency_ms",
    "poller_state",
)


@dataclass(frozen=True)
class RecordSnapshot:
    name: str
    instance_class: str
    sequence: str
    region: str
    address: str
    query_count: int = 0
    item_count: int = 0
    slave_io_running: bool = False
    slave_sql_running: bool = False
    seconds_behind_master: int = 0
    master_log_file: str = ""
    master_log_position: int = 0
    last_sample_time: Optional[float] = None
    query_latency_ms: Optional[float] = None
    poller_state: str = "idle"

    def age(self, now: Optional[float] = None) -> Optional[float]:
        if self.last_sample_time is None:
            return None
        return (now if now is not None else time.time()) - self.last_sample_time

    def is_stale(self, threshold: float, now: Optional[float] = None) -> bool:
        age = self.age(now)
        return age is None or age > threshold


class MetricRecord:
    """
    Holds the latest sampled values for one instance. The poller writes with
    update(); everyone else reads immutable snapshots.
    """

    def __init__(self, descriptor: InstanceDescriptor, client: Any = None) -> None:
        self.descriptor = descriptor
        # Exclusively used by this record's poller
        self.client = client
        self._lock = threading.Lock()
        self._current = RecordSnapshot(
            name=descriptor.name,
            instance_class=descriptor.instance_class,
            sequence=descriptor.sequence,
            region=descriptor.region,
            address=descriptor.address,
        )

    def __repr__(self) -> str:
        return f"<MetricRecord {self.name} {self.instance_class} {self.region}>"

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def instance_class(self) -> str:
        return self.descriptor.instance_class

    @property
    def sequence(self) -> str:
        return self.descriptor.sequence

    @property
    def region(self) -> str:
        return self.descriptor.region

    @property
    def address(self) -> str:
        return self.descriptor.address

    def update(self, **fields: Any) -> None:
        for k in fields:
            if k not in SAMPLED_FIELDS:
                raise AttributeError(f"{k} is not a sampled field")
        with self._lock:
            self._current = replace(self._current, **fields)

    def snapshot(self) -> RecordSnapshot:
        with self._lock:
            return self._current

    def get(self, name: str) -> Any:
        return getattr(self.snapshot(), name)
