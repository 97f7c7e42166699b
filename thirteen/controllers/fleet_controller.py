"""
Fleet Controller

Connects to the discovered instances, orders them for display, runs one poller
per instance and aggregates query counts on each tick. The dashboard reads
everything through snapshot().
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel

from ..controllers.aggregator import AggregateTick, Aggregator
from ..controllers.ordering import sort_records
from ..executors.connector import Connector
from ..executors.poller import QueryPolicy, ReplicaPoller
from ..utils.inventory import InstanceDescriptor
from ..utils.metric_record import MetricRecord, RecordSnapshot


class FleetConfig(BaseModel):
    # Connection credentials shared by every instance
    database: str = "mysql"
    port: int = 3306
    user: str = ""
    password: str = ""
    connect_timeout: int = 5
    item_count_query: str = ""

    # Discovery
    classes: List[str] = ["primary", "replica", "backup"]
    class_tag: str = "Class"
    regions: List[str] = ["us-west-2", "us-east-1", "eu-west-1"]
    inventory: List[Dict[str, Any]] = []

    # Display ordering
    primary_class: str = "primary"
    backup_class: str = "backup"

    # Cadence
    poll_interval: float = 1.0
    retry_backoff: float = 1.0
    render_interval: float = 1.0
    history_length: int = 200
    stale_after: float = 5.0

    # What a failing query does to its poller
    process_count_policy: QueryPolicy = QueryPolicy.RETRY
    item_count_policy: QueryPolicy = QueryPolicy.FATAL
    replication_policy: QueryPolicy = QueryPolicy.RETRY


@dataclass
class ControllerState:
    running: bool = False
    ticks: int = 0


@dataclass(frozen=True)
class FleetSnapshot:
    records: List[RecordSnapshot]
    series: Dict[str, List[float]]
    regions: List[str]
    last_tick: Optional[AggregateTick] = None
    taken_at: float = field(default_factory=time.time)


class FleetController:
    """Owns the record set, the pollers and the aggregator."""

    def __init__(
        self,
        config: FleetConfig,
        *,
        connector: Optional[Connector] = None,
        poller_factory: Callable[..., ReplicaPoller] = ReplicaPoller,
    ) -> None:
        self.config = config
        self.state = ControllerState()
        self.connector = connector or Connector(
            database=config.database,
            port=config.port,
            user=config.user,
            password=config.password,
            connect_timeout=config.connect_timeout,
        )
        self._poller_factory = poller_factory
        self.aggregator = Aggregator(config.regions, capacity=config.history_length)
        self.records: List[MetricRecord] = []
        self.pollers: List[ReplicaPoller] = []

    def start(self, descriptors: List[InstanceDescriptor]) -> int:
        """Connect, order once, then start one poller per record. Returns the record count."""
        records = self.connector.connect_all(descriptors)
        self.records = sort_records(
            records,
            primary_class=self.config.primary_class,
            backup_class=self.config.backup_class,
        )
        logger.info("Display order: {}", [r.name for r in self.records])
        policies = {
            "process_count": self.config.process_count_policy,
            "item_count": self.config.item_count_policy,
            "replication": self.config.replication_policy,
        }
        self.pollers = []
        for record in self.records:
            poller = self._poller_factory(
                record,
                item_count_query=self.config.item_count_query,
                interval=self.config.poll_interval,
                backoff=self.config.retry_backoff,
                policies=policies,
            )
            self.pollers.append(poller)
            poller.start()
        self.state.running = True
        logger.info("Gathering data from {} instance(s)", len(self.records))
        return len(self.records)

    def stop(self, timeout: float = 2.0) -> None:
        logger.info("Stopping FleetController")
        self.state.running = False
        for poller in self.pollers:
            poller.stop()
        for poller in self.pollers:
            poller.join(timeout)

    def on_tick(self) -> AggregateTick:
        """Single aggregation tick. Call once per render interval."""
        self.state.ticks += 1
        return self.aggregator.tick(r.snapshot() for r in self.records)

    def snapshot(self) -> FleetSnapshot:
        return FleetSnapshot(
            records=[r.snapshot() for r in self.records],
            series=self.aggregator.series(),
            regions=list(self.aggregator.regions),
            last_tick=self.aggregator.last_tick,
        )
