"""
Per-instance sampling task. One ReplicaPoller runs per connected instance and
is the only writer of its MetricRecord's sampled fields.
"""
from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import pymysql
from loguru import logger

from ..utils.metric_record import MetricRecord
from ..utils.mysql_utils import ScanError, to_int

PROCESS_COUNT_QUERY = "SELECT COUNT(*) FROM information_schema.PROCESSLIST"
REPLICATION_STATUS_QUERY = "SHOW SLAVE STATUS"

QUERY_ERRORS = (pymysql.MySQLError, OSError)

# Cycles between latency summaries in the debug log
LATENCY_LOG_EVERY = 60


class QueryPolicy(str, Enum):
    RETRY = "retry"  # back off, restart the cycle
    FATAL = "fatal"  # release the connection and stop


class PollerState(str, Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    TERMINATED = "terminated"


class CycleOutcome(str, Enum):
    OK = "ok"
    RETRY = "retry"
    FATAL = "fatal"


DEFAULT_POLICIES: Dict[str, QueryPolicy] = {
    "process_count": QueryPolicy.RETRY,
    "item_count": QueryPolicy.FATAL,
    "replication": QueryPolicy.RETRY,
}


def _text(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", "replace")
    return str(value)


def _running(value: Any) -> bool:
    return _text(value) == "Yes"


def _integer(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return int(_text(value))


# Column name -> (record field, parser). Columns not listed are ignored.
# Replica_*/Source_* are the MySQL 8.0.22+ spellings of the same columns.
REPLICATION_FIELDS: Dict[str, Tuple[str, Callable[[Any], Any]]] = {
    "Slave_IO_Running": ("slave_io_running", _running),
    "Slave_SQL_Running": ("slave_sql_running", _running),
    "Seconds_Behind_Master": ("seconds_behind_master", _integer),
    "Master_Log_File": ("master_log_file", _text),
    "Read_Master_Log_Pos": ("master_log_position", _integer),
    "Replica_IO_Running": ("slave_io_running", _running),
    "Replica_SQL_Running": ("slave_sql_running", _running),
    "Seconds_Behind_Source": ("seconds_behind_master", _integer),
    "Source_Log_File": ("master_log_file", _text),
    "Read_Source_Log_Pos": ("master_log_position", _integer),
}


def parse_replication_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Map a replication status row onto record field updates. Integer columns
    that fail to parse (NULL lag while the SQL thread is down, for example)
    are left out so the record keeps its previous value.
    """
    updates: Dict[str, Any] = {}
    for column, value in row.items():
        target = REPLICATION_FIELDS.get(column)
        if target is None:
            continue
        field_name, parse = target
        try:
            updates[field_name] = parse(value)
        except (TypeError, ValueError):
            logger.trace("Ignoring unparsable {}={!r}", column, value)
    return updates


class ReplicaPoller:
    def __init__(
        self,
        record: MetricRecord,
        *,
        item_count_query: str = "",
        interval: float = 1.0,
        backoff: float = 1.0,
        policies: Optional[Mapping[str, Any]] = None,
        process_count_query: str = PROCESS_COUNT_QUERY,
        replication_query: str = REPLICATION_STATUS_QUERY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.record = record
        self.item_count_query = item_count_query
        self.interval = interval
        self.backoff = backoff
        self.process_count_query = process_count_query
        self.replication_query = replication_query
        self.policies: Dict[str, QueryPolicy] = dict(DEFAULT_POLICIES)
        for step, policy in (policies or {}).items():
            if step not in DEFAULT_POLICIES:
                raise ValueError(f"Unknown poller step: {step}")
            self.policies[step] = QueryPolicy(policy)
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.state = PollerState.IDLE
        self.cycles = 0
        self.retries = 0

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self.run, name=f"poller-{self.record.name}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        """Sampling state loop. Returns only after a fatal outcome or stop()."""
        self._set_state(PollerState.SAMPLING)
        logger.info("Poller started for {} @ {}", self.record.name, self.record.address)
        try:
            while not self._stop.is_set():
                outcome = self.run_cycle()
                if outcome is CycleOutcome.FATAL:
                    break
                if outcome is CycleOutcome.RETRY:
                    self.retries += 1
                    self._stop.wait(self.backoff)
                else:
                    self._stop.wait(self.interval)
        except Exception:
            logger.exception("Poller for {} crashed", self.record.name)
        finally:
            self._terminate()

    def run_cycle(self) -> CycleOutcome:
        """One pass over the three queries."""
        self.cycles += 1
        client = self.record.client

        # 1) Active connections
        try:
            raw = client.query_scalar(self.process_count_query, label="process_count")
        except QUERY_ERRORS as e:
            return self._on_query_error("process_count", e)
        if raw is not None:
            try:
                query_count = to_int(raw)
            except ScanError as e:
                logger.error("Process count scan failed for {}: {}", self.record.name, e)
                return CycleOutcome.FATAL
            self.record.update(
                query_count=query_count,
                last_sample_time=self._clock(),
                query_latency_ms=client.median_latency("process_count"),
            )

        # 2) Item count
        if self.item_count_query:
            try:
                raw = client.query_scalar(self.item_count_query, label="item_count")
            except QUERY_ERRORS as e:
                return self._on_query_error("item_count", e)
            if raw is not None:
                try:
                    item_count = to_int(raw)
                except ScanError as e:
                    logger.error("Item count scan failed for {}: {}", self.record.name, e)
                    return CycleOutcome.FATAL
                self.record.update(item_count=item_count)

        # 3) Replication status
        try:
            row = client.query_row(self.replication_query, label="replication")
        except QUERY_ERRORS as e:
            return self._on_query_error("replication", e)
        if row:
            updates = parse_replication_row(row)
            if updates:
                self.record.update(**updates)

        if self.cycles % LATENCY_LOG_EVERY == 0:
            logger.debug("Query latency for {}: {}", self.record.name, client.latency_summary())
        return CycleOutcome.OK

    def _on_query_error(self, step: str, err: Exception) -> CycleOutcome:
        policy = self.policies[step]
        if policy is QueryPolicy.RETRY:
            logger.debug(
                "{} query failed for {}, retrying in {}s: {}", step, self.record.name, self.backoff, err
            )
            return CycleOutcome.RETRY
        logger.error("{} query failed for {}: {}", step, self.record.name, err)
        return CycleOutcome.FATAL

    def _set_state(self, state: PollerState) -> None:
        self.state = state
        self.record.update(poller_state=state.value)

    def _terminate(self) -> None:
        client = self.record.client
        if client is not None:
            client.close()
        self._set_state(PollerState.TERMINATED)
        if self._stop.is_set():
            logger.info("Poller for {} stopped after {} cycle(s)", self.record.name, self.cycles)
        else:
            logger.error(
                "Poller for {} terminated after {} cycle(s); values frozen", self.record.name, self.cycles
            )
