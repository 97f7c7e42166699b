"""
MySQL client facade used by the connector and pollers.
"""
from __future__ import annotations

import os
import time
from collections import defaultdict, deque
from typing import Any, Dict, List, Optional

import pymysql
import pymysql.cursors
from loguru import logger


class ScanError(ValueError):
    """A query returned a value that cannot be read as the expected type."""


class MySQLClient:
    """
    Thin wrapper around a single pymysql connection. One client per instance;
    the owning poller is the only caller once the connection is open.
    """

    def __init__(
        self,
        host: str,
        *,
        port: int = 3306,
        user: Optional[str] = None,
        password: Optional[str] = None,
        database: Optional[str] = None,
        connect_timeout: int = 5,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user or os.getenv("THIRTEEN_DB_USER", "")
        self.password = password if password is not None else os.getenv("THIRTEEN_DB_PASSWORD", "")
        self.database = database
        self.connect_timeout = connect_timeout
        self._conn: pymysql.connections.Connection | None = None
        self._closed = False
        # Rolling latency samples per query label
        self._lat_samples: Dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=200))

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._closed

    def connect(self) -> None:
        """
        Open the connection and validate it with a ping. Raises
        pymysql.MySQLError when the instance cannot be reached.
        """
        self._conn = pymysql.connect(
            host=self.host,
            port=int(self.port),
            user=self.user,
            password=self.password,
            database=self.database,
            connect_timeout=self.connect_timeout,
            autocommit=True,
        )
        # Open alone can succeed against a half-dead server
        try:
            self._conn.ping(reconnect=False)
        except pymysql.MySQLError:
            self._conn.close()
            self._conn = None
            raise
        self._closed = False
        logger.debug("Connected to {}:{} db={}", self.host, self.port, self.database)

    def close(self) -> None:
        if self._conn is None or self._closed:
            return
        self._closed = True
        try:
            self._conn.close()
        except pymysql.MySQLError as e:
            logger.debug("Close failed for {}: {}", self.host, e)
        logger.debug("Connection to {} released", self.host)

    # --- Query helpers ---
    def query_scalar(self, sql: str, *, label: str = "scalar") -> Any:
        """
        Return the first column of the first row, or None for an empty result.
        """
        with self._cursor(label) as cur:
            cur.execute(sql)
            row = cur.fetchone()
        if not row:
            return None
        return next(iter(row.values()))

    def query_row(self, sql: str, *, label: str = "row") -> Optional[Dict[str, Any]]:
        """
        Return the first row as a column name -> value mapping, or None when
        the query yields no rows.
        """
        with self._cursor(label) as cur:
            cur.execute(sql)
            row = cur.fetchone()
        return dict(row) if row else None

    def median_latency(self, label: str) -> Optional[float]:
        """Median of the recent latencies for one query label, in ms."""
        samples = self._lat_samples.get(label)
        return _nearest_rank(sorted(samples), 0.5) if samples else None

    def latency_summary(self) -> Dict[str, Dict[str, float]]:
        """
        Recent latencies per query label: sample count, mean, p50 and p90 (ms).
        Labels with no successful query are left out.
        """
        summary: Dict[str, Dict[str, float]] = {}
        for label, samples in self._lat_samples.items():
            ordered = sorted(samples)
            if not ordered:
                continue
            summary[label] = {
                "count": float(len(ordered)),
                "mean_ms": sum(ordered) / len(ordered),
                "p50_ms": _nearest_rank(ordered, 0.5),
                "p90_ms": _nearest_rank(ordered, 0.9),
            }
        return summary

    # --- Internal helpers ---
    def _cursor(self, label: str) -> "_TimedCursor":
        if not self.connected:
            raise pymysql.err.InterfaceError(f"connection to {self.host} is not open")
        return _TimedCursor(self, label)

    def _record_latency(self, label: str, elapsed_ms: float) -> None:
        self._lat_samples[label].append(float(elapsed_ms))


class _TimedCursor:
    """DictCursor context manager that records query latency on exit."""

    def __init__(self, client: MySQLClient, label: str) -> None:
        self._client = client
        self._label = label
        self._cur: pymysql.cursors.DictCursor | None = None
        self._t0 = 0.0

    def __enter__(self) -> pymysql.cursors.DictCursor:
        self._t0 = time.time()
        self._cur = self._client._conn.cursor(pymysql.cursors.DictCursor)
        return self._cur

    def __exit__(self, exc_type, exc, tb) -> None:
        elapsed_ms = (time.time() - self._t0) * 1000.0
        if self._cur is not None:
            self._cur.close()
        if exc_type is None:
            self._client._record_latency(self._label, elapsed_ms)
            logger.trace("{} query={} latency_ms={:.1f}", self._client.host, self._label, elapsed_ms)


def _nearest_rank(ordered: List[float], fraction: float) -> float:
    return ordered[round(fraction * (len(ordered) - 1))]


def to_int(value: Any) -> int:
    """
    Convert a scalar query result to int. Raises ScanError when the value is
    missing, not numeric, or has a fractional part.
    """
    if isinstance(value, int):
        return int(value)
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
    try:
        # DECIMAL/float columns (e.g. SUM() results)
        f = float(value)
    except (TypeError, ValueError):
        raise ScanError(f"cannot scan {value!r} as integer") from None
    if f != f or f in (float("inf"), float("-inf")) or not f.is_integer():
        raise ScanError(f"cannot scan {value!r} as integer")
    return int(f)
