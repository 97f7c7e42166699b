"""
Opens one MySQL connection per discovered instance and builds its record.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, List

import pymysql
from loguru import logger

from ..utils.inventory import InstanceDescriptor
from ..utils.metric_record import MetricRecord
from ..utils.mysql_utils import MySQLClient


class Connector:
    def __init__(
        self,
        *,
        database: str,
        port: int = 3306,
        user: str = "",
        password: str = "",
        connect_timeout: int = 5,
        client_factory: Callable[..., Any] = MySQLClient,
    ) -> None:
        self.database = database
        self.port = port
        self.user = user
        self.password = password
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory

    def connect_all(self, descriptors: Iterable[InstanceDescriptor]) -> List[MetricRecord]:
        """
        Try each instance once, in order. Instances that fail to connect are
        logged and left out; there is no later retry.
        """
        descriptors = list(descriptors)
        logger.info("Found {} instance(s), attempting to open MySQL connection(s)...", len(descriptors))
        records: List[MetricRecord] = []
        for i, desc in enumerate(descriptors, start=1):
            logger.info("[{}] Opening connection to: {} @ {} ...", i, desc.name, desc.address)
            client = self._client_factory(
                desc.address,
                port=self.port,
                user=self.user,
                password=self.password,
                database=self.database,
                connect_timeout=self.connect_timeout,
            )
            try:
                client.connect()
            except (pymysql.MySQLError, OSError) as e:
                logger.warning(
                    "Unable to open connection to: {} @ {}, skipping ... ({})", desc.name, desc.address, e
                )
                continue
            records.append(MetricRecord(desc, client))
        logger.info("Connections established: {}/{}", len(records), len(descriptors))
        return records
