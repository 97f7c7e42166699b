import sys
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pymysql

# Ensure the repository root is on sys.path so 'thirteen' can be imported
repo_root = Path(__file__).resolve().parents[2]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from thirteen.utils.mysql_utils import MySQLClient, ScanError, to_int  # noqa: E402


class TestToInt(unittest.TestCase):
    def test_numeric_values(self):
        self.assertEqual(to_int(5), 5)
        self.assertEqual(to_int("17"), 17)
        self.assertEqual(to_int(b"3"), 3)
        self.assertEqual(to_int(Decimal("12")), 12)
        self.assertEqual(to_int("4.0"), 4)

    def test_fractional_values_raise_scan_error(self):
        for bad in ("12.7", 12.7, Decimal("12.7"), b"0.5"):
            with self.assertRaises(ScanError):
                to_int(bad)

    def test_non_numeric_raises_scan_error(self):
        for bad in ("abc", None, "", float("nan")):
            with self.assertRaises(ScanError):
                to_int(bad)


class TestMySQLClient(unittest.TestCase):
    def make_connected(self, rows):
        client = MySQLClient("10.0.0.1", user="u", password="p", database="app")
        conn = MagicMock()
        cursor = conn.cursor.return_value
        cursor.fetchone.side_effect = rows
        with patch("thirteen.utils.mysql_utils.pymysql.connect", return_value=conn) as connect:
            client.connect()
        return client, conn, cursor, connect

    def test_connect_pings(self):
        client, conn, _, connect = self.make_connected([])
        conn.ping.assert_called_once_with(reconnect=False)
        self.assertEqual(connect.call_args.kwargs["host"], "10.0.0.1")
        self.assertEqual(connect.call_args.kwargs["connect_timeout"], 5)
        self.assertTrue(client.connected)

    def test_connect_failure_propagates(self):
        client = MySQLClient("10.0.0.9")
        with patch(
            "thirteen.utils.mysql_utils.pymysql.connect",
            side_effect=pymysql.err.OperationalError(2003, "unreachable"),
        ):
            with self.assertRaises(pymysql.MySQLError):
                client.connect()
        self.assertFalse(client.connected)

    def test_failed_ping_releases_connection(self):
        client = MySQLClient("10.0.0.9")
        conn = MagicMock()
        conn.ping.side_effect = pymysql.err.OperationalError(2013, "Lost connection during query")
        with patch("thirteen.utils.mysql_utils.pymysql.connect", return_value=conn):
            with self.assertRaises(pymysql.MySQLError):
                client.connect()
        conn.close.assert_called_once()
        self.assertFalse(client.connected)
        client.close()
        conn.close.assert_called_once()

    def test_query_scalar_and_row(self):
        client, _, cursor, _ = self.make_connected(
            [{"COUNT(*)": 11}, None, {"Slave_IO_Running": "Yes"}, None]
        )
        self.assertEqual(client.query_scalar("SELECT COUNT(*)", label="process_count"), 11)
        self.assertIsNone(client.query_scalar("SELECT nothing"))
        self.assertEqual(client.query_row("SHOW SLAVE STATUS"), {"Slave_IO_Running": "Yes"})
        self.assertIsNone(client.query_row("SHOW SLAVE STATUS"))
        self.assertEqual(cursor.close.call_count, 4)
        self.assertEqual(client.latency_summary()["process_count"]["count"], 1.0)

    def test_median_latency_per_label(self):
        client, _, _, _ = self.make_connected([{"COUNT(*)": 1}, {"COUNT(*)": 2}, {"COUNT(*)": 3}])
        with patch("thirteen.utils.mysql_utils.time.time", side_effect=[0.0, 0.004, 1.0, 1.002, 2.0, 2.009]):
            for _ in range(3):
                client.query_scalar("SELECT COUNT(*)", label="process_count")
        self.assertAlmostEqual(client.median_latency("process_count"), 4.0)
        self.assertIsNone(client.median_latency("replication"))
        summary = client.latency_summary()["process_count"]
        self.assertEqual(summary["count"], 3.0)
        self.assertAlmostEqual(summary["mean_ms"], 5.0)
        self.assertAlmostEqual(summary["p90_ms"], 9.0)

    def test_query_error_propagates_and_is_not_timed(self):
        client, _, cursor, _ = self.make_connected([])
        cursor.execute.side_effect = pymysql.err.OperationalError(2013, "Lost connection")
        with self.assertRaises(pymysql.MySQLError):
            client.query_scalar("SELECT 1", label="process_count")
        self.assertNotIn("process_count", client.latency_summary())

    def test_close_once(self):
        client, conn, _, _ = self.make_connected([])
        client.close()
        client.close()
        conn.close.assert_called_once()
        with self.assertRaises(pymysql.MySQLError):
            client.query_scalar("SELECT 1")


if __name__ == "__main__":
    unittest.main()
