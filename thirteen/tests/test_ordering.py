import sys
import unittest
from pathlib import Path

# Ensure the repository root is on sys.path so 'thirteen' can be imported
repo_root = Path(__file__).resolve().parents[2]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from thirteen.controllers.ordering import display_key, sort_records  # noqa: E402
from thirteen.utils.inventory import InstanceDescriptor  # noqa: E402
from thirteen.utils.metric_record import MetricRecord  # noqa: E402


def make(name, cls, region="r1"):
    return InstanceDescriptor.build(name=name, instance_class=cls, region=region, address="10.0.0.1")


class TestOrdering(unittest.TestCase):
    def test_sequence_is_name_without_class_prefix(self):
        d = make("replica-b", "replica")
        self.assertEqual(d.sequence, "-b")
        self.assertEqual(make("db7", "replica").sequence, "db7")

    def test_scenario_reverse_discovery(self):
        discovered = [make("backup-c", "backup", "r2"), make("replica-b", "replica"), make("primary-a", "primary")]
        ordered = sort_records(discovered)
        self.assertEqual([d.name for d in ordered], ["primary-a", "replica-b", "backup-c"])

    def test_primary_first_backup_last_sequence_lexicographic(self):
        discovered = [
            make("replica10", "replica"),
            make("backup01", "backup"),
            make("replica9", "replica"),
            make("primary02", "primary"),
            make("backup00", "backup"),
            make("replica2", "replica"),
            make("primary01", "primary"),
        ]
        ordered = sort_records(discovered)
        classes = [d.instance_class for d in ordered]
        self.assertEqual(classes[:2], ["primary", "primary"])
        self.assertEqual(classes[-2:], ["backup", "backup"])
        middle = [d.sequence for d in ordered if d.instance_class == "replica"]
        # String comparison: "10" < "2" < "9"
        self.assertEqual(middle, ["10", "2", "9"])
        self.assertEqual([d.name for d in ordered[:2]], ["primary01", "primary02"])

    def test_custom_class_tags(self):
        discovered = [
            make("mysql-backup1", "mysql-backup"),
            make("mysql-read2", "mysql-read"),
            make("mysql-master1", "mysql-master"),
            make("mysql-read1", "mysql-read"),
        ]
        ordered = sort_records(discovered, primary_class="mysql-master", backup_class="mysql-backup")
        self.assertEqual(
            [d.name for d in ordered],
            ["mysql-master1", "mysql-read1", "mysql-read2", "mysql-backup1"],
        )

    def test_unknown_classes_sort_with_replicas(self):
        self.assertEqual(display_key(make("x1", "arbiter")), (1, "x1"))
        self.assertLess(display_key(make("primary-z", "primary")), display_key(make("x1", "arbiter")))
        self.assertLess(display_key(make("x1", "arbiter")), display_key(make("backup-a", "backup")))

    def test_sorts_metric_records_and_snapshots(self):
        records = [MetricRecord(make("backup-c", "backup")), MetricRecord(make("primary-a", "primary"))]
        self.assertEqual([r.name for r in sort_records(records)], ["primary-a", "backup-c"])
        snaps = [r.snapshot() for r in records]
        self.assertEqual([s.name for s in sort_records(snaps)], ["primary-a", "backup-c"])


if __name__ == "__main__":
    unittest.main()
