"""
Display ordering for the fleet: primary first, backups last, the rest by
sequence.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Tuple

DEFAULT_PRIMARY_CLASS = "primary"
DEFAULT_BACKUP_CLASS = "backup"


def display_key(
    record: Any,
    *,
    primary_class: str = DEFAULT_PRIMARY_CLASS,
    backup_class: str = DEFAULT_BACKUP_CLASS,
) -> Tuple[int, str]:
    """
    Sort key for anything carrying `instance_class` and `sequence`.
    Sequences compare as strings, so "10" sorts before "9".
    """
    if record.instance_class == primary_class:
        rank = 0
    elif record.instance_class == backup_class:
        rank = 2
    else:
        rank = 1
    return rank, str(record.sequence)


def sort_records(
    records: Iterable[Any],
    *,
    primary_class: str = DEFAULT_PRIMARY_CLASS,
    backup_class: str = DEFAULT_BACKUP_CLASS,
) -> List[Any]:
    return sorted(
        records,
        key=lambda r: display_key(r, primary_class=primary_class, backup_class=backup_class),
    )
