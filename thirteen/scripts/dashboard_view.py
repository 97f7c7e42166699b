"""
Rich renderables for a FleetSnapshot.
"""
from __future__ import annotations

import time
from typing import List, Optional, Sequence

from rich.console import Group
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..controllers.aggregator import OVERALL
from ..controllers.fleet_controller import FleetSnapshot
from ..utils.metric_record import RecordSnapshot

SPARKLINE_CHARS = "▁▂▃▄▅▆▇█"


def render_sparkline(values: Sequence[float], width: Optional[int] = None) -> Text:
    """
    Newest-first values drawn oldest to newest, left to right, scaled to the
    largest value shown.
    """
    if not values:
        return Text("(no history)", style="dim")
    shown = list(values[:width] if width else values)
    shown.reverse()
    top = max(shown)
    max_idx = len(SPARKLINE_CHARS) - 1
    text = Text()
    for val in shown:
        idx = int((val / top) * max_idx) if top > 0 else 0
        text.append(SPARKLINE_CHARS[max(0, min(max_idx, idx))], style="cyan")
    return text


def _flag(value: bool) -> Text:
    return Text("Yes", style="green") if value else Text("No", style="bold red")


def _age(rec: RecordSnapshot, stale_after: float, now: float) -> Text:
    age = rec.age(now)
    if age is None:
        return Text("-", style="dim")
    style = "bold red" if rec.is_stale(stale_after, now) else "green"
    return Text(f"{age:.0f}s", style=style)


def render_table(records: List[RecordSnapshot], stale_after: float, now: Optional[float] = None) -> Table:
    now = time.time() if now is None else now
    table = Table(expand=True, border_style="blue")
    table.add_column("Instance")
    table.add_column("Region")
    table.add_column("Queries", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Master Position", justify="right")
    table.add_column("IO")
    table.add_column("SQL")
    table.add_column("Behind", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Age", justify="right")
    for rec in records:
        name = Text(rec.name, style="dim" if rec.poller_state == "terminated" else "bold")
        table.add_row(
            name,
            rec.region,
            str(rec.query_count),
            str(rec.item_count),
            f"{rec.master_log_file} {rec.master_log_position}".strip(),
            _flag(rec.slave_io_running),
            _flag(rec.slave_sql_running),
            str(rec.seconds_behind_master),
            "-" if rec.query_latency_ms is None else f"{rec.query_latency_ms:.1f}ms",
            _age(rec, stale_after, now),
        )
    return table


def series_title(label: str, values: Sequence[float]) -> str:
    latest = int(values[0]) if values else 0
    return f"{label} [{latest}]"


def render_series(snapshot: FleetSnapshot, width: Optional[int] = None) -> Group:
    panels = []
    for key in [OVERALL] + list(snapshot.regions):
        values = snapshot.series.get(key, [])
        label = "Overall" if key == OVERALL else key
        panels.append(
            Panel(render_sparkline(values, width), title=series_title(label, values), border_style="cyan")
        )
    return Group(*panels)


def build_layout(snapshot: FleetSnapshot, *, stale_after: float, width: Optional[int] = None) -> Layout:
    """Full dashboard: instance table on top, query-count series below."""
    root = Layout()
    footer = Text()
    footer.append(time.strftime("  Last updated: %H:%M:%S", time.localtime(snapshot.taken_at)), style="dim")
    footer.append(f"  |  Instances: {len(snapshot.records)}", style="dim")
    footer.append("  |  Press q or Ctrl+C to exit", style="dim")
    root.split_column(
        Layout(Panel(render_table(snapshot.records, stale_after), title="Instances"), name="table"),
        Layout(render_series(snapshot, width), name="series", size=3 * (len(snapshot.regions) + 1)),
        Layout(footer, name="footer", size=1),
    )
    return root
