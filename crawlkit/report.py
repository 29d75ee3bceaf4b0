"""
CSV export and monthly statistics over a scraped projects database.

Rows are split into one CSV per group (e.g. per category slug). Launch
month and deadline month statistics (count, average goal and pledged in
USD, pledged/goal ratio) are written overall and per group.
"""

from __future__ import annotations

import csv
import datetime as _dt
import logging
import sqlite3
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import UsageError

logger = logging.getLogger(__name__)

STAT_COUNT = "count"
STAT_AVG_GOAL = "goal"
STAT_AVG_PLEDGED = "pledged"
STAT_AVG_RATIO = "ratio"

CSV_TIME_FORMAT = "%Y-%m-%dT%H-%M-%S"


def _parse_time(value: Any) -> _dt.datetime:
    if isinstance(value, _dt.datetime):
        return value
    return _dt.datetime.fromisoformat(str(value))


def _cell(value: Any, column: str, time_columns: Sequence[str]) -> str:
    if column in time_columns and value is not None:
        return _parse_time(value).strftime(CSV_TIME_FORMAT)
    if isinstance(value, _dt.datetime):
        return value.strftime(CSV_TIME_FORMAT)
    return "" if value is None else str(value)


def group_name_to_file_name(name: str) -> str:
    return name.replace("/", "_")


def _open_read_only(db_name: str) -> sqlite3.Connection:
    """Open an existing database without creating one at a mistyped path."""
    uri = Path(db_name).absolute().as_uri() + "?mode=ro"
    try:
        return sqlite3.connect(uri, uri=True)
    except sqlite3.Error as exc:
        raise UsageError(f"Failed to open '{db_name}': {exc}") from exc


def _div(a: float, b: float) -> float:
    return a / b if b else float("nan")


class MonthStats:
    """Per-month sums keyed by stat name, optionally suffixed with a group."""

    def __init__(self) -> None:
        self.months: List[Dict[str, float]] = [defaultdict(float) for _ in range(12)]

    def add(self, month: int, group: str, goal_usd: float, pledged_usd: float) -> None:
        stats = self.months[month]
        for suffix in ("", "-" + group):
            stats[STAT_COUNT + suffix] += 1.0
            stats[STAT_AVG_GOAL + suffix] += goal_usd
            stats[STAT_AVG_PLEDGED + suffix] += pledged_usd

    def cells(self, month: int, group: Optional[str] = None) -> List[str]:
        stats = self.months[month]
        suffix = "" if group is None else "-" + group
        count = stats[STAT_COUNT + suffix]
        goal = stats[STAT_AVG_GOAL + suffix]
        pledged = stats[STAT_AVG_PLEDGED + suffix]
        return [
            f"{int(count)}",
            f"{_div(goal, count):.1f}",
            f"{_div(pledged, count):.1f}",
            f"{_div(pledged, goal):.1f}",
        ]


def stats_headers(group_names: Sequence[str]) -> List[str]:
    names = [STAT_COUNT, STAT_AVG_GOAL, STAT_AVG_PLEDGED, STAT_AVG_RATIO]
    headers = ["month"]
    headers += [f"{n}-start" for n in names] + [f"{n}-end" for n in names]
    for group in group_names:
        headers += [f"{n}-start-{group}" for n in names] + [f"{n}-end-{group}" for n in names]
    return headers


def export(
    db_name: str,
    table: str = "projects",
    columns: Sequence[str] = ("name", "goal", "pledged", "currency", "usd_rate", "launched_at", "deadline", "url", "slug"),
    group_by: Sequence[str] = ("slug",),
    output_base: str = "kickstarter",
    time_columns: Sequence[str] = ("created_at", "launched_at", "deadline"),
) -> List[str]:
    """Write the per-group CSVs and `<output_base>-stats.csv`. Returns the group names, sorted."""
    if not db_name or not table or not columns or not group_by:
        raise UsageError("db_name, table, columns and group_by are required")

    missing = [g for g in group_by if g not in columns]
    if missing:
        raise UsageError(f"Unknown group column '{missing[0]}'.")
    group_indices = [list(columns).index(g) for g in group_by]

    conn = _open_read_only(db_name)
    try:
        sql = f"SELECT {', '.join(columns)} FROM {table}"
        try:
            cursor = conn.execute(sql)
        except sqlite3.Error as exc:
            raise UsageError(f"Failed to query '{sql}' in '{db_name}': {exc}") from exc
        col_names = [d[0] for d in cursor.description]

        start_stats = MonthStats()
        end_stats = MonthStats()
        files: Dict[str, Any] = {}
        writers: Dict[str, Any] = {}
        try:
            for row in cursor:
                values = dict(zip(col_names, row))
                cells = [_cell(v, c, time_columns) for v, c in zip(row, col_names)]
                group = ",".join(cells[i] for i in group_indices)

                writer = writers.get(group)
                if writer is None:
                    path = f"{output_base}-{group_name_to_file_name(group)}.csv"
                    files[group] = open(path, "w", newline="", encoding="utf-8")
                    writer = writers[group] = csv.writer(files[group])
                    writer.writerow(col_names)
                    logger.info(f"Writing group '{group}' to {path}")
                writer.writerow(cells)

                usd_rate = float(values.get("usd_rate") or 0.0)
                goal_usd = float(values.get("goal") or 0.0) * usd_rate
                pledged_usd = float(values.get("pledged") or 0.0) * usd_rate
                if values.get("launched_at") is not None:
                    start_stats.add(_parse_time(values["launched_at"]).month - 1, group, goal_usd, pledged_usd)
                if values.get("deadline") is not None:
                    end_stats.add(_parse_time(values["deadline"]).month - 1, group, goal_usd, pledged_usd)
        finally:
            for fh in files.values():
                fh.close()
    finally:
        conn.close()

    group_names = sorted(writers)
    with open(f"{output_base}-stats.csv", "w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(stats_headers(group_names))
        for month in range(12):
            cols = [f"{month + 1:02d}"] + start_stats.cells(month) + end_stats.cells(month)
            for group in group_names:
                cols += start_stats.cells(month, group) + end_stats.cells(month, group)
            writer.writerow(cols)

    logger.info(f"Wrote {len(group_names)} group files and {output_base}-stats.csv")
    return group_names
