#!/usr/bin/env python3
"""Operator view: last outcome per sync type plus recent sync runs.

Usage:
    python scripts/sync_status.py             # metadata + last 10 runs
    python scripts/sync_status.py --tail 30
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from rich.console import Console  # noqa: E402
from rich.table import Table  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from ok_bill_tracker import config  # noqa: E402
from ok_bill_tracker.db import SyncMetadata, open_database  # noqa: E402
from ok_bill_tracker.run_log import get_log_path, load_recent_runs  # noqa: E402

console = Console()

_STATUS_STYLE = {"success": "green", "ok": "green", "error": "red", "pending": "yellow"}


def _t(value: datetime | str | None) -> str:
    """Shorten a timestamp for display."""
    if value is None:
        return "-"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value[:16]
    return value.strftime("%m/%d %H:%M")


def _fmt_dur(s: float | None) -> str:
    if s is None:
        return "-"
    if s >= 60:
        return f"{s / 60:.1f}m"
    return f"{s:.1f}s"


def _styled(status: str | None) -> str:
    status = status or "-"
    style = _STATUS_STYLE.get(status)
    return f"[{style}]{status}[/]" if style else status


def _metadata_table(rows: list[SyncMetadata]) -> Table:
    table = Table(title="Sync Metadata", title_style="bold cyan")
    table.add_column("Type", style="bold")
    table.add_column("Status")
    table.add_column("Last sync")
    table.add_column("Last success")
    table.add_column("Records", justify="right")
    table.add_column("Error", style="dim", overflow="fold")
    for row in rows:
        table.add_row(
            row.sync_type,
            _styled(row.status),
            _t(row.last_sync_at),
            _t(row.last_success_at),
            str(row.records_synced) if row.records_synced is not None else "-",
            row.error_message or "",
        )
    return table


def _runs_table(tail: int) -> Table:
    table = Table(title=f"Recent Runs ({get_log_path()})", title_style="bold cyan")
    table.add_column("Started")
    table.add_column("Run", style="dim")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Legislators", justify="right")
    table.add_column("Bills", justify="right")
    table.add_column("Changes", justify="right")
    table.add_column("Slowest phase", style="dim")
    for run in load_recent_runs(n=tail):
        slowest = run.slowest_phase
        table.add_row(
            _t(run.started_at),
            f"#{run.run_id}",
            _styled(run.status),
            _fmt_dur(run.duration_s),
            f"{run.legislators:,}",
            f"{run.bills:,}",
            f"{run.stage_changes:,}",
            f"{slowest.name}: {_fmt_dur(slowest.duration_s)}" if slowest else "",
        )
    return table


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Show sync metadata and recent sync runs.",
    )
    parser.add_argument(
        "--tail",
        "-n",
        type=int,
        default=10,
        help="Number of recent runs to show (default: 10).",
    )
    args = parser.parse_args()

    try:
        with open_database(config.DATABASE_URL) as engine:
            with Session(engine) as session:
                rows = list(session.scalars(select(SyncMetadata).order_by(SyncMetadata.sync_type)))
    except (RuntimeError, SQLAlchemyError) as exc:
        console.print(f"[red]Could not read sync metadata: {exc}[/]")
        return 1

    if rows:
        console.print(_metadata_table(rows))
    else:
        console.print("[dim]No sync metadata yet. Run 'python scripts/sync.py' first.[/]")
    console.print()
    console.print(_runs_table(args.tail))
    return 0


if __name__ == "__main__":
    sys.exit(main())
