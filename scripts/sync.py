#!/usr/bin/env python3
"""Scheduled Open States -> database sync for Oklahoma.

Pulls legislators, then bills (with actions, sponsorships and versions),
classifies each bill's stage, and records stage transitions.  Safe to run
repeatedly: every write is an upsert.

Usage::

    python scripts/sync.py              # full sync (cron entry point)
    python scripts/sync.py --verbose    # debug logging

Configuration comes from the environment or ``.env`` (see
``ok_bill_tracker.config``).  Exit code is 0 on success, 1 on failure.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Ensure the project is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from rich.console import Console  # noqa: E402
from rich.table import Table  # noqa: E402

from ok_bill_tracker import config  # noqa: E402
from ok_bill_tracker.pipeline import SyncSummary, run_sync  # noqa: E402

LOGGER = logging.getLogger("sync")

console = Console()


def _print_summary(summary: SyncSummary) -> None:
    table = Table(title="Sync Complete", show_lines=True, title_style="bold green")
    table.add_column("Records", style="bold")
    table.add_column("Count", justify="right")
    table.add_row("Legislators", f"{summary.legislators:,}")
    table.add_row("Bills", f"{summary.bills:,}")
    table.add_row("Stage changes", f"{summary.stage_changes:,}")
    table.add_row("Actions", f"{summary.actions:,}")
    table.add_row(
        "Sponsorships",
        f"{summary.sponsorships:,} ({summary.linked_sponsorships:,} linked)",
    )
    table.add_row("[bold]Duration[/]", f"[bold]{summary.duration_s:.1f}s[/]")
    console.print(table)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Sync Oklahoma legislators and bills from Open States.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    LOGGER.info(
        "Profile=%s jurisdiction=%s session=%s",
        config.PROFILE,
        config.JURISDICTION,
        config.SESSION or "(all)",
    )

    try:
        summary = run_sync()
    except Exception:
        LOGGER.exception("\u274c Sync failed")
        return 1

    _print_summary(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
