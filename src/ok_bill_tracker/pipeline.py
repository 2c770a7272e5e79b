"""Sync orchestration: legislators, then bills, with one engine per run.

Usage::

    from ok_bill_tracker.pipeline import run_sync

    summary = run_sync()
    print(summary.bills, summary.stage_changes)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from . import config, db
from .openstates import OpenStatesClient
from .run_log import COUNT_FIELDS, timed_phase, track_run
from .sync import LegislativeSource, sync_bills, sync_legislators

LOGGER = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    legislators: int = 0
    bills: int = 0
    stage_changes: int = 0
    actions: int = 0
    sponsorships: int = 0
    linked_sponsorships: int = 0
    duration_s: float = 0.0


def run_sync(
    source: LegislativeSource | None = None,
    *,
    database_url: str | None = None,
    run_log_path: Path | None = None,
) -> SyncSummary:
    """Run one full sync and return its counts.

    The engine is created once and disposed when the run ends, whether it
    succeeded or not.  A failure in the legislator phase skips the bill phase.
    Errors propagate after being recorded in ``sync_metadata`` and the run
    ledger.
    """
    client: OpenStatesClient | None = None
    if source is None:
        source = client = OpenStatesClient.from_config()
    url = database_url if database_url is not None else config.DATABASE_URL
    summary = SyncSummary()

    LOGGER.info("\U0001f504 Starting Oklahoma bill sync...")
    try:
        with track_run(run_log_path) as run:
            try:
                with db.open_database(url) as engine:
                    with timed_phase(run, "Schema"):
                        db.init_db(engine)
                        db.check_connection(engine)

                    with timed_phase(run, "Legislators"):
                        summary.legislators = sync_legislators(source, engine)

                    with timed_phase(run, "Bills"):
                        stats = sync_bills(source, engine)
                    summary.bills = stats.bills
                    summary.stage_changes = stats.stage_changes
                    summary.actions = stats.actions
                    summary.sponsorships = stats.sponsorships
                    summary.linked_sponsorships = stats.linked_sponsorships
            finally:
                for name in COUNT_FIELDS:
                    setattr(run, name, getattr(summary, name))
        summary.duration_s = run.duration_s or 0.0
    finally:
        if client is not None:
            client.close()

    LOGGER.info(
        "\u2705 Sync complete in %.1fs: %d legislators, %d bills, %d stage changes.",
        summary.duration_s,
        summary.legislators,
        summary.bills,
        summary.stage_changes,
    )
    return summary
