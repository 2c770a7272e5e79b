"""Reconcile Open States legislators and bills into the database.

Legislators are upserted page by page.  Bills are reconciled one at a time,
each inside its own transaction:

1. classify the action list into a :class:`~.stages.Stage`
2. lock-read the stored stage and upsert the bill row
3. append a ``bill_history`` row when the stage moved
4. upsert actions by position and sponsorships by ``(name, classification)``

Any fetch or storage error rolls back the bill in flight, stops the sync,
marks the sync type ``error`` in ``sync_metadata`` and re-raises.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import Select, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import Bill, BillAction, BillHistory, Legislator, Sponsorship, SyncMetadata, insert_for
from .models import SourceBill, SourceLegislator
from .stages import determine_stage, is_terminal

LOGGER = logging.getLogger(__name__)


class LegislativeSource(Protocol):
    def iter_legislators(self) -> Iterable[list[SourceLegislator]]: ...

    def iter_bills(self) -> Iterable[list[SourceBill]]: ...


@dataclass
class BillOutcome:
    """What reconciling a single bill wrote."""

    openstates_id: str
    stage: str
    previous_stage: str | None
    actions: int = 0
    sponsorships: int = 0
    linked_sponsorships: int = 0

    @property
    def stage_changed(self) -> bool:
        return self.previous_stage is not None and self.previous_stage != self.stage


@dataclass
class BillSyncStats:
    bills: int = 0
    stage_changes: int = 0
    actions: int = 0
    sponsorships: int = 0
    linked_sponsorships: int = 0

    def add(self, outcome: BillOutcome) -> None:
        self.bills += 1
        self.stage_changes += int(outcome.stage_changed)
        self.actions += outcome.actions
        self.sponsorships += outcome.sponsorships
        self.linked_sponsorships += outcome.linked_sponsorships


class LegislatorDirectory:
    """Exact-name lookup from sponsor name to ``legislators.id``.

    When two legislators share a name the lowest id wins.
    """

    def __init__(self, ids_by_name: dict[str, int] | None = None) -> None:
        self._ids_by_name = dict(ids_by_name or {})

    @classmethod
    def load(cls, session: Session) -> LegislatorDirectory:
        ids_by_name: dict[str, int] = {}
        rows = session.execute(select(Legislator.id, Legislator.name).order_by(Legislator.id))
        for legislator_id, name in rows:
            ids_by_name.setdefault(name, legislator_id)
        return cls(ids_by_name)

    def lookup(self, name: str) -> int | None:
        return self._ids_by_name.get(name)

    def __len__(self) -> int:
        return len(self._ids_by_name)


# ── Sync metadata ────────────────────────────────────────────────────────────


def _write_metadata(engine: Engine, sync_type: str, **values) -> None:
    with Session(engine) as session, session.begin():
        row = session.scalar(select(SyncMetadata).where(SyncMetadata.sync_type == sync_type))
        if row is None:
            row = SyncMetadata(sync_type=sync_type)
            session.add(row)
        for key, value in values.items():
            setattr(row, key, value)


def record_success(engine: Engine, sync_type: str, records_synced: int) -> None:
    _write_metadata(
        engine,
        sync_type,
        last_sync_at=func.now(),
        last_success_at=func.now(),
        status="success",
        records_synced=records_synced,
        error_message=None,
    )


def record_failure(engine: Engine, sync_type: str, exc: BaseException) -> None:
    """Mark *sync_type* as failed; a failing metadata write is logged, not raised."""
    LOGGER.error("%s sync failed: %s", sync_type.capitalize(), exc)
    try:
        _write_metadata(
            engine,
            sync_type,
            last_sync_at=func.now(),
            status="error",
            error_message=str(exc),
        )
    except SQLAlchemyError as meta_exc:
        LOGGER.error("Could not record %s sync failure: %s", sync_type, meta_exc)


# ── Legislators ──────────────────────────────────────────────────────────────


def upsert_legislator(session: Session, legislator: SourceLegislator) -> None:
    """Insert or refresh one legislator; contact fields are only set on insert."""
    stmt = insert_for(session, Legislator).values(
        openstates_id=legislator.openstates_id,
        name=legislator.name,
        party=legislator.party,
        chamber=legislator.chamber,
        district=legislator.district,
        image_url=legislator.image_url,
        email=legislator.email,
        phone=legislator.phone,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["openstates_id"],
        set_={
            "name": stmt.excluded.name,
            "party": stmt.excluded.party,
            "chamber": stmt.excluded.chamber,
            "district": stmt.excluded.district,
            "updated_at": func.now(),
        },
    )
    session.execute(stmt)


def sync_legislators(source: LegislativeSource, engine: Engine) -> int:
    """Upsert every legislator the source returns; returns the number written."""
    LOGGER.info("Syncing legislators...")
    count = 0
    try:
        for page in source.iter_legislators():
            with Session(engine) as session, session.begin():
                for legislator in page:
                    upsert_legislator(session, legislator)
            count += len(page)
            LOGGER.info("  %d legislators so far", count)
    except Exception as exc:
        record_failure(engine, "legislators", exc)
        raise
    record_success(engine, "legislators", count)
    LOGGER.info("Synced %d legislators.", count)
    return count


# ── Bills ────────────────────────────────────────────────────────────────────


def _upsert_bill_row(session: Session, bill: SourceBill, stage: str) -> int:
    stmt = insert_for(session, Bill).values(
        openstates_id=bill.openstates_id,
        session_id=bill.session_id,
        identifier=bill.identifier,
        title=bill.title,
        description=bill.description,
        classification=bill.classification,
        subject=bill.subject,
        current_status=bill.latest_action_description,
        current_chamber=bill.chamber,
        stage=stage,
        first_action_date=bill.first_action_date,
        latest_action_date=bill.latest_action_date,
        latest_action_description=bill.latest_action_description,
        full_text_url=bill.full_text_url,
        openstates_url=bill.openstates_url,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["openstates_id"],
        set_={
            "title": stmt.excluded.title,
            "current_status": stmt.excluded.current_status,
            "stage": stmt.excluded.stage,
            "subject": stmt.excluded.subject,
            "latest_action_date": stmt.excluded.latest_action_date,
            "latest_action_description": stmt.excluded.latest_action_description,
            "full_text_url": stmt.excluded.full_text_url,
            "updated_at": func.now(),
        },
    )
    session.execute(stmt)
    return session.scalar(select(Bill.id).where(Bill.openstates_id == bill.openstates_id))


def _upsert_actions(session: Session, bill_id: int, bill: SourceBill) -> int:
    for order_index, action in enumerate(bill.actions):
        stmt = insert_for(session, BillAction).values(
            bill_id=bill_id,
            date=action.date,
            description=action.description,
            classification=action.primary_tag,
            chamber=action.chamber,
            order_index=order_index,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["bill_id", "order_index"],
            set_={
                "date": stmt.excluded.date,
                "description": stmt.excluded.description,
                "classification": stmt.excluded.classification,
                "chamber": stmt.excluded.chamber,
            },
        )
        session.execute(stmt)
    return len(bill.actions)


def _upsert_sponsorships(
    session: Session,
    bill_id: int,
    bill: SourceBill,
    directory: LegislatorDirectory,
) -> tuple[int, int]:
    written = linked = 0
    for sponsorship in bill.sponsorships:
        if not sponsorship.name:
            LOGGER.debug("%s: skipping unnamed sponsorship", bill.identifier)
            continue
        legislator_id = directory.lookup(sponsorship.name)
        stmt = insert_for(session, Sponsorship).values(
            bill_id=bill_id,
            legislator_id=legislator_id,
            name=sponsorship.name,
            classification=sponsorship.classification,
            entity_type=sponsorship.entity_type,
            primary_sponsor=sponsorship.is_primary,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["bill_id", "name", "classification"],
            set_={
                "legislator_id": stmt.excluded.legislator_id,
                "entity_type": stmt.excluded.entity_type,
                "primary_sponsor": stmt.excluded.primary_sponsor,
            },
        )
        session.execute(stmt)
        written += 1
        linked += legislator_id is not None
    return written, linked


def _locked_stage_query(openstates_id: str) -> Select:
    """Stored stage of one bill, row-locked until the transaction ends.

    FOR UPDATE is a no-op on SQLite; on Postgres it holds the row until commit.
    """
    return select(Bill.stage).where(Bill.openstates_id == openstates_id).with_for_update()


def sync_bill(session: Session, bill: SourceBill, directory: LegislatorDirectory) -> BillOutcome:
    """Reconcile one bill inside the caller's transaction.

    The previous stage is read by a locking SELECT issued just before the
    upsert in the same transaction, not returned by the write statement
    itself.  A concurrent writer on Postgres blocks on that lock, so the
    read and the upsert still see the same row version.
    """
    stage = determine_stage(bill.actions).value

    previous_stage = session.scalar(_locked_stage_query(bill.openstates_id))
    bill_id = _upsert_bill_row(session, bill, stage)

    outcome = BillOutcome(
        openstates_id=bill.openstates_id, stage=stage, previous_stage=previous_stage
    )
    if outcome.stage_changed:
        session.add(
            BillHistory(
                bill_id=bill_id,
                stage=stage,
                status=bill.latest_action_description,
                previous_stage=previous_stage,
                notes=f"Stage changed from {previous_stage} to {stage}",
            )
        )
        LOGGER.info("%s: %s -> %s", bill.identifier, previous_stage, stage)
        if is_terminal(previous_stage):
            LOGGER.warning(
                "\u26a0\ufe0f %s left terminal stage %s (now %s)",
                bill.identifier,
                previous_stage,
                stage,
            )

    outcome.actions = _upsert_actions(session, bill_id, bill)
    outcome.sponsorships, outcome.linked_sponsorships = _upsert_sponsorships(
        session, bill_id, bill, directory
    )
    return outcome


def sync_bills(source: LegislativeSource, engine: Engine) -> BillSyncStats:
    """Reconcile every bill the source returns, one transaction per bill."""
    LOGGER.info("Syncing bills...")
    stats = BillSyncStats()
    try:
        with Session(engine) as session:
            directory = LegislatorDirectory.load(session)
        LOGGER.info("Sponsor directory: %d legislator names", len(directory))

        for page in source.iter_bills():
            for bill in page:
                with Session(engine) as session, session.begin():
                    outcome = sync_bill(session, bill, directory)
                stats.add(outcome)
            LOGGER.info(
                "  %d bills so far (%d stage changes)", stats.bills, stats.stage_changes
            )
    except Exception as exc:
        record_failure(engine, "bills", exc)
        raise
    record_success(engine, "bills", stats.bills)
    LOGGER.info(
        "Synced %d bills: %d stage changes, %d actions, %d sponsorships (%d linked).",
        stats.bills,
        stats.stage_changes,
        stats.actions,
        stats.sponsorships,
        stats.linked_sponsorships,
    )
    return stats
