"""Tests for legislator/bill reconciliation against an in-memory SQLite database."""

from __future__ import annotations

import logging

import pytest
from helpers import FakeSource, action, make_bill, make_legislator
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ok_bill_tracker import sync
from ok_bill_tracker.db import (
    Bill,
    BillAction,
    BillHistory,
    Legislator,
    Sponsorship,
    SyncMetadata,
)
from ok_bill_tracker.models import SourceSponsorship
from ok_bill_tracker.openstates import SourceError
from ok_bill_tracker.sync import (
    BillSyncStats,
    LegislatorDirectory,
    record_failure,
    sync_bills,
    sync_legislators,
)


def _count(engine: Engine, model) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(model))


def _bill(engine: Engine, openstates_id: str = "ocd-bill/ok-hb1001") -> Bill:
    with Session(engine) as session:
        return session.scalars(select(Bill).where(Bill.openstates_id == openstates_id)).one()


def _history(engine: Engine) -> list[tuple[str | None, str]]:
    with Session(engine) as session:
        rows = session.scalars(select(BillHistory).order_by(BillHistory.id)).all()
        return [(r.previous_stage, r.stage) for r in rows]


def _metadata(engine: Engine, sync_type: str) -> SyncMetadata:
    with Session(engine) as session:
        return session.scalars(
            select(SyncMetadata).where(SyncMetadata.sync_type == sync_type)
        ).one()


def _sync_once(engine: Engine, *bills) -> BillSyncStats:
    return sync_bills(FakeSource(bill_pages=[list(bills)]), engine)


# ── Legislators ──────────────────────────────────────────────────────────────


class TestLegislatorSync:
    def test_insert_then_update_without_duplicate(self, engine: Engine) -> None:
        first = make_legislator(party="Republican", email="jane@okhouse.gov")
        assert sync_legislators(FakeSource(legislator_pages=[[first]]), engine) == 1

        changed = make_legislator(party="Independent", district="14", email="new@okhouse.gov")
        sync_legislators(FakeSource(legislator_pages=[[changed]]), engine)

        assert _count(engine, Legislator) == 1
        with Session(engine) as session:
            row = session.scalars(select(Legislator)).one()
        assert row.party == "Independent"
        assert row.district == "14"
        # Contact details are only written on first insert.
        assert row.email == "jane@okhouse.gov"

    def test_counts_across_pages(self, engine: Engine) -> None:
        pages = [
            [make_legislator(f"ocd-person/{i}", f"Member {i}") for i in range(3)],
            [make_legislator("ocd-person/9", "Member 9")],
        ]
        assert sync_legislators(FakeSource(legislator_pages=pages), engine) == 4
        assert _count(engine, Legislator) == 4

    def test_success_recorded_in_metadata(self, engine: Engine) -> None:
        sync_legislators(FakeSource(legislator_pages=[[make_legislator()]]), engine)
        meta = _metadata(engine, "legislators")
        assert meta.status == "success"
        assert meta.records_synced == 1
        assert meta.last_sync_at is not None
        assert meta.last_success_at is not None
        assert meta.error_message is None

    def test_fetch_error_recorded_and_propagated(self, engine: Engine) -> None:
        source = FakeSource(
            legislator_pages=[[make_legislator()]],
            fail_legislators=SourceError("/people", 2, "read timed out"),
        )
        with pytest.raises(SourceError):
            sync_legislators(source, engine)

        meta = _metadata(engine, "legislators")
        assert meta.status == "error"
        assert "read timed out" in meta.error_message
        assert meta.last_success_at is None
        # The page before the failure is kept.
        assert _count(engine, Legislator) == 1


# ── Bills: stage history ─────────────────────────────────────────────────────


class TestStageHistory:
    def test_first_sync_records_no_history(self, engine: Engine) -> None:
        _sync_once(engine, make_bill(actions=[action("introduction")]))
        assert _bill(engine).stage == "introduced"
        assert _history(engine) == []

    def test_unchanged_resync_adds_no_history(self, engine: Engine) -> None:
        bill = make_bill(actions=[action("introduction"), action("referral-committee")])
        _sync_once(engine, bill)
        stats = _sync_once(engine, bill)
        assert stats.stage_changes == 0
        assert _history(engine) == []
        assert _count(engine, Bill) == 1

    def test_committee_to_committee_approved(self, engine: Engine) -> None:
        referred = make_bill(actions=[action("introduction"), action("referral-committee")])
        _sync_once(engine, referred)
        assert _bill(engine).stage == "committee"

        stats = _sync_once(
            engine,
            make_bill(
                actions=[
                    action("introduction"),
                    action("referral-committee"),
                    action("committee-passage", "Reported Do Pass"),
                ]
            ),
        )
        assert stats.stage_changes == 1
        assert _history(engine) == [("committee", "committee_approved")]
        with Session(engine) as session:
            entry = session.scalars(select(BillHistory)).one()
        assert entry.status == "Reported Do Pass"

    def test_lifecycle_scenario(self, engine: Engine) -> None:
        steps = [
            action("introduction", on="2026-02-02"),
            action("referral-committee", on="2026-02-03"),
            action("committee-passage", on="2026-02-20"),
            action("passage", on="2026-03-05"),
            action("passage", on="2026-04-10"),
        ]
        observed = []
        for upto in (1, 2, 3, 5):
            _sync_once(engine, make_bill(actions=steps[:upto]))
            observed.append(_bill(engine).stage)

        assert observed == ["introduced", "committee", "committee_approved", "enrolled"]
        assert _history(engine) == [
            ("introduced", "committee"),
            ("committee", "committee_approved"),
            ("committee_approved", "enrolled"),
        ]

    def test_null_stored_stage_records_no_history(self, engine: Engine) -> None:
        _sync_once(engine, make_bill(actions=[action("introduction")]))
        with Session(engine) as session, session.begin():
            session.scalars(select(Bill)).one().stage = None

        _sync_once(engine, make_bill(actions=[action("referral-committee")]))
        assert _bill(engine).stage == "committee"
        assert _history(engine) == []

    def test_leaving_terminal_stage_logs_warning(self, engine: Engine, caplog) -> None:
        _sync_once(engine, make_bill(actions=[action("executive-signature")]))
        assert _bill(engine).stage == "signed"

        with caplog.at_level(logging.WARNING, logger="ok_bill_tracker.sync"):
            _sync_once(engine, make_bill(actions=[action("referral-committee")]))
        assert _history(engine) == [("signed", "committee")]
        assert "HB1001 left terminal stage signed (now committee)" in caplog.text

    def test_advancing_stage_logs_no_warning(self, engine: Engine, caplog) -> None:
        _sync_once(engine, make_bill(actions=[action("introduction")]))
        with caplog.at_level(logging.WARNING, logger="ok_bill_tracker.sync"):
            _sync_once(engine, make_bill(actions=[action("executive-signature")]))
        assert _history(engine) == [("introduced", "signed")]
        assert "left terminal stage" not in caplog.text

    def test_stage_read_locks_row_on_postgres(self) -> None:
        query = sync._locked_stage_query("ocd-bill/ok-hb1001")
        compiled = str(query.compile(dialect=postgresql.dialect()))
        assert compiled.rstrip().endswith("FOR UPDATE")
        assert "bills.openstates_id" in compiled


# ── Bills: row contents ──────────────────────────────────────────────────────


class TestBillRows:
    def test_bill_fields_updated_in_place(self, engine: Engine) -> None:
        _sync_once(engine, make_bill(actions=[action("introduction", "First Reading")]))
        later = make_bill(
            actions=[
                action("introduction", "First Reading"),
                action("referral-committee", "Referred to Education", on="2026-02-10"),
            ]
        )
        later.title = "Schools; amended title"
        later.subject = ["Education", "School Calendar"]
        _sync_once(engine, later)

        row = _bill(engine)
        assert row.title == "Schools; amended title"
        assert row.subject == ["Education", "School Calendar"]
        assert row.current_status == "Referred to Education"
        assert row.latest_action_description == "Referred to Education"
        assert str(row.latest_action_date) == "2026-02-10"
        assert row.identifier == "HB1001"
        assert row.current_chamber == "lower"

    def test_actions_upserted_positionally(self, engine: Engine) -> None:
        bill = make_bill(actions=[action("introduction"), action("referral-committee")])
        _sync_once(engine, bill)
        bill.actions[1].description = "Referred to Common Education"
        stats = _sync_once(engine, bill)

        assert stats.actions == 2
        assert _count(engine, BillAction) == 2
        with Session(engine) as session:
            rows = session.scalars(select(BillAction).order_by(BillAction.order_index)).all()
        assert [r.order_index for r in rows] == [0, 1]
        assert rows[0].classification == "introduction"
        assert rows[1].description == "Referred to Common Education"

    def test_action_without_date_is_stored(self, engine: Engine) -> None:
        undated = action("introduction")
        undated.date = None
        _sync_once(engine, make_bill(actions=[undated]))
        with Session(engine) as session:
            assert session.scalars(select(BillAction)).one().date is None


# ── Bills: sponsorships ──────────────────────────────────────────────────────


class TestSponsorships:
    def test_linked_and_unlinked_sponsors(self, engine: Engine) -> None:
        sync_legislators(FakeSource(legislator_pages=[[make_legislator(name="Jane Doe")]]), engine)
        bill = make_bill(
            actions=[action("introduction")],
            sponsorships=[
                SourceSponsorship(name="Jane Doe", classification="primary", entity_type="person"),
                SourceSponsorship(name="Nobody Known", classification="cosponsor"),
            ],
        )
        stats = _sync_once(engine, bill)
        assert stats.sponsorships == 2
        assert stats.linked_sponsorships == 1

        with Session(engine) as session:
            rows = {s.name: s for s in session.scalars(select(Sponsorship))}
            jane_id = session.scalar(select(Legislator.id).where(Legislator.name == "Jane Doe"))
        assert rows["Jane Doe"].legislator_id == jane_id
        assert rows["Jane Doe"].primary_sponsor is True
        assert rows["Nobody Known"].legislator_id is None
        assert rows["Nobody Known"].primary_sponsor is False

    def test_resync_links_without_duplicating(self, engine: Engine) -> None:
        bill = make_bill(
            actions=[action("introduction")],
            sponsorships=[SourceSponsorship(name="Jane Doe", classification="primary")],
        )
        _sync_once(engine, bill)
        sync_legislators(FakeSource(legislator_pages=[[make_legislator(name="Jane Doe")]]), engine)
        _sync_once(engine, bill)

        assert _count(engine, Sponsorship) == 1
        with Session(engine) as session:
            assert session.scalars(select(Sponsorship)).one().legislator_id is not None

    def test_primary_flag_without_classification(self, engine: Engine) -> None:
        bill = make_bill(
            sponsorships=[SourceSponsorship(name="Jane Doe", classification="", primary=True)],
        )
        _sync_once(engine, bill)
        with Session(engine) as session:
            assert session.scalars(select(Sponsorship)).one().primary_sponsor is True

    def test_unnamed_sponsor_skipped(self, engine: Engine) -> None:
        bill = make_bill(sponsorships=[SourceSponsorship(name="", classification="cosponsor")])
        stats = _sync_once(engine, bill)
        assert stats.sponsorships == 0
        assert _count(engine, Sponsorship) == 0


class TestLegislatorDirectory:
    def test_lookup(self) -> None:
        directory = LegislatorDirectory({"Jane Doe": 3})
        assert directory.lookup("Jane Doe") == 3
        assert directory.lookup("jane doe") is None
        assert len(directory) == 1

    def test_duplicate_names_keep_lowest_id(self, engine: Engine) -> None:
        legislators = [
            make_legislator("ocd-person/1", "Pat Smith"),
            make_legislator("ocd-person/2", "Pat Smith"),
        ]
        sync_legislators(FakeSource(legislator_pages=[legislators]), engine)
        with Session(engine) as session:
            directory = LegislatorDirectory.load(session)
            lowest = session.scalar(select(func.min(Legislator.id)))
        assert directory.lookup("Pat Smith") == lowest


# ── Bills: failures ──────────────────────────────────────────────────────────


class TestBillSyncFailures:
    def test_storage_error_rolls_back_bill_and_records_error(self, engine: Engine) -> None:
        good = make_bill("ocd-bill/ok-hb1", identifier="HB1", actions=[action("introduction")])
        bad = make_bill("ocd-bill/ok-hb2", identifier="HB2", actions=[action("introduction")])
        bad.identifier = None  # violates NOT NULL
        never = make_bill("ocd-bill/ok-hb3", identifier="HB3")

        with pytest.raises(IntegrityError):
            _sync_once(engine, good, bad, never)

        with Session(engine) as session:
            stored = session.scalars(select(Bill.openstates_id)).all()
        assert stored == ["ocd-bill/ok-hb1"]
        assert _count(engine, BillAction) == 1
        meta = _metadata(engine, "bills")
        assert meta.status == "error"
        assert "NOT NULL" in meta.error_message

    def test_fetch_error_records_error(self, engine: Engine) -> None:
        source = FakeSource(
            bill_pages=[[make_bill(actions=[action("introduction")])]],
            fail_bills=SourceError("/bills", 2, "503 Server Error"),
        )
        with pytest.raises(SourceError):
            sync_bills(source, engine)
        meta = _metadata(engine, "bills")
        assert meta.status == "error"
        assert "503" in meta.error_message

    def test_success_overwrites_previous_error(self, engine: Engine) -> None:
        with pytest.raises(SourceError):
            sync_bills(FakeSource(fail_bills=SourceError("/bills", 1, "boom")), engine)
        _sync_once(engine, make_bill(actions=[action("introduction")]))
        meta = _metadata(engine, "bills")
        assert meta.status == "success"
        assert meta.records_synced == 1
        assert meta.error_message is None

    def test_metadata_write_failure_is_logged(
        self, engine: Engine, monkeypatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        def _broken(*args, **kwargs) -> None:
            raise OperationalError("UPDATE sync_metadata", {}, Exception("database is locked"))

        monkeypatch.setattr(sync, "_write_metadata", _broken)
        record_failure(engine, "bills", RuntimeError("original failure"))
        assert "Could not record bills sync failure" in caplog.text
