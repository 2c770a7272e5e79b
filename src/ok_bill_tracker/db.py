"""Relational storage: tables, engine lifecycle, and dialect-aware upserts.

Postgres is the production backend (``postgresql+psycopg``); SQLite is used
for local development and tests.  Both support ``INSERT ... ON CONFLICT``,
which every sync write goes through, so reconciliation keys
(``openstates_id``, ``(bill_id, order_index)``, ...) carry unique constraints.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

LOGGER = logging.getLogger(__name__)

SYNC_TYPES: tuple[str, ...] = ("bills", "legislators", "actions", "votes")


class Base(DeclarativeBase):
    pass


class Legislator(Base):
    __tablename__ = "legislators"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    openstates_id: Mapped[str] = mapped_column(String(255), unique=True)
    name: Mapped[str] = mapped_column(String(255))
    party: Mapped[str | None] = mapped_column(String(50))
    chamber: Mapped[str | None] = mapped_column(String(20))
    district: Mapped[str | None] = mapped_column(String(50))
    image_url: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(50))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (Index("idx_legislators_name", "name"),)


class Bill(Base):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    openstates_id: Mapped[str] = mapped_column(String(255), unique=True)
    session_id: Mapped[str] = mapped_column(String(100), index=True)
    identifier: Mapped[str] = mapped_column(String(50), index=True)  # e.g. "HB1001"
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    classification: Mapped[str | None] = mapped_column(String(50))
    subject: Mapped[list | None] = mapped_column(JSON().with_variant(JSONB, "postgresql"))
    current_status: Mapped[str | None] = mapped_column(Text)
    current_chamber: Mapped[str | None] = mapped_column(String(20))
    stage: Mapped[str | None] = mapped_column(String(50), index=True)
    first_action_date: Mapped[dt.date | None] = mapped_column(Date)
    latest_action_date: Mapped[dt.date | None] = mapped_column(Date)
    latest_action_description: Mapped[str | None] = mapped_column(Text)
    full_text_url: Mapped[str | None] = mapped_column(Text)
    openstates_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())


class BillAction(Base):
    __tablename__ = "bill_actions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id", ondelete="CASCADE"))
    date: Mapped[dt.date | None] = mapped_column(Date)
    description: Mapped[str] = mapped_column(Text)
    classification: Mapped[str | None] = mapped_column(String(100))
    chamber: Mapped[str | None] = mapped_column(String(20))
    order_index: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("bill_id", "order_index", name="uq_bill_actions_position"),
        Index("idx_bill_actions_bill_date", "bill_id", "date"),
    )


class BillHistory(Base):
    __tablename__ = "bill_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id", ondelete="CASCADE"))
    stage: Mapped[str] = mapped_column(String(50))
    status: Mapped[str | None] = mapped_column(Text)
    previous_stage: Mapped[str | None] = mapped_column(String(50))
    changed_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())
    notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("idx_bill_history_bill", "bill_id", "changed_at"),)


class Sponsorship(Base):
    __tablename__ = "sponsorships"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id", ondelete="CASCADE"))
    # Weak link: None when no legislator matched the sponsor name.
    legislator_id: Mapped[int | None] = mapped_column(ForeignKey("legislators.id"))
    name: Mapped[str] = mapped_column(String(255))
    classification: Mapped[str] = mapped_column(String(50), default="")
    entity_type: Mapped[str | None] = mapped_column(String(50))
    primary_sponsor: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("bill_id", "name", "classification", name="uq_sponsorships_bill_name"),
        Index("idx_sponsorships_legislator", "legislator_id"),
    )


class SyncMetadata(Base):
    __tablename__ = "sync_metadata"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    sync_type: Mapped[str] = mapped_column(String(50), unique=True)
    last_sync_at: Mapped[dt.datetime | None] = mapped_column(DateTime)
    last_success_at: Mapped[dt.datetime | None] = mapped_column(DateTime)
    status: Mapped[str | None] = mapped_column(String(50))  # pending | success | error
    records_synced: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())


# ── Engine lifecycle ─────────────────────────────────────────────────────────


def normalize_database_url(url: str) -> str:
    """Route bare ``postgres://`` / ``postgresql://`` URLs to the psycopg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix) :]
    return url


def create_db_engine(url: str) -> Engine:
    if not url:
        raise RuntimeError("DATABASE_URL must be set (see .env or OK_PROFILE).")
    return create_engine(normalize_database_url(url), pool_pre_ping=True)


@contextmanager
def open_database(url: str) -> Iterator[Engine]:
    """Yield an engine whose pool is disposed on every exit path."""
    engine = create_db_engine(url)
    try:
        yield engine
    finally:
        engine.dispose()
        LOGGER.info("Database connection pool closed.")


def check_connection(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def init_db(engine: Engine) -> None:
    """Create missing tables and seed one ``pending`` metadata row per sync type."""
    Base.metadata.create_all(engine)
    with Session(engine) as session, session.begin():
        existing = set(session.scalars(select(SyncMetadata.sync_type)))
        for sync_type in SYNC_TYPES:
            if sync_type not in existing:
                session.add(SyncMetadata(sync_type=sync_type, status="pending"))


# ── Upsert statements ────────────────────────────────────────────────────────


def insert_for(session: Session, model: type[Base]):
    """Dialect-specific INSERT supporting ``on_conflict_do_update/nothing``."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")
