"""
Database Models - Event Pipeline Tables

Three tables back the pipeline:

- EventQueueEntry (events_queue): raw events awaiting a fold
- Event (events): canonical, immutable record of a folded event
- DailyStat (daily_stats): per-site, per-UTC-day rollup, unique on (site_id, date)
"""

from datetime import datetime, date, timezone
from typing import Optional, List
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Timezone-aware current instant"""
    return datetime.now(timezone.utc)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class EventQueueEntry(Base):
    """
    Queue Table

    One raw event accepted by the ingestion endpoint and not yet folded.
    The claim columns implement a lease so overlapping aggregator passes
    never pick up the same entries.
    """
    __tablename__ = "events_queue"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    site_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    path: Mapped[str] = mapped_column(String(2000), nullable=False, default="/")
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, default="anonymous")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Lease
    claim_token: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_events_queue_processed_created", "processed", "created_at"),
        Index("ix_events_queue_claim_token", "claim_token"),
    )


class Event(Base):
    """
    Canonical Event Table

    Durable record of a processed occurrence. Rows are never updated.
    """
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    queue_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    site_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    path: Mapped[str] = mapped_column(String(2000), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_events_site_timestamp", "site_id", "timestamp"),
        Index("ix_events_queue_entry", "queue_entry_id"),
    )


class DailyStat(Base):
    """
    Daily Rollup Table

    Pre-computed per-site, per-day view counts for fast stats queries.
    path_stats is an ordered list of {"path", "views"}, views descending.
    user_ids holds the distinct users behind unique_users so later passes
    can merge into the row without double counting.
    """
    __tablename__ = "daily_stats"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    site_id: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    total_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    path_stats: Mapped[List[dict]] = mapped_column(JSONType, nullable=False, default=list)
    user_ids: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("site_id", "date", name="uq_daily_stats_site_date"),
        Index("ix_daily_stats_site_date", "site_id", "date"),
    )
