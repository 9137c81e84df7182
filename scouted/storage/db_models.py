"""SQLAlchemy ORM table definitions for ScoutEd.

The dataclasses in scouted.core.models remain the runtime models; these
classes are for DB I/O only.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Column, Date, DateTime, Float, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    """Current UTC time, naive (all timestamp columns are naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# JSONB on PostgreSQL, JSON text elsewhere (SQLite in tests)
TagList = JSON().with_variant(JSONB(), "postgresql")


class OpportunityRow(Base):
    __tablename__ = "opportunities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_url = Column(String, nullable=False, unique=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, default="")
    deadline = Column(Date)
    poc_email = Column(String)
    tags = Column(TagList, default=list)
    organisation = Column(String)
    amount = Column(String)
    location = Column(String)
    relevance_score = Column(Integer, default=0, index=True)
    # UTC, naive. First-seen time; never overwritten on conflict.
    created_at = Column(DateTime, default=utc_now, index=True)
    updated_at = Column(DateTime, default=utc_now)


class CsrSpendingRow(Base):
    __tablename__ = "csr_spending"
    __table_args__ = (
        UniqueConstraint("cin", "field", "fiscal_year", name="uq_csr_cin_field_year"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    company = Column(String, nullable=False)
    cin = Column(String, nullable=False)
    field = Column(String, nullable=False)
    spend_inr = Column(Float, default=0.0)
    fiscal_year = Column(String, nullable=False)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now)


class SubscriberRow(Base):
    __tablename__ = "subscribers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=utc_now)
