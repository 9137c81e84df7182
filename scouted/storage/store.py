"""
Opportunity, CSR and subscriber persistence.

Writes are idempotent upserts keyed by natural key, so repeated or
overlapping runs converge. Upserts go through the dialect-specific
INSERT ... ON CONFLICT DO UPDATE of PostgreSQL (production) and SQLite
(tests, local runs).
"""

from datetime import date, datetime, timezone
from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import Session

from scouted.config.settings import Settings
from scouted.core.deduplicator import dedup, normalize_url
from scouted.core.models import CsrRecord, Opportunity
from scouted.exceptions import StorageError

from .db_models import Base, CsrSpendingRow, OpportunityRow, SubscriberRow

logger = structlog.get_logger(__name__)


DEFAULT_BATCH_SIZE = 50

INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# Columns refreshed when an opportunity is seen again (created_at is not)
OPPORTUNITY_MUTABLE_COLUMNS = [
    "title",
    "description",
    "deadline",
    "poc_email",
    "tags",
    "organisation",
    "amount",
    "location",
    "relevance_score",
    "updated_at",
]


def normalize_database_url(url: str) -> str:
    """Map bare postgres:// URLs (as hosted providers print them) to psycopg."""
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def _utc_naive(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def _to_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        logger.warning("invalid_deadline_dropped", deadline=value)
        return None


def _chunks(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def row_to_opportunity(row: OpportunityRow) -> Opportunity:
    """ORM row to runtime model (timestamps become aware UTC)."""
    created_at = row.created_at.replace(tzinfo=timezone.utc) if row.created_at else None
    return Opportunity(
        title=row.title,
        source_url=row.source_url,
        description=row.description or "",
        deadline=row.deadline.isoformat() if row.deadline else None,
        poc_email=row.poc_email,
        tags=list(row.tags or []),
        organisation=row.organisation,
        amount=row.amount,
        location=row.location,
        relevance_score=row.relevance_score or 0,
        created_at=created_at,
    )


class OpportunityStore:
    """
    Keyed upsert store over SQLAlchemy.

    Usage:
        store = OpportunityStore("postgresql+psycopg://...")
        written = store.upsert_opportunities(opportunities)
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
    ):
        """
        Initialize store.

        Args:
            database_url: SQLAlchemy URL (PostgreSQL or SQLite)
            engine: Existing engine (takes precedence over database_url)

        Raises:
            StorageError: No URL given, or an unsupported backend
        """
        if engine is None:
            if not database_url:
                raise StorageError("No database URL configured")
            try:
                engine = create_engine(normalize_database_url(database_url), pool_pre_ping=True)
            except (ArgumentError, ImportError) as e:
                raise StorageError(f"Cannot create database engine: {e}") from e

        if engine.dialect.name not in INSERT_BY_DIALECT:
            raise StorageError(f"Unsupported database backend: {engine.dialect.name}")

        self.engine = engine
        self._insert = INSERT_BY_DIALECT[engine.dialect.name]

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpportunityStore":
        """Store for DATABASE_URL (ConfigurationError if unset)."""
        return cls(settings.require_database_url())

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info("schema_created", backend=self.engine.dialect.name)

    # Opportunities

    def upsert_opportunities(
        self,
        opportunities: Sequence[Opportunity],
        batch_size: int = DEFAULT_BATCH_SIZE,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Insert or update opportunities keyed by source_url (case-insensitive).

        On conflict every mutable field is refreshed except created_at,
        which keeps the first-seen time that score decay is based on.
        A failing batch is logged and skipped.

        Args:
            opportunities: Scored records
            batch_size: Rows per statement
            now: Write timestamp (defaults to current UTC time)

        Returns:
            Number of rows in batches the backend accepted
        """
        records = dedup(list(opportunities))
        if not records:
            return 0

        timestamp = _utc_naive(now or datetime.now(timezone.utc))
        written = 0

        for index, chunk in enumerate(_chunks(records, batch_size)):
            stored_urls = self._stored_urls([opp.source_url for opp in chunk])
            rows = [
                {
                    "source_url": stored_urls.get(normalize_url(opp.source_url), opp.source_url),
                    "title": opp.title,
                    "description": opp.description,
                    "deadline": _to_date(opp.deadline),
                    "poc_email": opp.poc_email,
                    "tags": list(opp.tags),
                    "organisation": opp.organisation,
                    "amount": opp.amount,
                    "location": opp.location,
                    "relevance_score": opp.relevance_score,
                    "created_at": timestamp,  # kept only on first insert
                    "updated_at": timestamp,
                }
                for opp in chunk
            ]

            stmt = self._insert(OpportunityRow).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["source_url"],
                set_={column: stmt.excluded[column] for column in OPPORTUNITY_MUTABLE_COLUMNS},
            )

            if self._execute(stmt, "opportunities", index, len(rows)):
                written += len(rows)

        logger.info("opportunities_upserted", written=written, total=len(records))
        return written

    def query_opportunities(
        self,
        since: Optional[datetime] = None,
        min_score: Optional[int] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Opportunity]:
        """
        Read stored opportunities, highest base score first.

        Args:
            since: Only records first seen at or after this time
            min_score: Only records with at least this base score
            limit: Maximum rows
            offset: Rows to skip

        Returns:
            Opportunities with created_at populated
        """
        query = select(OpportunityRow)
        if since is not None:
            query = query.where(OpportunityRow.created_at >= _utc_naive(since))
        if min_score is not None:
            query = query.where(OpportunityRow.relevance_score >= min_score)
        query = query.order_by(
            OpportunityRow.relevance_score.desc(),
            OpportunityRow.created_at.desc(),
        )
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        with Session(self.engine) as session:
            rows = session.scalars(query).all()
            return [row_to_opportunity(row) for row in rows]

    # CSR spending

    def upsert_csr_records(
        self,
        records: Sequence[CsrRecord],
        batch_size: int = DEFAULT_BATCH_SIZE,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Insert or update CSR spend keyed by (cin, field, fiscal_year).

        Returns:
            Number of rows in batches the backend accepted
        """
        if not records:
            return 0

        timestamp = _utc_naive(now or datetime.now(timezone.utc))
        written = 0

        for index, chunk in enumerate(_chunks(list(records), batch_size)):
            rows = [
                {
                    **record.to_dict(),
                    "created_at": timestamp,
                    "updated_at": timestamp,
                }
                for record in chunk
            ]

            stmt = self._insert(CsrSpendingRow).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["cin", "field", "fiscal_year"],
                set_={
                    "company": stmt.excluded.company,
                    "spend_inr": stmt.excluded.spend_inr,
                    "updated_at": stmt.excluded.updated_at,
                },
            )

            if self._execute(stmt, "csr_spending", index, len(rows)):
                written += len(rows)

        logger.info("csr_records_upserted", written=written, total=len(records))
        return written

    # Subscribers

    def add_subscriber(self, email: str) -> bool:
        """Add a digest subscriber. Returns False if already subscribed."""
        email = email.strip().lower()
        stmt = self._insert(SubscriberRow).values(
            email=email, created_at=_utc_naive(datetime.now(timezone.utc))
        ).on_conflict_do_nothing(index_elements=["email"])

        with self.engine.begin() as connection:
            result = connection.execute(stmt)
        return result.rowcount > 0

    def remove_subscriber(self, email: str) -> bool:
        """Remove a subscriber. Returns False if the email was not subscribed."""
        stmt = delete(SubscriberRow).where(SubscriberRow.email == email.strip().lower())
        with self.engine.begin() as connection:
            result = connection.execute(stmt)
        return result.rowcount > 0

    def list_subscribers(self) -> list[str]:
        """All subscriber emails, oldest first."""
        query = select(SubscriberRow.email).order_by(SubscriberRow.created_at, SubscriberRow.id)
        with Session(self.engine) as session:
            return list(session.scalars(query).all())

    def _stored_urls(self, urls: Sequence[str]) -> dict[str, str]:
        """
        Stored spelling of each already known source_url.

        Keys compare case-insensitively (as in dedup), so a later sighting
        with different casing updates the existing row.
        """
        keys = {normalize_url(url) for url in urls}
        query = select(OpportunityRow.source_url).where(
            func.lower(OpportunityRow.source_url).in_(keys)
        )
        try:
            with Session(self.engine) as session:
                return {normalize_url(url): url for url in session.scalars(query)}
        except SQLAlchemyError as e:
            # The batch write reports the failure
            logger.warning("stored_url_lookup_failed", error=str(e))
            return {}

    def _execute(self, stmt, table: str, batch: int, size: int) -> bool:
        """Run one batch statement in its own transaction."""
        try:
            with self.engine.begin() as connection:
                connection.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "batch_upsert_failed",
                table=table,
                batch=batch,
                size=size,
                error=str(e),
            )
            return False
        return True
