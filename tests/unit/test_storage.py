"""Tests for the opportunity store (in-memory SQLite)."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from scouted.config.settings import Settings
from scouted.core.models import CsrRecord, Opportunity
from scouted.exceptions import ConfigurationError, StorageError
from scouted.storage import CsrSpendingRow, OpportunityStore, SubscriberRow, normalize_database_url
from scouted.storage.db_models import utc_now

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def opportunity(url="https://example.org/a", score=50, **kwargs):
    kwargs.setdefault("title", "Literacy grant")
    return Opportunity(source_url=url, relevance_score=score, **kwargs)


class TestNormalizeDatabaseUrl:
    """Tests for normalize_database_url function."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("postgres://u:p@host/db", "postgresql+psycopg://u:p@host/db"),
            ("postgresql://u:p@host/db", "postgresql+psycopg://u:p@host/db"),
            ("postgresql+psycopg://u:p@host/db", "postgresql+psycopg://u:p@host/db"),
            ("sqlite:///scouted.db", "sqlite:///scouted.db"),
        ],
    )
    def test_normalize(self, url, expected):
        assert normalize_database_url(url) == expected


class TestStoreSetup:
    """Tests for store construction."""

    def test_no_url(self):
        """Test a missing URL is a storage error."""
        with pytest.raises(StorageError):
            OpportunityStore()

    def test_unsupported_backend(self):
        """Test only PostgreSQL and SQLite are accepted."""
        with pytest.raises(StorageError):
            OpportunityStore("mysql://user@localhost/db")

    def test_from_settings_requires_url(self):
        """Test DATABASE_URL must be configured."""
        with pytest.raises(ConfigurationError):
            OpportunityStore.from_settings(Settings(_env_file=None, database_url=""))

    def test_sqlite_file(self, tmp_path):
        """Test a file-backed SQLite store."""
        store = OpportunityStore(f"sqlite:///{tmp_path / 'scouted.db'}")
        store.create_schema()
        assert store.upsert_opportunities([opportunity()]) == 1


class TestOpportunityUpsert:
    """Tests for opportunity upserts and queries."""

    def test_insert_and_query_order(self, store):
        """Test rows come back highest score first."""
        store.upsert_opportunities(
            [
                opportunity("https://example.org/low", 20),
                opportunity("https://example.org/high", 90, deadline="2026-04-30", tags=["FLN / Foundational Literacy"]),
                opportunity("https://example.org/mid", 55),
            ],
            now=T0,
        )

        rows = store.query_opportunities()
        assert [r.source_url for r in rows] == [
            "https://example.org/high",
            "https://example.org/mid",
            "https://example.org/low",
        ]
        assert rows[0].deadline == "2026-04-30"
        assert rows[0].tags == ["FLN / Foundational Literacy"]
        assert rows[0].created_at == T0

    def test_reupsert_keeps_created_at(self, store):
        """Test a repeat sighting updates fields but not the first-seen time."""
        store.upsert_opportunities([opportunity(score=40, title="Old title")], now=T0)
        later = T0 + timedelta(days=10)
        written = store.upsert_opportunities([opportunity(score=70, title="New title")], now=later)

        rows = store.query_opportunities()
        assert written == 1
        assert len(rows) == 1
        assert rows[0].title == "New title"
        assert rows[0].relevance_score == 70
        assert rows[0].created_at == T0

    def test_url_casing_across_runs(self, store):
        """Test a later sighting with different casing updates the stored row."""
        store.upsert_opportunities([opportunity("https://example.org/Grant", 40, title="First")], now=T0)
        store.upsert_opportunities(
            [opportunity("https://EXAMPLE.org/grant", 70, title="Second")], now=T0 + timedelta(days=3)
        )

        rows = store.query_opportunities()
        assert [(r.source_url, r.title, r.relevance_score) for r in rows] == [
            ("https://example.org/Grant", "Second", 70)
        ]
        assert rows[0].created_at == T0

    def test_batch_duplicates_collapse(self, store):
        """Test duplicate keys within a batch keep the first record."""
        written = store.upsert_opportunities(
            [
                opportunity("https://example.org/a", 30, title="First"),
                opportunity("https://EXAMPLE.org/a ", 80, title="Second"),
            ]
        )
        rows = store.query_opportunities()
        assert written == 1
        assert [r.title for r in rows] == ["First"]

    def test_failed_batch_is_skipped(self, store):
        """Test a rejected batch does not stop later batches."""
        broken = opportunity("https://example.org/broken")
        broken.title = None  # violates NOT NULL
        good = opportunity("https://example.org/good")

        written = store.upsert_opportunities([broken, good], batch_size=1)

        assert written == 1
        assert [r.source_url for r in store.query_opportunities()] == ["https://example.org/good"]

    def test_invalid_deadline_stored_as_null(self, store):
        """Test non-ISO deadlines are dropped."""
        store.upsert_opportunities([opportunity(deadline="sometime soon")])
        assert store.query_opportunities()[0].deadline is None

    def test_query_filters(self, store):
        """Test since, min_score, limit and offset."""
        store.upsert_opportunities([opportunity("https://example.org/old", 90)], now=T0)
        store.upsert_opportunities(
            [opportunity("https://example.org/new1", 60), opportunity("https://example.org/new2", 30)],
            now=T0 + timedelta(days=5),
        )

        recent = store.query_opportunities(since=T0 + timedelta(days=1))
        assert [r.source_url for r in recent] == ["https://example.org/new1", "https://example.org/new2"]

        strong = store.query_opportunities(min_score=50)
        assert [r.relevance_score for r in strong] == [90, 60]

        page = store.query_opportunities(limit=1, offset=1)
        assert [r.source_url for r in page] == ["https://example.org/new1"]

    def test_empty_batch(self, store):
        assert store.upsert_opportunities([]) == 0


class TestCsrUpsert:
    """Tests for CSR spend upserts."""

    def test_composite_key(self, store):
        """Test (cin, field, fiscal_year) identifies a row."""
        first = CsrRecord("Acme Ltd", "L123", "Education", 100.0, "2023-24")
        other_year = CsrRecord("Acme Ltd", "L123", "Education", 80.0, "2022-23")
        store.upsert_csr_records([first, other_year])

        revised = CsrRecord("Acme Limited", "L123", "Education", 150.0, "2023-24")
        assert store.upsert_csr_records([revised]) == 1

        with Session(store.engine) as session:
            rows = session.scalars(select(CsrSpendingRow).order_by(CsrSpendingRow.fiscal_year)).all()
            assert [(r.fiscal_year, r.company, r.spend_inr) for r in rows] == [
                ("2022-23", "Acme Ltd", 80.0),
                ("2023-24", "Acme Limited", 150.0),
            ]


class TestSubscribers:
    """Tests for subscriber management."""

    def test_add_remove_list(self, store):
        assert store.add_subscriber("Lead@Example.org ")
        assert store.add_subscriber("second@example.org")
        assert not store.add_subscriber("lead@example.org")
        assert store.list_subscribers() == ["lead@example.org", "second@example.org"]

        assert store.remove_subscriber("LEAD@example.org")
        assert not store.remove_subscriber("lead@example.org")
        assert store.list_subscribers() == ["second@example.org"]


class TestColumnDefaults:
    """Tests for ORM timestamp defaults."""

    def test_utc_now_is_naive_utc(self):
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        value = utc_now()
        assert value.tzinfo is None
        assert before <= value <= datetime.now(timezone.utc).replace(tzinfo=None)

    def test_orm_insert_gets_timestamps(self, store):
        """Test rows added through the ORM get naive UTC timestamps."""
        with Session(store.engine) as session:
            session.add(SubscriberRow(email="orm@example.org"))
            session.commit()
            row = session.scalars(select(SubscriberRow)).one()
            assert row.created_at is not None
            assert row.created_at.tzinfo is None
