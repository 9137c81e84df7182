"""Tests for text and email digests."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from scouted.core.models import Opportunity
from scouted.digest import (
    SANDBOX_FROM,
    VERIFIED_FROM,
    DigestItem,
    ResendMailer,
    build_digest_html,
    digest_date_label,
    digest_subject,
    fetch_digest_opportunities,
    format_deadline,
    format_text_digest,
    rank_for_display,
    send_digest,
    shorten,
)
from scouted.exceptions import ConfigurationError, EmailDeliveryError

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def opportunity(url="https://example.org/a", score=80, created_at=None, **kwargs):
    kwargs.setdefault("title", "Foundational literacy grant")
    return Opportunity(source_url=url, relevance_score=score, created_at=created_at, **kwargs)


def mailer_for(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResendMailer("re_test", http_client=client, **kwargs)


class TestFormatting:
    """Tests for digest formatting helpers."""

    @pytest.mark.parametrize(
        "deadline,expected",
        [
            ("2026-03-14", "14 Mar 2026"),
            (None, "No deadline"),
            ("", "No deadline"),
            ("soon", "soon"),
        ],
    )
    def test_format_deadline(self, deadline, expected):
        assert format_deadline(deadline) == expected

    def test_date_label_and_subject(self):
        label = digest_date_label(NOW)
        assert label == "Monday 2 March 2026"
        assert digest_subject(label) == "ScoutEd Digest - Monday 2 March 2026"

    def test_shorten(self):
        assert shorten("a" * 250) == "a" * 200 + "..."
        assert shorten("short") == "short"
        assert shorten(None) == ""


class TestRanking:
    """Tests for decayed display ranking."""

    def test_decay_reorders(self):
        """Test an older high score can fall below a fresh one."""
        stale = opportunity("https://example.org/stale", 90, NOW - timedelta(weeks=5))
        fresh = opportunity("https://example.org/fresh", 80, NOW - timedelta(days=1))

        items = rank_for_display([stale, fresh], NOW)

        assert [(i.opportunity.source_url, i.score, i.band) for i in items] == [
            ("https://example.org/fresh", 80, "high"),
            ("https://example.org/stale", 65, "medium"),
        ]

    def test_ties_keep_order(self):
        first = opportunity("https://example.org/1", 50, NOW)
        second = opportunity("https://example.org/2", 50, NOW)
        items = rank_for_display([first, second], NOW)
        assert [i.opportunity for i in items] == [first, second]

    def test_fetch_from_store(self, store):
        """Test the look-back window and decay against stored rows."""
        store.upsert_opportunities([opportunity("https://example.org/old", 95)], now=NOW - timedelta(days=20))
        store.upsert_opportunities([opportunity("https://example.org/new", 60)], now=NOW - timedelta(hours=3))

        recent = fetch_digest_opportunities(store, hours=48, now=NOW)
        assert [i.opportunity.source_url for i in recent] == ["https://example.org/new"]

        everything = fetch_digest_opportunities(store, hours=None, now=NOW)
        assert [(i.opportunity.source_url, i.score) for i in everything] == [
            ("https://example.org/old", 85),
            ("https://example.org/new", 60),
        ]


class TestTextDigest:
    """Tests for format_text_digest function."""

    def test_empty(self):
        assert format_text_digest([], days=7) == "No opportunities found in the last 7 days."

    def test_empty_show_all(self):
        """Test the empty message has no window when the window is ignored."""
        assert format_text_digest([], days=7, show_all=True) == "No opportunities found."

    def test_layout(self):
        """Test the per-item lines."""
        full = opportunity(
            "https://example.org/full",
            organisation="Tata Trusts",
            tags=["FLN / Foundational Literacy", "EdTech"],
            location="Assam",
            amount="₹5 crore",
            deadline="2026-04-30",
        )
        bare = opportunity("https://example.org/bare", title="Open call", tags=["Education"])
        items = [DigestItem(full, 85, "high"), DigestItem(bare, 40, "low")]

        assert format_text_digest(items, days=2) == (
            "*ScoutEd Digest* - 2 opportunities (last 2 days)\n"
            "\n"
            "*1. [85] Foundational literacy grant - Tata Trusts*\n"
            "   FLN / Foundational Literacy, EdTech\n"
            "   Assam | ₹5 crore | Due: 2026-04-30\n"
            "   https://example.org/full\n"
            "\n"
            "*2. [40] Open call*\n"
            "   Education\n"
            "   https://example.org/bare\n"
        )

    def test_show_all_header(self):
        text = format_text_digest([DigestItem(opportunity(), 80, "high")], show_all=True)
        assert text.splitlines()[0] == "*ScoutEd Digest* - 1 opportunities"


class TestHtmlDigest:
    """Tests for build_digest_html function."""

    def test_render(self):
        """Test content, chips, links and escaping."""
        opp = opportunity(
            "https://example.org/grant",
            title="Reading <b>camps</b>",
            description="x" * 300,
            amount="$2 million",
            deadline="2026-03-14",
            organisation="Gates Foundation",
        )
        html = build_digest_html(
            [DigestItem(opp, 82, "high")], "Monday 2 March 2026", site_url="https://scouted.test"
        )

        assert "Monday 2 March 2026" in html
        assert "Score: 82" in html
        assert "#22c55e" in html
        assert "$2 million" in html
        assert "Reading &lt;b&gt;camps&lt;/b&gt;" in html
        assert "x" * 200 + "..." in html
        assert "x" * 201 not in html
        assert "14 Mar 2026" in html
        assert 'href="https://example.org/grant"' in html
        assert 'href="https://scouted.test"' in html
        assert "India" in html

    def test_no_amount_chip(self):
        html = build_digest_html([DigestItem(opportunity(), 40, "low")], "label")
        assert "#FFF3CD" not in html
        assert "#ef4444" in html


class TestResendMailer:
    """Tests for ResendMailer."""

    def test_requires_key(self):
        with pytest.raises(ConfigurationError):
            ResendMailer("")

    def test_sender(self):
        assert ResendMailer("k").from_address == SANDBOX_FROM
        assert ResendMailer("k", domain_verified=True).from_address == VERIFIED_FROM

    async def test_send_batch_payload(self):
        """Test one message per recipient in a single call."""
        captured = []

        def handler(request):
            captured.append(request)
            return httpx.Response(200, json={"data": [{"id": "1"}, {"id": "2"}]})

        mailer = mailer_for(handler, domain_verified=True)
        response = await mailer.send_batch(["a@example.org", "b@example.org"], "Subject", "<p>Hi</p>")

        assert response == {"data": [{"id": "1"}, {"id": "2"}]}
        assert len(captured) == 1
        request = captured[0]
        assert request.headers["Authorization"] == "Bearer re_test"
        assert json.loads(request.content) == [
            {"from": VERIFIED_FROM, "to": ["a@example.org"], "subject": "Subject", "html": "<p>Hi</p>"},
            {"from": VERIFIED_FROM, "to": ["b@example.org"], "subject": "Subject", "html": "<p>Hi</p>"},
        ]

    async def test_rejected(self):
        mailer = mailer_for(lambda request: httpx.Response(403, json={"message": "forbidden"}))
        with pytest.raises(EmailDeliveryError) as exc_info:
            await mailer.send_batch(["a@example.org"], "Subject", "html")
        assert exc_info.value.status_code == 403

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        with pytest.raises(EmailDeliveryError):
            await mailer_for(handler).send_batch(["a@example.org"], "Subject", "html")


class TestSendDigest:
    """Tests for send_digest function."""

    async def test_sends_to_subscribers(self, store):
        sent = []

        def handler(request):
            sent.append(json.loads(request.content))
            return httpx.Response(200, json={"data": []})

        store.upsert_opportunities([opportunity()], now=NOW - timedelta(hours=1))
        store.add_subscriber("lead@example.org")

        count = await send_digest(store, mailer_for(handler), now=NOW)

        assert count == 1
        assert sent[0][0]["subject"] == "ScoutEd Digest - Monday 2 March 2026"
        assert "Foundational literacy grant" in sent[0][0]["html"]

    async def test_no_subscribers(self, store):
        def handler(request):
            raise AssertionError("no request expected")

        store.upsert_opportunities([opportunity()], now=NOW - timedelta(hours=1))
        assert await send_digest(store, mailer_for(handler), now=NOW) == 0

    async def test_nothing_new(self, store):
        def handler(request):
            raise AssertionError("no request expected")

        store.add_subscriber("lead@example.org")
        assert await send_digest(store, mailer_for(handler), now=NOW) == 0
