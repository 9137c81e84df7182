"""Tests for detail page enrichment."""

import httpx
from bs4 import BeautifulSoup

from scouted.core.models import RawOpportunity
from scouted.extractors.detail import (
    DetailEnricher,
    enrich_from_html,
    extract_body_text,
    extract_contact_email,
)

DETAIL_PAGE = """
<html><body>
<nav>Menu</nav>
<div class="entry-content">
  <p>This grant supports government schools in Haryana with teacher training and libraries.</p>
  <p>Contact <a href="mailto:grants@example.org?subject=Apply">us</a>.</p>
</div>
</body></html>
"""


def record(i=0, **kwargs):
    return RawOpportunity(
        title=f"Grant {i}", source_url=f"https://example.org/grant/{i}", description="Short", **kwargs
    )


class TestDetailHelpers:
    """Tests for page parsing helpers."""

    def test_body_from_content_container(self):
        """Test the first content container is used."""
        soup = BeautifulSoup(DETAIL_PAGE, "lxml")
        body = extract_body_text(soup)
        assert body.startswith("This grant supports")
        assert "Menu" not in body

    def test_body_from_paragraphs(self):
        """Test long paragraphs are joined without a container."""
        html = "<p>Too short</p><p>This paragraph is comfortably longer than thirty characters.</p>"
        soup = BeautifulSoup(html, "lxml")
        assert extract_body_text(soup) == "This paragraph is comfortably longer than thirty characters."

    def test_contact_email(self):
        """Test mailto links, with query strings dropped."""
        soup = BeautifulSoup(DETAIL_PAGE, "lxml")
        assert extract_contact_email(soup) == "grants@example.org"
        assert extract_contact_email(BeautifulSoup("<p>none</p>", "lxml")) is None

    def test_enrich_from_html(self):
        """Test description and email are filled in."""
        enriched = enrich_from_html(record(), DETAIL_PAGE)
        assert enriched.description.startswith("This grant supports")
        assert enriched.poc_email == "grants@example.org"
        assert enriched.title == "Grant 0"

    def test_existing_email_kept(self):
        """Test a known contact is not replaced."""
        enriched = enrich_from_html(record(poc_email="lead@example.org"), DETAIL_PAGE)
        assert enriched.poc_email == "lead@example.org"

    def test_thin_page_leaves_record(self):
        """Test short bodies do not replace the description."""
        original = record()
        assert enrich_from_html(original, "<main>Tiny</main>") is original


class TestDetailEnricher:
    """Tests for DetailEnricher."""

    async def test_order_cap_and_failures(self, http_client_factory):
        """Test order is kept, failures pass through and the cap holds."""
        requested = []

        def handler(request):
            requested.append(request.url.path)
            if request.url.path.endswith("/1"):
                return httpx.Response(404)
            return httpx.Response(200, text=DETAIL_PAGE)

        records = [record(i) for i in range(4)]
        client = http_client_factory(handler)
        async with client:
            enricher = DetailEnricher(client, max_items=3, batch_size=2, batch_delay=0)
            enriched = await enricher.enrich(records)

        assert [r.title for r in enriched] == ["Grant 0", "Grant 1", "Grant 2", "Grant 3"]
        assert enriched[0].poc_email == "grants@example.org"
        assert enriched[1] is records[1]
        assert enriched[2].description.startswith("This grant supports")
        assert enriched[3] is records[3]
        assert "/grant/3" not in requested
        assert len(requested) == 3

    async def test_empty(self, http_client_factory):
        """Test no records means no requests."""
        client = http_client_factory(lambda request: httpx.Response(200))
        async with client:
            assert await DetailEnricher(client).enrich([]) == []
