"""
Detail page enrichment.

Listing pages only carry a short blurb. The enricher fetches each
opportunity's own page and replaces the description with the page body
and picks up a contact email. It is best-effort: a failed fetch leaves
the record exactly as it was.
"""

import asyncio
import re
from dataclasses import replace
from typing import Optional

import httpx
import structlog
from bs4 import BeautifulSoup

from scouted.core.http_client import HttpClient
from scouted.core.models import DESCRIPTION_MAX_LENGTH, RawOpportunity
from scouted.core.text import strip_tags

logger = structlog.get_logger(__name__)


# Content containers in priority order
CONTENT_SELECTORS = [
    "div.entry-content",
    "article",
    "div[class*=content]",
    "main",
]

MIN_PARAGRAPH_LENGTH = 30
MIN_DESCRIPTION_LENGTH = 50

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")


def extract_body_text(soup: BeautifulSoup) -> str:
    """
    Main text of a detail page.

    Uses the first matching content container, else joins paragraphs
    longer than MIN_PARAGRAPH_LENGTH.
    """
    for selector in CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container:
            return strip_tags(str(container))

    paragraphs = [strip_tags(str(p)) for p in soup.find_all("p")]
    return " ".join(p for p in paragraphs if len(p) > MIN_PARAGRAPH_LENGTH)


def extract_contact_email(soup: BeautifulSoup) -> Optional[str]:
    """Email address of the first mailto: link, if any."""
    for link in soup.select('a[href^="mailto:"]'):
        address = link.get("href", "")[len("mailto:"):].split("?")[0].strip()
        match = EMAIL_PATTERN.fullmatch(address)
        if match:
            return match.group(0)
    return None


def enrich_from_html(opportunity: RawOpportunity, html: str) -> RawOpportunity:
    """
    Apply a fetched detail page to an opportunity.

    Args:
        opportunity: Listing record
        html: Detail page HTML

    Returns:
        Updated copy (or the same record if nothing better was found)
    """
    soup = BeautifulSoup(html, "lxml")
    changes = {}

    body = extract_body_text(soup)
    if len(body) > MIN_DESCRIPTION_LENGTH and body != opportunity.title:
        changes["description"] = body[:DESCRIPTION_MAX_LENGTH]

    if not opportunity.poc_email:
        email = extract_contact_email(soup)
        if email:
            changes["poc_email"] = email

    return replace(opportunity, **changes) if changes else opportunity


class DetailEnricher:
    """
    Fetch detail pages for a bounded prefix of records.

    Usage:
        enricher = DetailEnricher(http_client)
        records = await enricher.enrich(records)
    """

    def __init__(
        self,
        http_client: HttpClient,
        max_items: int = 30,
        batch_size: int = 3,
        batch_delay: float = 1.0,
        timeout: float = 10.0,
    ):
        """
        Initialize enricher.

        Args:
            http_client: Shared HTTP client
            max_items: Only the first max_items records are fetched
            batch_size: Concurrent fetches per batch
            batch_delay: Seconds between batches
            timeout: Per-page timeout in seconds
        """
        self.http_client = http_client
        self.max_items = max_items
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.timeout = timeout

    async def enrich(self, opportunities: list[RawOpportunity]) -> list[RawOpportunity]:
        """
        Enrich records in order; records beyond max_items pass through.

        Args:
            opportunities: Listing records

        Returns:
            Same number of records, same order
        """
        to_enrich = opportunities[: self.max_items]
        passthrough = opportunities[self.max_items:]
        enriched: list[RawOpportunity] = []

        logger.info("enrichment_started", count=len(to_enrich))

        for start in range(0, len(to_enrich), self.batch_size):
            batch = to_enrich[start:start + self.batch_size]
            enriched.extend(await asyncio.gather(*(self.enrich_one(opp) for opp in batch)))

            if start + self.batch_size < len(to_enrich) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        logger.info("enrichment_complete", count=len(enriched))
        return enriched + passthrough

    async def enrich_one(self, opportunity: RawOpportunity) -> RawOpportunity:
        """Enrich one record; any failure returns it unchanged."""
        try:
            response = await self.http_client.get(
                opportunity.source_url,
                use_cache=False,
                timeout=self.timeout,
            )
            return enrich_from_html(opportunity, response.text)
        except httpx.HTTPError as e:
            logger.debug("detail_fetch_failed", url=opportunity.source_url, error=str(e))
            return opportunity
        except Exception as e:
            logger.warning("detail_parse_failed", url=opportunity.source_url, error=str(e))
            return opportunity
