"""
NGOBox listing extractors (grant announcements and RFP/EOI).

NGOBox listings have no wrapper element per item. Each item starts
with a link to its detail page, followed by the organisation name, a
logo, "Deadline:" and optionally "Grant Amount:". The HTML between one
matching anchor and the next is treated as that item's metadata block.
"""

import re
from typing import Optional

import httpx

from scouted.core.models import RawOpportunity, SourceConfig
from scouted.core.text import (
    extract_amount,
    extract_location,
    extract_tags,
    parse_date,
    strip_tags,
)

from .base import Extractor, make_opportunity

BASE_URL = "https://ngobox.org/"

# Hard cap on pages followed from the total_page hint
MAX_PAGES = 5
BLOCK_LENGTH = 2000
MIN_TITLE_LENGTH = 10

TOTAL_PAGE_PATTERN = re.compile(r"total_page\s*=\s*['\"]?(\d+)['\"]?", re.IGNORECASE)
DEADLINE_PATTERN = re.compile(r"Deadline:\s*(\d{1,2}\s+\w+\.?\s+\d{4})", re.IGNORECASE)
DEADLINE_HTML_PATTERN = re.compile(r"Deadline:</strong>\s*(\d{1,2}\s+\w+\.?\s+\d{4})", re.IGNORECASE)
AMOUNT_PATTERN = re.compile(
    r"Grant\s*Amount:\s*(.+?)(?=Deadline:|Add to Google|$)", re.IGNORECASE
)
AMOUNT_HTML_PATTERN = re.compile(r"Grant\s*Amount:</strong>\s*([^<\n]+)", re.IGNORECASE)


class AnchorBlockExtractor(Extractor):
    """
    Pattern-anchor listing extractor.

    Finds anchors whose href contains anchor_fragment, then parses
    deadline, amount and organisation from the block that follows.
    """

    anchor_fragment: str = ""
    default_organisation: str = "NGOBox"
    parse_amount: bool = True
    organisation_stop = re.compile(r"Deadline:|Grant\s*Amount:|Add to Google", re.IGNORECASE)
    organisation_noise = re.compile(r"[-–|#]")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._anchor_pattern = re.compile(
            r"<a\s[^>]*href=[\"']([^\"']*" + re.escape(self.anchor_fragment)
            + r"[^\"']*)[\"'][^>]*>([\s\S]*?)</a>",
            re.IGNORECASE,
        )

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        """
        Fetch the listing and follow pagination.

        The first page failing fails the source. A later page failing
        stops pagination and keeps what was collected.
        """
        html = await self.http_client.get_text(source.url)
        opportunities = self.parse_listing(html)

        if "listing.php" not in source.url:
            return opportunities

        total_pages = self.total_pages(html, source.max_pages)
        for page in range(2, total_pages + 1):
            page_url = f"{source.url}?page={page}"
            try:
                page_html = await self.http_client.get_text(page_url)
            except httpx.HTTPError as e:
                self.logger.warning(
                    "pagination_stopped",
                    source=source.source_id,
                    page=page,
                    error=str(e),
                )
                break
            opportunities.extend(self.parse_listing(page_html))

        return opportunities

    def total_pages(self, html: str, max_pages: int = MAX_PAGES) -> int:
        """Page count from the embedded total_page hint, capped."""
        match = TOTAL_PAGE_PATTERN.search(html)
        if not match:
            return 1
        return max(1, min(int(match.group(1)), max_pages, MAX_PAGES))

    def parse_listing(self, html: str) -> list[RawOpportunity]:
        """
        Parse every anchor block on one listing page.

        Args:
            html: Listing page HTML

        Returns:
            Opportunities in page order
        """
        matches = list(self._anchor_pattern.finditer(html))
        opportunities = []

        for index, match in enumerate(matches):
            href = match.group(1)
            title = strip_tags(match.group(2))
            if len(title) < MIN_TITLE_LENGTH:
                continue

            start = match.end()
            end = matches[index + 1].start() if index + 1 < len(matches) else start + BLOCK_LENGTH
            block_html = html[start:min(end, start + BLOCK_LENGTH)]
            block_text = strip_tags(block_html)

            opportunities.append(
                make_opportunity(
                    title=title,
                    source_url=self.absolute_url(href),
                    description=title,
                    text=title,
                    tags=extract_tags(title),
                    organisation=self.parse_organisation(block_text) or self.default_organisation,
                    deadline=self.parse_deadline(block_text, block_html),
                    amount=self.parse_grant_amount(block_text, block_html) if self.parse_amount else None,
                    location=extract_location(f"{title} {block_text}"),
                    description_limit=1000,
                )
            )

        return opportunities

    def absolute_url(self, href: str) -> str:
        if href.startswith("http"):
            return href
        return BASE_URL + href.lstrip("/")

    def parse_deadline(self, block_text: str, block_html: str) -> Optional[str]:
        match = DEADLINE_PATTERN.search(block_text) or DEADLINE_HTML_PATTERN.search(block_html)
        return parse_date(match.group(1)) if match else None

    def parse_grant_amount(self, block_text: str, block_html: str) -> Optional[str]:
        match = AMOUNT_PATTERN.search(block_text) or AMOUNT_HTML_PATTERN.search(block_html)
        if not match:
            return None
        return extract_amount(match.group(1).strip())

    def parse_organisation(self, block_text: str) -> Optional[str]:
        """First text of the block, before any metadata label."""
        head = self.organisation_stop.split(block_text.strip(), maxsplit=1)[0]
        cleaned = self.organisation_noise.sub("", head)
        cleaned = re.sub(r"\s+", " ", cleaned).strip()[:80]
        return cleaned if len(cleaned) > 3 else None


class NgoboxExtractor(AnchorBlockExtractor):
    """NGOBox grant announcements."""

    name = "ngobox"
    anchor_fragment = "full_grant_announcement_"
    default_organisation = "NGOBox"
    # Share-button CSS and category labels leak into the block text
    organisation_stop = re.compile(
        r"Deadline:|Grant\s*Amount:|Add to Google|#st |\.stbtn|Fellowships|img\{",
        re.IGNORECASE,
    )
    organisation_noise = re.compile(r"[-–|#{}]")


class NgoboxRfpExtractor(AnchorBlockExtractor):
    """NGOBox RFP / EOI announcements (no amounts)."""

    name = "ngobox-rfp"
    anchor_fragment = "full_rfp_eoi_"
    default_organisation = "NGOBox RFP"
    parse_amount = False
