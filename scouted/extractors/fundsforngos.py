"""
FundsForNGOs extractor (WordPress article listings).

The education category listing is topic-scoped already; the India tag
listing mixes sectors, so only education-relevant posts are kept there.
"""

import re
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from scouted.core.models import RawOpportunity, SourceConfig
from scouted.core.text import (
    extract_amount,
    extract_location,
    extract_tags,
    is_education_relevant,
    parse_date,
)

from .base import Extractor, make_opportunity

ARTICLE_SELECTOR = "article, .entry, .type-post"
TITLE_SELECTOR = "h2 a, h3 a, .entry-title a"
SUMMARY_SELECTOR = ".entry-content p, .entry-summary p, .entry-content, p"

DEADLINE_PATTERN = re.compile(r"Deadline:\s*(\d{1,2}-\w{3}-\d{2,4})", re.IGNORECASE)
ONGOING_PATTERN = re.compile(r"Deadline:\s*Ongoing", re.IGNORECASE)


def category_from_url(link: str) -> str:
    """Category slug from a post URL (https://host/<category>/<slug>/)."""
    parts = [part for part in urlparse(link).path.split("/") if part]
    return parts[0] if parts else ""


class FundsForNgosExtractor(Extractor):
    """Extract posts from a FundsForNGOs category or tag listing."""

    name = "fundsforngos"

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        html = await self.http_client.get_text(source.url)
        return self.parse_listing(html, source.url)

    def parse_listing(self, html: str, listing_url: str) -> list[RawOpportunity]:
        """
        Parse article cards from a listing page.

        Args:
            html: Listing page HTML
            listing_url: URL the page was fetched from

        Returns:
            Opportunities in page order
        """
        soup = BeautifulSoup(html, "lxml")
        india_tag_listing = "/tag/india/" in listing_url
        opportunities = []

        for article in soup.select(ARTICLE_SELECTOR):
            title_el = article.select_one(TITLE_SELECTOR)
            if not title_el:
                continue
            title = title_el.get_text(strip=True)
            link = title_el.get("href")
            if not title or not link:
                continue

            summary_el = article.select_one(SUMMARY_SELECTOR)
            description = summary_el.get_text(" ", strip=True) if summary_el else ""

            category = category_from_url(link)
            text = f"{title} {description} {category}"
            if india_tag_listing and not is_education_relevant(text):
                continue

            opportunities.append(
                make_opportunity(
                    title=title,
                    source_url=link,
                    description=description,
                    text=text,
                    tags=extract_tags(text),
                    organisation="FundsForNGOs",
                    deadline=self.parse_deadline(description),
                    amount=extract_amount(f"{title} {description}"),
                    location=extract_location(f"{title} {description}"),
                    description_limit=1000,
                )
            )

        return opportunities

    def parse_deadline(self, description: str) -> Optional[str]:
        """ISO deadline from a "Deadline: DD-Mon-YYYY" line; Ongoing means none."""
        if ONGOING_PATTERN.search(description):
            return None
        match = DEADLINE_PATTERN.search(description)
        return parse_date(match.group(1)) if match else None
