"""
RSS-based extractors: India Development Review, Alliance Magazine, Devex.

General-purpose feeds mix news with fundable opportunities, so each
extractor applies its own keyword gate before accepting an item.
"""

import json
from dataclasses import dataclass, field
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from scouted.core.models import RawOpportunity, SourceConfig
from scouted.core.text import (
    contains_any,
    extract_amount,
    extract_location,
    strip_tags,
)

from .base import RSS_ACCEPT, SCOUTED_USER_AGENT, Extractor, make_opportunity

FEED_HEADERS = {"User-Agent": SCOUTED_USER_AGENT, "Accept": RSS_ACCEPT}

IDR_FUNDING_KEYWORDS = [
    "grant", "funding", "fund ", "csr", "philanthrop", "donat", "invest",
    "partnership", "commit", "million", "crore", "lakh", "foundation",
    "initiative", "programme", "launch", "announce", "award", "fellowship",
    "scholarship", "endow", "sponsor", "pledge", "allocat",
]

ALLIANCE_INDIA_KEYWORDS = [
    "india", "indian", "south asia", "global south", "developing countr",
    "lmic", "asia",
]

ALLIANCE_TOPIC_KEYWORDS = [
    "education", "school", "literacy", "learning", "teacher",
    "grant", "funding", "fund", "philanthrop", "csr", "foundation",
    "donat", "invest", "partnership", "million", "billion",
    "early childhood", "k-12", "edtech", "scholarship",
]

DEVEX_INDIA_KEYWORDS = [
    "india", "indian", "south asia", "global south", "developing countr",
    "lmic", "delhi", "mumbai",
]

DEVEX_TOPIC_KEYWORDS = [
    "education", "school", "literacy", "learning", "teacher",
    "grant", "funding", "fund ", "philanthrop", "csr", "foundation",
    "donat", "invest", "partnership", "million", "billion",
    "early childhood", "k-12", "edtech", "scholarship", "fellowship",
]

JSONLD_ARTICLE_TYPES = ("NewsArticle", "Article")


@dataclass
class FeedItem:
    """One <item> of an RSS feed."""
    title: str
    link: str
    description: str = ""
    content: str = ""
    pub_date: str = ""
    categories: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Title, raw description and categories for keyword gates."""
        return f"{self.title} {self.description} {' '.join(self.categories)}"

    @property
    def body(self) -> str:
        """Plain-text body, preferring content:encoded."""
        return strip_tags(self.content or self.description)


def _child_text(item, name: str) -> str:
    child = item.find(name)
    return child.get_text(strip=True) if child else ""


def parse_feed(xml: str) -> list[FeedItem]:
    """
    Parse RSS items (title and link required).

    Args:
        xml: RSS document

    Returns:
        Feed items in document order
    """
    soup = BeautifulSoup(xml, "xml")
    items = []

    for item in soup.find_all("item"):
        title = _child_text(item, "title")
        link = _child_text(item, "link")
        if not title or not link:
            continue

        encoded = item.find("content:encoded") or item.find("encoded")
        items.append(
            FeedItem(
                title=title,
                link=link,
                description=_child_text(item, "description"),
                content=encoded.get_text(strip=True) if encoded else "",
                pub_date=_child_text(item, "pubDate"),
                categories=[c.get_text(strip=True) for c in item.find_all("category")],
            )
        )

    return items


class FeedExtractor(Extractor):
    """Shared feed fetching for RSS-based sources."""

    organisation: str = ""

    async def fetch_feed(self, url: str) -> list[FeedItem]:
        xml = await self.http_client.get_text(url, headers=dict(FEED_HEADERS))
        items = parse_feed(xml)
        self.logger.debug("feed_parsed", url=url, items=len(items))
        return items

    def from_item(
        self,
        item: FeedItem,
        description: Optional[str] = None,
        default_location: Optional[str] = None,
    ) -> RawOpportunity:
        """News items carry no deadline or contact."""
        text = item.text
        return make_opportunity(
            title=item.title,
            source_url=item.link,
            description=item.body if description is None else description,
            text=text,
            organisation=self.organisation,
            amount=extract_amount(text),
            location=extract_location(text) or default_location,
        )


class IdrExtractor(FeedExtractor):
    """
    India Development Review education and philanthropy/CSR feeds.

    Feeds are fetched independently; one failing feed does not drop
    the other.
    """

    name = "idr"
    organisation = "IDR"

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        opportunities = []

        for feed_url in self.option(source, "feeds") or [source.url]:
            try:
                items = await self.fetch_feed(feed_url)
            except httpx.HTTPError as e:
                self.logger.warning("feed_fetch_failed", url=feed_url, error=str(e))
                continue

            for item in items:
                if not contains_any(item.text, IDR_FUNDING_KEYWORDS):
                    continue
                opportunities.append(self.from_item(item, default_location="India"))

        return opportunities


class AllianceExtractor(FeedExtractor):
    """Alliance Magazine RSS feed plus an India-focused search page."""

    name = "alliance"
    organisation = "Alliance Magazine"

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        opportunities = []

        try:
            for item in await self.fetch_feed(source.url):
                if self.is_relevant(item.text):
                    opportunities.append(self.from_item(item))
        except httpx.HTTPError as e:
            self.logger.warning("feed_fetch_failed", url=source.url, error=str(e))

        search_url = self.option(source, "search_url")
        if search_url:
            try:
                html = await self.http_client.get_text(
                    search_url, headers={"User-Agent": SCOUTED_USER_AGENT}
                )
                opportunities.extend(self.parse_search_results(html))
            except httpx.HTTPError as e:
                self.logger.warning("search_fetch_failed", url=search_url, error=str(e))

        return opportunities

    def is_relevant(self, text: str) -> bool:
        return contains_any(text, ALLIANCE_INDIA_KEYWORDS) and contains_any(
            text, ALLIANCE_TOPIC_KEYWORDS
        )

    def parse_search_results(self, html: str) -> list[RawOpportunity]:
        """Search results are India-scoped by the query; no keyword gate."""
        soup = BeautifulSoup(html, "lxml")
        opportunities = []

        for result in soup.select("article, .post, .entry, .search-result"):
            title_el = result.select_one("h2 a, h3 a, .entry-title a")
            if not title_el:
                continue
            title = title_el.get_text(strip=True)
            link = title_el.get("href")
            if not title or not link:
                continue

            excerpt_el = result.select_one(".entry-summary, .entry-content, .excerpt, p")
            excerpt = excerpt_el.get_text(" ", strip=True) if excerpt_el else ""
            text = f"{title} {excerpt}"

            opportunities.append(
                make_opportunity(
                    title=title,
                    source_url=link,
                    description=excerpt,
                    text=text,
                    organisation=self.organisation,
                    amount=extract_amount(text),
                    location=extract_location(text),
                )
            )

        return opportunities


class DevexExtractor(FeedExtractor):
    """
    Devex news feed, enriched from each article's JSON-LD metadata.

    Article pages are fetched sequentially with the site's crawl delay.
    An article that cannot be fetched keeps its RSS data.
    """

    name = "devex"
    organisation = "Devex"
    article_timeout = 15.0

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        items = await self.fetch_feed(source.url)
        relevant = [item for item in items if self.is_relevant(item)]
        self.logger.info("feed_filtered", total=len(items), relevant=len(relevant))

        crawl_delay = float(self.option(source, "crawl_delay", 10))
        opportunities = []

        for item in relevant:
            await self.pause(crawl_delay)
            metadata = await self.fetch_article_metadata(item.link)
            description = (
                (metadata or {}).get("description")
                or strip_tags(item.description)
                or item.title
            )
            opportunities.append(self.from_item(item, description=description))

        return opportunities

    def is_relevant(self, item: FeedItem) -> bool:
        text = f"{item.title} {item.description}"
        return contains_any(text, DEVEX_INDIA_KEYWORDS) and contains_any(
            text, DEVEX_TOPIC_KEYWORDS
        )

    def from_item(
        self,
        item: FeedItem,
        description: Optional[str] = None,
        default_location: Optional[str] = None,
    ) -> RawOpportunity:
        """Tags and amount come from the title plus the chosen description."""
        description = description or item.title
        text = f"{item.title} {description}"
        return make_opportunity(
            title=item.title,
            source_url=item.link,
            description=description,
            text=text,
            organisation=self.organisation,
            amount=extract_amount(text),
            location=extract_location(text) or default_location,
        )

    async def fetch_article_metadata(self, url: str) -> Optional[dict]:
        try:
            html = await self.http_client.get_text(
                url,
                headers={"User-Agent": SCOUTED_USER_AGENT},
                timeout=self.article_timeout,
            )
        except httpx.HTTPError as e:
            self.logger.debug("article_fetch_failed", url=url, error=str(e))
            return None
        return extract_json_ld(html)


def extract_json_ld(html: str) -> Optional[dict]:
    """
    First JSON-LD block describing an article.

    Args:
        html: Article page HTML

    Returns:
        Parsed JSON-LD dict, or None if absent or malformed
    """
    soup = BeautifulSoup(html, "lxml")
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue
        if isinstance(data, dict) and data.get("@type") in JSONLD_ARTICLE_TYPES:
            return data
    return None
