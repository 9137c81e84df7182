"""
Base class for source extractors.

Extractors turn one configured source (a listing page, an RSS feed or
a search API) into RawOpportunity records. The public fetch() never
raises: an unreachable or malformed source yields an empty list so one
broken source cannot stop the pipeline.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog

from scouted.config.settings import Settings
from scouted.core.deduplicator import dedup
from scouted.core.http_client import HttpClient
from scouted.core.models import RawOpportunity, SourceConfig
from scouted.core.text import extract_tags

logger = structlog.get_logger(__name__)

# Identifies the aggregator to feed and API hosts
SCOUTED_USER_AGENT = "ScoutEd/1.0 (education grant aggregator)"
RSS_ACCEPT = "application/rss+xml, application/xml, text/xml"


class Extractor(ABC):
    """
    Abstract base class for source extractors.

    Subclasses implement extract(); callers use fetch(), which adds
    error containment, dedup and logging.
    """

    #: Registry key used in sources.yml
    name: str = "base"

    def __init__(
        self,
        http_client: Optional[HttpClient] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize extractor.

        Args:
            http_client: Shared HTTP client (creates own if not provided)
            settings: Credentials for API-backed sources
        """
        self.http_client = http_client
        self._owns_client = http_client is None
        self.settings = settings
        self.logger = logger.bind(extractor=self.name)

    async def __aenter__(self) -> "Extractor":
        """Enter async context."""
        if self._owns_client:
            self.http_client = HttpClient()
            await self.http_client.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        if self._owns_client and self.http_client:
            await self.http_client.__aexit__(exc_type, exc_val, exc_tb)

    async def fetch(self, source: SourceConfig) -> list[RawOpportunity]:
        """
        Extract opportunities from a source.

        Args:
            source: Source configuration

        Returns:
            Deduplicated opportunities, empty on any failure
        """
        if not self.http_client:
            raise RuntimeError("Extractor not initialized. Use 'async with' context.")

        try:
            items = await self.extract(source)
        except httpx.HTTPStatusError as e:
            self.logger.warning(
                "source_http_error",
                source=source.source_id,
                status=e.response.status_code,
                url=str(e.request.url),
            )
            return []
        except httpx.HTTPError as e:
            self.logger.warning(
                "source_fetch_failed",
                source=source.source_id,
                error=str(e),
            )
            return []
        except Exception as e:
            self.logger.error(
                "source_parse_failed",
                source=source.source_id,
                error=str(e),
            )
            return []

        unique = dedup(items)
        self.logger.info(
            "source_extracted",
            source=source.source_id,
            count=len(unique),
        )
        return unique

    @abstractmethod
    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        """
        Fetch and parse the source.

        May raise httpx errors; fetch() contains them. Partial-failure
        tolerant extractors catch per-page errors themselves and return
        what they collected.

        Args:
            source: Source configuration

        Returns:
            Opportunities (duplicates allowed)
        """
        pass

    def option(self, source: SourceConfig, key: str, default=None):
        """Read an extractor option from the source config."""
        return source.options.get(key, default)

    async def pause(self, seconds: float) -> None:
        """Politeness delay between requests."""
        if seconds > 0:
            await asyncio.sleep(seconds)


def make_opportunity(
    title: str,
    source_url: str,
    description: str,
    text: str,
    organisation: Optional[str],
    deadline: Optional[str] = None,
    poc_email: Optional[str] = None,
    amount: Optional[str] = None,
    location: Optional[str] = None,
    tags: Optional[list[str]] = None,
    description_limit: int = 2000,
) -> RawOpportunity:
    """
    Build a fully populated, truncated RawOpportunity.

    Args:
        title: Listing title
        source_url: Absolute URL of the opportunity
        description: Description (falls back to the title when empty)
        text: Text tags are inferred from when tags are not given
        organisation: Funder / publisher name
        deadline: ISO deadline
        poc_email: Contact email
        amount: Formatted amount
        location: State or "India"
        tags: Explicit tags
        description_limit: Maximum description length for this source

    Returns:
        RawOpportunity
    """
    title = title.strip()
    return RawOpportunity(
        title=title[:300],
        source_url=source_url.strip(),
        description=(description.strip() or title)[:description_limit],
        deadline=deadline,
        poc_email=poc_email,
        tags=tags if tags else extract_tags(text),
        organisation=organisation,
        amount=amount,
        location=location,
    )
