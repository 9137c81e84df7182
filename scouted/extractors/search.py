"""
Search/API extractors: Google Custom Search, GOV.UK FCDO, Grants.gov.

Each issues a fixed list of curated queries. General search results
are post-filtered in the extractor for India and education relevance.
"""

from typing import Optional

import httpx
from dateutil import parser as date_parser

from scouted.config.settings import get_settings
from scouted.core.models import RawOpportunity, SourceConfig
from scouted.core.text import (
    contains_any,
    extract_amount,
    extract_location,
    strip_tags,
)

from .base import SCOUTED_USER_AGENT, Extractor, make_opportunity

GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"
GOOGLE_CSE_QUERIES = [
    "education grant India",
    "CSR education funding India",
    "foundation grant K-12 India",
    "philanthropy education India announcement",
    "FLN literacy numeracy India funding",
    "edtech India investment grant",
    "education scholarship fellowship India",
    "early childhood education India fund",
]
QUERY_DELAY = 0.5

GOVUK_SEARCH_URL = "https://www.gov.uk/api/search.json"
GOVUK_BASE_URL = "https://www.gov.uk"
FCDO_ORGANISATION = "foreign-commonwealth-development-office"

GRANTS_GOV_URL = "https://api.grants.gov/v1/api/search2"
GRANTS_GOV_DETAIL_URL = "https://www.grants.gov/search-results-detail/"
GRANTS_GOV_QUERIES = ["education India", "education South Asia"]

INDIA_KEYWORDS = [
    "india", "indian", "south asia", "subcontinent", "developing countr",
    "lmic", "low-income countr", "global south",
]

GRANTS_GOV_INDIA_KEYWORDS = INDIA_KEYWORDS + [
    "uttar pradesh", "madhya pradesh", "haryana", "gujarat", "rajasthan",
    "bihar", "odisha", "jharkhand", "maharashtra", "delhi",
]

EDUCATION_KEYWORDS = [
    "education", "school", "teacher", "literacy", "numeracy", "learning",
    "classroom", "curriculum", "student", "scholarship", "fellowship",
    "early childhood", "k-12", "pedagog",
]

GOVUK_EDUCATION_KEYWORDS = EDUCATION_KEYWORDS + ["girls education"]


class GoogleCseExtractor(Extractor):
    """
    Google Custom Search over curated India education funding queries.

    Skipped without credentials. HTTP 429 stops all remaining queries;
    any other failure skips just that query.
    """

    name = "google-cse"

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        settings = self.settings or get_settings()
        if not settings.google_cse_api_key or not settings.google_cse_id:
            self.logger.info("credentials_missing_skipping", source=source.source_id)
            return []

        endpoint = source.url or GOOGLE_CSE_URL
        delay = float(self.option(source, "query_delay", QUERY_DELAY))
        opportunities = []

        for query in self.option(source, "queries", GOOGLE_CSE_QUERIES):
            params = {
                "key": settings.google_cse_api_key,
                "cx": settings.google_cse_id,
                "q": query,
                "dateRestrict": "d7",
                "gl": "in",
                "num": "10",
            }
            try:
                data = await self.http_client.get_json(endpoint, params=params, use_cache=False)
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 429:
                    self.logger.warning("rate_limited_stopping", query=query)
                    break
                self.logger.warning(
                    "query_failed", query=query, status=e.response.status_code
                )
                continue
            except httpx.HTTPError as e:
                self.logger.warning("query_failed", query=query, error=str(e))
                continue

            for item in data.get("items") or []:
                opportunity = self.parse_item(item)
                if opportunity:
                    opportunities.append(opportunity)

            await self.pause(delay)

        return opportunities

    def parse_item(self, item: dict) -> Optional[RawOpportunity]:
        """Search hit to opportunity, preferring the og:description."""
        title = item.get("title") or ""
        link = item.get("link") or ""
        if not title or not link:
            return None

        snippet = item.get("snippet") or ""
        metatags = (item.get("pagemap") or {}).get("metatags") or [{}]
        og_description = metatags[0].get("og:description") if metatags else None
        text = f"{title} {snippet}"

        return make_opportunity(
            title=title,
            source_url=link,
            description=strip_tags(og_description or snippet or title),
            text=text,
            organisation=item.get("displayLink"),
            amount=extract_amount(text),
            location=extract_location(text),
        )


class GovukFcdoExtractor(Extractor):
    """GOV.UK search API restricted to FCDO publications."""

    name = "govuk-fcdo"

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        params = {
            "filter_organisations": FCDO_ORGANISATION,
            "q": self.option(source, "query", "education india"),
            "count": "50",
        }
        data = await self.http_client.get_json(
            source.url or GOVUK_SEARCH_URL,
            params=params,
            headers={"Accept": "application/json", "User-Agent": SCOUTED_USER_AGENT},
        )

        results = data.get("results") or []
        self.logger.debug("search_results", count=len(results))
        return [opp for opp in map(self.parse_result, results) if opp]

    def parse_result(self, result: dict) -> Optional[RawOpportunity]:
        """Result to opportunity when it is about India and education."""
        title = result.get("title") or ""
        link = result.get("link") or ""
        if not title or not link:
            return None

        description = result.get("description") or ""
        text = f"{title} {description}"
        if not contains_any(text, INDIA_KEYWORDS):
            return None
        if not contains_any(text, GOVUK_EDUCATION_KEYWORDS):
            return None

        organisations = result.get("organisations") or []
        organisation = (organisations[0].get("title") if organisations else None) or "FCDO"

        return make_opportunity(
            title=title,
            source_url=link if link.startswith("http") else GOVUK_BASE_URL + link,
            description=description,
            text=text,
            organisation=organisation,
            amount=extract_amount(text),
            location=extract_location(text),
        )


def parse_close_date(value: Optional[str]) -> Optional[str]:
    """
    Grants.gov close date (MM/DD/YYYY, month first) to ISO.

    Returns:
        "YYYY-MM-DD" or None
    """
    if not value:
        return None
    try:
        return date_parser.parse(value, dayfirst=False).date().isoformat()
    except (ValueError, OverflowError):
        return None


class GrantsGovExtractor(Extractor):
    """Grants.gov search2 API (US federal opportunities)."""

    name = "grants-gov"

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        opportunities = []

        for keyword in self.option(source, "queries", GRANTS_GOV_QUERIES):
            payload = {
                "keyword": keyword,
                "oppStatuses": "forecasted|posted",
                "rows": 50,
                "sortBy": "openDate|desc",
            }
            try:
                response = await self.http_client.post(
                    source.url or GRANTS_GOV_URL,
                    json=payload,
                    headers={"User-Agent": SCOUTED_USER_AGENT},
                )
            except httpx.HTTPError as e:
                self.logger.warning("query_failed", query=keyword, error=str(e))
                continue

            data = response.json()
            # search2 nests hits under "data"
            hits = (data.get("data") or data).get("oppHits") or []
            self.logger.debug("search_results", query=keyword, count=len(hits))
            opportunities.extend(opp for opp in map(self.parse_hit, hits) if opp)

        return opportunities

    def parse_hit(self, hit: dict) -> Optional[RawOpportunity]:
        """Hit to opportunity when it is about India and education."""
        title = hit.get("oppTitle") or hit.get("title") or ""
        if not title or not hit.get("id"):
            return None

        description = hit.get("description") or ""
        text = f"{title} {description}"
        if not contains_any(text, GRANTS_GOV_INDIA_KEYWORDS):
            return None
        if not contains_any(text, EDUCATION_KEYWORDS):
            return None

        ceiling = hit.get("awardCeiling") or 0
        amount = f"${int(ceiling):,}" if isinstance(ceiling, (int, float)) and ceiling > 0 else None

        return make_opportunity(
            title=title,
            source_url=f"{GRANTS_GOV_DETAIL_URL}{hit['id']}",
            description=description,
            text=text,
            organisation=hit.get("agencyCode") or "US Federal",
            deadline=parse_close_date(hit.get("closeDate")),
            amount=amount or extract_amount(text),
            location=extract_location(text),
        )
