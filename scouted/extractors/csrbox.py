"""
CSRBox extractor (CSR project listings, education sector).

The listing's AJAX endpoint filters server-side by sector and budget
band; the plain listing page is the fallback. csrbox.org serves a broken
certificate chain, so requests go through the unverified-TLS client.
"""

import re

import httpx
from bs4 import BeautifulSoup

from scouted.core.models import RawOpportunity, SourceConfig
from scouted.core.text import extract_location, extract_tags

from .base import Extractor, make_opportunity

LISTING_URL = "https://csrbox.org/India-list-CSR-projects-India"
AJAX_URL = "https://csrbox.org/ajaxdata.php"
BASE_URL = "https://csrbox.org/"

YEAR_TABS = ["2023-24", "2022-23", "2021-22", "Ongoing"]

# Education sector id and budget bands (crore) of the AJAX filter
EDUCATION_SECTOR = "15"
BUDGET_BANDS = ["1-5", "5-10", "10-25", "25"]

MIN_RESPONSE_LENGTH = 50
PAGE_DELAY = 1.0
REQUEST_TIMEOUT = 20.0

BUDGET_PATTERN = re.compile(r"([\d.]+)\s*Cr", re.IGNORECASE)


class CsrboxExtractor(Extractor):
    """
    Extract education CSR projects with budgets of at least the minimum.

    Each year tab is paged until an empty page; an error stops that tab.
    """

    name = "csrbox"

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        max_pages = source.max_pages
        min_budget = float(self.option(source, "min_budget_crore", 1))
        ajax_url = self.option(source, "ajax_url", AJAX_URL)
        listing_url = source.url or LISTING_URL

        opportunities: list[RawOpportunity] = []
        ajax_worked = False

        for year in self.option(source, "year_tabs", YEAR_TABS):
            for page in range(1, max_pages + 1):
                try:
                    response = await self.http_client.post(
                        ajax_url,
                        verify=False,
                        data=self.form_data(page, year),
                        headers={"Referer": listing_url, "Accept": "text/html, */*"},
                        timeout=REQUEST_TIMEOUT,
                    )
                except httpx.HTTPError as e:
                    self.logger.warning("ajax_page_failed", year=year, page=page, error=str(e))
                    break

                html = response.text
                if len(html.strip()) < MIN_RESPONSE_LENGTH:
                    break
                ajax_worked = True

                rows = self.parse_rows(html, min_budget)
                self.logger.debug("ajax_page_parsed", year=year, page=page, count=len(rows))
                if not rows:
                    break
                opportunities.extend(rows)
                await self.pause(PAGE_DELAY)

        if not ajax_worked:
            self.logger.info("ajax_unavailable_using_listing")
            opportunities.extend(await self.scrape_listing(listing_url, max_pages, min_budget))

        return opportunities

    def form_data(self, page: int, year: str) -> dict:
        return {
            "page": str(page),
            "tab": year,
            "sct[]": EDUCATION_SECTOR,
            "projects[]": list(BUDGET_BANDS),
        }

    async def scrape_listing(
        self,
        listing_url: str,
        max_pages: int,
        min_budget: float,
    ) -> list[RawOpportunity]:
        """Fallback: page through the server-rendered listing."""
        opportunities = []

        for page in range(1, max_pages + 1):
            try:
                html = await self.http_client.get_text(
                    f"{listing_url}?page={page}", verify=False, timeout=REQUEST_TIMEOUT
                )
            except httpx.HTTPError as e:
                self.logger.warning("listing_page_failed", page=page, error=str(e))
                break

            rows = self.parse_rows(html, min_budget)
            if not rows:
                break
            opportunities.extend(rows)
            await self.pause(PAGE_DELAY)

        return opportunities

    def parse_rows(self, html: str, min_budget: float = 1.0) -> list[RawOpportunity]:
        """
        Parse project rows (AJAX fragment or full listing page).

        Columns: hidden id, project, company, sector, budget, location.

        Args:
            html: HTML containing tr.item rows
            min_budget: Minimum budget in crore

        Returns:
            Opportunities for rows at or above the budget minimum
        """
        soup = BeautifulSoup(html, "lxml")
        opportunities = []

        for row in soup.select("tr.item"):
            cells = row.find_all("td")
            if len(cells) < 5:
                continue

            project_link = cells[1].find("a")
            project = project_link.get_text(strip=True) if project_link else ""
            if len(project) < 3:
                continue
            href = project_link.get("href") or ""

            company = self.company_name(cells[2])
            sector = cells[3].get_text(strip=True)
            budget = cells[4].get_text(strip=True)
            location_text = self.cell_text(cells[5]) if len(cells) >= 6 else ""

            budget_match = BUDGET_PATTERN.search(budget)
            if not budget_match or float(budget_match.group(1)) < min_budget:
                continue

            title = f"{company} – {project}" if company else project
            text = f"{title} {sector} {location_text}"
            location = extract_location(text) or "India"

            opportunities.append(
                make_opportunity(
                    title=title,
                    source_url=href if href.startswith("http") else BASE_URL + href.lstrip("/"),
                    description=f"{sector}. Budget: {budget}. Location: {location_text or 'India'}.",
                    text=text,
                    tags=extract_tags(text) + ["CSR"],
                    organisation=company or "CSRBox",
                    amount=f"₹{budget_match.group(1)} Crore",
                    location=location,
                )
            )

        return opportunities

    def company_name(self, cell) -> str:
        """Company is a link or a submit button whose value holds the name."""
        element = cell.select_one("a, input[type=submit]")
        if element is None:
            return ""
        return (element.get("value") or element.get_text(strip=True)).strip()

    def cell_text(self, cell) -> str:
        link = cell.find("a")
        text = link.get_text(strip=True) if link else ""
        return text or cell.get_text(strip=True)
