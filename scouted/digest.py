"""
Opportunity digests.

Reads recent arrivals from storage, applies read-time score decay, and
renders them either as an HTML email (sent to subscribers through the
Resend batch API) or as a plain-text digest for chat.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Sequence

import httpx
import jinja2
import structlog

from scouted.core.models import Opportunity
from scouted.exceptions import ConfigurationError, EmailDeliveryError
from scouted.scoring import ScoringConfig, display_score, score_band
from scouted.storage import OpportunityStore

logger = structlog.get_logger(__name__)


RESEND_BATCH_URL = "https://api.resend.com/emails/batch"
VERIFIED_FROM = "ScoutEd <digest@scouted.whybe.ai>"
SANDBOX_FROM = "ScoutEd <onboarding@resend.dev>"

TEMPLATE_DIR = Path(__file__).parent / "templates"
DESCRIPTION_PREVIEW = 200

BRAND = {"navy": "#00316B", "yellow": "#FFD400"}
SCORE_COLOURS = {"high": "#22c55e", "medium": "#FFD400", "low": "#ef4444"}


@dataclass
class DigestItem:
    """An opportunity with the score shown to readers."""
    opportunity: Opportunity
    score: int
    band: str


def format_deadline(deadline: Optional[str]) -> str:
    """ISO deadline as "14 Mar 2026", or "No deadline"."""
    if not deadline:
        return "No deadline"
    try:
        day = date.fromisoformat(deadline)
    except ValueError:
        return deadline
    return f"{day.day} {day.strftime('%b %Y')}"


def digest_date_label(now: Optional[datetime] = None) -> str:
    """Date line used in the subject and header, e.g. "Monday 2 March 2026"."""
    now = now or datetime.now(timezone.utc)
    return f"{now.strftime('%A')} {now.day} {now.strftime('%B %Y')}"


def digest_subject(date_label: str) -> str:
    return f"ScoutEd Digest - {date_label}"


def shorten(text: Optional[str], limit: int = DESCRIPTION_PREVIEW) -> str:
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text


def rank_for_display(
    opportunities: Sequence[Opportunity],
    now: Optional[datetime] = None,
    config: Optional[ScoringConfig] = None,
) -> list[DigestItem]:
    """
    Apply decay and order by display score (stable for ties).

    Args:
        opportunities: Stored opportunities with created_at populated
        now: Reference time for decay
        config: Scoring config (decay rate and bands)

    Returns:
        Digest items, highest display score first
    """
    config = config or ScoringConfig()
    items = []
    for opp in opportunities:
        score = display_score(
            opp.relevance_score, opp.created_at, now, config.decay_per_week
        )
        items.append(DigestItem(opportunity=opp, score=score, band=score_band(score, config)))
    return sorted(items, key=lambda item: item.score, reverse=True)


def fetch_digest_opportunities(
    store: OpportunityStore,
    hours: Optional[int] = 48,
    limit: int = 10,
    now: Optional[datetime] = None,
    config: Optional[ScoringConfig] = None,
) -> list[DigestItem]:
    """
    Newest arrivals for a digest, ranked by decayed score.

    Args:
        store: Opportunity store
        hours: Look-back window on created_at (None = all time)
        limit: Maximum items
        now: Reference time (defaults to current UTC time)
        config: Scoring config

    Returns:
        Digest items, highest display score first
    """
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=hours) if hours is not None else None

    opportunities = store.query_opportunities(since=since, limit=limit)
    items = rank_for_display(opportunities, now, config)

    logger.info("digest_opportunities_loaded", count=len(items), hours=hours)
    return items


def _environment() -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=jinja2.select_autoescape(["html"]),
    )
    env.filters["deadline"] = format_deadline
    env.filters["shorten"] = shorten
    return env


def build_digest_html(
    items: Sequence[DigestItem],
    date_label: str,
    site_url: str = "https://scouted.whybe.ai",
) -> str:
    """
    Render the HTML email body.

    Args:
        items: Ranked digest items
        date_label: Header date line
        site_url: Target of the "View All" link

    Returns:
        Email HTML
    """
    template = _environment().get_template("digest.html")
    return template.render(
        items=items,
        date_label=date_label,
        site_url=site_url,
        brand=BRAND,
        score_colours=SCORE_COLOURS,
    )


def format_text_digest(
    items: Sequence[DigestItem],
    days: int = 2,
    show_all: bool = False,
) -> str:
    """
    Plain-text digest for chat (bold via *asterisks*).

    Args:
        items: Ranked digest items
        days: Look-back window the items were selected with
        show_all: Items were not limited to a window

    Returns:
        Digest text
    """
    if not items:
        if show_all:
            return "No opportunities found."
        return f"No opportunities found in the last {days} days."

    header = f"*ScoutEd Digest* - {len(items)} opportunities"
    if not show_all:
        header += f" (last {days} days)"
    lines = [header, ""]

    for index, item in enumerate(items, start=1):
        opp = item.opportunity
        title = f"*{index}. [{item.score}] {opp.title}"
        if opp.organisation:
            title += f" - {opp.organisation}"
        lines.append(title + "*")

        if opp.tags:
            lines.append(f"   {', '.join(opp.tags)}")

        meta = []
        if opp.location:
            meta.append(opp.location)
        if opp.amount:
            meta.append(opp.amount)
        if opp.deadline:
            meta.append(f"Due: {opp.deadline}")
        if meta:
            lines.append(f"   {' | '.join(meta)}")

        lines.append(f"   {opp.source_url}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


class ResendMailer:
    """
    Batch email sender over the Resend HTTP API.

    Usage:
        mailer = ResendMailer(api_key, domain_verified=True)
        await mailer.send_batch(["a@example.org"], subject, html)
    """

    def __init__(
        self,
        api_key: str,
        domain_verified: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
        endpoint: str = RESEND_BATCH_URL,
    ):
        """
        Initialize mailer.

        Args:
            api_key: Resend API key
            domain_verified: Send from the own domain instead of the sandbox
            http_client: Optional client (tests inject one with a MockTransport)
            endpoint: Batch endpoint
        """
        if not api_key:
            raise ConfigurationError("RESEND_API_KEY is not set; cannot send email")
        self.api_key = api_key
        self.domain_verified = domain_verified
        self.http_client = http_client
        self.endpoint = endpoint

    @property
    def from_address(self) -> str:
        return VERIFIED_FROM if self.domain_verified else SANDBOX_FROM

    async def send_batch(self, recipients: Sequence[str], subject: str, html: str) -> dict:
        """
        Send one email per recipient in a single batch call.

        Args:
            recipients: Email addresses
            subject: Subject line
            html: Body

        Returns:
            Decoded provider response

        Raises:
            EmailDeliveryError: Transport failure or non-2xx response
        """
        payload = [
            {"from": self.from_address, "to": [email], "subject": subject, "html": html}
            for email in recipients
        ]
        headers = {"Authorization": f"Bearer {self.api_key}"}

        client = self.http_client or httpx.AsyncClient(timeout=30.0)
        try:
            response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Email request failed: {e}") from e
        finally:
            if self.http_client is None:
                await client.aclose()

        if not response.is_success:
            raise EmailDeliveryError(
                f"Resend rejected batch: {response.text[:200]}",
                status_code=response.status_code,
            )

        logger.info("digest_sent", recipients=len(recipients), sender=self.from_address)
        return response.json() if response.content else {}


async def send_digest(
    store: OpportunityStore,
    mailer: ResendMailer,
    hours: int = 48,
    limit: int = 10,
    site_url: str = "https://scouted.whybe.ai",
    now: Optional[datetime] = None,
) -> int:
    """
    Build and send the email digest to every subscriber.

    Returns:
        Number of recipients (0 when there was nothing to send)
    """
    now = now or datetime.now(timezone.utc)

    items = fetch_digest_opportunities(store, hours=hours, limit=limit, now=now)
    if not items:
        logger.info("digest_skipped", reason="no_new_opportunities", hours=hours)
        return 0

    recipients = store.list_subscribers()
    if not recipients:
        logger.info("digest_skipped", reason="no_subscribers")
        return 0

    date_label = digest_date_label(now)
    html = build_digest_html(items, date_label, site_url)
    await mailer.send_batch(recipients, digest_subject(date_label), html)
    return len(recipients)
