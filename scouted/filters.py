"""
Relevance filtering (India + education) driven by source policy.

Every source gets the recency, foreign-country and negative-keyword
checks. The source's SourcePolicy decides whether topic and geography
relevance must also be established from the record's own text.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

import structlog
from dateutil.relativedelta import relativedelta

from scouted.config.loader import load_config_file
from scouted.core.models import RawOpportunity, SourcePolicy

logger = structlog.get_logger(__name__)


# Rejection reasons
EXPIRED = "expired"
FOREIGN = "foreign_country"
NEGATIVE_KEYWORD = "negative_keyword"
OFF_TOPIC = "off_topic"
OFF_GEOGRAPHY = "off_geography"


@dataclass
class FilterConfig:
    """Keyword lists for the relevance predicates."""

    india_markers: list[str] = field(default_factory=list)
    education_phrases: list[str] = field(default_factory=list)
    education_tokens: list[str] = field(default_factory=list)
    foreign_countries: list[str] = field(default_factory=list)
    negative_keywords: list[str] = field(default_factory=list)
    recency_months: int = 3

    @classmethod
    def from_dict(cls, data: dict) -> "FilterConfig":
        """Create from dictionary (e.g., from filters.yml)."""
        return cls(
            india_markers=[m.lower() for m in data.get("india_markers") or []],
            education_phrases=[p.lower() for p in data.get("education_phrases") or []],
            education_tokens=[t.lower() for t in data.get("education_tokens") or []],
            foreign_countries=[c.lower() for c in data.get("foreign_countries") or []],
            negative_keywords=[k.lower() for k in data.get("negative_keywords") or []],
            recency_months=int(data.get("recency_months", 3)),
        )

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "FilterConfig":
        """Load from filters.yml (package default unless a path is given)."""
        return cls.from_dict(load_config_file(config_path, "filters.yml"))


def _word_pattern(words: list[str]) -> Optional[re.Pattern]:
    if not words:
        return None
    alternatives = "|".join(re.escape(word) for word in words)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


class RelevanceFilter:
    """
    Composable relevance predicates plus per-policy composition.

    Usage:
        relevance = RelevanceFilter()
        kept = relevance.apply(items, SourcePolicy.TOPIC_TRUSTED)
    """

    def __init__(
        self,
        config: Optional[FilterConfig] = None,
        today: Optional[date] = None,
    ):
        """
        Initialize filter.

        Args:
            config: Keyword lists (defaults to package filters.yml)
            today: Reference date for the recency window (defaults to today)
        """
        self.config = config or FilterConfig.load()
        self.today = today
        self._token_pattern = _word_pattern(self.config.education_tokens)
        self._negative_pattern = _word_pattern(self.config.negative_keywords)

    # Predicates

    def is_geography_relevant(self, opportunity: RawOpportunity) -> bool:
        """Title, description, location or tags mention India or a state."""
        text = " ".join([
            opportunity.title,
            opportunity.description,
            opportunity.location or "",
            " ".join(opportunity.tags),
        ]).lower()
        return any(marker in text for marker in self.config.india_markers)

    def is_topic_relevant(self, opportunity: RawOpportunity) -> bool:
        """
        Title or description is about education.

        Tags are ignored since extractors assign them from the same text
        with a fallback "Education" tag.
        """
        text = f"{opportunity.title} {opportunity.description}".lower()
        if any(phrase in text for phrase in self.config.education_phrases):
            return True
        return bool(self._token_pattern and self._token_pattern.search(text))

    def is_explicitly_foreign(self, opportunity: RawOpportunity) -> bool:
        """Title names a foreign country and no Indian marker."""
        title = opportunity.title.lower()
        if any(marker in title for marker in self.config.india_markers):
            return False
        return any(country in title for country in self.config.foreign_countries)

    def has_negative_keyword(self, opportunity: RawOpportunity) -> bool:
        """Title has a disqualifying term and the topic check does not rescue it."""
        if not self._negative_pattern or not self._negative_pattern.search(opportunity.title):
            return False
        return not self.is_topic_relevant(opportunity)

    def is_within_recency_window(
        self,
        opportunity: RawOpportunity,
        today: Optional[date] = None,
    ) -> bool:
        """Deadline, if any, is at most recency_months in the past."""
        if not opportunity.deadline:
            return True

        try:
            deadline = date.fromisoformat(opportunity.deadline)
        except ValueError:
            logger.warning(
                "invalid_deadline",
                url=opportunity.source_url,
                deadline=opportunity.deadline,
            )
            return True

        reference = today or self.today or date.today()
        cutoff = reference - relativedelta(months=self.config.recency_months)
        return deadline >= cutoff

    # Composition

    def rejection_reason(
        self,
        opportunity: RawOpportunity,
        policy: SourcePolicy,
        today: Optional[date] = None,
    ) -> Optional[str]:
        """
        First failing check for this opportunity under a source policy.

        Args:
            opportunity: Candidate record
            policy: Policy of the source it came from
            today: Reference date for the recency window

        Returns:
            Rejection reason, or None if the opportunity is accepted
        """
        if not self.is_within_recency_window(opportunity, today):
            return EXPIRED
        if self.is_explicitly_foreign(opportunity):
            return FOREIGN
        if self.has_negative_keyword(opportunity):
            return NEGATIVE_KEYWORD

        if policy is SourcePolicy.PRE_FILTERED:
            return None

        if policy in (SourcePolicy.GEOGRAPHY_TRUSTED, SourcePolicy.GENERAL):
            if not self.is_topic_relevant(opportunity):
                return OFF_TOPIC

        if policy in (SourcePolicy.TOPIC_TRUSTED, SourcePolicy.GENERAL):
            if not self.is_geography_relevant(opportunity):
                return OFF_GEOGRAPHY

        return None

    def accepts(
        self,
        opportunity: RawOpportunity,
        policy: SourcePolicy,
        today: Optional[date] = None,
    ) -> bool:
        """True if the opportunity passes every check for the policy."""
        return self.rejection_reason(opportunity, policy, today) is None

    def apply(
        self,
        opportunities: Iterable[RawOpportunity],
        policy: SourcePolicy,
        today: Optional[date] = None,
    ) -> tuple[list[RawOpportunity], dict[str, int]]:
        """
        Filter a source's records, preserving order.

        Args:
            opportunities: Records from one source
            policy: That source's policy
            today: Reference date for the recency window

        Returns:
            (accepted records, rejection counts by reason)
        """
        accepted: list[RawOpportunity] = []
        rejected: dict[str, int] = {}

        for opportunity in opportunities:
            reason = self.rejection_reason(opportunity, policy, today)
            if reason is None:
                accepted.append(opportunity)
            else:
                rejected[reason] = rejected.get(reason, 0) + 1
                logger.debug(
                    "opportunity_rejected",
                    reason=reason,
                    title=opportunity.title[:60],
                )

        return accepted, rejected
