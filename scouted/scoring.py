"""
Relevance scoring and read-time score decay.

score() is a pure point-accumulation function capped at max_score.
Stored scores are never decremented; consumers call display_score()
with the record's created_at whenever they render or rank.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog

from scouted.config.loader import load_config_file
from scouted.core.models import RawOpportunity

logger = structlog.get_logger(__name__)


DEFAULT_WEIGHTS = {
    "sector": 30,
    "geography": 20,
    "funding_size": 20,
    "known_funder": 15,
    "multi_year": 15,
}

CRORE_PATTERN = re.compile(r"(\d+)\s*(?:crore|cr)", re.IGNORECASE)
MILLION_PATTERN = re.compile(r"(?:\$|£|€)\s*(\d[\d,.]*)\s*(?:million|m\b)", re.IGNORECASE)
DURATION_PATTERN = re.compile(r"(\d+)\s*(?:year|yr)", re.IGNORECASE)

SECONDS_PER_WEEK = 7 * 24 * 60 * 60


@dataclass
class ScoringConfig:
    """Keyword lists, weights and thresholds for the scorer."""

    priority_sectors: list[str] = field(default_factory=list)
    priority_geographies: list[str] = field(default_factory=list)
    known_funders: list[str] = field(default_factory=list)
    weights: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    max_score: int = 100
    min_crore: int = 1
    min_years: int = 2
    high_threshold: int = 75
    medium_threshold: int = 50
    decay_per_week: int = 5

    @classmethod
    def from_dict(cls, data: dict) -> "ScoringConfig":
        """Create from dictionary (e.g., from scoring.yml)."""
        thresholds = data.get("thresholds") or {}
        return cls(
            priority_sectors=list(data.get("priority_sectors") or []),
            priority_geographies=list(data.get("priority_geographies") or []),
            known_funders=list(data.get("known_funders") or []),
            weights={**DEFAULT_WEIGHTS, **(data.get("weights") or {})},
            max_score=int(data.get("max_score", 100)),
            min_crore=int(thresholds.get("min_crore", 1)),
            min_years=int(thresholds.get("min_years", 2)),
            high_threshold=int(thresholds.get("high", 75)),
            medium_threshold=int(thresholds.get("medium", 50)),
            decay_per_week=int(data.get("decay_per_week", 5)),
        )

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "ScoringConfig":
        """Load from scoring.yml (package default unless a path is given)."""
        return cls.from_dict(load_config_file(config_path, "scoring.yml"))


class Scorer:
    """
    Deterministic relevance scorer.

    Points (defaults):
    - sector keyword in title/description/tags: 30
    - priority geography in text or location: 20
    - funding size of at least 1 crore or a million in a hard currency: 20
    - known funder in organisation/title: 15
    - multi-year duration (2+ years): 15
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig.load()
        self._sectors = [s.lower() for s in self.config.priority_sectors]
        self._geographies = [g.lower() for g in self.config.priority_geographies]
        self._funders = [f.lower() for f in self.config.known_funders]

    def breakdown(self, opportunity: RawOpportunity) -> dict[str, int]:
        """
        Points awarded per criterion (0 when the criterion misses).

        Args:
            opportunity: Opportunity to score

        Returns:
            Mapping of criterion name to awarded points
        """
        weights = self.config.weights
        text = opportunity.combined_text
        location = (opportunity.location or "").lower()

        points = dict.fromkeys(DEFAULT_WEIGHTS, 0)

        if any(sector in text for sector in self._sectors):
            points["sector"] = weights["sector"]

        if any(geo in text or geo in location for geo in self._geographies):
            points["geography"] = weights["geography"]

        if self._has_funding_size(f"{opportunity.amount or ''} {text}"):
            points["funding_size"] = weights["funding_size"]

        org_text = f"{opportunity.organisation or ''} {opportunity.title}".lower()
        if any(funder in org_text for funder in self._funders):
            points["known_funder"] = weights["known_funder"]

        duration = DURATION_PATTERN.search(text)
        if duration and int(duration.group(1)) >= self.config.min_years:
            points["multi_year"] = weights["multi_year"]

        return points

    def score(self, opportunity: RawOpportunity) -> int:
        """
        Score an opportunity.

        Args:
            opportunity: Opportunity to score

        Returns:
            Integer in [0, max_score]
        """
        total = sum(self.breakdown(opportunity).values())
        return max(0, min(self.config.max_score, total))

    def band(self, score: int) -> str:
        """Display band for a score."""
        return score_band(score, self.config)

    def _has_funding_size(self, text: str) -> bool:
        crore = CRORE_PATTERN.search(text)
        if crore and int(crore.group(1)) >= self.config.min_crore:
            return True
        return MILLION_PATTERN.search(text) is not None


def score_band(score: int, config: Optional[ScoringConfig] = None) -> str:
    """
    Classify a score as "high", "medium" or "low".

    Args:
        score: Relevance score (base or decayed)
        config: Thresholds (defaults 75 / 50)

    Returns:
        Band name
    """
    high = config.high_threshold if config else 75
    medium = config.medium_threshold if config else 50
    if score >= high:
        return "high"
    if score >= medium:
        return "medium"
    return "low"


def weeks_since(created_at: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole weeks elapsed since created_at (never negative).

    Naive datetimes are treated as UTC.
    """
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    elapsed = (now - created_at).total_seconds()
    return max(0, math.floor(elapsed / SECONDS_PER_WEEK))


def display_score(
    base_score: int,
    created_at: Optional[datetime],
    now: Optional[datetime] = None,
    decay_per_week: int = 5,
) -> int:
    """
    Decay a stored score by its age.

    max(0, base_score - floor(weeks since created_at) * decay_per_week)

    Args:
        base_score: Persisted relevance score
        created_at: First-seen timestamp (None means no decay)
        now: Reference time (defaults to current UTC time)
        decay_per_week: Points lost per full week

    Returns:
        Decayed score, never negative
    """
    if created_at is None:
        return max(0, base_score)
    return max(0, base_score - weeks_since(created_at, now) * decay_per_week)
