"""
Opportunity deduplication by natural key.

source_url identifies an opportunity. The first occurrence wins, so
source order decides which duplicate's metadata is kept.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, TypeVar

import structlog

from .models import RawOpportunity

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=RawOpportunity)


def normalize_url(url: str) -> str:
    """Normalize a source_url for key comparison."""
    return (url or "").strip().lower()


@dataclass
class DeduplicationResult:
    """Result of deduplication check."""
    is_duplicate: bool
    existing: Optional[RawOpportunity] = None


class Deduplicator:
    """
    Order-preserving, first-seen-wins deduplicator.

    Tracks seen opportunities by normalized source_url.
    """

    def __init__(self):
        """Initialize deduplicator with empty index."""
        self._seen: dict[str, RawOpportunity] = {}

    def check(self, opportunity: RawOpportunity) -> DeduplicationResult:
        """
        Check if opportunity is a duplicate.

        Args:
            opportunity: Opportunity to check

        Returns:
            DeduplicationResult with the already indexed record, if any
        """
        existing = self._seen.get(normalize_url(opportunity.source_url))
        return DeduplicationResult(is_duplicate=existing is not None, existing=existing)

    def add(self, opportunity: RawOpportunity) -> None:
        """Add opportunity to the index (no-op if the key is taken)."""
        self._seen.setdefault(normalize_url(opportunity.source_url), opportunity)

    def process(self, opportunity: T) -> Optional[T]:
        """
        Check and add in one operation.

        Args:
            opportunity: Opportunity to process

        Returns:
            The opportunity if first seen, None if duplicate
        """
        if self.check(opportunity).is_duplicate:
            logger.debug(
                "opportunity_skipped_duplicate",
                url=opportunity.source_url,
                title=opportunity.title[:50],
            )
            return None

        self.add(opportunity)
        return opportunity

    def get_all(self) -> list[RawOpportunity]:
        """Get all unique opportunities in first-seen order."""
        return list(self._seen.values())

    def clear(self) -> None:
        """Clear deduplication index."""
        self._seen.clear()

    def __len__(self) -> int:
        """Return number of unique opportunities."""
        return len(self._seen)


def dedup(items: Sequence[T]) -> list[T]:
    """
    Keep the first occurrence per source_url (case-insensitive).

    Args:
        items: Opportunities in priority order

    Returns:
        Unique opportunities, original order preserved
    """
    deduplicator = Deduplicator()
    return [item for item in items if deduplicator.process(item) is not None]
