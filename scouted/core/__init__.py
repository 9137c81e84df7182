"""
Core layer - stable foundation for the scraping system.

Components:
- models: RawOpportunity, Opportunity, CsrRecord, SourceConfig dataclasses
- http_client: Rate-limited, retrying HTTP client
- text: HTML stripping, tag/location/amount/date inference
- deduplicator: First-seen-wins dedup by source_url
"""

from .models import (
    RawOpportunity,
    Opportunity,
    CsrRecord,
    SourceConfig,
    SourcePolicy,
)
from .text import (
    strip_tags,
    extract_tags,
    extract_location,
    extract_amount,
    parse_date,
    is_education_relevant,
)
from .deduplicator import Deduplicator, dedup

__all__ = [
    "RawOpportunity",
    "Opportunity",
    "CsrRecord",
    "SourceConfig",
    "SourcePolicy",
    "strip_tags",
    "extract_tags",
    "extract_location",
    "extract_amount",
    "parse_date",
    "is_education_relevant",
    "Deduplicator",
    "dedup",
]
