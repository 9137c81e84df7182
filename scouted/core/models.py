"""
Data models for the opportunity pipeline.

RawOpportunity is what extractors produce, Opportunity is the scored
record that gets persisted (and read back with its arrival timestamp).
"""

from dataclasses import dataclass, field, asdict, fields
from datetime import datetime
from enum import Enum
from typing import Optional

TITLE_MAX_LENGTH = 300
DESCRIPTION_MAX_LENGTH = 2000
FALLBACK_TAG = "Education"


class SourcePolicy(str, Enum):
    """Which relevance checks the pipeline runs for a source."""
    PRE_FILTERED = "pre_filtered"  # Extractor already filtered topic + geography
    GEOGRAPHY_TRUSTED = "geography_trusted"  # Source is India-scoped
    TOPIC_TRUSTED = "topic_trusted"  # Source is an education category
    GENERAL = "general"  # No inherent scoping


@dataclass
class RawOpportunity:
    """
    Normalized opportunity as produced by an extractor.

    source_url is the natural key. deadline is an ISO date string
    (YYYY-MM-DD) or None for rolling / no deadline.
    """

    title: str
    source_url: str
    description: str = ""
    deadline: Optional[str] = None
    poc_email: Optional[str] = None
    tags: list[str] = field(default_factory=lambda: [FALLBACK_TAG])
    organisation: Optional[str] = None
    amount: Optional[str] = None
    location: Optional[str] = None

    def __post_init__(self):
        self.title = (self.title or "")[:TITLE_MAX_LENGTH]
        self.description = (self.description or "")[:DESCRIPTION_MAX_LENGTH]
        if not self.tags:
            self.tags = [FALLBACK_TAG]

    @property
    def combined_text(self) -> str:
        """Title, description and tags as one lowercase string."""
        return f"{self.title} {self.description} {' '.join(self.tags)}".lower()

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(RawOpportunity)}
        data["tags"] = list(self.tags)
        return data


@dataclass
class Opportunity(RawOpportunity):
    """
    Scored opportunity (the persisted record).

    created_at is assigned by storage on first insert and is only
    populated on records read back from storage.
    """

    relevance_score: int = 0
    created_at: Optional[datetime] = None

    @classmethod
    def from_raw(cls, raw: RawOpportunity, relevance_score: int) -> "Opportunity":
        """Attach a score to a raw record."""
        return cls(**raw.to_dict(), relevance_score=relevance_score)

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.created_at is not None:
            data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class CsrRecord:
    """Reported CSR spend of one company in one field for one fiscal year."""

    company: str
    cin: str
    field: str
    spend_inr: float
    fiscal_year: str

    @property
    def natural_key(self) -> str:
        return f"{self.cin.lower()}|{self.field.lower()}|{self.fiscal_year}"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SourceConfig:
    """Configuration for one opportunity source."""

    source_id: str
    name: str
    url: str
    extractor: str  # Registry key, e.g. "ngobox", "fundsforngos"

    policy: SourcePolicy = SourcePolicy.GENERAL
    enrich_details: bool = False  # Fetch detail pages for richer descriptions
    max_pages: int = 5  # Safety limit for pagination

    # Extractor specific settings
    options: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "SourceConfig":
        """Create from dictionary (e.g., from YAML)."""
        return cls(
            source_id=data["source_id"],
            name=data.get("name", data["source_id"]),
            url=data["url"],
            extractor=data["extractor"],
            policy=SourcePolicy(data.get("policy", SourcePolicy.GENERAL.value)),
            enrich_details=bool(data.get("enrich_details", False)),
            max_pages=int(data.get("max_pages", 5)),
            options=data.get("options") or {},
        )
