"""
ScoutEd - education funding opportunity scraper for Indian K-12 education.

Architecture:
- core/: Stable foundation (models, HTTP client, text utilities, dedup)
- extractors/: One strategy per source family (listing pages, RSS, search APIs)
- filters: Source-policy driven relevance filtering
- scoring: Deterministic relevance score and read-time decay
- plugins/: Optional extensions (LLM relevance classifier)
- storage/: Idempotent upsert store keyed by source_url
- config/: YAML-driven sources, keywords and scoring weights
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
