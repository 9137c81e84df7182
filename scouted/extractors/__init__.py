"""
Source extractors.

Extractors turn one configured source into RawOpportunity records.

Strategies:
- Listing-page scrapers: NgoboxExtractor, NgoboxRfpExtractor,
  FundsForNgosExtractor, CsrboxExtractor
- RSS feeds: IdrExtractor, AllianceExtractor, DevexExtractor
- Search APIs: GoogleCseExtractor, GovukFcdoExtractor, GrantsGovExtractor

DetailEnricher optionally fetches each record's own page afterwards.
"""

from scouted.exceptions import ConfigurationError

from .base import Extractor, make_opportunity
from .csrbox import CsrboxExtractor
from .detail import DetailEnricher
from .feeds import AllianceExtractor, DevexExtractor, IdrExtractor
from .fundsforngos import FundsForNgosExtractor
from .ngobox import NgoboxExtractor, NgoboxRfpExtractor
from .search import GoogleCseExtractor, GovukFcdoExtractor, GrantsGovExtractor

# Extractor registry (sources.yml "extractor" key -> class)
EXTRACTORS: dict[str, type[Extractor]] = {
    cls.name: cls
    for cls in (
        NgoboxExtractor,
        NgoboxRfpExtractor,
        FundsForNgosExtractor,
        IdrExtractor,
        AllianceExtractor,
        DevexExtractor,
        CsrboxExtractor,
        GoogleCseExtractor,
        GovukFcdoExtractor,
        GrantsGovExtractor,
    )
}


def get_extractor_class(key: str) -> type[Extractor]:
    """
    Look up an extractor by its registry key.

    Raises:
        ConfigurationError: Unknown key
    """
    try:
        return EXTRACTORS[key]
    except KeyError:
        raise ConfigurationError(
            f"Unknown extractor '{key}' (known: {', '.join(sorted(EXTRACTORS))})"
        ) from None


__all__ = [
    "EXTRACTORS",
    "get_extractor_class",
    "Extractor",
    "make_opportunity",
    "DetailEnricher",
    "NgoboxExtractor",
    "NgoboxRfpExtractor",
    "FundsForNgosExtractor",
    "IdrExtractor",
    "AllianceExtractor",
    "DevexExtractor",
    "CsrboxExtractor",
    "GoogleCseExtractor",
    "GovukFcdoExtractor",
    "GrantsGovExtractor",
]
