"""
Text utilities shared by every extractor.

Handles:
- Lossy HTML stripping (small fixed entity table)
- Topic tag inference over a fixed ontology
- Indian state / "India" location inference
- Formatted amount extraction (Crore, Lakh, INR, USD, EUR, GBP, JPY)
- Listing date formats ("16 Feb 2026", "14-Jan-2026")

The cascades below are ordered tables evaluated first-match-wins
(tags: every match fires, in table order).
"""

import re
from datetime import date
from typing import Callable, Optional

import structlog
from dateutil import parser as date_parser

logger = structlog.get_logger(__name__)


# Ordered: the first three tags are what digests display
TAG_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"edtech|ed-tech|digital\s+learning|ict|technology"), "EdTech"),
    (re.compile(r"fln|foundational\s+lit|foundational\s+num|foundational\s+learn"), "FLN / Foundational Literacy"),
    (re.compile(r"teacher|educator|pedagog"), "Teacher Training"),
    (re.compile(r"early\s+childhood|ecce|anganwadi|pre-?school"), "Early Childhood"),
    (re.compile(r"school\s+governance|school\s+management|school\s+leader"), "School Governance"),
    (re.compile(r"classroom|instruction|curriculum"), "Classroom Instruction"),
    (re.compile(r"high\s+potential|gifted|talent"), "High Potential Students"),
]

DEFAULT_TAG = "Education"

# 28 states plus Delhi, scanned in this order
INDIAN_STATES = [
    "Andhra Pradesh", "Arunachal Pradesh", "Assam", "Bihar", "Chhattisgarh",
    "Goa", "Gujarat", "Haryana", "Himachal Pradesh", "Jharkhand",
    "Karnataka", "Kerala", "Madhya Pradesh", "Maharashtra", "Manipur",
    "Meghalaya", "Mizoram", "Nagaland", "Odisha", "Punjab",
    "Rajasthan", "Sikkim", "Tamil Nadu", "Telangana", "Tripura",
    "Uttar Pradesh", "Uttarakhand", "West Bengal", "Delhi",
]

EDUCATION_KEYWORDS = [
    "education", "school", "learning", "teacher", "literacy", "numeracy",
    "edtech", "classroom", "child", "youth", "fln", "stem", "scholarship",
    "fellowship", "training", "anganwadi", "early childhood",
]

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_ENTITY_REPLACEMENTS = [
    (re.compile(r"&nbsp;"), " "),
    (re.compile(r"&amp;"), "&"),
    (re.compile(r"&lt;"), "<"),
    (re.compile(r"&gt;"), ">"),
    (re.compile(r"&#?\w+;"), " "),
]


def strip_tags(html: str) -> str:
    """
    Convert an HTML fragment to plain text.

    Only &nbsp; &amp; &lt; &gt; are decoded, every other entity
    collapses to a space.

    Args:
        html: HTML fragment

    Returns:
        Single-line text
    """
    if not html:
        return ""

    text = re.sub(r"<style[^>]*>[\s\S]*?</style>", " ", html, flags=re.IGNORECASE)
    text = re.sub(r"<script[^>]*>[\s\S]*?</script>", " ", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    for pattern, replacement in _ENTITY_REPLACEMENTS:
        text = pattern.sub(replacement, text)
    return re.sub(r"\s+", " ", text).strip()


def extract_tags(text: str) -> list[str]:
    """
    Infer topical tags from free text.

    Args:
        text: Title/description text

    Returns:
        Tags in rule order, ["Education"] when nothing matches
    """
    lower = (text or "").lower()
    tags = [label for pattern, label in TAG_RULES if pattern.search(lower)]
    return tags or [DEFAULT_TAG]


def extract_location(text: str) -> Optional[str]:
    """
    Infer a single Indian state from text.

    Returns:
        First state found, "India" for national mentions, else None
    """
    lower = (text or "").lower()
    for state in INDIAN_STATES:
        if state.lower() in lower:
            return state
    if "india" in lower or "national" in lower:
        return "India"
    return None


def _with_suffix(symbol: str) -> Callable[[re.Match], str]:
    def render(match: re.Match) -> str:
        suffix = match.group(2) if (match.lastindex or 0) >= 2 else None
        return f"{symbol}{match.group(1)}{' ' + suffix if suffix else ''}"
    return render


AMOUNT_RULES: list[tuple[re.Pattern, Callable[[re.Match], str]]] = [
    (re.compile(r"₹?\s*(\d[\d,.]*)\s*(?:crore|cr)\b", re.IGNORECASE), lambda m: f"₹{m.group(1)} Crore"),
    (re.compile(r"₹?\s*(\d[\d,.]*)\s*(?:lakh|lac)\b", re.IGNORECASE), lambda m: f"₹{m.group(1)} Lakh"),
    (re.compile(r"(?:INR|₹)\s*(\d[\d,.]+)", re.IGNORECASE), lambda m: f"₹{m.group(1)}"),
    (re.compile(r"(\d[\d,.]+)\s*(?:USD|US\s*Dollar)", re.IGNORECASE), lambda m: f"${m.group(1)}"),
    (
        re.compile(r"\$\s*(\d[\d,.]*)\s*(million|m\b|billion|b\b|thousand|k\b)?", re.IGNORECASE),
        _with_suffix("$"),
    ),
    (re.compile(r"€?\s*(\d[\d,.]+)\s*(?:EUR|Euro)", re.IGNORECASE), _with_suffix("€")),
    (re.compile(r"€\s*(\d[\d,.]*)\s*(million|m\b)?", re.IGNORECASE), _with_suffix("€")),
    (re.compile(r"(\d[\d,.]+)\s*(?:GBP|Pound)", re.IGNORECASE), lambda m: f"£{m.group(1)}"),
    (re.compile(r"(\d[\d,.]+)\s*(?:JPY|Yen)", re.IGNORECASE), lambda m: f"¥{m.group(1)}"),
]


def extract_amount(text: str) -> Optional[str]:
    """
    Extract a formatted funding amount from text.

    Amounts stay formatted strings ("₹5 Crore", "$600,000") since
    sources mix currencies and units.

    Args:
        text: Free text mentioning an amount

    Returns:
        Formatted amount, the raw text when it is short and has a digit,
        else None
    """
    if not text:
        return None

    cleaned = text.strip()
    for pattern, render in AMOUNT_RULES:
        match = pattern.search(cleaned)
        if match:
            return render(match)

    # Free-form amount text ("up to 50% of project cost")
    if 1 < len(cleaned) < 60 and re.search(r"\d", cleaned):
        return cleaned
    return None


def _build_date(day: str, month_name: str, year: str) -> Optional[str]:
    month = MONTHS.get(month_name[:3].lower())
    if month is None:
        return None
    try:
        return date(int(year), month, int(day)).isoformat()
    except ValueError:
        return None


def parse_date(text: str) -> Optional[str]:
    """
    Parse a listing date into ISO format.

    Supported formats:
    - "16 Feb 2026", "28 March 2026", "5 Sept. 2026"
    - "14-Jan-2026", "14-Jan-26" (two-digit years are 20xx)
    - Anything python-dateutil understands, read day-first

    Args:
        text: Date text

    Returns:
        "YYYY-MM-DD" or None
    """
    if not text:
        return None

    cleaned = text.replace(".", "").strip()

    match = re.search(r"(\d{1,2})\s+(\w+)\s+(\d{4})", cleaned)
    if match:
        parsed = _build_date(*match.groups())
        if parsed:
            return parsed

    match = re.search(r"(\d{1,2})-(\w{3,})-(\d{2,4})", cleaned)
    if match:
        day, month_name, year = match.groups()
        if len(year) == 2:
            year = f"20{year}"
        parsed = _build_date(day, month_name, year)
        if parsed:
            return parsed

    try:
        return date_parser.parse(cleaned, dayfirst=True).date().isoformat()
    except (ValueError, OverflowError) as e:
        logger.debug("date_unparsed", text=cleaned[:50], error=str(e))
        return None


def is_education_relevant(text: str) -> bool:
    """Loose education keyword check for extractors that self-filter."""
    lower = (text or "").lower()
    return any(keyword in lower for keyword in EDUCATION_KEYWORDS)


def contains_any(text: str, keywords: list[str]) -> bool:
    """Case-insensitive substring check against a keyword list."""
    lower = (text or "").lower()
    return any(keyword.lower() in lower for keyword in keywords)


def truncate(text: Optional[str], length: int) -> str:
    """Truncate text to length (None becomes an empty string)."""
    return (text or "")[:length]
