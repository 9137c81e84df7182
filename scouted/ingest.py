"""
Ingestion of externally supplied batches (JSON arrays).

Two batch kinds: opportunities found by an external research agent, and
CSR spend reports. Both go validate -> dedup -> (score) -> upsert.
Invalid records are skipped with a logged reason; a batch that is
unreadable, empty or entirely invalid raises IngestionError.
"""

import json
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Optional, TextIO

import structlog

from scouted.core.deduplicator import dedup
from scouted.core.models import (
    DESCRIPTION_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    CsrRecord,
    Opportunity,
    RawOpportunity,
)
from scouted.core.text import parse_date
from scouted.exceptions import IngestionError
from scouted.scoring import Scorer
from scouted.storage import OpportunityStore

logger = structlog.get_logger(__name__)

DEFAULT_FISCAL_YEAR = "2023-24"


@dataclass
class IngestResult:
    """Counts reported after an ingest run."""
    received: int = 0
    valid: int = 0
    unique: int = 0
    written: int = 0

    @property
    def skipped(self) -> int:
        return self.received - self.valid


def read_json_array(path: Optional[str] = None, stream: Optional[TextIO] = None) -> list:
    """
    Read a JSON array from a file, or from stdin when no path is given.

    Args:
        path: Input file path
        stream: Stream to read instead of stdin

    Returns:
        Decoded list

    Raises:
        IngestionError: Unreadable input, invalid JSON, or not an array
    """
    try:
        raw = Path(path).read_text(encoding="utf-8") if path else (stream or sys.stdin).read()
    except OSError as e:
        raise IngestionError(f"Cannot read input: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise IngestionError(f"Invalid JSON input: {e}") from e

    if not isinstance(data, list):
        raise IngestionError("Expected a JSON array")
    return data


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_deadline(value: Any) -> Optional[str]:
    """ISO deadline, re-parsing free-form dates; None when unparseable."""
    text = _optional_str(value)
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        return parse_date(text)


def validate_opportunity(item: Any) -> tuple[Optional[RawOpportunity], Optional[str]]:
    """
    Validate one supplied opportunity.

    Returns:
        (record, None) when valid, else (None, reason)
    """
    if not isinstance(item, dict):
        return None, "not an object"

    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        return None, "missing title"

    source_url = item.get("source_url")
    if not isinstance(source_url, str) or not source_url.strip().startswith("http"):
        return None, "invalid source_url"

    tags = item.get("tags")
    tags = [str(tag) for tag in tags if str(tag).strip()] if isinstance(tags, list) else []

    record = RawOpportunity(
        title=title.strip()[:TITLE_MAX_LENGTH],
        source_url=source_url.strip(),
        description=(_optional_str(item.get("description")) or "")[:DESCRIPTION_MAX_LENGTH],
        deadline=normalize_deadline(item.get("deadline")),
        poc_email=_optional_str(item.get("poc_email")),
        tags=tags,
        organisation=_optional_str(item.get("organisation")),
        amount=_optional_str(item.get("amount")),
        location=_optional_str(item.get("location")),
    )
    return record, None


def validate_opportunities(items: list) -> list[RawOpportunity]:
    """
    Validate supplied opportunities, skipping invalid ones.

    Args:
        items: Decoded JSON array

    Returns:
        Valid records in input order
    """
    valid = []
    for index, item in enumerate(items):
        record, reason = validate_opportunity(item)
        if record is None:
            logger.warning("record_skipped", index=index, reason=reason, item=str(item)[:80])
            continue
        valid.append(record)
    return valid


def score_opportunities(records: list[RawOpportunity], scorer: Scorer) -> list[Opportunity]:
    """Score records; supplied scores are never trusted."""
    return [Opportunity.from_raw(record, scorer.score(record)) for record in records]


def ingest_opportunities(
    items: list,
    store: OpportunityStore,
    scorer: Optional[Scorer] = None,
) -> IngestResult:
    """
    Validate, dedup, score and upsert a supplied opportunity batch.

    Raises:
        IngestionError: Empty or entirely invalid batch
    """
    result = IngestResult(received=len(items))
    if not items:
        raise IngestionError("Input batch is empty")

    valid = validate_opportunities(items)
    result.valid = len(valid)
    if not valid:
        raise IngestionError(f"No valid opportunities in batch of {len(items)}")

    unique = dedup(valid)
    result.unique = len(unique)

    scored = score_opportunities(unique, scorer or Scorer())
    result.written = store.upsert_opportunities(scored)

    logger.info("opportunities_ingested", **vars(result))
    return result


def parse_spend(value: Any) -> Optional[float]:
    """Spend_INR as a number; strings may use thousands separators."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return None


def validate_csr_record(item: Any, fiscal_year: str) -> tuple[Optional[CsrRecord], Optional[str]]:
    """
    Validate one CSR spend row (Company, CIN, Field, Spend_INR).

    Returns:
        (record, None) when valid, else (None, reason)
    """
    if not isinstance(item, dict):
        return None, "not an object"

    values = {}
    for key in ("Company", "CIN", "Field"):
        value = item.get(key)
        if not isinstance(value, str) or not value.strip():
            return None, f"missing {key}"
        values[key] = value.strip()

    spend = parse_spend(item.get("Spend_INR"))
    if spend is None or spend != spend:  # NaN
        return None, "invalid Spend_INR"

    record = CsrRecord(
        company=values["Company"],
        cin=values["CIN"],
        field=values["Field"],
        spend_inr=spend,
        fiscal_year=fiscal_year,
    )
    return record, None


def validate_csr_records(items: list, fiscal_year: str = DEFAULT_FISCAL_YEAR) -> list[CsrRecord]:
    """
    Validate CSR rows and dedup on (cin, field, fiscal_year).

    Args:
        items: Decoded JSON array
        fiscal_year: Fiscal year stamped on every row

    Returns:
        Unique valid records, first occurrence wins
    """
    seen: set[str] = set()
    records = []

    for index, item in enumerate(items):
        record, reason = validate_csr_record(item, fiscal_year)
        if record is None:
            logger.warning("record_skipped", index=index, reason=reason, item=str(item)[:80])
            continue
        if record.natural_key in seen:
            logger.debug("record_duplicate", company=record.company, field=record.field)
            continue
        seen.add(record.natural_key)
        records.append(record)

    return records


def ingest_csr_records(
    items: list,
    store: OpportunityStore,
    fiscal_year: str = DEFAULT_FISCAL_YEAR,
) -> IngestResult:
    """
    Validate, dedup and upsert a CSR spend batch.

    Raises:
        IngestionError: Empty or entirely invalid batch
    """
    result = IngestResult(received=len(items))
    if not items:
        raise IngestionError("Input batch is empty")

    records = validate_csr_records(items, fiscal_year)
    result.valid = result.unique = len(records)
    if not records:
        raise IngestionError(f"No valid CSR records in batch of {len(items)}")

    result.written = store.upsert_csr_records(records)

    logger.info("csr_records_ingested", fiscal_year=fiscal_year, **vars(result))
    return result
