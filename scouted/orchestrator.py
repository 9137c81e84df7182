"""
Pipeline orchestrator.

Coordinates:
- Source configuration loading
- Extractor selection and execution
- Optional detail enrichment
- Per-source relevance filtering and scoring
- Cross-source deduplication
- Optional secondary classification
- Storage upsert and run snapshots
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import httpx
import structlog

from scouted.config.loader import load_sources
from scouted.config.settings import Settings, get_settings
from scouted.core.deduplicator import dedup
from scouted.core.http_client import HttpClient
from scouted.core.models import Opportunity, RawOpportunity, SourceConfig
from scouted.extractors import DetailEnricher, get_extractor_class
from scouted.filters import RelevanceFilter
from scouted.plugins.classifier import OpenRouterClassifier
from scouted.scoring import Scorer
from scouted.storage import OpportunityStore

logger = structlog.get_logger(__name__)


def _empty_stats() -> dict[str, int]:
    return {
        "sources_processed": 0,
        "sources_failed": 0,
        "parsed": 0,
        "filtered_out": 0,
        "unique": 0,
        "classified_out": 0,
        "upserted": 0,
    }


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""
    opportunities: list[Opportunity] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=_empty_stats)


class ScoutPipeline:
    """
    Runs every configured source through extract -> enrich -> filter ->
    score, then dedups, classifies and stores the combined result.

    A failing source is logged and counted; it never aborts the run.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        output_dir: str = "output",
        store: Optional[OpportunityStore] = None,
        classifier: Optional[OpenRouterClassifier] = None,
        relevance: Optional[RelevanceFilter] = None,
        scorer: Optional[Scorer] = None,
        settings: Optional[Settings] = None,
        enrich: bool = True,
        enrich_batch_delay: float = 1.0,
        requests_per_second: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        today: Optional[date] = None,
    ):
        """
        Initialize pipeline.

        Args:
            config_path: Path to sources.yml (package default if None)
            output_dir: Directory for run snapshots
            store: Opportunity store (None = nothing is persisted)
            classifier: Secondary classifier (None = no classification)
            relevance: Relevance filter (default config if None)
            scorer: Scorer (default config if None)
            settings: Credentials for API-backed extractors
            enrich: Allow detail enrichment for sources that request it
            enrich_batch_delay: Seconds between enrichment batches
            requests_per_second: Per-domain rate limit (settings if None)
            transport: Optional httpx transport for the shared client
            today: Reference date for the recency window
        """
        self.config_path = config_path
        self.output_dir = Path(output_dir)
        self.store = store
        self.classifier = classifier
        self.relevance = relevance or RelevanceFilter()
        self.scorer = scorer or Scorer()
        self.settings = settings or get_settings()
        self.enrich = enrich
        self.enrich_batch_delay = enrich_batch_delay
        self.requests_per_second = requests_per_second or self.settings.rate_limit
        self.transport = transport
        self.today = today

        self.http_client: Optional[HttpClient] = None
        self.stats = _empty_stats()

    async def run(
        self,
        source_ids: Optional[list[str]] = None,
        dry_run: bool = False,
        classify: bool = True,
    ) -> PipelineResult:
        """
        Run the pipeline.

        Args:
            source_ids: Optional source_ids to process (None = all)
            dry_run: Skip the storage write
            classify: Run the secondary classifier when one is configured

        Returns:
            PipelineResult with the final opportunities and stats
        """
        self.stats = _empty_stats()

        logger.info(
            "starting_pipeline",
            sources=source_ids or "all",
            dry_run=dry_run,
            classify=classify,
        )

        sources = self._load_sources(source_ids)
        if not sources:
            logger.warning("no_sources_to_process")
            return PipelineResult(stats=self.stats)

        logger.info("sources_loaded", count=len(sources))

        collected: list[Opportunity] = []

        self.http_client = HttpClient(
            requests_per_second=self.requests_per_second,
            transport=self.transport,
        )

        async with self.http_client:
            for source in sources:
                try:
                    scored = await self._process_source(source)
                    collected.extend(scored)
                    self.stats["sources_processed"] += 1
                except Exception as e:
                    logger.error(
                        "source_processing_failed",
                        source=source.source_id,
                        error=str(e),
                    )
                    self.stats["sources_failed"] += 1

        # First occurrence wins, in configured source order
        unique = dedup(collected)
        self.stats["unique"] = len(unique)

        final = unique
        if classify and self.classifier is not None and unique:
            final, _ = await self.classifier.classify(unique)
            self.stats["classified_out"] = len(unique) - len(final)

        if dry_run:
            logger.info("dry_run_storage_skipped", opportunities=len(final))
        elif self.store is None:
            logger.warning("storage_not_configured", opportunities=len(final))
        else:
            self.stats["upserted"] = self.store.upsert_opportunities(final)

        logger.info("pipeline_complete", **self.stats)
        return PipelineResult(opportunities=final, stats=dict(self.stats))

    async def _process_source(self, source: SourceConfig) -> list[Opportunity]:
        """
        Extract, enrich, filter and score one source.

        Args:
            source: Source configuration

        Returns:
            Scored opportunities that passed the source's policy
        """
        logger.info(
            "processing_source",
            source=source.source_id,
            extractor=source.extractor,
            policy=source.policy.value,
        )

        extractor_class = get_extractor_class(source.extractor)
        extractor = extractor_class(http_client=self.http_client, settings=self.settings)

        records: list[RawOpportunity] = await extractor.fetch(source)
        self.stats["parsed"] += len(records)

        if self.enrich and source.enrich_details and records:
            enricher = DetailEnricher(self.http_client, batch_delay=self.enrich_batch_delay)
            records = await enricher.enrich(records)

        accepted, rejected = self.relevance.apply(records, source.policy, self.today)
        self.stats["filtered_out"] += sum(rejected.values())

        logger.info(
            "source_filtered",
            source=source.source_id,
            parsed=len(records),
            accepted=len(accepted),
            rejected=rejected,
        )

        return [Opportunity.from_raw(record, self.scorer.score(record)) for record in accepted]

    def _load_sources(self, source_ids: Optional[list[str]]) -> list[SourceConfig]:
        """
        Load and filter source configurations, keeping configured order.

        Args:
            source_ids: Optional list of source_ids to include

        Returns:
            Filtered list of SourceConfig
        """
        all_sources = load_sources(self.config_path)

        if source_ids:
            unknown = set(source_ids) - {s.source_id for s in all_sources}
            if unknown:
                logger.warning("unknown_sources_ignored", sources=sorted(unknown))
            return [s for s in all_sources if s.source_id in source_ids]

        return all_sources

    def save_json(self, opportunities: list[Opportunity], filename: Optional[str] = None) -> str:
        """
        Save a run snapshot to a JSON file.

        Args:
            opportunities: Opportunities to save
            filename: Optional filename (auto-generated if not provided)

        Returns:
            Path to saved file
        """
        if not filename:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"opportunities_{timestamp}.json"

        self.output_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.output_dir / filename

        data = [opp.to_dict() for opp in opportunities]

        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2, default=str)

        logger.info("saved_json", path=str(filepath), opportunities=len(opportunities))
        return str(filepath)
