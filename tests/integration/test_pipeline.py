"""End-to-end pipeline tests with a registered fake extractor."""

import json
from datetime import date
from pathlib import Path

import httpx
import pytest
import yaml

from scouted.core.models import RawOpportunity, SourceConfig
from scouted.extractors import EXTRACTORS, Extractor
from scouted.orchestrator import ScoutPipeline

TODAY = date(2026, 3, 1)

SOURCES = {
    "sources": [
        {
            "source_id": "first",
            "url": "https://first.example.org",
            "extractor": "fake",
            "policy": "pre_filtered",
            "options": {
                "items": [
                    {"title": "Literacy grant for Assam schools", "source_url": "https://example.org/a"},
                    {"title": "Library programme India", "source_url": "https://example.org/b"},
                ]
            },
        },
        {
            "source_id": "broken",
            "url": "https://broken.example.org",
            "extractor": "missing",
        },
        {
            "source_id": "second",
            "url": "https://second.example.org",
            "extractor": "fake",
            "policy": "general",
            "options": {
                "items": [
                    {"title": "School grant duplicate in India", "source_url": "https://example.org/A"},
                    {"title": "Road construction tender in Bihar", "source_url": "https://example.org/c"},
                    {
                        "title": "School grant in Bihar",
                        "source_url": "https://example.org/d",
                        "deadline": "2025-06-01",
                    },
                ]
            },
        },
    ]
}


class FakeExtractor(Extractor):
    """Returns the records listed in the source options."""

    name = "fake"

    async def extract(self, source: SourceConfig) -> list[RawOpportunity]:
        return [RawOpportunity(**item) for item in self.option(source, "items", [])]


class KeepFirstClassifier:
    """Classifier stand-in that accepts only the first record."""

    async def classify(self, items, state=None):
        return items[:1], state


def no_network(request):
    raise AssertionError(f"unexpected request to {request.url}")


@pytest.fixture
def sources_path(tmp_path, monkeypatch):
    monkeypatch.setitem(EXTRACTORS, "fake", FakeExtractor)
    path = tmp_path / "sources.yml"
    path.write_text(yaml.safe_dump(SOURCES), encoding="utf-8")
    return str(path)


@pytest.fixture
def make_pipeline(sources_path, settings, tmp_path):
    def build(**kwargs):
        kwargs.setdefault("enrich", False)
        return ScoutPipeline(
            config_path=sources_path,
            output_dir=str(tmp_path / "output"),
            settings=settings,
            requests_per_second=1000.0,
            transport=httpx.MockTransport(no_network),
            today=TODAY,
            **kwargs,
        )

    return build


class TestScoutPipeline:
    """Tests for ScoutPipeline."""

    async def test_run_stats(self, make_pipeline, store):
        """Test failure isolation, filtering, dedup and storage counts."""
        result = await make_pipeline(store=store).run()

        assert result.stats == {
            "sources_processed": 2,
            "sources_failed": 1,
            "parsed": 5,
            "filtered_out": 2,
            "unique": 2,
            "classified_out": 0,
            "upserted": 2,
        }
        assert [o.source_url for o in result.opportunities] == [
            "https://example.org/a",
            "https://example.org/b",
        ]
        # First configured source wins the duplicate
        assert result.opportunities[0].title == "Literacy grant for Assam schools"
        assert all(0 <= o.relevance_score <= 100 for o in result.opportunities)

    async def test_source_selection(self, make_pipeline):
        """Test only the requested sources run, in configured order."""
        result = await make_pipeline().run(source_ids=["second", "unknown"], dry_run=True)

        assert result.stats["sources_processed"] == 1
        assert [o.source_url for o in result.opportunities] == ["https://example.org/A"]

    async def test_dry_run_writes_nothing(self, make_pipeline, store):
        result = await make_pipeline(store=store).run(dry_run=True)

        assert len(result.opportunities) == 2
        assert result.stats["upserted"] == 0
        assert store.query_opportunities() == []

    async def test_idempotent(self, make_pipeline, store):
        """Test repeated runs converge on the same rows."""
        pipeline = make_pipeline(store=store)
        await pipeline.run()
        first = store.query_opportunities()
        await pipeline.run()
        second = store.query_opportunities()

        assert [o.source_url for o in second] == [o.source_url for o in first]
        assert [o.created_at for o in second] == [o.created_at for o in first]

    async def test_classifier(self, make_pipeline, store):
        result = await make_pipeline(store=store, classifier=KeepFirstClassifier()).run()

        assert result.stats["classified_out"] == 1
        assert result.stats["upserted"] == 1

    async def test_classify_disabled(self, make_pipeline):
        result = await make_pipeline(classifier=KeepFirstClassifier()).run(dry_run=True, classify=False)
        assert result.stats["classified_out"] == 0
        assert len(result.opportunities) == 2

    async def test_no_sources(self, make_pipeline):
        result = await make_pipeline().run(source_ids=["unknown"])
        assert result.opportunities == []
        assert result.stats["sources_processed"] == 0

    async def test_enrichment_uses_detail_pages(self, sources_path, settings, tmp_path, store):
        """Test sources flagged for enrichment get detail page descriptions."""
        data = yaml.safe_load(Path(sources_path).read_text(encoding="utf-8"))
        data["sources"] = [dict(data["sources"][0], enrich_details=True)]
        path = tmp_path / "enrich.yml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")

        def handler(request):
            body = "<article><p>Grant for government schools across Assam, covering reading corners.</p></article>"
            return httpx.Response(200, text=body)

        pipeline = ScoutPipeline(
            config_path=str(path),
            settings=settings,
            store=store,
            requests_per_second=1000.0,
            transport=httpx.MockTransport(handler),
            enrich_batch_delay=0,
            today=TODAY,
        )
        result = await pipeline.run()

        assert result.opportunities[0].description.startswith("Grant for government schools")

    async def test_save_json(self, make_pipeline, tmp_path):
        pipeline = make_pipeline()
        result = await pipeline.run(dry_run=True)
        path = pipeline.save_json(result.opportunities, "snapshot.json")

        data = json.loads((tmp_path / "output" / "snapshot.json").read_text(encoding="utf-8"))
        assert path.endswith("snapshot.json")
        assert [item["source_url"] for item in data] == ["https://example.org/a", "https://example.org/b"]
