"""Tests for the secondary classifier plugin."""

import json

import httpx
import pytest

from scouted.core.models import RawOpportunity
from scouted.plugins.classifier import (
    MODELS,
    CallOutcome,
    ClassifierState,
    OpenRouterClassifier,
    format_item,
    parse_completion,
)


def items(count):
    return [
        RawOpportunity(
            title=f"Opportunity {i}",
            source_url=f"https://example.org/{i}",
            description="School grant",
            organisation="Trust",
        )
        for i in range(count)
    ]


def completion(content):
    return {"choices": [{"message": {"content": content}}]}


class Recorder:
    """MockTransport handler that replays a response script."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.models = []

    def __call__(self, request):
        body = json.loads(request.content)
        self.models.append(body["model"])
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def classifier_for(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("batch_delay", 0)
    return OpenRouterClassifier(api_key="test-key", http_client=client, **kwargs)


class TestParseCompletion:
    """Tests for parse_completion function."""

    def test_plain_array(self):
        """Test a bare JSON array."""
        result = parse_completion(completion("[true, false]"), 2)
        assert result.outcome is CallOutcome.SUCCESS
        assert result.values == [True, False]

    def test_array_in_code_block(self):
        """Test arrays wrapped in prose or code fences."""
        result = parse_completion(completion("```json\n[false, true, true]\n```"), 3)
        assert result.values == [False, True, True]

    @pytest.mark.parametrize(
        "payload",
        [
            {"error": {"message": "model overloaded"}},
            completion(""),
            completion("I cannot answer"),
            completion("[true, maybe]"),
            completion("[true]"),
            [True, False],
            {"choices": ["oops"]},
            {"choices": [{"message": "x"}]},
            {"choices": [{"message": {"content": ["true"]}}]},
        ],
    )
    def test_terminal_failures(self, payload):
        """Test error bodies, bad shapes, empty, arrayless, bad JSON and length mismatch."""
        assert parse_completion(payload, 2).outcome is CallOutcome.TERMINAL


class TestFormatItem:
    """Tests for format_item function."""

    def test_format(self):
        """Test the one-line item format."""
        opp = RawOpportunity(
            title="FLN grant",
            source_url="https://example.org/fln",
            description="Line one\nline two",
            tags=["FLN / Foundational Literacy", "EdTech"],
        )
        assert format_item(opp, 0) == (
            'Item 1: "FLN grant" | Org: Unknown | Desc: Line one line two '
            "| Tags: FLN / Foundational Literacy, EdTech"
        )


class TestOpenRouterClassifier:
    """Tests for OpenRouterClassifier."""

    def test_is_available(self):
        """Test availability follows the API key."""
        assert OpenRouterClassifier(api_key="k").is_available()
        assert not OpenRouterClassifier(api_key="").is_available()

    async def test_no_key_accepts_everything(self):
        """Test a missing key skips classification."""
        kept, state = await OpenRouterClassifier(api_key="").classify(items(3))
        assert len(kept) == 3
        assert state.calls == 0

    async def test_success(self):
        """Test verdicts filter the batch in order."""
        handler = Recorder(httpx.Response(200, json=completion("[true, false, true]")))
        kept, state = await classifier_for(handler).classify(items(3))

        assert [o.title for o in kept] == ["Opportunity 0", "Opportunity 2"]
        assert state.accepted == 2
        assert state.rejected == 1
        assert handler.models == [MODELS[0]]

    async def test_terminal_failure_moves_to_next_model(self):
        """Test a bad response tries the next model without retrying."""
        handler = Recorder(
            httpx.Response(200, json=completion("[true]")),
            httpx.Response(200, json=completion("[false, true]")),
        )
        kept, state = await classifier_for(handler).classify(items(2))

        assert handler.models == MODELS[:2]
        assert [o.title for o in kept] == ["Opportunity 1"]

    async def test_retryable_failure_retries_same_model(self):
        """Test upstream rate limiting retries with the same model."""
        handler = Recorder(
            httpx.Response(429, text="rate limited"),
            httpx.Response(200, json=completion("[true, true]")),
        )
        kept, state = await classifier_for(handler).classify(items(2))

        assert handler.models == [MODELS[0], MODELS[0]]
        assert len(kept) == 2
        assert state.failed_open_batches == 0

    async def test_all_models_fail_open(self):
        """Test every model failing accepts the batch."""
        handler = Recorder(httpx.Response(500, text="server error"))
        kept, state = await classifier_for(handler).classify(items(2))

        assert len(kept) == 2
        assert handler.models == MODELS
        assert state.failed_open_batches == 1

    async def test_transport_errors_fail_open(self):
        """Test network errors are retried per model, then fail open."""
        handler = Recorder(httpx.ConnectError("unreachable"))
        kept, state = await classifier_for(handler).classify(items(2))

        assert len(kept) == 2
        assert state.calls == len(MODELS) * 2

    async def test_quota_exhaustion_short_circuits(self):
        """Test the daily quota stops all later calls in the run."""
        handler = Recorder(httpx.Response(429, text='{"error": "free-models-per-day exceeded"}'))
        kept, state = await classifier_for(handler, batch_size=2).classify(items(5))

        assert len(kept) == 5
        assert state.quota_exhausted
        assert state.calls == 1
        assert state.skipped_batches == 2

    async def test_state_carries_across_calls(self):
        """Test an exhausted state passed in prevents any call."""
        handler = Recorder(httpx.Response(200, json=completion("[false]")))
        state = ClassifierState(quota_exhausted=True)
        kept, state = await classifier_for(handler).classify(items(1), state)

        assert len(kept) == 1
        assert handler.models == []

    async def test_fresh_state_per_run(self):
        """Test each call without a state starts clean."""
        handler = Recorder(httpx.Response(429, text="free-models-per-day"))
        classifier = classifier_for(handler)
        _, first = await classifier.classify(items(1))
        _, second = await classifier.classify(items(1))

        assert first.quota_exhausted and second.quota_exhausted
        assert first is not second
        assert handler.models == [MODELS[0], MODELS[0]]

    @pytest.mark.parametrize(
        "body",
        [[True, False], {"choices": ["oops"]}, {"choices": [{"message": "x"}]}],
    )
    async def test_unexpected_shape_fails_open(self, body):
        """Test malformed 200 bodies move through every model and keep the batch."""
        handler = Recorder(httpx.Response(200, json=body))
        kept, state = await classifier_for(handler).classify(items(2))

        assert len(kept) == 2
        assert handler.models == MODELS
        assert state.failed_open_batches == 1
