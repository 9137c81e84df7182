"""
Secondary relevance classifier backed by OpenRouter chat completions.

This plugin is optional - it requires OPENROUTER_API_KEY. It is
fail-open: an outage, a bad response or an exhausted quota only skips
the extra precision layer, it never drops opportunities.

Per batch, each model in priority order is tried up to max_retries
times:

    AttemptModel(m, attempt) -> Success          -> batch decided
                             -> RetryableFailure -> backoff, same model
                             -> TerminalFailure  -> next model
                             -> QuotaExhausted   -> stop; accept the rest

If every model fails the batch is accepted.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import httpx
import structlog

from scouted.config.settings import Settings, get_settings
from scouted.core.models import RawOpportunity

logger = structlog.get_logger(__name__)


OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

# Best free model first, smaller fallbacks after
MODELS = [
    "google/gemma-3-27b-it:free",
    "meta-llama/llama-3.3-70b-instruct:free",
    "google/gemma-3-4b-it:free",
]

BATCH_SIZE = 10
BATCH_DELAY = 3.0
MAX_RETRIES = 2
QUOTA_MARKER = "free-models-per-day"

SYSTEM_PROMPT = """You are a classifier for Central Square Foundation (CSF), an Indian education non-profit focused on K-12 school education.

For each item, reply ONLY with a JSON array of booleans - true if RELEVANT, false if NOT RELEVANT. Example: [true, false, true]

RELEVANT (CSF's focus areas):
- K-12 school education in India (primary, secondary, upper secondary)
- Foundational Literacy and Numeracy (FLN), ECCE / Anganwadi education
- Teacher training and professional development for school teachers
- EdTech for school-age children
- School governance, school leadership
- Education policy (NEP 2020, Samagra Shiksha, Right to Education)
- CSR / philanthropic funding specifically for school education in India
- Grants, RFPs, or funding opportunities for education NGOs working in India

NOT RELEVANT (reject these):
- Higher education only (universities, colleges, postgraduate) with no K-12 component
- Healthcare, nutrition, sanitation, WASH (unless part of a school programme)
- Women empowerment, gender programmes (unless specifically about girls' school education)
- Agriculture, environment, climate change
- Livelihood, microfinance, vocational training for adults, self-help groups
- International programmes with no India connection
- Corporate training, workforce development, adult skills
- Sports, arts, culture (unless school curriculum related)"""

ARRAY_PATTERN = re.compile(r"\[[\s\S]*?\]")


class CallOutcome(str, Enum):
    """Result kind of one model call."""
    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"
    QUOTA_EXHAUSTED = "quota_exhausted"


@dataclass
class CallResult:
    """Outcome of one model call plus the verdicts on success."""
    outcome: CallOutcome
    values: list[bool] = field(default_factory=list)
    detail: str = ""

    @classmethod
    def terminal(cls, detail: str) -> "CallResult":
        return cls(CallOutcome.TERMINAL, detail=detail)

    @classmethod
    def retryable(cls, detail: str) -> "CallResult":
        return cls(CallOutcome.RETRYABLE, detail=detail)


@dataclass
class ClassifierState:
    """
    Run-scoped classifier state.

    Passed into and returned from classify() so that quota exhaustion
    carries across calls within a run, but never across runs or tests.
    """
    quota_exhausted: bool = False
    batches: int = 0
    calls: int = 0
    accepted: int = 0
    rejected: int = 0
    failed_open_batches: int = 0
    skipped_batches: int = 0


def format_item(opportunity: RawOpportunity, index: int) -> str:
    """One line per item: title, organisation, short description, tags."""
    description = opportunity.description[:200].replace("\n", " ")
    organisation = opportunity.organisation or "Unknown"
    tags = ", ".join(opportunity.tags) if opportunity.tags else "None"
    return (
        f'Item {index + 1}: "{opportunity.title}" | Org: {organisation} '
        f"| Desc: {description} | Tags: {tags}"
    )


def parse_completion(payload: dict, expected: int) -> CallResult:
    """
    Interpret a chat completion body.

    Args:
        payload: Decoded JSON response
        expected: Number of items sent

    Returns:
        SUCCESS with one boolean per item, or TERMINAL
    """
    if not isinstance(payload, dict):
        return CallResult.terminal("bad response shape")

    if payload.get("error"):
        error = payload["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        return CallResult.terminal(f"api error: {message}")

    choices = payload.get("choices") or [{}]
    choice = choices[0] if isinstance(choices, list) else None
    if not isinstance(choice, dict):
        return CallResult.terminal("bad response shape")
    message = choice.get("message") or {}
    if not isinstance(message, dict) or not isinstance(message.get("content") or "", str):
        return CallResult.terminal("bad response shape")

    content = (message.get("content") or "").strip()
    if not content:
        return CallResult.terminal("empty response")

    # Models may wrap the array in prose or a code block
    match = ARRAY_PATTERN.search(content)
    if not match:
        return CallResult.terminal(f"no array in: {content[:100]}")

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return CallResult.terminal(f"invalid json: {match.group(0)[:100]}")

    if not isinstance(parsed, list) or len(parsed) != expected:
        return CallResult.terminal(
            f"length mismatch: got {len(parsed) if isinstance(parsed, list) else 'non-list'}, "
            f"expected {expected}"
        )

    return CallResult(CallOutcome.SUCCESS, values=[bool(v) for v in parsed])


class OpenRouterClassifier:
    """
    Batched K-12 relevance classification.

    Usage:
        classifier = OpenRouterClassifier()
        if classifier.is_available():
            kept, state = await classifier.classify(items)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        models: Optional[list[str]] = None,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = BATCH_DELAY,
        max_retries: int = MAX_RETRIES,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize classifier.

        Args:
            api_key: Override OPENROUTER_API_KEY
            models: Model priority list
            batch_size: Items per call
            batch_delay: Seconds between batches; also the backoff base
            max_retries: Attempts per model on retryable failures
            http_client: httpx client (created per classify() call if not provided)
            settings: Settings to read the key from
        """
        if api_key is None:
            api_key = (settings or get_settings()).openrouter_api_key
        self.api_key = api_key
        self.models = list(models or MODELS)
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_retries = max_retries
        self.http_client = http_client

    def is_available(self) -> bool:
        """Check if the API key is configured."""
        return bool(self.api_key)

    async def classify(
        self,
        items: list[RawOpportunity],
        state: Optional[ClassifierState] = None,
    ) -> tuple[list[RawOpportunity], ClassifierState]:
        """
        Keep the items the model judges relevant.

        Args:
            items: Deduplicated candidates
            state: State from earlier calls in this run (new if None)

        Returns:
            (accepted items in input order, updated state)
        """
        state = state or ClassifierState()

        if not self.is_available():
            logger.info("classifier_skipped", reason="OPENROUTER_API_KEY not set")
            return list(items), state
        if not items:
            return [], state

        if self.http_client is not None:
            accepted = await self._classify_all(self.http_client, items, state)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(60.0)) as client:
                accepted = await self._classify_all(client, items, state)

        logger.info(
            "classification_complete",
            accepted=len(accepted),
            total=len(items),
            quota_exhausted=state.quota_exhausted,
        )
        return accepted, state

    async def _classify_all(
        self,
        client: httpx.AsyncClient,
        items: list[RawOpportunity],
        state: ClassifierState,
    ) -> list[RawOpportunity]:
        accepted: list[RawOpportunity] = []

        for start in range(0, len(items), self.batch_size):
            batch = items[start:start + self.batch_size]
            state.batches += 1

            if state.quota_exhausted:
                state.skipped_batches += 1
                state.accepted += len(batch)
                accepted.extend(batch)
                continue

            verdicts = await self.classify_batch(client, batch, state)
            for opportunity, keep in zip(batch, verdicts):
                if keep:
                    accepted.append(opportunity)
                    state.accepted += 1
                else:
                    state.rejected += 1
                    logger.info("classifier_rejected", title=opportunity.title[:80])

            if start + self.batch_size < len(items) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        return accepted

    async def classify_batch(
        self,
        client: httpx.AsyncClient,
        batch: list[RawOpportunity],
        state: ClassifierState,
    ) -> list[bool]:
        """
        Verdicts for one batch, trying models in priority order.

        Returns:
            One boolean per item; all True when every model fails
        """
        formatted = [format_item(opp, i) for i, opp in enumerate(batch)]

        for model in self.models:
            if state.quota_exhausted:
                break

            for attempt in range(self.max_retries):
                if attempt > 0:
                    backoff = self.batch_delay * (2 ** attempt)
                    logger.info("classifier_retry", model=model, attempt=attempt + 1, backoff=backoff)
                    await asyncio.sleep(backoff)

                result = await self.call_model(client, formatted, model, state)

                if result.outcome is CallOutcome.SUCCESS:
                    return result.values
                if result.outcome is CallOutcome.QUOTA_EXHAUSTED:
                    state.quota_exhausted = True
                    logger.warning("classifier_quota_exhausted")
                    break

                logger.warning(
                    "classifier_call_failed",
                    model=model,
                    outcome=result.outcome.value,
                    detail=result.detail[:200],
                )
                if result.outcome is CallOutcome.TERMINAL:
                    break

        state.failed_open_batches += 1
        logger.warning("classifier_failed_open", items=len(batch))
        return [True] * len(batch)

    async def call_model(
        self,
        client: httpx.AsyncClient,
        formatted: list[str],
        model: str,
        state: ClassifierState,
    ) -> CallResult:
        """One chat completion call, classified into a CallResult."""
        state.calls += 1
        body = {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": "\n".join(formatted)},
            ],
            "temperature": 0,
            "max_tokens": 256,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": "https://scouted.csf.org.in",
            "X-Title": "ScoutEd Scraper",
        }

        try:
            response = await client.post(OPENROUTER_URL, json=body, headers=headers)
        except httpx.HTTPError as e:
            return CallResult.retryable(f"transport error: {e}")

        if response.status_code == 429:
            if QUOTA_MARKER in response.text:
                return CallResult(CallOutcome.QUOTA_EXHAUSTED, detail="daily quota")
            return CallResult.retryable("rate limited upstream")

        if not response.is_success:
            return CallResult.terminal(f"status {response.status_code}: {response.text[:200]}")

        try:
            payload = response.json()
        except ValueError:
            return CallResult.terminal("response is not json")

        return parse_completion(payload, len(formatted))
