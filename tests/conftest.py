"""Shared fixtures: fake HTTP transport and in-memory storage."""

from typing import Callable

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from scouted.config.settings import Settings
from scouted.core.http_client import HttpClient
from scouted.storage import OpportunityStore


@pytest.fixture
def settings():
    """Settings with no credentials, independent of the environment."""
    return Settings(_env_file=None, database_url="", openrouter_api_key="",
                    google_cse_api_key="", google_cse_id="", resend_api_key="")


@pytest.fixture
def http_client_factory():
    """Build an HttpClient over a MockTransport handler (no rate limit waits)."""
    clients = []

    def build(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> HttpClient:
        kwargs.setdefault("requests_per_second", 1000.0)
        client = HttpClient(transport=httpx.MockTransport(handler), **kwargs)
        clients.append(client)
        return client

    return build


@pytest.fixture
def store():
    """OpportunityStore over a fresh in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    opportunity_store = OpportunityStore(engine=engine)
    opportunity_store.create_schema()
    yield opportunity_store
    engine.dispose()
