"""Pytest configuration and fixtures."""

import os
import tempfile
from collections.abc import AsyncIterator
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from playground.db.database import close_database, init_database
from playground.db.local_storage import LocalStorage
from playground.llm.chat.models import ChatRequest
from playground.llm.chat.store import SessionStore
from playground.main import app


@pytest.fixture(autouse=True)
async def setup_test_db():
    """Set up a test database for each test."""
    # Create a temporary database file
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    # Initialize the database
    await init_database(db_path)

    yield

    # Clean up
    await close_database()
    os.unlink(db_path)


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client for the gateway."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
async def store() -> SessionStore:
    """A session store loaded from the (empty) test database."""
    return await SessionStore.load(LocalStorage())


class FakeProviderClient:
    """Stands in for a provider SDK client inside the gateway."""

    def __init__(
        self,
        fragments: list[str] | None = None,
        fail_at: int | None = None,
        text: str = "",
        error: Exception | None = None,
    ):
        self.fragments = fragments or []
        self.fail_at = fail_at
        self.text = text
        self.error = error
        self.requests: list[ChatRequest] = []

    def build_params(self, request: ChatRequest) -> dict:
        return {}

    async def stream_text(self, request: ChatRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        for index, fragment in enumerate(self.fragments):
            if index == self.fail_at:
                raise RuntimeError("provider exploded")
            yield fragment
        if self.fail_at is not None and self.fail_at >= len(self.fragments):
            raise RuntimeError("provider exploded")

    async def generate_text(self, request: ChatRequest) -> str:
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def fake_provider(monkeypatch):
    """Route gateway dispatch to a FakeProviderClient.

    Returns a dict that records the provider and headers of the last dispatch
    and holds the client under "client" (replace it to change behaviour).
    """
    state: dict = {"client": FakeProviderClient(fragments=["Hel", "lo, ", "world!"])}

    def _get_provider_client(provider, api_key, headers=None):
        state["provider"] = provider
        state["api_key"] = api_key
        state["headers"] = headers
        return state["client"]

    monkeypatch.setattr("playground.api.chat.get_provider_client", _get_provider_client)
    return state
