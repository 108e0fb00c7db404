"""
Pytest configuration and fixtures for the test suite.

Credentials are set to dummy values before any project module is imported,
and every external collaborator (Gemini, Qdrant, embedding providers) is
replaced with an in-memory fake.
"""

import os
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

os.environ["GOOGLE_API_KEY"] = "test-google-key"
os.environ["LOG_LEVEL"] = "WARNING"

from config import Settings  # noqa: E402


class FakeStream:
    """Async iterator standing in for a Gemini streaming response."""

    def __init__(self, chunks: list[str], failAfter: int | None = None):
        self._chunks = list(chunks)
        self._failAfter = failAfter
        self.sent = 0
        self.closeCount = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._failAfter is not None and self.sent >= self._failAfter:
            raise RuntimeError("model connection reset")
        if self.sent >= len(self._chunks):
            raise StopAsyncIteration
        text = self._chunks[self.sent]
        self.sent += 1
        return SimpleNamespace(text=text)

    async def aclose(self):
        self.closeCount += 1


class FakeRetriever:
    def __init__(self, contexts: list[str] | None = None, fail: bool = False):
        self.contexts = contexts or []
        self.fail = fail
        self.queries: list[str] = []

    def retrieve(self, query: str):
        from custom_types import RAGSearchResult

        self.queries.append(query)
        if self.fail:
            return RAGSearchResult(degraded=True)
        return RAGSearchResult(contexts=self.contexts, sources=["ref.pdf"] if self.contexts else [])


def fakeGenaiClient(text: str | None = None, stream: FakeStream | None = None) -> MagicMock:
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=text))
    client.aio.models.generate_content_stream = AsyncMock(return_value=stream)
    return client


@pytest.fixture
def settings() -> Settings:
    return Settings.from_env()


@pytest.fixture
def noKeySettings(settings: Settings) -> Settings:
    return replace(settings, googleApiKey=None)
