"""Shared fixtures: in-memory store and a deterministic embedding provider."""

import pytest

from linkvault.core.background import TaskRunner
from linkvault.core.embedding_providers import EmbeddingProvider, EmbeddingResult
from linkvault.core.errors import ProviderError
from linkvault.core.storage import DB, connect

# Bag-of-words dimensions for the fake provider
VOCABULARY = ["rust", "ownership", "python", "cooking"]


class FakeProvider(EmbeddingProvider):
    """Embeds text as 1 + word counts over VOCABULARY and records calls."""

    def __init__(self, model: str = "fake-embed-4", fail: bool = False):
        super().__init__(timeout=5.0)
        self._model = model
        self.fail = fail
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return "Fake"

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return len(VOCABULARY)

    async def _request(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if self.fail:
            raise ProviderError("provider down", provider=self.name, retriable=True)
        words = text.lower().split()
        vector = [1.0 + sum(1 for w in words if word in w) for word in VOCABULARY]
        return EmbeddingResult(vector=vector, model=self._model)


@pytest.fixture
def db():
    """Create an in-memory database for testing."""
    conn = connect(":memory:")
    database = DB(conn=conn)
    database.init()
    yield database
    conn.close()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def tasks():
    return TaskRunner()
