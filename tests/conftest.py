"""Shared fixtures: deterministic fake embedding providers and isolated config."""

import asyncio
import zlib

import pytest

from alfred_memory.core.config import (
    AlfredMemoryConfig,
    EmbeddingConfig,
    RetrievalConfig,
    StoreConfig,
)
from alfred_memory.embeddings.base import EmbeddingProvider
from alfred_memory.retrieval.bm25 import tokenize_with_stopwords

FAKE_DIMS = 16


def bag_of_words(text, dims=FAKE_DIMS):
    """Hashed term counts; texts sharing words get similar vectors."""
    vec = [0.0] * dims
    for token in tokenize_with_stopwords(text):
        vec[zlib.crc32(token.encode("utf-8")) % dims] += 1.0
    if not any(vec):
        vec[0] = 1.0
    return vec


class FakeProvider(EmbeddingProvider):
    def __init__(self, name="fake", dimensions=FAKE_DIMS, available=True, error=None, delay=0.0):
        self.name = name
        self.dimensions = dimensions
        self.available = available
        self.error = error
        self.delay = delay
        self.probe_calls = 0
        self.embed_calls = []
        self.query_calls = []
        self.batch_calls = []
        self.closed = False

    async def is_available(self):
        self.probe_calls += 1
        if isinstance(self.available, Exception):
            raise self.available
        return self.available

    async def embed(self, text):
        self.embed_calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return bag_of_words(text, self.dimensions)

    async def embed_query(self, text):
        self.query_calls.append(text)
        if self.error is not None:
            raise self.error
        return bag_of_words(text, self.dimensions)

    async def embed_batch(self, texts):
        self.batch_calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [bag_of_words(t, self.dimensions) for t in texts]

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_provider_cls():
    return FakeProvider


@pytest.fixture
def embed_text():
    return bag_of_words


@pytest.fixture
def alfred_home(tmp_path, monkeypatch):
    """Point every Alfred directory at a temp dir."""
    home = tmp_path / "alfred_home"
    monkeypatch.setenv("ALFRED_HOME", str(home))
    for name in ("ALFRED_DATA_DIR", "ALFRED_CACHE_DIR", "ALFRED_CONFIG_DIR", "VOYAGE_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def memory_config(tmp_path):
    data_dir = tmp_path / "data"
    return AlfredMemoryConfig(
        data_dir=str(data_dir),
        embedding=EmbeddingConfig(cache_dir=str(tmp_path / "cache")),
        store=StoreConfig(path=str(data_dir / "vectors.db")),
        retrieval=RetrievalConfig(),
    )
