"""Tests for alfred_memory.embeddings: providers and the fallback chain."""

import asyncio
import json
import math

import httpx
import numpy as np
import pytest

from alfred_memory.core.config import EmbeddingConfig
from alfred_memory.core.errors import AllProvidersFailedError, ProviderUnavailableError
from alfred_memory.embeddings import (
    EmbeddingChain,
    FastEmbedModelHandle,
    FastEmbedProvider,
    OllamaEmbeddingProvider,
    VoyageAIProvider,
    create_default_chain,
    normalize_embedding,
)


def _norm(vec):
    return math.sqrt(sum(x * x for x in vec))


class TestNormalizeEmbedding:
    def test_unit_length(self):
        assert normalize_embedding([3.0, 4.0]) == pytest.approx([0.6, 0.8])

    def test_zero_vector_unchanged(self):
        assert normalize_embedding([0.0, 0.0, 0.0]) == [0.0, 0.0, 0.0]

    def test_returns_plain_floats(self):
        result = normalize_embedding(np.array([1.0, 1.0], dtype=np.float32))
        assert isinstance(result, list)
        assert all(isinstance(x, float) for x in result)


class TestEmbeddingChainFallback:
    def test_first_available_provider_wins(self, fake_provider_cls):
        first = fake_provider_cls(name="first")
        second = fake_provider_cls(name="second")
        chain = EmbeddingChain([first, second])

        result = asyncio.run(chain.embed("hello world"))

        assert result.provider == "first"
        assert second.embed_calls == []
        assert second.probe_calls == 0
        assert _norm(result.embedding) == pytest.approx(1.0)

    def test_falls_through_failing_providers(self, fake_provider_cls):
        broken = fake_provider_cls(name="broken", error=RuntimeError("model crashed"))
        also_broken = fake_provider_cls(name="also-broken", error=ProviderUnavailableError("x", "down"))
        working = fake_provider_cls(name="working")
        chain = EmbeddingChain([broken, also_broken, working])

        result = asyncio.run(chain.embed("hello"))

        assert result.provider == "working"
        assert broken.embed_calls == ["hello"]
        assert also_broken.embed_calls == ["hello"]

    def test_unavailable_provider_skipped_without_embedding(self, fake_provider_cls):
        offline = fake_provider_cls(name="offline", available=False)
        working = fake_provider_cls(name="working")
        chain = EmbeddingChain([offline, working])

        result = asyncio.run(chain.embed("hello"))

        assert result.provider == "working"
        assert offline.embed_calls == []

    def test_probe_exception_treated_as_unavailable(self, fake_provider_cls):
        flaky = fake_provider_cls(name="flaky", available=ConnectionError("probe blew up"))
        working = fake_provider_cls(name="working")
        chain = EmbeddingChain([flaky, working])

        result = asyncio.run(chain.embed("hello"))

        assert result.provider == "working"
        assert flaky.embed_calls == []

    def test_all_unavailable_raises_with_reasons(self, fake_provider_cls):
        providers = [
            fake_provider_cls(name="a", available=False),
            fake_provider_cls(name="b", available=False),
        ]
        chain = EmbeddingChain(providers)

        with pytest.raises(AllProvidersFailedError) as excinfo:
            asyncio.run(chain.embed("hello"))

        assert [name for name, _ in excinfo.value.failures] == ["a", "b"]
        assert "a: unavailable" in str(excinfo.value)
        assert all(p.embed_calls == [] for p in providers)

    def test_all_failing_raises(self, fake_provider_cls):
        chain = EmbeddingChain([
            fake_provider_cls(name="a", error=RuntimeError("boom")),
            fake_provider_cls(name="b", error=RuntimeError("bang")),
        ])

        with pytest.raises(AllProvidersFailedError, match="a: boom; b: bang"):
            asyncio.run(chain.embed("hello"))

    def test_slow_provider_times_out(self, fake_provider_cls):
        slow = fake_provider_cls(name="slow", delay=1.0)
        fast = fake_provider_cls(name="fast")
        chain = EmbeddingChain([slow, fast], embed_timeout=0.05)

        result = asyncio.run(chain.embed("hello"))

        assert result.provider == "fast"

    def test_wrong_dimensions_fall_through(self, fake_provider_cls):
        class ShortVectors(fake_provider_cls):
            async def embed(self, text):
                return [1.0, 0.0]

        liar = ShortVectors(name="liar", dimensions=16)
        honest = fake_provider_cls(name="honest", dimensions=16)
        chain = EmbeddingChain([liar, honest])

        result = asyncio.run(chain.embed("hello"))

        assert result.provider == "honest"
        assert len(result.embedding) == 16

    def test_embed_query_uses_query_path(self, fake_provider_cls):
        provider = fake_provider_cls(name="p")
        chain = EmbeddingChain([provider])

        result = asyncio.run(chain.embed_query("what did I say"))

        assert provider.query_calls == ["what did I say"]
        assert result.provider == "p"

    def test_empty_provider_list_rejected(self):
        with pytest.raises(ValueError):
            EmbeddingChain([])

    def test_dimensions_come_from_lead_provider(self, fake_provider_cls):
        chain = EmbeddingChain([fake_provider_cls(dimensions=8), fake_provider_cls(dimensions=32)])
        assert chain.dimensions == 8


class TestEmbeddingChainBatch:
    def test_batch_served_by_single_provider(self, fake_provider_cls):
        broken = fake_provider_cls(name="broken", error=RuntimeError("no batch"))
        working = fake_provider_cls(name="working")
        chain = EmbeddingChain([broken, working])

        texts = ["one", "two", "three"]
        result = asyncio.run(chain.embed_batch(texts))

        assert result.provider == "working"
        assert len(result.embeddings) == 3
        assert broken.batch_calls == [texts]
        assert working.batch_calls == [texts]
        assert all(_norm(v) == pytest.approx(1.0) for v in result.embeddings)

    def test_partial_batch_falls_through_whole_batch(self, fake_provider_cls):
        class DropsOne(fake_provider_cls):
            async def embed_batch(self, texts):
                self.batch_calls.append(list(texts))
                return [[1.0] * self.dimensions for _ in texts[:-1]]

        partial = DropsOne(name="partial")
        full = fake_provider_cls(name="full")
        chain = EmbeddingChain([partial, full])

        result = asyncio.run(chain.embed_batch(["a", "b"]))

        assert result.provider == "full"
        assert len(result.embeddings) == 2

    def test_batch_failure_message(self, fake_provider_cls):
        chain = EmbeddingChain([fake_provider_cls(name="a", available=False)])

        with pytest.raises(AllProvidersFailedError, match="for batch"):
            asyncio.run(chain.embed_batch(["x"]))

    def test_empty_batch(self, fake_provider_cls):
        provider = fake_provider_cls()
        chain = EmbeddingChain([provider])

        result = asyncio.run(chain.embed_batch([]))

        assert result.embeddings == []
        assert result.provider is None
        assert provider.probe_calls == 0


class TestChainStatusAndClose:
    def test_check_availability_reports_every_provider(self, fake_provider_cls):
        chain = EmbeddingChain([
            fake_provider_cls(name="up"),
            fake_provider_cls(name="down", available=False),
            fake_provider_cls(name="broken", available=RuntimeError("x")),
        ])

        statuses = asyncio.run(chain.check_availability())

        assert [(s.name, s.available) for s in statuses] == [
            ("up", True),
            ("down", False),
            ("broken", False),
        ]

    def test_close_closes_providers(self, fake_provider_cls):
        providers = [fake_provider_cls(name="a"), fake_provider_cls(name="b")]
        asyncio.run(EmbeddingChain(providers).close())
        assert all(p.closed for p in providers)


class TestOllamaProvider:
    def _run(self, handler, coro_fn):
        async def _go():
            transport = httpx.MockTransport(handler)
            async with httpx.AsyncClient(transport=transport) as client:
                provider = OllamaEmbeddingProvider(
                    base_url="http://ollama.test",
                    model="nomic-embed-text",
                    dimensions=2,
                    http_client=client,
                )
                return await coro_fn(provider)

        return asyncio.run(_go())

    def test_available_when_model_pulled(self):
        def handler(request):
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "nomic-embed-text:latest"}]})

        assert self._run(handler, lambda p: p.is_available()) is True

    def test_unavailable_when_model_missing(self):
        def handler(request):
            return httpx.Response(200, json={"models": [{"name": "llama3:8b"}]})

        assert self._run(handler, lambda p: p.is_available()) is False

    def test_unavailable_when_daemon_down(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert self._run(handler, lambda p: p.is_available()) is False

    def test_embed_posts_prompt_and_normalizes(self):
        def handler(request):
            assert request.url.path == "/api/embeddings"
            body = json.loads(request.content.decode("utf-8"))
            assert body == {"model": "nomic-embed-text", "prompt": "hello"}
            return httpx.Response(200, json={"embedding": [3.0, 4.0]})

        assert self._run(handler, lambda p: p.embed("hello")) == pytest.approx([0.6, 0.8])

    def test_http_error_status_raises(self):
        def handler(request):
            return httpx.Response(500, text="model not loaded")

        with pytest.raises(RuntimeError, match="500"):
            self._run(handler, lambda p: p.embed("hello"))

    def test_connection_error_is_provider_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderUnavailableError):
            self._run(handler, lambda p: p.embed("hello"))


class TestVoyageProvider:
    def _run(self, handler, coro_fn, api_key="test-key"):
        async def _go():
            transport = httpx.MockTransport(handler)
            async with httpx.AsyncClient(transport=transport) as client:
                provider = VoyageAIProvider(
                    api_key=api_key,
                    dimensions=2,
                    base_url="http://voyage.test/v1",
                    http_client=client,
                )
                return await coro_fn(provider)

        return asyncio.run(_go())

    def test_remote_flag(self):
        assert VoyageAIProvider.remote is True

    def test_unavailable_without_key(self, monkeypatch):
        monkeypatch.delenv("VOYAGE_API_KEY", raising=False)
        provider = VoyageAIProvider()
        assert asyncio.run(provider.is_available()) is False

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("VOYAGE_API_KEY", "env-key")
        provider = VoyageAIProvider()
        assert asyncio.run(provider.is_available()) is True

    def test_query_embedding_uses_query_input_type(self):
        def handler(request):
            assert request.url.path == "/v1/embeddings"
            assert request.headers["Authorization"] == "Bearer test-key"
            body = json.loads(request.content.decode("utf-8"))
            assert body["input_type"] == "query"
            assert body["input"] == ["where is my key"]
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.0, 2.0]}]})

        result = self._run(handler, lambda p: p.embed_query("where is my key"))
        assert result == pytest.approx([0.0, 1.0])

    def test_batch_keeps_input_order(self):
        def handler(request):
            body = json.loads(request.content.decode("utf-8"))
            assert body["input_type"] == "document"
            return httpx.Response(
                200,
                json={"data": [
                    {"index": 1, "embedding": [0.0, 1.0]},
                    {"index": 0, "embedding": [1.0, 0.0]},
                ]},
            )

        result = self._run(handler, lambda p: p.embed_batch(["first", "second"]))
        assert result[0] == pytest.approx([1.0, 0.0])
        assert result[1] == pytest.approx([0.0, 1.0])

    def test_large_batches_are_split(self):
        sizes = []

        def handler(request):
            body = json.loads(request.content.decode("utf-8"))
            sizes.append(len(body["input"]))
            return httpx.Response(
                200,
                json={"data": [{"index": i, "embedding": [1.0, 0.0]} for i in range(len(body["input"]))]},
            )

        texts = [f"text {i}" for i in range(130)]
        result = self._run(handler, lambda p: p.embed_batch(texts))
        assert sizes == [128, 2]
        assert len(result) == 130

    def test_missing_key_raises_unavailable(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(ProviderUnavailableError):
            self._run(handler, lambda p: p.embed("x"), api_key="")


class _FakeTextEmbedding:
    def embed(self, texts):
        for text in texts:
            yield np.array([float(len(text)), 0.0, 0.0], dtype=np.float32)


class TestFastEmbedProvider:
    def test_embed_normalizes_model_output(self, tmp_path, monkeypatch):
        handle = FastEmbedModelHandle("test-model", tmp_path)
        monkeypatch.setattr(handle, "get", lambda: _FakeTextEmbedding())
        provider = FastEmbedProvider(handle, dimensions=3)

        vectors = asyncio.run(provider.embed_batch(["ab", "abcd"]))

        assert vectors == [pytest.approx([1.0, 0.0, 0.0])] * 2

    def test_load_failure_is_provider_unavailable(self, tmp_path, monkeypatch):
        handle = FastEmbedModelHandle("test-model", tmp_path)

        def _fail():
            raise OSError("model files missing")

        monkeypatch.setattr(handle, "get", _fail)
        provider = FastEmbedProvider(handle, dimensions=3)

        with pytest.raises(ProviderUnavailableError, match="model load failed"):
            asyncio.run(provider.embed("hello"))

    def test_offline_without_cached_model_is_unavailable(self, tmp_path):
        handle = FastEmbedModelHandle("test-model", tmp_path / "empty", local_files_only=True)
        provider = FastEmbedProvider(handle)
        assert asyncio.run(provider.is_available()) is False

    def test_close_only_releases_owned_handle(self, tmp_path):
        handle = FastEmbedModelHandle("test-model", tmp_path)
        handle._model = _FakeTextEmbedding()

        asyncio.run(FastEmbedProvider(handle, owns_handle=False).close())
        assert handle.loaded is True

        asyncio.run(FastEmbedProvider(handle, owns_handle=True).close())
        assert handle.loaded is False

    def test_loaded_handle_is_available(self, tmp_path):
        handle = FastEmbedModelHandle("test-model", tmp_path)
        handle._model = _FakeTextEmbedding()
        assert asyncio.run(FastEmbedProvider(handle).is_available()) is True


class TestDefaultChain:
    def test_local_providers_only_by_default(self, tmp_path):
        chain = create_default_chain(EmbeddingConfig(cache_dir=str(tmp_path)))
        assert [p.name for p in chain.providers] == ["fastembed", "ollama"]
        assert chain.dimensions == 384
        assert not any(p.remote for p in chain.providers)

    def test_voyage_appended_when_enabled(self, tmp_path):
        config = EmbeddingConfig(cache_dir=str(tmp_path), voyage_enabled=True, voyage_api_key="k")
        chain = create_default_chain(config)
        assert [p.name for p in chain.providers] == ["fastembed", "ollama", "voyage-ai"]
        assert chain.providers[-1].remote is True

    def test_shared_model_handle_is_borrowed(self, tmp_path):
        handle = FastEmbedModelHandle("shared", tmp_path)
        handle._model = _FakeTextEmbedding()
        chain = create_default_chain(
            EmbeddingConfig(cache_dir=str(tmp_path), ollama_enabled=False),
            model_handle=handle,
        )
        asyncio.run(chain.close())
        assert handle.loaded is True

    def test_no_providers_enabled(self, tmp_path):
        config = EmbeddingConfig(cache_dir=str(tmp_path), fastembed_enabled=False, ollama_enabled=False)
        with pytest.raises(ValueError):
            create_default_chain(config)
