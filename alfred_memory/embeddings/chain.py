"""
Alfred Embedding Chain
----------------------
Ordered fallback across embedding providers.

Providers are probed and tried in priority order. The first provider that
returns a well-formed result wins; unavailable providers are skipped and
failing ones fall through to the next. A batch is always served by exactly
one provider. When nothing succeeds the caller gets AllProvidersFailedError
with every provider's reason, never a zero vector.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from alfred_memory.core.config import EmbeddingConfig
from alfred_memory.core.errors import AllProvidersFailedError
from alfred_memory.core.types import BatchEmbeddingResult, EmbeddingResult, ProviderStatus
from alfred_memory.embeddings.base import EmbeddingProvider, normalize_embedding
from alfred_memory.embeddings.fastembed_provider import FastEmbedModelHandle, FastEmbedProvider
from alfred_memory.embeddings.ollama import OllamaEmbeddingProvider
from alfred_memory.embeddings.voyage import VoyageAIProvider

logger = logging.getLogger("Alfred.Embeddings")

T = TypeVar("T")

DEFAULT_PROBE_TIMEOUT = 3.0
DEFAULT_EMBED_TIMEOUT = 30.0


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "timed out"
    return str(error) or type(error).__name__


class EmbeddingChain:
    """Tries an ordered list of providers, returning the first success."""

    def __init__(
        self,
        providers: Sequence[EmbeddingProvider],
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        embed_timeout: float = DEFAULT_EMBED_TIMEOUT,
    ):
        if not providers:
            raise ValueError("EmbeddingChain requires at least one provider")
        self._providers: Tuple[EmbeddingProvider, ...] = tuple(providers)
        self.probe_timeout = probe_timeout
        self.embed_timeout = embed_timeout

    @property
    def providers(self) -> Tuple[EmbeddingProvider, ...]:
        return self._providers

    @property
    def dimensions(self) -> int:
        """Dimensionality of the lead provider; fixes the store layout."""
        return self._providers[0].dimensions

    async def _probe(self, provider: EmbeddingProvider) -> bool:
        return bool(await asyncio.wait_for(provider.is_available(), timeout=self.probe_timeout))

    async def _first_success(
        self,
        call: Callable[[EmbeddingProvider], Awaitable[T]],
        validate: Callable[[EmbeddingProvider, T], Optional[str]],
        *,
        batch: bool,
    ) -> Tuple[T, str]:
        failures: List[Tuple[str, str]] = []
        label = "batch " if batch else ""

        for provider in self._providers:
            try:
                available = await self._probe(provider)
            except Exception as e:
                logger.warning("Availability probe for %s failed: %s", provider.name, _describe(e))
                failures.append((provider.name, f"probe failed: {_describe(e)}"))
                continue

            if not available:
                logger.debug("Provider %s not available for %sembedding, skipping", provider.name, label)
                failures.append((provider.name, "unavailable"))
                continue

            try:
                result = await asyncio.wait_for(call(provider), timeout=self.embed_timeout)
            except Exception as e:
                logger.warning(
                    "Embedding provider %s failed for %s, trying next: %s",
                    provider.name,
                    "batch" if batch else "text",
                    _describe(e),
                )
                failures.append((provider.name, _describe(e)))
                continue

            problem = validate(provider, result)
            if problem is not None:
                logger.warning("Embedding provider %s returned bad output: %s", provider.name, problem)
                failures.append((provider.name, problem))
                continue

            return result, provider.name

        raise AllProvidersFailedError(failures, batch=batch)

    @staticmethod
    def _check_vector(provider: EmbeddingProvider, vector: List[float]) -> Optional[str]:
        if len(vector) != provider.dimensions:
            return f"expected {provider.dimensions} dimensions, got {len(vector)}"
        return None

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed a single document text. Raises AllProvidersFailedError if no provider succeeds."""
        vector, name = await self._first_success(
            lambda p: p.embed(text), self._check_vector, batch=False
        )
        return EmbeddingResult(embedding=normalize_embedding(vector), provider=name)

    async def embed_query(self, text: str) -> EmbeddingResult:
        """Embed a search query with the same fallback policy as :meth:`embed`."""
        vector, name = await self._first_success(
            lambda p: p.embed_query(text), self._check_vector, batch=False
        )
        return EmbeddingResult(embedding=normalize_embedding(vector), provider=name)

    async def embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        """
        Embed a batch with a single provider.

        A provider either embeds every text or the whole batch moves on to
        the next provider.
        """
        if not texts:
            return BatchEmbeddingResult(embeddings=[], provider=None)

        def _check_batch(provider: EmbeddingProvider, vectors: List[List[float]]) -> Optional[str]:
            if len(vectors) != len(texts):
                return f"returned {len(vectors)} embeddings for {len(texts)} texts"
            for vector in vectors:
                problem = self._check_vector(provider, vector)
                if problem is not None:
                    return problem
            return None

        vectors, name = await self._first_success(
            lambda p: p.embed_batch(list(texts)), _check_batch, batch=True
        )
        return BatchEmbeddingResult(
            embeddings=[normalize_embedding(v) for v in vectors],
            provider=name,
        )

    async def check_availability(self) -> List[ProviderStatus]:
        """Report which providers can currently serve requests."""
        statuses: List[ProviderStatus] = []
        for provider in self._providers:
            try:
                available = await self._probe(provider)
            except Exception as e:
                logger.debug("Availability probe for %s failed: %s", provider.name, _describe(e))
                available = False
            statuses.append(
                ProviderStatus(
                    name=provider.name,
                    available=available,
                    dimensions=provider.dimensions,
                    remote=provider.remote,
                )
            )
        return statuses

    async def close(self) -> None:
        for provider in self._providers:
            closer = getattr(provider, "close", None)
            if closer is not None:
                await closer()


def create_default_chain(
    config: Optional[EmbeddingConfig] = None,
    model_handle: Optional[FastEmbedModelHandle] = None,
) -> EmbeddingChain:
    """
    Build the default fallback order from configuration:
      1. fastembed (local ONNX model, fastest)
      2. Ollama (local daemon)
      3. VoyageAI (remote, only when explicitly enabled)
    """
    config = config or EmbeddingConfig()
    providers: List[EmbeddingProvider] = []

    if config.fastembed_enabled:
        handle = model_handle or FastEmbedModelHandle(
            model_name=config.fastembed_model,
            cache_dir=Path(config.cache_dir),
            local_files_only=not config.allow_model_download,
        )
        providers.append(
            FastEmbedProvider(
                handle,
                dimensions=config.fastembed_dimensions,
                owns_handle=model_handle is None,
            )
        )

    if config.ollama_enabled:
        providers.append(
            OllamaEmbeddingProvider(
                base_url=config.ollama_url,
                model=config.ollama_model,
                dimensions=config.ollama_dimensions,
                probe_timeout=config.probe_timeout,
                request_timeout=config.request_timeout,
            )
        )

    if config.voyage_enabled:
        providers.append(
            VoyageAIProvider(
                api_key=config.voyage_api_key,
                model=config.voyage_model,
                dimensions=config.voyage_dimensions,
                base_url=config.voyage_url,
                probe_timeout=config.probe_timeout,
                request_timeout=config.request_timeout,
            )
        )

    if not providers:
        raise ValueError("At least one embedding provider must be enabled")

    logger.info("Embedding chain: %s", " -> ".join(p.name for p in providers))
    return EmbeddingChain(
        providers,
        probe_timeout=config.probe_timeout,
        embed_timeout=config.request_timeout,
    )
