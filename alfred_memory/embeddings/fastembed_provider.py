"""
Alfred FastEmbed Provider
-------------------------
Local CPU embeddings through fastembed's ONNX runtime models.

The loaded model lives in a FastEmbedModelHandle owned by whoever builds
the chain; providers borrow it and never load models on their own.
"""

import asyncio
import importlib.util
import logging
import threading
from pathlib import Path
from typing import Any, List, Optional

from alfred_memory.core.errors import ProviderUnavailableError
from alfred_memory.embeddings.base import EmbeddingProvider, normalize_embedding

logger = logging.getLogger("Alfred.Embeddings.FastEmbed")


class FastEmbedModelHandle:
    """
    Lazily-loaded fastembed ``TextEmbedding`` with a single owner.

    Loading is serialized so concurrent first calls load the model once.
    """

    def __init__(self, model_name: str, cache_dir, local_files_only: bool = False):
        self.model_name = model_name
        self.cache_dir = Path(cache_dir) if not isinstance(cache_dir, Path) else cache_dir
        self.local_files_only = local_files_only
        self._model: Optional[Any] = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def has_cached_files(self) -> bool:
        if not self.cache_dir.is_dir():
            return False
        return any(self.cache_dir.iterdir())

    def get(self) -> Any:
        with self._lock:
            if self._model is None:
                from fastembed import TextEmbedding

                self.cache_dir.mkdir(parents=True, exist_ok=True)
                self._model = TextEmbedding(
                    model_name=self.model_name,
                    cache_dir=str(self.cache_dir),
                    local_files_only=self.local_files_only,
                )
                logger.info("Embedding model loaded: fastembed/%s", self.model_name)
            return self._model

    def close(self) -> None:
        with self._lock:
            self._model = None


class FastEmbedProvider(EmbeddingProvider):
    """Fully local provider; the fastest option when the model is cached."""

    name = "fastembed"

    def __init__(self, handle: FastEmbedModelHandle, dimensions: int = 384, owns_handle: bool = False):
        self._handle = handle
        self._owns_handle = owns_handle
        self.dimensions = dimensions

    async def close(self) -> None:
        if self._owns_handle:
            self._handle.close()

    async def is_available(self) -> bool:
        if self._handle.loaded:
            return True
        if importlib.util.find_spec("fastembed") is None:
            return False
        if self._handle.local_files_only:
            return self._handle.has_cached_files()
        return True

    def _encode(self, texts: List[str]) -> List[List[float]]:
        try:
            model = self._handle.get()
        except Exception as e:
            raise ProviderUnavailableError(self.name, f"model load failed: {e}") from e
        return [normalize_embedding(vec.tolist()) for vec in model.embed(texts)]

    async def embed(self, text: str) -> List[float]:
        vectors = await asyncio.to_thread(self._encode, [text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, list(texts))
