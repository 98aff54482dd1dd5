"""
Alfred Ollama Provider
----------------------
Embeddings from a locally running Ollama daemon.
"""

import logging
from typing import List, Optional

import httpx

from alfred_memory.embeddings.base import normalize_embedding
from alfred_memory.embeddings.http import HTTPEmbeddingProvider

logger = logging.getLogger("Alfred.Embeddings.Ollama")


class OllamaEmbeddingProvider(HTTPEmbeddingProvider):
    """Calls ``/api/embeddings``; Ollama has no batch endpoint for it, so batches are sequential."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        dimensions: int = 768,
        *,
        probe_timeout: float = 3.0,
        request_timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            base_url,
            probe_timeout=probe_timeout,
            request_timeout=request_timeout,
            http_client=http_client,
        )
        self.model = model
        self.dimensions = dimensions

    async def is_available(self) -> bool:
        try:
            response = await self._get_client().get(
                f"{self.base_url}/api/tags", timeout=self.probe_timeout
            )
        except httpx.HTTPError as e:
            logger.debug("Ollama probe failed: %s", e)
            return False
        if response.status_code != 200:
            return False

        try:
            models = response.json().get("models")
        except ValueError:
            return False
        if models is None:
            return True
        # The model must actually be pulled, with or without a tag suffix
        return any(
            m.get("name") == self.model or str(m.get("name", "")).startswith(f"{self.model}:")
            for m in models
        )

    async def embed(self, text: str) -> List[float]:
        data = await self._post_json(
            "/api/embeddings",
            {"model": self.model, "prompt": text},
        )
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not embedding:
            raise RuntimeError(f"Ollama returned an unexpected response: {data}")
        return normalize_embedding(embedding)
