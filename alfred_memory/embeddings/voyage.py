"""
Alfred VoyageAI Provider
------------------------
Remote embeddings from the VoyageAI HTTP API. Requires an API key and
sends memory text off the device, so it only joins a chain when enabled.
"""

import os
from typing import List, Optional

import httpx

from alfred_memory.core.errors import ProviderUnavailableError
from alfred_memory.embeddings.base import normalize_embedding
from alfred_memory.embeddings.http import HTTPEmbeddingProvider

# VoyageAI accepts up to 128 inputs per request
BATCH_SIZE = 128


class VoyageAIProvider(HTTPEmbeddingProvider):
    name = "voyage-ai"
    remote = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "voyage-2",
        dimensions: int = 1024,
        base_url: str = "https://api.voyageai.com/v1",
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
        self._api_key = api_key if api_key is not None else os.environ.get("VOYAGE_API_KEY", "")
        self.model = model
        self.dimensions = dimensions

    async def is_available(self) -> bool:
        return bool(self._api_key)

    async def _call_api(self, texts: List[str], input_type: str) -> List[List[float]]:
        if not self._api_key:
            raise ProviderUnavailableError(self.name, "no API key configured")
        data = await self._post_json(
            "/embeddings",
            {"model": self.model, "input": texts, "input_type": input_type},
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list) or len(items) != len(texts):
            raise RuntimeError(f"VoyageAI returned an unexpected response: {data}")
        # Responses carry an index; keep input order regardless of response order
        items = sorted(items, key=lambda d: d.get("index", 0))
        return [normalize_embedding(item["embedding"]) for item in items]

    async def embed(self, text: str) -> List[float]:
        results = await self._call_api([text], "document")
        return results[0]

    async def embed_query(self, text: str) -> List[float]:
        results = await self._call_api([text], "query")
        return results[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        all_results: List[List[float]] = []
        for start in range(0, len(texts), BATCH_SIZE):
            all_results.extend(await self._call_api(texts[start:start + BATCH_SIZE], "document"))
        return all_results
