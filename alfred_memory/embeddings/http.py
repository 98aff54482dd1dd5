"""
Shared plumbing for providers that talk HTTP.
"""

from typing import Any, Dict, Optional

import httpx

from alfred_memory.core.errors import ProviderUnavailableError
from alfred_memory.embeddings.base import EmbeddingProvider


class HTTPEmbeddingProvider(EmbeddingProvider):
    """
    Base for httpx-backed providers.

    An injected ``http_client`` is borrowed; otherwise the provider owns one
    and closes it in :meth:`close`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        probe_timeout: float = 3.0,
        request_timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.probe_timeout = probe_timeout
        self.request_timeout = request_timeout
        self._owns_client = http_client is None
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers={"Accept": "application/json"})
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post_json(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            response = await self._get_client().post(
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.request_timeout,
            )
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                self.name, f"could not reach {self.base_url}: {exc}"
            ) from exc

        if response.status_code >= 400:
            raise RuntimeError(
                f"{self.name} embedding failed ({response.status_code}): {response.text}"
            )
        return response.json()
