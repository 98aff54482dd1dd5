"""
Alfred Embedding Provider Contract
----------------------------------
Every backend (local model, local daemon, remote API) implements the same
four-method async contract. Nothing outside a provider knows which backend
it is talking to.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence

import numpy as np


def normalize_embedding(vec: Sequence[float]) -> List[float]:
    """
    Scale a vector to unit L2 norm.
    A zero vector is returned unchanged.
    """
    arr = np.asarray(vec, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        return arr.tolist()
    return (arr / norm).tolist()


class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding backends.

    Subclasses set ``name`` and ``dimensions`` and implement :meth:`embed`
    and :meth:`is_available`. The default :meth:`embed_batch` loops over
    :meth:`embed`; backends with a native batch API override it.
    """

    name: str = "provider"
    dimensions: int = 0
    # True when text is sent off the device
    remote: bool = False

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Return the unit-normalized embedding of ``text``."""

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        results: List[List[float]] = []
        for text in texts:
            results.append(await self.embed(text))
        return results

    async def embed_query(self, text: str) -> List[float]:
        """Embed a search query. Asymmetric backends override this."""
        return await self.embed(text)

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap liveness probe; must not embed anything."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, dimensions={self.dimensions})"
