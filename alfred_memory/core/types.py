"""
Alfred Memory Core Types
------------------------
Pydantic models shared by the store, the retrieval layer and the engine.
"""

import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def dedupe_tags(tags: Optional[List[str]]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for tag in tags or []:
        if tag in seen:
            continue
        seen.add(tag)
        ordered.append(tag)
    return ordered


class MemoryRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str
    embedding: List[float] = Field(default_factory=list)

    # Free-form provenance, never interpreted by the engine
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)

    # Ownership scope; None means unscoped
    agent_id: Optional[str] = None
    session_id: Optional[str] = None

    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @field_validator("content")
    @classmethod
    def _content_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("memory content must not be empty")
        return value

    @field_validator("tags")
    @classmethod
    def _tags_as_set(cls, value: List[str]) -> List[str]:
        return dedupe_tags(value)


class SearchFilter(BaseModel):
    """Equality filters on ownership plus any-of tag membership."""
    agent_id: Optional[str] = None
    session_id: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def _tags_as_set(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return dedupe_tags(value)

    @property
    def is_empty(self) -> bool:
        return self.agent_id is None and self.session_id is None and not self.tags

    def cache_key(self) -> tuple:
        return (self.agent_id, self.session_id, tuple(sorted(self.tags or [])))


class SearchOptions(BaseModel):
    limit: int = Field(default=10, ge=1)
    vector_weight: float = Field(default=0.7, ge=0.0)
    bm25_weight: float = Field(default=0.3, ge=0.0)
    filter: Optional[SearchFilter] = None


class SearchResult(BaseModel):
    """A single hit from one sub-retriever (vector or lexical)."""
    id: str
    content: str
    score: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HybridSearchResult(BaseModel):
    id: str
    content: str
    score: float = 0.0          # fused RRF score
    vector_score: float = 0.0   # raw cosine similarity, 0.0 when not retrieved by vector
    bm25_score: float = 0.0     # raw lexical score, 0.0 when not retrieved lexically
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EmbeddingResult(BaseModel):
    embedding: List[float]
    provider: str


class BatchEmbeddingResult(BaseModel):
    embeddings: List[List[float]] = Field(default_factory=list)
    provider: Optional[str] = None


class ProviderStatus(BaseModel):
    name: str
    available: bool
    dimensions: int
    remote: bool = False
