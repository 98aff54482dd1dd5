"""
Alfred Memory Engine
--------------------
Central entry point used by the assistant to remember and recall.

Composes the subsystems:
- Embedding chain (fastembed -> Ollama -> VoyageAI, in priority order)
- SQLite record store (authoritative rows, exact vector search, FTS5)
- Hybrid retrieval (vector + lexical with Reciprocal Rank Fusion)

Embedding runs outside the store lock so a slow provider never stalls
other store operations; every store access goes through a worker thread
while holding the engine's asyncio lock.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from alfred_memory.core.config import AlfredMemoryConfig
from alfred_memory.core.errors import EmptyContentError
from alfred_memory.core.types import (
    HybridSearchResult,
    MemoryRecord,
    ProviderStatus,
    SearchFilter,
    SearchOptions,
)
from alfred_memory.embeddings.base import normalize_embedding
from alfred_memory.embeddings.chain import EmbeddingChain, create_default_chain
from alfred_memory.retrieval.hybrid import HybridSearch
from alfred_memory.store.record_store import SQLiteRecordStore

logger = logging.getLogger("Alfred")


def _require_content(content: Optional[str]) -> str:
    if content is None or not content.strip():
        raise EmptyContentError("memory content must not be empty")
    return content


class MemoryEngine:
    """
    Local memory engine: stores short texts with embeddings and recalls
    them by hybrid semantic + keyword relevance.

    Usage:
        engine = MemoryEngine(AlfredMemoryConfig.from_env())
        await engine.initialize()

        memory_id = await engine.insert("User prefers dark mode", agent_id="alfred")
        results = await engine.search("What theme does the user like?")

        await engine.shutdown()
    """

    def __init__(
        self,
        config: Optional[AlfredMemoryConfig] = None,
        chain: Optional[EmbeddingChain] = None,
    ):
        self.config = config or AlfredMemoryConfig.from_env()
        self._chain = chain
        self._owns_chain = chain is None
        self._store: Optional[SQLiteRecordStore] = None
        self._hybrid: Optional[HybridSearch] = None
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """
        Initialize all subsystems. Must be called before any operations.
        """
        if self._initialized:
            return

        logger.info("Initializing Alfred memory engine...")
        t0 = time.time()

        self.config.ensure_directories()
        if self._chain is None:
            self._chain = create_default_chain(self.config.embedding)

        # The lead provider fixes the store layout unless configured explicitly
        dimensions = self.config.store.dimensions or self._chain.dimensions
        self._store = await asyncio.to_thread(
            SQLiteRecordStore,
            self.config.store.path,
            dimensions,
            lock_timeout=self.config.store.lock_timeout,
            enable_fts=self.config.store.enable_fts,
        )

        retrieval = self.config.retrieval
        self._hybrid = HybridSearch(
            self._store,
            k1=retrieval.k1,
            b=retrieval.b,
            rrf_k=retrieval.rrf_k,
            use_fts=retrieval.use_fts,
            candidate_multiplier=retrieval.candidate_multiplier,
            min_candidates=retrieval.min_candidates,
        )

        self._initialized = True
        total = await asyncio.to_thread(self._store.count)
        logger.info(
            "Alfred memory engine initialized in %.2fs (%d memories, %d dims)",
            time.time() - t0,
            total,
            dimensions,
        )

    async def shutdown(self) -> None:
        """Close the store and, when the engine built it, the embedding chain."""
        if not self._initialized:
            return
        async with self._lock:
            await asyncio.to_thread(self._store.close)
        if self._owns_chain and self._chain is not None:
            await self._chain.close()
            self._chain = None
        self._store = None
        self._hybrid = None
        self._initialized = False
        logger.info("Alfred memory engine shut down")

    async def __aenter__(self) -> "MemoryEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    def _check_initialized(self) -> None:
        """Raise if not initialized."""
        if not self._initialized:
            raise RuntimeError("MemoryEngine not initialized. Call await engine.initialize() first.")

    async def _run(self, fn, *args, **kwargs):
        async with self._lock:
            return await asyncio.to_thread(fn, *args, **kwargs)

    # ==========================================
    # Writes
    # ==========================================

    async def insert(
        self,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        agent_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> str:
        """
        Embed and store a memory.

        Returns:
            The new memory id.

        Raises:
            EmptyContentError: content is empty or whitespace.
            AllProvidersFailedError: no embedding provider could embed it.
            DimensionMismatchError: a fallback provider produced vectors of a
                different size than the store holds.
        """
        self._check_initialized()
        content = _require_content(content)

        embedded = await self._chain.embed(content)
        record = MemoryRecord(
            content=content,
            embedding=embedded.embedding,
            metadata=metadata or {},
            tags=tags or [],
            agent_id=agent_id,
            session_id=session_id,
        )
        await self._run(self._store.insert, record)
        logger.debug("Memory added: %s (provider=%s)", record.id, embedded.provider)
        return record.id

    async def insert_many(self, items: Sequence[Mapping[str, Any]]) -> List[str]:
        """
        Store several memories with one batch embedding call.

        Each item is a mapping with ``content`` and optionally ``metadata``,
        ``tags``, ``agent_id`` and ``session_id``. All texts are embedded by
        the same provider; nothing is written unless the whole batch embeds.
        """
        self._check_initialized()
        if not items:
            return []
        contents = [_require_content(item.get("content")) for item in items]

        batch = await self._chain.embed_batch(contents)
        records = [
            MemoryRecord(
                content=content,
                embedding=embedding,
                metadata=item.get("metadata") or {},
                tags=item.get("tags") or [],
                agent_id=item.get("agent_id"),
                session_id=item.get("session_id"),
            )
            for item, content, embedding in zip(items, contents, batch.embeddings)
        ]

        def _insert_all() -> List[str]:
            return [self._store.insert(record) for record in records]

        ids = await self._run(_insert_all)
        logger.info("Added %d memories (provider=%s)", len(ids), batch.provider)
        return ids

    async def update(
        self,
        memory_id: str,
        content: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
    ) -> bool:
        """Update a memory in place; new content is re-embedded. Returns False if missing."""
        self._check_initialized()
        embedding = None
        if content is not None:
            content = _require_content(content)
            embedding = (await self._chain.embed(content)).embedding
        return await self._run(
            self._store.update,
            memory_id,
            content=content,
            embedding=embedding,
            metadata=metadata,
            tags=tags,
        )

    async def delete(self, memory_id: str) -> bool:
        """Delete a memory from the store and every lexical index."""
        self._check_initialized()
        deleted = await self._run(self._hybrid.delete, memory_id)
        if deleted:
            logger.debug("Memory deleted: %s", memory_id)
        return deleted

    async def prune_older_than(self, timestamp: float) -> int:
        """Delete memories created before ``timestamp``. Returns how many were removed."""
        self._check_initialized()
        return await self._run(self._store.delete_older_than, timestamp)

    # ==========================================
    # Reads
    # ==========================================

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        filter: Optional[SearchFilter] = None,
        vector_weight: Optional[float] = None,
        bm25_weight: Optional[float] = None,
        query_embedding: Optional[Sequence[float]] = None,
    ) -> List[HybridSearchResult]:
        """
        Hybrid recall: semantic similarity fused with keyword relevance.

        The query is embedded concurrently with the lexical candidate fetch.
        If no embedding provider can serve the query the error propagates;
        there is no lexical-only fallback.
        """
        self._check_initialized()
        if not query or not query.strip():
            return []

        retrieval = self.config.retrieval
        options = SearchOptions(
            limit=limit or retrieval.default_limit,
            vector_weight=retrieval.vector_weight if vector_weight is None else vector_weight,
            bm25_weight=retrieval.bm25_weight if bm25_weight is None else bm25_weight,
            filter=filter,
        )
        candidate_limit = self._hybrid.candidate_limit(options.limit)
        fetch_lexical = (self._hybrid.lexical_search, query, candidate_limit, options.filter)

        if query_embedding is None:
            lexical_task = asyncio.ensure_future(self._run(*fetch_lexical))
            try:
                embedded = await self._chain.embed_query(query)
            except BaseException:
                # The prefetch must not outlive a failed search
                lexical_task.cancel()
                await asyncio.gather(lexical_task, return_exceptions=True)
                raise
            lexical_hits = await lexical_task
            vector = embedded.embedding
        else:
            vector = normalize_embedding(query_embedding)
            lexical_hits = await self._run(*fetch_lexical)

        return await self._run(self._hybrid.search, query, vector, options, lexical_hits)

    async def get(self, memory_id: str) -> Optional[MemoryRecord]:
        self._check_initialized()
        return await self._run(self._store.get, memory_id)

    async def get_all(self, filter: Optional[SearchFilter] = None) -> List[MemoryRecord]:
        self._check_initialized()
        return await self._run(self._store.get_all, filter)

    async def count(self, agent_id: Optional[str] = None) -> int:
        self._check_initialized()
        return await self._run(self._store.count, agent_id)

    async def list_agents(self) -> List[str]:
        self._check_initialized()
        return await self._run(self._store.list_agents)

    async def provider_status(self) -> List[ProviderStatus]:
        """Probe every embedding provider in chain order."""
        self._check_initialized()
        return await self._chain.check_availability()

    async def stats(self) -> Dict[str, Any]:
        """Summary of the store and the configured chain."""
        self._check_initialized()
        total = await self.count()
        agents = await self.list_agents()
        return {
            "total_memories": total,
            "agents": agents,
            "dimensions": self._store.dimensions,
            "db_path": str(self._store.db_path),
            "fts_enabled": bool(self._hybrid.use_fts and self._store.fts_available),
            "providers": [p.name for p in self._chain.providers],
        }

    @property
    def is_initialized(self) -> bool:
        return self._initialized
