"""
Alfred Hybrid Retrieval
-----------------------
Vector similarity and lexical relevance over the same filtered candidate
set, combined with weighted Reciprocal Rank Fusion (RRF).

Lexical signal comes from the store's FTS5 index when it is available and
from an in-memory BM25 rebuild otherwise. A failing FTS5 query degrades to
the BM25 path; it never fails the search.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from alfred_memory.core.errors import LexicalIndexDegradedError
from alfred_memory.core.types import (
    HybridSearchResult,
    MemoryRecord,
    SearchFilter,
    SearchOptions,
    SearchResult,
)
from alfred_memory.retrieval.bm25 import B, K1, BM25Index, tokenize_with_stopwords
from alfred_memory.retrieval.fusion import RRF_K, reciprocal_rank_fusion
from alfred_memory.store.record_store import SQLiteRecordStore

logger = logging.getLogger("Alfred.Retrieval")

CANDIDATE_MULTIPLIER = 3
MIN_CANDIDATES = 50


def _filter_key(search_filter: Optional[SearchFilter]) -> Optional[tuple]:
    if search_filter is None or search_filter.is_empty:
        return None
    return search_filter.cache_key()


class HybridSearch:
    """
    Two-signal retrieval with Reciprocal Rank Fusion.

    The BM25 index is a cache of the store: it is rebuilt from the store's
    rows whenever the store generation or the filter differs from the
    last build.
    """

    def __init__(
        self,
        store: SQLiteRecordStore,
        k1: float = K1,
        b: float = B,
        rrf_k: int = RRF_K,
        use_fts: bool = True,
        candidate_multiplier: int = CANDIDATE_MULTIPLIER,
        min_candidates: int = MIN_CANDIDATES,
    ):
        self.store = store
        self.rrf_k = rrf_k
        self.use_fts = use_fts
        self.candidate_multiplier = candidate_multiplier
        self.min_candidates = min_candidates
        self._bm25 = BM25Index(k1=k1, b=b)
        self._bm25_records: Dict[str, MemoryRecord] = {}
        self._bm25_key: Optional[Tuple[int, Optional[tuple]]] = None

    @property
    def bm25(self) -> BM25Index:
        return self._bm25

    def candidate_limit(self, limit: int) -> int:
        """How many candidates each sub-retriever contributes to fusion."""
        return max(limit * self.candidate_multiplier, self.min_candidates)

    def vector_search(
        self,
        query_embedding: Sequence[float],
        limit: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        return self.store.vector_search(query_embedding, limit, search_filter)

    def _ensure_bm25(self, search_filter: Optional[SearchFilter]) -> None:
        key = (self.store.generation, _filter_key(search_filter))
        if key == self._bm25_key:
            return
        records = self.store.get_all(search_filter, include_embedding=False)
        self._bm25.index((r.id, r.content) for r in records)
        self._bm25_records = {r.id: r for r in records}
        self._bm25_key = key

    def bm25_search(
        self,
        query: str,
        limit: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        """In-memory BM25 over the store's current (filtered) rows."""
        self._ensure_bm25(search_filter)
        results = []
        for doc_id, score in self._bm25.search(query, limit):
            record = self._bm25_records[doc_id]
            results.append(
                SearchResult(
                    id=doc_id,
                    content=record.content,
                    score=score,
                    metadata=record.metadata,
                )
            )
        return results

    def lexical_search(
        self,
        query: str,
        limit: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        """FTS5 when enabled and healthy, in-memory BM25 otherwise."""
        if self.use_fts and self.store.fts_available:
            try:
                return self.store.fts_search(tokenize_with_stopwords(query), limit, search_filter)
            except LexicalIndexDegradedError as e:
                logger.warning("Full-text index degraded, falling back to BM25 rebuild: %s", e)
        return self.bm25_search(query, limit, search_filter)

    def _revalidate(self, results: Iterable[SearchResult], limit: int) -> List[SearchResult]:
        """Drop precomputed hits whose records were deleted in the meantime."""
        results = list(results)
        live = self.store.existing_ids(r.id for r in results)
        kept = [r for r in results if r.id in live]
        if len(kept) != len(results):
            logger.debug("Dropped %d stale lexical candidates", len(results) - len(kept))
        return kept[:limit]

    def search(
        self,
        query: str,
        query_embedding: Sequence[float],
        options: Optional[SearchOptions] = None,
        lexical_results: Optional[List[SearchResult]] = None,
    ) -> List[HybridSearchResult]:
        """
        Run both retrievers over the same filter and fuse their rankings.

        Args:
            query: Raw query text for the lexical path.
            query_embedding: Unit-normalized query vector.
            options: Limit, signal weights and filter.
            lexical_results: Lexical hits fetched ahead of time (e.g. while the
                query was being embedded). They are checked against the store
                before fusion.
        """
        options = options or SearchOptions()
        candidate_limit = self.candidate_limit(options.limit)
        search_filter = options.filter

        vector_hits = self.vector_search(query_embedding, candidate_limit, search_filter)
        if lexical_results is None:
            lexical_hits = self.lexical_search(query, candidate_limit, search_filter)
        else:
            lexical_hits = self._revalidate(lexical_results, candidate_limit)

        fused = reciprocal_rank_fusion(
            [
                ([h.id for h in vector_hits], options.vector_weight),
                ([h.id for h in lexical_hits], options.bm25_weight),
            ],
            k=self.rrf_k,
        )

        candidates: Dict[str, Dict[str, Any]] = {}
        for hit in vector_hits:
            candidates[hit.id] = {
                "content": hit.content,
                "metadata": hit.metadata,
                "vector_score": hit.score,
                "bm25_score": 0.0,
            }
        for hit in lexical_hits:
            if hit.id in candidates:
                candidates[hit.id]["bm25_score"] = hit.score
            else:
                candidates[hit.id] = {
                    "content": hit.content,
                    "metadata": hit.metadata,
                    "vector_score": 0.0,
                    "bm25_score": hit.score,
                }

        # Stable sort: equal fused scores keep first-seen order
        ranked = sorted(fused.items(), key=lambda item: -item[1])[: options.limit]

        results = [
            HybridSearchResult(id=memory_id, score=score, **candidates[memory_id])
            for memory_id, score in ranked
        ]
        logger.debug(
            "Hybrid search: %d vector + %d lexical candidates -> %d results",
            len(vector_hits),
            len(lexical_hits),
            len(results),
        )
        return results

    def delete(self, memory_id: str) -> bool:
        """Delete from the store and drop the id from the cached BM25 index."""
        generation = self.store.generation
        deleted = self.store.delete(memory_id)
        if deleted and self._bm25.remove(memory_id):
            self._bm25_records.pop(memory_id, None)
            if self._bm25_key is not None and self._bm25_key[0] == generation:
                # The cache matched the store before this delete; it still does
                self._bm25_key = (self.store.generation, self._bm25_key[1])
        return deleted

    def invalidate(self) -> None:
        """Forget the cached BM25 index; the next lexical query rebuilds it."""
        self._bm25.clear()
        self._bm25_records = {}
        self._bm25_key = None
