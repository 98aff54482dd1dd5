from alfred_memory.retrieval.bm25 import BM25Index, STOPWORDS, tokenize, tokenize_with_stopwords
from alfred_memory.retrieval.fusion import RRF_K, reciprocal_rank_fusion

__all__ = [
    "BM25Index",
    "HybridSearch",
    "RRF_K",
    "STOPWORDS",
    "reciprocal_rank_fusion",
    "tokenize",
    "tokenize_with_stopwords",
]


def __getattr__(name):
    # HybridSearch pulls in the store (numpy, portalocker)
    if name == "HybridSearch":
        from alfred_memory.retrieval.hybrid import HybridSearch
        return HybridSearch
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
