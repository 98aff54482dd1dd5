# Lazy import; MemoryEngine pulls in numpy, httpx and the store
from alfred_memory.core.types import (
    HybridSearchResult,
    MemoryRecord,
    SearchFilter,
    SearchOptions,
    SearchResult,
)

__all__ = [
    "HybridSearchResult",
    "MemoryEngine",
    "MemoryRecord",
    "SearchFilter",
    "SearchOptions",
    "SearchResult",
]


def __getattr__(name):
    if name == "MemoryEngine":
        from alfred_memory.core.engine import MemoryEngine
        return MemoryEngine
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
