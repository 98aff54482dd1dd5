"""
Alfred Memory: local hybrid memory search for a privacy-first assistant
"""

from alfred_memory.core.config import AlfredMemoryConfig
from alfred_memory.core.errors import (
    AlfredMemoryError,
    AllProvidersFailedError,
    DimensionMismatchError,
    EmptyContentError,
    LexicalIndexDegradedError,
    ProviderUnavailableError,
)
from alfred_memory.core.types import (
    HybridSearchResult,
    MemoryRecord,
    SearchFilter,
    SearchOptions,
    SearchResult,
)
from alfred_memory.version import __version__

__all__ = [
    "__version__",
    "AlfredMemoryConfig",
    "AlfredMemoryError",
    "AllProvidersFailedError",
    "DimensionMismatchError",
    "EmptyContentError",
    "HybridSearchResult",
    "LexicalIndexDegradedError",
    "MemoryEngine",
    "MemoryRecord",
    "ProviderUnavailableError",
    "SearchFilter",
    "SearchOptions",
    "SearchResult",
]


def __getattr__(name):
    if name == "MemoryEngine":
        from alfred_memory.core.engine import MemoryEngine
        return MemoryEngine
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
