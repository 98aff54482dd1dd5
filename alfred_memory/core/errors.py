"""
Alfred Memory exceptions.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple


class AlfredMemoryError(RuntimeError):
    """Base class for memory engine errors."""


class ProviderUnavailableError(AlfredMemoryError):
    """Raised when a single embedding provider cannot currently serve requests."""

    def __init__(self, provider: str, detail: str) -> None:
        self.provider = provider
        self.detail = detail
        super().__init__(f"{provider}: {detail}")


class AllProvidersFailedError(AlfredMemoryError):
    """Raised when every provider in an embedding chain was skipped or failed."""

    def __init__(self, failures: Sequence[Tuple[str, str]], *, batch: bool = False) -> None:
        self.failures: List[Tuple[str, str]] = list(failures)
        scope = " for batch" if batch else ""
        reasons = "; ".join(f"{name}: {reason}" for name, reason in self.failures)
        super().__init__(f"All embedding providers failed{scope}: {reasons or 'no providers'}")


class DimensionMismatchError(AlfredMemoryError, ValueError):
    """Raised when an embedding length disagrees with the store dimensionality."""

    def __init__(self, expected: int, actual: int, *, context: str = "embedding") -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{context} has {actual} dimensions, store is configured for {expected}"
        )


class LexicalIndexDegradedError(AlfredMemoryError):
    """Raised when the accelerated full-text index cannot answer a query."""


class EmptyContentError(AlfredMemoryError, ValueError):
    """Raised when a memory with empty content is written."""
