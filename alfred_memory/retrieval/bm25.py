"""
Alfred BM25 Index
-----------------
In-memory Okapi BM25 keyword scoring for precision matching.
Complements vector search by catching exact terms that embedding
models might miss (names, identifiers, rare words).

The index is a derived cache of the record store: it can be thrown away
and rebuilt from the store's rows at any time without losing data.
"""

import math
import re
import logging
from typing import Dict, Iterable, List, Set, Tuple
from collections import Counter, defaultdict

logger = logging.getLogger("Alfred.BM25")

# BM25 tuning constants
K1 = 1.2   # Term frequency saturation
B = 0.75   # Length normalization

# Common English function words; shared by indexing and querying
STOPWORDS: frozenset = frozenset({
    "a", "an", "the", "is", "it", "of", "in", "to", "and", "or", "for",
    "on", "at", "by", "be", "as", "do", "if", "so", "no", "not", "but",
    "was", "are", "has", "had", "have", "will", "with", "this", "that",
    "from", "they", "been", "were", "said", "each", "which", "their",
    "can", "its", "than", "other", "into", "could", "may", "i", "my",
    "we", "our", "you", "your", "he", "she", "him", "her", "his",
})

NON_WORD_PATTERN = re.compile(r"[^\w\s]")


def tokenize(text: str) -> List[str]:
    """Lowercase, turn non-word characters into whitespace and split."""
    return NON_WORD_PATTERN.sub(" ", text.lower()).split()


def tokenize_with_stopwords(text: str) -> List[str]:
    """Tokenize and drop stopwords. Used on both documents and queries."""
    return [t for t in tokenize(text) if t not in STOPWORDS]


class BM25Index:
    """
    In-memory BM25 inverted index for keyword search.

    Designed for the memory corpus scale (hundreds to low thousands of
    documents). ``index()`` is the baseline full rebuild; ``add`` and
    ``remove`` maintain the same statistics incrementally and leave the
    index in the state a full rebuild would produce.
    """

    def __init__(self, k1: float = K1, b: float = B):
        self.k1 = k1
        self.b = b
        # Document store: id → token list
        self._docs: Dict[str, List[str]] = {}
        # Insertion position, used to break score ties
        self._positions: Dict[str, int] = {}
        self._next_position = 0
        # Inverted index: term → set of doc ids
        self._inverted: Dict[str, Set[str]] = defaultdict(set)
        # Document frequencies: term → count of docs containing it
        self._df: Dict[str, int] = defaultdict(int)
        # IDF cache, refreshed whenever N or df change
        self._idf: Dict[str, float] = {}
        self._avg_dl: float = 0.0
        self._n: int = 0

    def _insert(self, doc_id: str, text: str) -> None:
        tokens = tokenize_with_stopwords(text)
        self._docs[doc_id] = tokens
        self._positions[doc_id] = self._next_position
        self._next_position += 1
        # df counts documents, not occurrences
        for token in set(tokens):
            self._inverted[token].add(doc_id)
            self._df[token] += 1
        self._n += 1

    def index(self, documents: Iterable[Tuple[str, str]]) -> None:
        """Reset and rebuild the whole index from ``(id, text)`` pairs."""
        self.clear()
        for doc_id, text in documents:
            if doc_id in self._docs:
                self._delete(doc_id)
            self._insert(doc_id, text)
        self._refresh_stats()
        logger.debug("BM25 index rebuilt: %d documents, %d unique terms",
                     self._n, len(self._df))

    def add(self, doc_id: str, text: str) -> None:
        """Add or replace a single document."""
        if doc_id in self._docs:
            self._delete(doc_id)
        self._insert(doc_id, text)
        self._refresh_stats()

    def remove(self, doc_id: str) -> bool:
        """Remove a document. Returns False if it was not indexed."""
        if doc_id not in self._docs:
            return False
        self._delete(doc_id)
        self._refresh_stats()
        return True

    def _delete(self, doc_id: str) -> None:
        for token in set(self._docs[doc_id]):
            postings = self._inverted.get(token)
            if postings is not None:
                postings.discard(doc_id)
                if not postings:
                    del self._inverted[token]
            self._df[token] -= 1
            if self._df[token] <= 0:
                del self._df[token]
        del self._docs[doc_id]
        del self._positions[doc_id]
        self._n -= 1

    def idf(self, term: str) -> float:
        """Smoothed IDF, ``ln((N - df + 0.5) / (df + 0.5) + 1)``; 0 for unseen terms."""
        return self._idf.get(term, 0.0)

    def search(self, query: str, limit: int = 10) -> List[Tuple[str, float]]:
        """
        Score every indexed document against the query.

        Returns:
            List of (doc_id, score) tuples sorted by descending score. Documents
            sharing no query term are left out; equal scores keep insertion order.
        """
        if self._n == 0 or limit <= 0:
            return []

        query_tokens = tokenize_with_stopwords(query)
        if not query_tokens:
            return []

        candidates: Set[str] = set()
        for term in query_tokens:
            candidates.update(self._inverted.get(term, ()))

        scores: Dict[str, float] = {}
        for doc_id in candidates:
            tokens = self._docs[doc_id]
            doc_len = len(tokens)
            if doc_len == 0:
                continue
            tf_counts = Counter(tokens)
            score = 0.0
            for term in query_tokens:
                tf = tf_counts.get(term, 0)
                if tf == 0:
                    continue
                numerator = tf * (self.k1 + 1)
                denominator = tf + self.k1 * (1 - self.b + self.b * doc_len / self._avg_dl)
                score += self.idf(term) * numerator / denominator
            if score > 0:
                scores[doc_id] = score

        ranked = sorted(scores.items(), key=lambda x: (-x[1], self._positions[x[0]]))
        return ranked[:limit]

    def clear(self) -> None:
        """Remove all documents from the index."""
        self._docs.clear()
        self._positions.clear()
        self._next_position = 0
        self._inverted.clear()
        self._df.clear()
        self._idf.clear()
        self._avg_dl = 0.0
        self._n = 0

    @property
    def size(self) -> int:
        """Number of documents in the index."""
        return self._n

    @property
    def avg_doc_length(self) -> float:
        return self._avg_dl

    def document_frequency(self, term: str) -> int:
        return self._df.get(term, 0)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._docs

    def __len__(self) -> int:
        return self._n

    def _refresh_stats(self) -> None:
        """Recompute average document length and the IDF cache."""
        if self._n > 0:
            self._avg_dl = sum(len(t) for t in self._docs.values()) / self._n
        else:
            self._avg_dl = 0.0
        n = self._n
        self._idf = {
            term: math.log((n - df + 0.5) / (df + 0.5) + 1.0)
            for term, df in self._df.items()
        }
