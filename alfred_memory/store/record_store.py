"""
Alfred SQLite Record Store
--------------------------
Authoritative storage for memory records: content, unit-normalized
embeddings, metadata, tags and ownership scope. Answers exact
nearest-neighbour queries by a linear dot-product scan, which is exact
and fast enough for a single user's memory (thousands of rows).

The optional FTS5 table and the tag table are written in the same
transaction as the main row, so the three never diverge.
"""

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from alfred_memory.core.errors import (
    DimensionMismatchError,
    EmptyContentError,
    LexicalIndexDegradedError,
)
from alfred_memory.core.types import MemoryRecord, SearchFilter, SearchResult, dedupe_tags
from alfred_memory.embeddings.base import normalize_embedding
from alfred_memory.store.lock import StoreLock

logger = logging.getLogger("Alfred.SQLite")

SCHEMA_VERSION = 1

# Embeddings are stored as little-endian float32 blobs
EMBEDDING_DTYPE = np.dtype("<f4")

CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS memories (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    id          TEXT NOT NULL UNIQUE,
    content     TEXT NOT NULL,
    embedding   BLOB NOT NULL,
    metadata    TEXT NOT NULL DEFAULT '{}',
    tags        TEXT NOT NULL DEFAULT '[]',
    agent_id    TEXT,
    session_id  TEXT,
    created_at  REAL NOT NULL,
    updated_at  REAL NOT NULL
);
"""

CREATE_TAGS = """
CREATE TABLE IF NOT EXISTS memory_tags (
    memory_id TEXT NOT NULL,
    tag       TEXT NOT NULL,
    PRIMARY KEY (memory_id, tag)
);
"""

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_memories_agent_id ON memories(agent_id);",
    "CREATE INDEX IF NOT EXISTS idx_memories_session_id ON memories(session_id);",
    "CREATE INDEX IF NOT EXISTS idx_memories_created_at ON memories(created_at);",
    "CREATE INDEX IF NOT EXISTS idx_memory_tags_tag ON memory_tags(tag);",
]

SCHEMA_META = """
CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

CREATE_FTS = """
CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts
USING fts5(content, id UNINDEXED, tokenize='porter unicode61');
"""


def embedding_to_blob(embedding: Sequence[float]) -> bytes:
    """Encode a vector at unit length, so stored rows score by plain dot product."""
    return np.asarray(normalize_embedding(embedding), dtype=EMBEDDING_DTYPE).tobytes()


def blob_to_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE)


def _filter_clause(search_filter: Optional[SearchFilter]) -> Tuple[List[str], List[Any]]:
    """SQL conditions on the ``m`` alias for ownership equality and any-of tags."""
    conditions: List[str] = []
    params: List[Any] = []
    if search_filter is None:
        return conditions, params
    if search_filter.agent_id is not None:
        conditions.append("m.agent_id = ?")
        params.append(search_filter.agent_id)
    if search_filter.session_id is not None:
        conditions.append("m.session_id = ?")
        params.append(search_filter.session_id)
    if search_filter.tags:
        placeholders = ",".join("?" for _ in search_filter.tags)
        conditions.append(
            f"m.id IN (SELECT memory_id FROM memory_tags WHERE tag IN ({placeholders}))"
        )
        params.extend(search_filter.tags)
    return conditions, params


class SQLiteRecordStore:
    """Single-writer SQLite store of MemoryRecords with exact cosine search."""

    def __init__(
        self,
        db_path,
        dimensions: int,
        lock_timeout: float = 10.0,
        enable_fts: bool = True,
    ):
        if dimensions <= 0:
            raise ValueError(f"dimensions must be positive, got {dimensions}")
        self.db_path = Path(db_path) if not isinstance(db_path, Path) else db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.dimensions = dimensions
        self._conn: Optional[sqlite3.Connection] = None
        self._guard = threading.RLock()
        self._writer_lock = StoreLock(self.db_path, timeout=lock_timeout)
        self._fts_table = False
        self._fts_available = False
        self._generation = 0
        self._initialize(enable_fts)

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn

    def _initialize(self, enable_fts: bool) -> None:
        with self._guard:
            conn = self._get_conn()
            with self._writer_lock.transaction(conn):
                conn.execute(CREATE_TABLE)
                conn.execute(CREATE_TAGS)
                for idx in CREATE_INDEXES:
                    conn.execute(idx)
                conn.execute(SCHEMA_META)
                self._check_dimensions(conn)
                conn.execute(
                    "INSERT OR REPLACE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
                    (str(SCHEMA_VERSION),),
                )
            self._init_fts(conn, enable_fts)
        logger.info(
            "Record store ready at %s (%d dims, fts5=%s)",
            self.db_path,
            self.dimensions,
            self._fts_available,
        )

    def _check_dimensions(self, conn: sqlite3.Connection) -> None:
        row = conn.execute("SELECT value FROM schema_meta WHERE key = 'dimensions'").fetchone()
        if row is None:
            conn.execute(
                "INSERT INTO schema_meta (key, value) VALUES ('dimensions', ?)",
                (str(self.dimensions),),
            )
            return
        stored = int(row["value"])
        if stored != self.dimensions:
            raise DimensionMismatchError(stored, self.dimensions, context="configured store")

    def _init_fts(self, conn: sqlite3.Connection, enable_fts: bool) -> None:
        """
        Create (or adopt) the FTS5 table and bring it in line with ``memories``.

        A table left by an earlier FTS-enabled open keeps receiving writes
        even while FTS search is disabled, so it never goes stale.
        """
        try:
            with self._writer_lock.transaction(conn):
                if enable_fts:
                    conn.execute(CREATE_FTS)
                elif not self._fts_table_exists(conn):
                    return
                self._fts_table = True
                self._sync_fts(conn)
            self._fts_available = enable_fts
        except sqlite3.OperationalError as e:
            logger.debug("FTS5 not available, lexical search uses in-memory BM25: %s", e)
            self._fts_table = False
            self._fts_available = False

    @staticmethod
    def _fts_table_exists(conn: sqlite3.Connection) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'memories_fts'"
        ).fetchone()
        return row is not None

    def _sync_fts(self, conn: sqlite3.Connection) -> None:
        # Any row whose (id, content) has no exact counterpart, or any
        # orphan or duplicate full-text row, triggers a rebuild
        drifted = conn.execute(
            """SELECT COUNT(*) FROM (
                   SELECT id, content FROM memories
                   EXCEPT
                   SELECT id, content FROM memories_fts
               )"""
        ).fetchone()[0]
        indexed = conn.execute("SELECT COUNT(*) FROM memories_fts").fetchone()[0]
        total = conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]
        if drifted == 0 and indexed == total:
            return
        conn.execute("DELETE FROM memories_fts")
        conn.execute("INSERT INTO memories_fts (content, id) SELECT content, id FROM memories ORDER BY seq")
        logger.info(
            "FTS5 index rebuilt with %d memories (%d missing or stale, %d indexed before)",
            total,
            drifted,
            indexed,
        )

    @property
    def fts_available(self) -> bool:
        return self._fts_available

    @property
    def generation(self) -> int:
        """Increments on every successful write; derived caches compare against it."""
        return self._generation

    def _row_to_record(self, row: sqlite3.Row, include_embedding: bool = True) -> MemoryRecord:
        embedding: List[float] = []
        if include_embedding:
            embedding = blob_to_embedding(row["embedding"]).astype(np.float64).tolist()
        return MemoryRecord(
            id=row["id"],
            content=row["content"],
            embedding=embedding,
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            tags=json.loads(row["tags"]) if row["tags"] else [],
            agent_id=row["agent_id"],
            session_id=row["session_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _check_embedding(self, embedding: Sequence[float]) -> None:
        if len(embedding) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(embedding))

    def _write_tags(self, conn: sqlite3.Connection, memory_id: str, tags: Iterable[str]) -> None:
        conn.execute("DELETE FROM memory_tags WHERE memory_id = ?", (memory_id,))
        conn.executemany(
            "INSERT OR IGNORE INTO memory_tags (memory_id, tag) VALUES (?, ?)",
            [(memory_id, tag) for tag in tags],
        )

    def _write_fts(self, conn: sqlite3.Connection, memory_id: str, content: Optional[str]) -> None:
        if not self._fts_table:
            return
        conn.execute("DELETE FROM memories_fts WHERE id = ?", (memory_id,))
        if content is not None:
            conn.execute("INSERT INTO memories_fts (content, id) VALUES (?, ?)", (content, memory_id))

    # ==========================================
    # Writes
    # ==========================================

    def insert(self, record: MemoryRecord) -> str:
        """Persist a record atomically. Returns its id."""
        self._check_embedding(record.embedding)
        with self._guard:
            conn = self._get_conn()
            try:
                with self._writer_lock.transaction(conn):
                    conn.execute(
                        """INSERT INTO memories
                           (id, content, embedding, metadata, tags, agent_id, session_id,
                            created_at, updated_at)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            record.id,
                            record.content,
                            embedding_to_blob(record.embedding),
                            json.dumps(record.metadata),
                            json.dumps(record.tags),
                            record.agent_id,
                            record.session_id,
                            record.created_at,
                            record.updated_at,
                        ),
                    )
                    self._write_tags(conn, record.id, record.tags)
                    self._write_fts(conn, record.id, record.content)
            except sqlite3.IntegrityError as e:
                raise ValueError(f"memory {record.id} already exists") from e
            self._generation += 1
        logger.debug("Memory stored %s (%d chars)", record.id, len(record.content))
        return record.id

    def update(
        self,
        memory_id: str,
        content: Optional[str] = None,
        embedding: Optional[Sequence[float]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
    ) -> bool:
        """Replace the given fields of a record. Insertion order is preserved."""
        if content is not None and not content.strip():
            raise EmptyContentError("memory content must not be empty")
        if embedding is not None:
            self._check_embedding(embedding)

        sets: List[str] = []
        params: List[Any] = []
        if content is not None:
            sets.append("content = ?")
            params.append(content)
        if embedding is not None:
            sets.append("embedding = ?")
            params.append(embedding_to_blob(embedding))
        if metadata is not None:
            sets.append("metadata = ?")
            params.append(json.dumps(metadata))
        if tags is not None:
            tags = dedupe_tags(tags)
            sets.append("tags = ?")
            params.append(json.dumps(tags))
        sets.append("updated_at = ?")
        params.append(time.time())
        params.append(memory_id)

        with self._guard:
            conn = self._get_conn()
            with self._writer_lock.transaction(conn):
                cursor = conn.execute(
                    f"UPDATE memories SET {', '.join(sets)} WHERE id = ?", params
                )
                if cursor.rowcount == 0:
                    return False
                if tags is not None:
                    self._write_tags(conn, memory_id, tags)
                if content is not None:
                    self._write_fts(conn, memory_id, content)
            self._generation += 1
        return True

    def delete(self, memory_id: str) -> bool:
        """Remove a record together with its tag and full-text rows."""
        with self._guard:
            conn = self._get_conn()
            with self._writer_lock.transaction(conn):
                cursor = conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
                deleted = cursor.rowcount > 0
                conn.execute("DELETE FROM memory_tags WHERE memory_id = ?", (memory_id,))
                self._write_fts(conn, memory_id, None)
            if deleted:
                self._generation += 1
        if deleted:
            logger.debug("Memory deleted %s", memory_id)
        return deleted

    def delete_older_than(self, timestamp: float) -> int:
        """Delete every record created before ``timestamp``. Returns how many were removed."""
        with self._guard:
            conn = self._get_conn()
            with self._writer_lock.transaction(conn):
                ids = [
                    row["id"]
                    for row in conn.execute(
                        "SELECT id FROM memories WHERE created_at < ?", (timestamp,)
                    ).fetchall()
                ]
                for memory_id in ids:
                    conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
                    conn.execute("DELETE FROM memory_tags WHERE memory_id = ?", (memory_id,))
                    self._write_fts(conn, memory_id, None)
            if ids:
                self._generation += 1
        logger.info("Pruned %d memories older than %.0f", len(ids), timestamp)
        return len(ids)

    # ==========================================
    # Reads
    # ==========================================

    def get(self, memory_id: str) -> Optional[MemoryRecord]:
        with self._guard:
            row = self._get_conn().execute(
                "SELECT * FROM memories WHERE id = ?", (memory_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_all(
        self,
        search_filter: Optional[SearchFilter] = None,
        include_embedding: bool = True,
    ) -> List[MemoryRecord]:
        """All matching records in insertion order."""
        conditions, params = _filter_clause(search_filter)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._guard:
            rows = self._get_conn().execute(
                f"SELECT * FROM memories m{where} ORDER BY m.seq ASC", params
            ).fetchall()
        return [self._row_to_record(r, include_embedding=include_embedding) for r in rows]

    def existing_ids(self, memory_ids: Iterable[str]) -> Set[str]:
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return set()
        found: Set[str] = set()
        with self._guard:
            conn = self._get_conn()
            # Stay below SQLite's host-parameter limit
            for start in range(0, len(ids), 500):
                chunk = ids[start:start + 500]
                placeholders = ",".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT id FROM memories WHERE id IN ({placeholders})", chunk
                ).fetchall()
                found.update(row["id"] for row in rows)
        return found

    def count(self, agent_id: Optional[str] = None) -> int:
        with self._guard:
            conn = self._get_conn()
            if agent_id is not None:
                row = conn.execute(
                    "SELECT COUNT(*) AS cnt FROM memories WHERE agent_id = ?", (agent_id,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) AS cnt FROM memories").fetchone()
        return row["cnt"]

    def list_agents(self) -> List[str]:
        with self._guard:
            rows = self._get_conn().execute(
                "SELECT DISTINCT agent_id FROM memories WHERE agent_id IS NOT NULL ORDER BY agent_id"
            ).fetchall()
        return [r["agent_id"] for r in rows]

    def vector_search(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        """
        Exact cosine search.

        Filters run in SQL first; every surviving row is scored as the dot
        product of two unit vectors. The sort is stable over insertion
        order, so equal scores keep the older record first.
        """
        query = np.asarray(query_embedding, dtype=np.float64)
        if query.ndim != 1 or query.shape[0] != self.dimensions:
            raise DimensionMismatchError(
                self.dimensions, int(query.size), context="query embedding"
            )
        if limit <= 0:
            return []
        norm = float(np.linalg.norm(query))
        if norm > 0:
            query = query / norm

        conditions, params = _filter_clause(search_filter)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._guard:
            rows = self._get_conn().execute(
                f"SELECT m.id, m.content, m.embedding, m.metadata FROM memories m{where} ORDER BY m.seq ASC",
                params,
            ).fetchall()
        if not rows:
            return []

        matrix = np.vstack([blob_to_embedding(r["embedding"]) for r in rows]).astype(np.float64)
        scores = matrix @ query
        order = np.argsort(-scores, kind="stable")[:limit]

        return [
            SearchResult(
                id=rows[i]["id"],
                content=rows[i]["content"],
                score=float(scores[i]),
                metadata=json.loads(rows[i]["metadata"]) if rows[i]["metadata"] else {},
            )
            for i in order
        ]

    def fts_search(
        self,
        terms: Sequence[str],
        limit: int = 10,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        """
        Accelerated lexical search through FTS5's ``bm25()`` ranking.

        FTS5 ranks are negative (closer to zero is worse), so the score is
        the negated rank. Any SQLite failure surfaces as
        LexicalIndexDegradedError for the caller to fall back on.
        """
        if not self._fts_available:
            raise LexicalIndexDegradedError("FTS5 index is not available")
        if not terms or limit <= 0:
            return []

        match = " OR ".join(f'"{t}"' for t in terms)
        conditions, params = _filter_clause(search_filter)
        extra = f" AND {' AND '.join(conditions)}" if conditions else ""
        sql = (
            "SELECT m.id, m.content, m.metadata, bm25(memories_fts) AS fts_rank "
            "FROM memories_fts JOIN memories m ON m.id = memories_fts.id "
            f"WHERE memories_fts MATCH ?{extra} "
            "ORDER BY fts_rank ASC, m.seq ASC LIMIT ?"
        )
        try:
            with self._guard:
                rows = self._get_conn().execute(sql, [match, *params, limit]).fetchall()
        except sqlite3.Error as e:
            raise LexicalIndexDegradedError(f"FTS5 query failed: {e}") from e

        return [
            SearchResult(
                id=r["id"],
                content=r["content"],
                score=-float(r["fts_rank"]),
                metadata=json.loads(r["metadata"]) if r["metadata"] else {},
            )
            for r in rows
        ]

    def close(self) -> None:
        with self._guard:
            if self._conn:
                self._conn.close()
                self._conn = None
