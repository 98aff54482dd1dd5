"""
Alfred Store Lock
-----------------
Cross-process writer transactions for a record store database.

SQLite serializes writers itself, but a second process blocked on the
database would hit ``database is locked`` mid-transaction. Writers instead
queue on a sidecar lock file and only then open the SQLite transaction.
"""

import contextlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Iterator

import portalocker

from alfred_memory.core.errors import AlfredMemoryError

logger = logging.getLogger("Alfred.StoreLock")

# Waits longer than this are reported; they mean another process is writing
SLOW_WAIT_SECONDS = 1.0


class StoreLock:
    """Exclusive writer lock for one database file."""

    def __init__(self, db_path: Path, timeout: float = 10.0):
        self.db_path = Path(db_path)
        self.lock_file_path = self.db_path.parent / f".{self.db_path.stem}.lock"
        self.timeout = timeout
        self.acquisitions = 0

    @contextlib.contextmanager
    def transaction(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        """
        Hold the lock file for the lifetime of one SQLite transaction.

        Commits when the block exits cleanly and rolls back on error.
        Raises AlfredMemoryError if another writer keeps the lock past
        ``timeout``.
        """
        started = time.monotonic()
        try:
            lock = portalocker.Lock(
                str(self.lock_file_path),
                mode="a",
                timeout=self.timeout,
                flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
                fail_when_locked=False,
            )
            lock.acquire()
        except portalocker.exceptions.LockException as e:
            raise AlfredMemoryError(
                f"Record store {self.db_path} is locked by another writer "
                f"(waited {self.timeout}s)"
            ) from e

        waited = time.monotonic() - started
        if waited > SLOW_WAIT_SECONDS:
            logger.warning("Waited %.1fs for the writer lock on %s", waited, self.db_path)
        self.acquisitions += 1
        try:
            with conn:
                yield conn
        finally:
            lock.release()
