from alfred_memory.store.lock import StoreLock
from alfred_memory.store.record_store import SQLiteRecordStore

__all__ = ["SQLiteRecordStore", "StoreLock"]
