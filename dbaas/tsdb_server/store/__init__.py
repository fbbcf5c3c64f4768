"""
Store module for the TSDB server - in-memory indexed record storage.

This module handles:
- Record and UserLog, the sorted per-user history with dirty tracking
- Store, one per collection, with reader/writer locking
- Incremental flush to and load from the snapshot tree

Invariants:
    - UserLog timestamps are strictly increasing
    - A log is dirty iff one of its records is new
    - Queries return copies, never references into a log

How to change safely:
    - Route every mutation through the Store's write lock
    - Verify load idempotency when touching the replay path
"""

from .records import Record, UserLog
from .rwlock import ReadWriteLock
from .store import FlushResult, InvalidUidError, Store, StoreClosedError

__all__ = [
    "Record",
    "UserLog",
    "ReadWriteLock",
    "Store",
    "FlushResult",
    "InvalidUidError",
    "StoreClosedError",
]
