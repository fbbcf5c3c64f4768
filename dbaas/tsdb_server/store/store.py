"""
Per-collection in-memory record store.

A Store maps uid -> UserLog for a single collection and optionally mirrors
new records into the snapshot tree under its storage root. One reader/writer
lock guards both the map and every log inside it; there are no per-log locks.

Writer-exclusive: insert, delete_user, sweep_expired, flush (it clears dirty
bits), load. Reader-shared: every get_* query.

Invariants:
    - No uid maps to an empty UserLog
    - After flush returns, no record has is_new set (unless a failed write
      was re-queued, see requeue_failed_flush)
    - Records returned from queries are copies taken under the lock
    - File I/O never happens while the lock is held, except load and the
      directory removal in delete_user

How to change safely:
    - New mutating operations must take the write lock
    - Keep flush's locked phase in-memory only
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from ..snapshot import fragments
from .records import Record, UserLog
from .rwlock import ReadWriteLock

logger = logging.getLogger(__name__)


class InvalidUidError(ValueError):
    """uid is empty, not a string, or not usable as a directory name."""

    pass


class StoreClosedError(RuntimeError):
    """Mutation attempted on a closed store."""

    pass


@dataclass
class FlushResult:
    """Outcome of one flush.

    Attributes:
        records: Number of dirty records collected
        files_written: Fragments successfully written
        failed_uids: Users whose fragment could not be written
    """

    records: int = 0
    files_written: int = 0
    failed_uids: list[str] = field(default_factory=list)


class Store:
    """Indexed record store for one collection.

    Attributes:
        collection: Collection name (also the directory name on disk)
        ttl_hours: Retention for a whole user history, anchored on its newest record
        storage_root: Snapshot root, or None for an ephemeral store

    Example:
        >>> store = Store("public", ttl_hours=1)
        >>> store.insert("u", 1, "x")
        >>> store.get_latest_for_user("u", 5)
        Record(ts=1, data='x')
    """

    def __init__(
        self,
        collection: str,
        ttl_hours: float,
        storage_root: str | Path | None = None,
        clock: Callable[[], float] = time.time,
        requeue_failed_flush: bool = False,
    ) -> None:
        """Initialize the store.

        Args:
            collection: Collection name
            ttl_hours: Retention in hours (fractions allowed)
            storage_root: Root of the snapshot tree; None or "" disables persistence
            clock: Wall-clock source in seconds
            requeue_failed_flush: Re-flag records whose fragment write failed
        """
        if storage_root and not fragments.is_safe_component(collection):
            raise ValueError(f"Collection name cannot be used as a directory: {collection!r}")

        self.collection = collection
        self.ttl_hours = ttl_hours
        self.storage_root = Path(storage_root) if storage_root else None
        self.requeue_failed_flush = requeue_failed_flush
        self._clock = clock
        self._logs: dict[str, UserLog] = {}
        self._lock = ReadWriteLock()
        self._closed = False

    def __repr__(self) -> str:
        return f"Store(collection={self.collection!r}, ttl_hours={self.ttl_hours})"

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._logs)

    def __contains__(self, uid: object) -> bool:
        with self._lock.read_locked():
            return uid in self._logs

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def persistent(self) -> bool:
        return self.storage_root is not None

    def uids(self) -> list[str]:
        with self._lock.read_locked():
            return list(self._logs)

    def record_count(self) -> int:
        with self._lock.read_locked():
            return sum(len(log) for log in self._logs.values())

    def check_uid(self, uid: str) -> None:
        """Raise InvalidUidError if uid cannot be stored in this collection."""
        if not isinstance(uid, str) or not uid:
            raise InvalidUidError(f"uid must be a non-empty string, got {uid!r}")
        if self.storage_root is not None and not fragments.is_safe_component(uid):
            raise InvalidUidError(f"uid cannot be used as a directory name: {uid!r}")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, uid: str, ts: int, data: str) -> None:
        """Insert or overwrite the record of uid at ts.

        Raises:
            InvalidUidError: If uid is unusable
            StoreClosedError: If the store has been closed
        """
        self.check_uid(uid)

        with self._lock.write_locked():
            if self._closed:
                raise StoreClosedError(f"Store {self.collection} is closed")
            log = self._logs.get(uid)
            if log is None:
                log = self._logs[uid] = UserLog()
            log.insert_or_replace(ts, data, mark_new=True)

    def delete_user(self, uid: str) -> bool:
        """Drop a user's history from memory and disk.

        The directory is removed under the write lock so a concurrent insert
        and flush for the same uid cannot land a fragment that is then deleted.

        Returns:
            True if the user was present in memory
        """
        with self._lock.write_locked():
            existed = self._logs.pop(uid, None) is not None
            if self.storage_root is not None and fragments.is_safe_component(uid):
                try:
                    fragments.remove_user(self.storage_root, self.collection, uid)
                except OSError as e:
                    logger.error(
                        f"Error removing snapshot directory for user {uid}: {e}",
                        extra={"collection": self.collection},
                    )
        return existed

    def sweep_expired(self) -> int:
        """Delete every user whose newest record is older than the TTL.

        Only memory is swept. Fragment directories stay on disk; a restart
        reloads them and the next sweep drops them again.

        Returns:
            Number of users removed
        """
        cutoff = self._clock() - self.ttl_hours * 3600

        with self._lock.write_locked():
            expired = [
                uid
                for uid, log in self._logs.items()
                if log.last is None or log.last.ts < cutoff
            ]
            for uid in expired:
                del self._logs[uid]

        if expired:
            logger.info(
                f"Deleted {len(expired)} users older than "
                f"{datetime.fromtimestamp(cutoff, tz=timezone.utc):%Y-%m-%d %H:%M:%S}",
                extra={"collection": self.collection, "deleted": len(expired)},
            )
        return len(expired)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_latest_for_user(self, uid: str, max_ts: int) -> Record | None:
        """Newest record of uid with ts <= max_ts."""
        with self._lock.read_locked():
            log = self._logs.get(uid)
            if log is None:
                return None
            index = log.upper_bound_index(max_ts)
            return log[index].copy() if index != -1 else None

    def get_earliest_for_user(self, uid: str, min_ts: int) -> Record | None:
        """Oldest record of uid with ts >= min_ts."""
        with self._lock.read_locked():
            log = self._logs.get(uid)
            if log is None:
                return None
            index = log.lower_bound_index(min_ts)
            return log[index].copy() if index != -1 else None

    def get_all_latest(self, max_ts: int) -> dict[str, Record]:
        """Newest record at or before max_ts for every user that has one."""
        latest = {}
        with self._lock.read_locked():
            for uid, log in self._logs.items():
                index = log.upper_bound_index(max_ts)
                if index != -1:
                    latest[uid] = log[index].copy()
        return latest

    def get_range(self, uid: str, from_ts: int, to_ts: int) -> list[Record]:
        """Records of uid with from_ts <= ts <= to_ts, oldest first."""
        if from_ts > to_ts:
            logger.debug(
                f"get_range: from is after to for user {uid}: {from_ts} > {to_ts}",
                extra={"collection": self.collection},
            )
            return []

        with self._lock.read_locked():
            log = self._logs.get(uid)
            if not log:
                return []
            start = log.lower_bound_index(from_ts)
            end = log.upper_bound_index(to_ts)
            if start == -1 or end == -1 or start > end:
                return []
            return log.slice(start, end)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def flush(self) -> FlushResult:
        """Write every dirty record to a new fragment per user.

        The dirty scan runs under the write lock; file writes happen after
        the lock is released, from the locally captured batches. A failed
        write is logged and skipped.

        Returns:
            FlushResult describing what was written
        """
        result = FlushResult()
        if self.storage_root is None:
            return result

        with self._lock.write_locked():
            batches = {}
            for uid, log in self._logs.items():
                if not log.has_changed:
                    continue
                batch = log.take_new()
                if batch:
                    batches[uid] = batch
                    result.records += len(batch)

        logger.debug(
            f"Found {result.records} new records",
            extra={"collection": self.collection},
        )
        if result.records == 0:
            return result

        now = int(self._clock())
        for uid, batch in batches.items():
            try:
                fragments.write_fragment(self.storage_root, self.collection, uid, now, batch)
                result.files_written += 1
            except (OSError, fragments.SnapshotError) as e:
                logger.error(
                    f"Error writing fragment for user {uid}: {e}",
                    extra={"collection": self.collection, "uid": uid},
                )
                result.failed_uids.append(uid)

        if result.failed_uids and self.requeue_failed_flush:
            self._requeue(batches, result.failed_uids)

        logger.info(
            f"Flushed {result.records} records to {result.files_written} fragments",
            extra={
                "collection": self.collection,
                "records": result.records,
                "files": result.files_written,
                "failed": len(result.failed_uids),
            },
        )
        return result

    def _requeue(self, batches: dict[str, list[Record]], uids: list[str]) -> None:
        requeued = 0
        with self._lock.write_locked():
            for uid in uids:
                log = self._logs.get(uid)
                if log is not None:
                    requeued += log.mark_new(record.ts for record in batches[uid])
        logger.warning(
            f"Re-queued {requeued} records after failed fragment writes",
            extra={"collection": self.collection, "uids": len(uids)},
        )

    def load(self) -> int:
        """Replay every fragment of this collection into memory.

        Loaded records are clean (not new). Replaying the same tree twice
        leaves the store unchanged. Unreadable fragments are logged and
        skipped.

        Returns:
            Number of records read

        Raises:
            OSError: If the collection directory exists but cannot be listed
        """
        if self.storage_root is None:
            return 0

        logger.info(f"Loading data for {self.collection}", extra={"collection": self.collection})
        count = 0
        with self._lock.write_locked():
            for uid, paths in fragments.iter_user_fragments(self.storage_root, self.collection):
                for path in paths:
                    try:
                        records = fragments.read_fragment(path)
                    except (OSError, fragments.SnapshotError) as e:
                        logger.error(
                            f"Error reading fragment {path}: {e}",
                            extra={"collection": self.collection, "uid": uid},
                        )
                        continue
                    if not records:
                        continue
                    log = self._logs.get(uid)
                    if log is None:
                        log = self._logs[uid] = UserLog()
                    for record in records:
                        log.insert_or_replace(record.ts, record.data, mark_new=False)
                    count += len(records)

        logger.info(
            f"Loaded {count} records from {self.collection}",
            extra={"collection": self.collection, "records": count},
        )
        return count

    def close(self) -> None:
        """Reject further inserts. Idempotent.

        Takes the write lock, so an insert already holding it is acknowledged
        before close returns and is picked up by a later flush.
        """
        with self._lock.write_locked():
            if self._closed:
                return
            self._closed = True
        logger.debug(f"Store {self.collection} closed", extra={"collection": self.collection})
