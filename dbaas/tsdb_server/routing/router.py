"""
Collection router.

Maps incoming collection names to Store instances. A Store is created lazily
the first time a name matching a registered pattern is written to, using
that pattern's TTL, and is loaded from the snapshot tree if its directory
exists.

Invariants:
    - At most one Store per collection name, process-wide
    - Only names matching a registered pattern ever get a Store
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from ..snapshot import fragments
from ..store import Store
from .patterns import CollectionPattern

logger = logging.getLogger(__name__)


class CollectionNotFoundError(LookupError):
    """No registered pattern matches the collection name."""

    def __init__(self, collection: str) -> None:
        super().__init__(f"collection {collection} not found")
        self.collection = collection


class CollectionRouter:
    """Registry of Stores keyed by collection name.

    Attributes:
        patterns: Registered collection patterns, in priority order
        storage_root: Snapshot root handed to every Store, or None

    Example:
        >>> router = CollectionRouter([CollectionPattern.parse("events.*:60")])
        >>> store = router.resolve("events.login")
        >>> router.get("events.login") is store
        True
    """

    def __init__(
        self,
        patterns: Iterable[CollectionPattern],
        storage_root: str | Path | None = None,
        clock: Callable[[], float] = time.time,
        requeue_failed_flush: bool = False,
    ) -> None:
        self.patterns = list(patterns)
        self.storage_root = Path(storage_root) if storage_root else None
        self._clock = clock
        self._requeue_failed_flush = requeue_failed_flush
        self._stores: dict[str, Store] = {}
        self._lock = threading.Lock()
        self._creating: dict[str, threading.Lock] = {}

    def find_pattern(self, collection: str) -> CollectionPattern | None:
        """First registered pattern matching collection, if any."""
        for pattern in self.patterns:
            if pattern.matches(collection):
                return pattern
        return None

    def is_registered(self, collection: str) -> bool:
        return collection in self._stores or self.find_pattern(collection) is not None

    def get(self, collection: str) -> Store | None:
        """Existing Store for collection, without creating one.

        Raises:
            CollectionNotFoundError: If no pattern matches collection
        """
        store = self._stores.get(collection)
        if store is not None:
            return store
        if self.find_pattern(collection) is None:
            raise CollectionNotFoundError(collection)
        return None

    def resolve(self, collection: str) -> Store:
        """Store for collection, creating and loading it on first use.

        Raises:
            CollectionNotFoundError: If no pattern matches collection
        """
        store = self._stores.get(collection)
        if store is not None:
            return store

        pattern = self.find_pattern(collection)
        if pattern is None:
            raise CollectionNotFoundError(collection)

        # Replay runs under a per-name lock; self._lock is never held across it.
        with self._lock:
            name_lock = self._creating.setdefault(collection, threading.Lock())

        with name_lock:
            store = self._stores.get(collection)
            if store is not None:
                return store

            store = self._create_store(collection, pattern)
            with self._lock:
                self._stores[collection] = store
                self._creating.pop(collection, None)
            return store

    def _create_store(self, collection: str, pattern: CollectionPattern) -> Store:
        store = Store(
            collection,
            ttl_hours=pattern.ttl_hours,
            storage_root=self.storage_root,
            clock=self._clock,
            requeue_failed_flush=self._requeue_failed_flush,
        )
        store.load()
        logger.info(
            f"Created store {collection} (pattern {pattern})",
            extra={"collection": collection, "ttl_minutes": pattern.ttl_minutes},
        )
        return store

    def load_existing(self) -> int:
        """Create and load a Store for every matching directory under the root.

        Directories that match no pattern are left untouched.

        Returns:
            Number of stores loaded

        Raises:
            OSError: If the storage root cannot be created or listed
        """
        if self.storage_root is None:
            logger.info("Storage directory is not set, data will not be stored on disk")
            return 0

        self.storage_root.mkdir(parents=True, exist_ok=True)
        loaded = 0
        for name in fragments.list_collections(self.storage_root):
            if self.find_pattern(name) is None:
                logger.debug(f"Skipping unregistered collection directory {name}")
                continue
            self.resolve(name)
            loaded += 1
        logger.info(f"Loaded {loaded} collections from {self.storage_root}")
        return loaded

    def stores(self) -> list[Store]:
        """Snapshot of currently registered stores."""
        with self._lock:
            return list(self._stores.values())

    def delete_user(self, uid: str) -> int:
        """Delete uid from every Store.

        Returns:
            Number of stores that held the user in memory
        """
        return sum(1 for store in self.stores() if store.delete_user(uid))

    def close(self) -> None:
        for store in self.stores():
            store.close()
