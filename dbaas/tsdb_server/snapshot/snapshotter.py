"""
Background maintenance loop for the TSDB server.

The Snapshotter periodically walks every Store registered with the router
and, for each one:
1. Sweeps user histories whose newest record is older than the TTL
2. Flushes new records to the snapshot tree (when persistence is enabled)

Both steps run in the default executor so file I/O stays off the event loop.

Invariants:
    - Sweep always runs before flush for the same store
    - A failing store is logged and does not stop the cycle
    - stop() takes effect at the next tick boundary; an in-flight cycle completes
    - A stop requested before the loop starts is never lost

How to change safely:
    - Keep per-store work independent; stores share no files
    - Test shutdown with a cycle in progress
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..routing import CollectionRouter

logger = logging.getLogger(__name__)


@dataclass
class CycleStats:
    """Totals for one maintenance cycle.

    Attributes:
        stores: Stores visited
        swept_users: Users removed by TTL
        flushed_records: Records written to fragments
        failed_stores: Stores whose sweep or flush raised
    """

    stores: int = 0
    swept_users: int = 0
    flushed_records: int = 0
    failed_stores: int = 0


class Snapshotter:
    """Runs TTL sweeps and incremental flushes on a fixed interval.

    Attributes:
        router: Source of the stores to maintain
        interval_seconds: Pause between cycles
        flush_enabled: Whether to flush after sweeping

    Example:
        >>> snapshotter = Snapshotter(router, interval_seconds=1)
        >>> task = asyncio.create_task(snapshotter.start())
        >>> await snapshotter.stop()
    """

    def __init__(
        self,
        router: CollectionRouter,
        interval_seconds: float,
        flush_enabled: bool = True,
    ) -> None:
        """Initialize the snapshotter.

        Args:
            router: CollectionRouter holding the stores
            interval_seconds: Interval between cycles
            flush_enabled: Flush after sweeping (False for ephemeral deployments)
        """
        self.router = router
        self.interval_seconds = interval_seconds
        self.flush_enabled = flush_enabled

        self._running = False
        self._cycle_count = 0
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    async def start(self) -> None:
        """Run cycles until stopped."""
        if self._running:
            logger.warning("Snapshotter already running")
            return

        self._running = True
        logger.info(
            "Starting snapshotter",
            extra={
                "interval_seconds": self.interval_seconds,
                "flush_enabled": self.flush_enabled,
            },
        )

        try:
            while not self._stop_event.is_set():
                await self.run_cycle()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Snapshotter cancelled")
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the loop at the next tick boundary.

        Calling stop before the start task first runs means no cycle runs at all.
        """
        self._stop_event.set()
        logger.info("Stopping snapshotter")

    async def run_cycle(self, flush: bool | None = None, final: bool = False) -> CycleStats:
        """Sweep then flush every store once.

        Args:
            flush: Override flush_enabled for this cycle
            final: Also visit closed stores (the shutdown flush runs after close)

        Returns:
            CycleStats for the cycle
        """
        do_flush = self.flush_enabled if flush is None else flush
        stats = CycleStats()
        loop = asyncio.get_running_loop()

        for store in self.router.stores():
            if store.closed and not final:
                continue
            stats.stores += 1
            try:
                stats.swept_users += await loop.run_in_executor(None, store.sweep_expired)
                if do_flush:
                    result = await loop.run_in_executor(None, store.flush)
                    stats.flushed_records += result.records
            except Exception as e:
                stats.failed_stores += 1
                logger.error(
                    f"Maintenance failed for collection {store.collection}: {e}",
                    exc_info=True,
                )

        self._cycle_count += 1
        if stats.swept_users or stats.flushed_records or stats.failed_stores:
            logger.info(
                "Maintenance cycle complete",
                extra={
                    "stores": stats.stores,
                    "swept_users": stats.swept_users,
                    "flushed_records": stats.flushed_records,
                    "failed_stores": stats.failed_stores,
                },
            )
        return stats

