"""
Unit tests for the Snapshotter maintenance loop.
"""

import asyncio

import pytest

from dbaas.tsdb_server.routing import CollectionPattern, CollectionRouter
from dbaas.tsdb_server.snapshot import Snapshotter


@pytest.fixture
def router(tmp_path, clock):
    patterns = [CollectionPattern.parse("public:60"), CollectionPattern.parse("events.*:1")]
    return CollectionRouter(patterns, storage_root=tmp_path, clock=clock)


class TestRunCycle:
    """Tests for a single maintenance cycle."""

    @pytest.mark.asyncio
    async def test_sweeps_then_flushes(self, router, clock, tmp_path):
        now = int(clock.now)
        router.resolve("events.a").insert("stale", now - 600, "x")
        router.resolve("public").insert("u", now, "y")
        snapshotter = Snapshotter(router, interval_seconds=1)

        stats = await snapshotter.run_cycle()

        assert stats.stores == 2
        assert stats.swept_users == 1
        assert stats.flushed_records == 1
        assert stats.failed_stores == 0
        assert (tmp_path / "public" / "u" / f"{now}.json").exists()
        assert not (tmp_path / "events.a" / "stale").exists()
        assert snapshotter.cycle_count == 1

    @pytest.mark.asyncio
    async def test_flush_disabled(self, router, tmp_path):
        router.resolve("public").insert("u", 1, "y")
        snapshotter = Snapshotter(router, interval_seconds=1, flush_enabled=False)

        stats = await snapshotter.run_cycle()

        assert stats.flushed_records == 0
        assert not (tmp_path / "public").exists()

    @pytest.mark.asyncio
    async def test_flush_override(self, router, clock):
        router.resolve("public").insert("u", int(clock.now), "y")
        snapshotter = Snapshotter(router, interval_seconds=1, flush_enabled=False)

        stats = await snapshotter.run_cycle(flush=True)

        assert stats.flushed_records == 1

    @pytest.mark.asyncio
    async def test_failing_store_does_not_stop_cycle(self, router, clock, monkeypatch):
        broken = router.resolve("events.a")
        healthy = router.resolve("public")
        healthy.insert("u", int(clock.now), "y")

        def explode():
            raise RuntimeError("boom")

        monkeypatch.setattr(broken, "sweep_expired", explode)
        snapshotter = Snapshotter(router, interval_seconds=1)

        stats = await snapshotter.run_cycle()

        assert stats.failed_stores == 1
        assert stats.flushed_records == 1

    @pytest.mark.asyncio
    async def test_closed_stores_skipped(self, router):
        router.resolve("public")
        router.close()

        stats = await Snapshotter(router, interval_seconds=1).run_cycle()

        assert stats.stores == 0

    @pytest.mark.asyncio
    async def test_final_cycle_flushes_closed_stores(self, router, clock):
        router.resolve("public").insert("u", int(clock.now), "y")
        router.close()

        stats = await Snapshotter(router, interval_seconds=1).run_cycle(flush=True, final=True)

        assert stats.stores == 1
        assert stats.flushed_records == 1


class TestLoop:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, router):
        snapshotter = Snapshotter(router, interval_seconds=0.01)
        task = asyncio.create_task(snapshotter.start())

        for _ in range(100):
            if snapshotter.cycle_count >= 2:
                break
            await asyncio.sleep(0.01)

        assert snapshotter.is_running is True
        await snapshotter.stop()
        await asyncio.wait_for(task, timeout=2)

        assert snapshotter.is_running is False
        assert snapshotter.cycle_count >= 2

    @pytest.mark.asyncio
    async def test_stop_before_first_step(self, router):
        snapshotter = Snapshotter(router, interval_seconds=3600)
        task = asyncio.create_task(snapshotter.start())

        await snapshotter.stop()
        await asyncio.wait_for(task, timeout=2)

        assert snapshotter.cycle_count == 0
        assert snapshotter.is_running is False

    @pytest.mark.asyncio
    async def test_cancel(self, router):
        snapshotter = Snapshotter(router, interval_seconds=60)
        task = asyncio.create_task(snapshotter.start())
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert snapshotter.is_running is False
