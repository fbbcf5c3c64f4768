"""
Unit tests for CollectionRouter.
"""

import threading

import pytest

from dbaas.tsdb_server.routing import CollectionNotFoundError, CollectionPattern, CollectionRouter
from dbaas.tsdb_server.snapshot import fragments
from dbaas.tsdb_server.store import Record, Store


def make_router(*patterns, **kwargs):
    return CollectionRouter([CollectionPattern.parse(p) for p in patterns], **kwargs)


class TestResolve:
    """Tests for resolve / get."""

    def test_resolve_creates_once(self, clock):
        router = make_router("events.*:60", clock=clock)

        store = router.resolve("events.login")

        assert router.resolve("events.login") is store
        assert store.ttl_hours == 1
        assert router.get("events.login") is store

    def test_each_name_gets_its_own_store(self, clock):
        router = make_router("events.*:60", clock=clock)
        assert router.resolve("events.a") is not router.resolve("events.b")
        assert len(router.stores()) == 2

    def test_first_matching_pattern_wins(self, clock):
        router = make_router("public:1", "public:90", clock=clock)
        assert router.resolve("public").ttl_hours == pytest.approx(1 / 60)

    def test_unregistered_collection(self, clock):
        router = make_router("public:60", clock=clock)

        with pytest.raises(CollectionNotFoundError, match="collection other not found"):
            router.resolve("other")
        with pytest.raises(CollectionNotFoundError):
            router.get("other")

    def test_get_does_not_create(self, clock):
        router = make_router("events.*:60", clock=clock)
        assert router.get("events.never") is None
        assert router.stores() == []

    def test_is_registered(self, clock):
        router = make_router("events.*:60", clock=clock)
        assert router.is_registered("events.x") is True
        assert router.is_registered("events") is False

    def test_concurrent_resolve_yields_single_store(self, clock):
        router = make_router("public:60", clock=clock)
        seen = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            seen.append(router.resolve("public"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({id(store) for store in seen}) == 1

    def test_resolve_loads_snapshot(self, tmp_path, clock):
        fragments.write_fragment(tmp_path, "events.a", "u", 100, [Record(5, "x")])
        router = make_router("events.*:60", storage_root=tmp_path, clock=clock)

        store = router.resolve("events.a")

        assert store.get_latest_for_user("u", 10).data == "x"

    def test_load_does_not_block_other_collections(self, tmp_path, clock, monkeypatch):
        router = make_router("public:60", "events.*:60", storage_root=tmp_path, clock=clock)
        started = threading.Event()
        release = threading.Event()
        real_load = Store.load

        def slow_load(store):
            if store.collection == "public":
                started.set()
                release.wait(timeout=5)
            return real_load(store)

        monkeypatch.setattr(Store, "load", slow_load)
        loader = threading.Thread(target=router.resolve, args=("public",))
        loader.start()
        assert started.wait(timeout=5)

        try:
            other = router.resolve("events.a")
            assert router.stores() == [other]
        finally:
            release.set()
            loader.join(timeout=5)

        assert router.get("public") is not None
        assert router.resolve("public") is router.get("public")


class TestLoadExisting:
    """Tests for load_existing."""

    def test_loads_only_registered_directories(self, tmp_path, clock):
        fragments.write_fragment(tmp_path, "public", "u", 100, [Record(1, "a")])
        fragments.write_fragment(tmp_path, "legacy", "u", 100, [Record(1, "b")])
        router = make_router("public:60", storage_root=tmp_path, clock=clock)

        assert router.load_existing() == 1
        assert [store.collection for store in router.stores()] == ["public"]
        assert (tmp_path / "legacy").is_dir()

    def test_creates_missing_root(self, tmp_path, clock):
        root = tmp_path / "snapshots"
        router = make_router("public:60", storage_root=root, clock=clock)

        assert router.load_existing() == 0
        assert root.is_dir()

    def test_ephemeral_router(self, clock):
        router = make_router("public:60", clock=clock)
        assert router.load_existing() == 0


class TestDeleteAndClose:
    """Tests for delete_user and close."""

    def test_delete_user_everywhere(self, clock):
        router = make_router("events.*:60", clock=clock)
        router.resolve("events.a").insert("u", 1, "x")
        router.resolve("events.b").insert("u", 1, "y")
        router.resolve("events.c").insert("other", 1, "z")

        assert router.delete_user("u") == 2
        assert all("u" not in store for store in router.stores())
        assert "other" in router.get("events.c")

    def test_close_closes_stores(self, clock):
        router = make_router("public:60", clock=clock)
        store = router.resolve("public")

        router.close()

        assert store.closed is True
