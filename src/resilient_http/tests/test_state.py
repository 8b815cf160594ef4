"""Tests for the bounded state cache and conversation chaining."""

from __future__ import annotations

import threading
import time

import pytest

from resilient_http.io.streaming import ResponseResult
from resilient_http.state import BoundedStateCache, ConversationChain

from conftest import ManualClock


class TestManaged:
    def test_lru_evicts_first_inserted(self, captured_logs) -> None:
        store = BoundedStateCache(max_size=3, clock=ManualClock())
        for key in ("a", "b", "c", "d"):
            store.set(key, key.upper())

        assert store.get("a") is None
        assert [store.get(k) for k in ("b", "c", "d")] == ["B", "C", "D"]
        assert len(store) == 3
        assert store.stats["evictions"] == 1
        assert "state.evicted" in captured_logs.events()

    def test_get_refreshes_recency(self) -> None:
        store = BoundedStateCache(max_size=2, clock=ManualClock())
        store.set("a", 1)
        store.set("b", 2)
        store.get("a")
        store.set("c", 3)

        assert "a" in store
        assert "b" not in store

    def test_ttl_boundary(self) -> None:
        clock = ManualClock()
        store = BoundedStateCache(ttl_ms=1000, clock=clock)
        store.set("k", "v")

        clock.advance(999)
        assert store.get("k") == "v"
        clock.advance(2)
        assert store.get("k") is None
        assert store.stats["expirations"] == 1

    def test_ttl_counts_from_last_write(self) -> None:
        clock = ManualClock()
        store = BoundedStateCache(ttl_ms=1000, clock=clock)
        store.set("k", 1)
        clock.advance(800)
        store.set("k", 2)
        clock.advance(800)
        assert store.get("k") == 2

    def test_sweep_reclaims_without_reads(self) -> None:
        clock = ManualClock()
        store = BoundedStateCache(ttl_ms=100, clock=clock)
        store.set("a", 1)
        store.set("b", 2)
        clock.advance(101)
        store.set("c", 3)

        assert store.sweep() == 2
        assert len(store) == 1

    def test_delete_and_clear(self) -> None:
        store = BoundedStateCache()
        store.set("a", 1)
        assert store.delete("a")
        assert not store.delete("a")
        store.set("b", 2)
        store.clear()
        assert len(store) == 0

    def test_invalid_bounds(self) -> None:
        with pytest.raises(ValueError):
            BoundedStateCache(max_size=0)
        with pytest.raises(ValueError):
            BoundedStateCache(ttl_ms=0)
        with pytest.raises(ValueError):
            BoundedStateCache(sweep_interval_ms=-1)


class TestLifecycle:
    def test_dispose_is_idempotent_and_blocks_writes(self) -> None:
        store = BoundedStateCache()
        store.set("a", 1)

        store.dispose()
        store.dispose()

        assert store.disposed
        assert len(store) == 0
        with pytest.raises(RuntimeError):
            store.set("b", 2)

    def test_background_sweeper_stops_on_dispose(self) -> None:
        store = BoundedStateCache(ttl_ms=10, sweep_interval_ms=5)
        sweeper = store._sweeper
        assert sweeper is not None and sweeper.is_alive()
        store.set("a", 1)

        deadline = time.monotonic() + 2.0
        while store.stats["expirations"] == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert store.stats["expirations"] == 1

        store.dispose()
        assert not sweeper.is_alive()
        assert store._sweeper is None

    def test_concurrent_dispose_runs_once(self, captured_logs) -> None:
        store = BoundedStateCache(sweep_interval_ms=1000)
        store.set("a", 1)
        barrier = threading.Barrier(8)

        def dispose() -> None:
            barrier.wait()
            store.dispose()

        threads = [threading.Thread(target=dispose) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.disposed and len(store) == 0
        assert captured_logs.events().count("state.disposed") == 1

    def test_context_manager_disposes(self) -> None:
        with BoundedStateCache(sweep_interval_ms=1000) as store:
            store.set("a", 1)
        assert store.disposed


class TestUnmanaged:
    def test_delegates_to_external_mapping(self) -> None:
        backing: dict[str, object] = {"x": 1}
        store = BoundedStateCache.unmanaged(backing)

        assert not store.managed
        assert store.stats["max_size"] == 0 and store._sweeper is None
        assert store.get("x") == 1
        store.set("y", 2)
        assert backing["y"] == 2
        assert "y" in store and len(store) == 2
        assert store.delete("x") and "x" not in backing
        assert store.sweep() == 0

    def test_dispose_leaves_external_mapping_alone(self) -> None:
        backing = {"x": 1}
        store = BoundedStateCache.unmanaged(backing)
        store.dispose()
        assert backing == {"x": 1}


class TestConversationChain:
    def test_remember_and_continue(self) -> None:
        chain = ConversationChain(BoundedStateCache(clock=ManualClock()))
        assert chain.previous_response_id("c1") is None

        assert chain.remember("c1", ResponseResult(id="resp_1")) == "resp_1"
        assert chain.previous_response_id("c1") == "resp_1"
        assert chain.remember("c1", "resp_2") == "resp_2"
        assert chain.previous_response_id("c1") == "resp_2"
        assert chain.previous_response_id("c2") is None

    def test_results_without_id_are_ignored(self) -> None:
        chain = ConversationChain()
        assert chain.remember("c1", ResponseResult()) is None
        assert chain.previous_response_id("c1") is None

    def test_forget(self) -> None:
        chain = ConversationChain(prefix="chat")
        chain.remember("c1", "resp_1")
        assert "chat:c1" in chain.store
        assert chain.forget("c1")
        assert not chain.forget("c1")
