"""Tests for interaction memory and its stores."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from rideai.interfaces import Feature, Interaction
from rideai.services import (
    InMemoryInteractionStore,
    InteractionMemory,
    InteractionStore,
    SQLiteInteractionStore,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class MovableClock:
    """Wall clock for memory tests."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class BrokenStore(InMemoryInteractionStore):
    def add(self, interaction):
        raise OSError("disk full")


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path) -> InteractionStore:
    """Run each store test against both backends."""
    if request.param == "memory":
        s = InMemoryInteractionStore()
    else:
        s = SQLiteInteractionStore(str(tmp_path / "interactions.db"))
    yield s
    s.close()


class TestInteractionMemory:
    """Tests for context building, sweeping and pattern analysis."""

    def test_context_empty_when_no_interactions(self, store):
        memory = InteractionMemory(store, clock=MovableClock())
        assert memory.context_for(Feature.CHAT) == ""

    def test_context_lists_oldest_first_with_latest_last(self, store):
        clock = MovableClock()
        memory = InteractionMemory(store, clock=clock)
        for i in range(12):
            memory.record(Feature.CHAT, f"question {i}", f"answer {i}")
            clock.advance(minutes=1)

        context = memory.context_for(Feature.CHAT, limit=10)

        assert context.startswith("Previous interactions:")
        assert "question 1\n" not in context
        assert "question 2" in context
        assert context.index("question 2") < context.index("question 11")
        assert context.rstrip().endswith("Assistant: answer 11")

    def test_context_is_per_feature(self, store):
        memory = InteractionMemory(store, clock=MovableClock())
        memory.record(Feature.PRICE, "price query", "price answer", {"price": 19.95})
        memory.record(Feature.CHAT, "chat query", "chat answer")

        context = memory.context_for(Feature.PRICE)

        assert "price query" in context
        assert "Price: $19.95" in context
        assert "chat query" not in context

    def test_context_includes_hints(self, store):
        memory = InteractionMemory(store, clock=MovableClock())
        memory.record(
            Feature.MATCH, "q", "r", {"vehicle_type": "sedan", "time_of_day": "morning"}
        )

        context = memory.context_for(Feature.MATCH)

        assert "Preferred vehicle: sedan" in context
        assert "Time: morning" in context

    def test_sweep_is_idempotent(self, store):
        clock = MovableClock()
        memory = InteractionMemory(store, clock=clock)
        memory.record(Feature.CHAT, "old", "old")
        clock.advance(days=20)
        memory.record(Feature.CHAT, "new", "new")
        clock.advance(days=15)

        assert memory.sweep(retention_days=30) == 1
        assert memory.sweep(retention_days=30) == 0
        assert memory.count() == 1
        assert memory.by_feature(Feature.CHAT)[0].query == "new"

    def test_sweep_rejects_negative_retention(self, store):
        memory = InteractionMemory(store, clock=MovableClock())
        with pytest.raises(ValueError):
            memory.sweep(retention_days=-1)

    def test_analyze_patterns(self, store):
        clock = MovableClock()
        memory = InteractionMemory(store, clock=clock)
        memory.record(Feature.PRICE, "q", "r", {"price": 20.0, "time_of_day": "morning"})
        memory.record(Feature.PRICE, "q", "r", {"price": 30.0, "time_of_day": "morning"})
        memory.record(Feature.MATCH, "q", "r", {"vehicle_type": "suv", "time_of_day": "evening"})
        memory.record(Feature.MATCH, "q", "r", {"vehicle_type": "suv"})
        memory.record(Feature.MATCH, "q", "r", {"vehicle_type": "sedan"})

        patterns = memory.analyze_patterns(days=7)

        assert patterns["most_common_vehicle"] == "suv"
        assert patterns["average_price"] == 25.0
        assert patterns["peak_times"] == ["morning", "evening"]

    def test_analyze_patterns_empty(self, store):
        patterns = InteractionMemory(store, clock=MovableClock()).analyze_patterns()
        assert patterns == {"most_common_vehicle": None, "average_price": None, "peak_times": []}


class TestMemoryFailures:
    """Storage failures never reach the caller."""

    def test_append_failure_is_logged_not_raised(self, caplog):
        memory = InteractionMemory(BrokenStore(), clock=MovableClock())

        memory.append(Interaction(feature=Feature.CHAT, query="q", response="r"))

        assert "Failed to append interaction" in caplog.text


class TestSQLiteStore:
    """SQLite specifics."""

    def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "nested" / "memory.db")
        first = SQLiteInteractionStore(path)
        first.add(Interaction(
            feature=Feature.PRICE,
            query="q",
            response="r",
            timestamp=NOW,
            metadata={"price": 19.95},
        ))
        first.close()

        second = SQLiteInteractionStore(path)
        rows = second.latest(Feature.PRICE, 5)
        second.close()

        assert len(rows) == 1
        assert rows[0].timestamp == NOW
        assert rows[0].metadata == {"price": 19.95}


class TestConcurrentSweep:
    """Sweeping while other threads append."""

    def test_sweep_while_appending(self, store, caplog):
        memory = InteractionMemory(store, clock=MovableClock())
        stale = NOW - timedelta(days=40)

        def append(stamp):
            for i in range(150):
                memory.append(Interaction(
                    feature=Feature.PRICE,
                    query=f"q{i}",
                    response="r",
                    timestamp=stamp,
                ))

        def sweep():
            for _ in range(30):
                memory.sweep(retention_days=30)

        threads = (
            [threading.Thread(target=append, args=(NOW,)) for _ in range(4)]
            + [threading.Thread(target=append, args=(stale,)) for _ in range(2)]
            + [threading.Thread(target=sweep) for _ in range(2)]
        )
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        memory.sweep(retention_days=30)

        assert "Failed to append" not in caplog.text
        assert memory.count() == 600
        kept = memory.by_feature(Feature.PRICE, limit=1000)
        assert len(kept) == 600
        assert all(i.timestamp == NOW for i in kept)


class TestBackgroundAppend:
    """record_nowait keeps blocking stores off the event loop."""

    async def test_sqlite_append_runs_in_worker_thread(self, tmp_path):
        store = SQLiteInteractionStore(str(tmp_path / "memory.db"))
        threads = []
        original_add = store.add

        def add(interaction):
            threads.append(threading.get_ident())
            original_add(interaction)

        store.add = add
        memory = InteractionMemory(store, clock=MovableClock())

        memory.record_nowait(Feature.CHAT, "hello", "hi there")
        await memory.flush()

        assert memory.count() == 1
        assert threads and threading.get_ident() not in threads
        store.close()

    async def test_in_memory_append_is_inline(self):
        memory = InteractionMemory(clock=MovableClock())

        memory.record_nowait(Feature.CHAT, "hello", "hi there")

        assert memory.count() == 1

    def test_without_running_loop_append_is_inline(self, tmp_path):
        store = SQLiteInteractionStore(str(tmp_path / "memory.db"))
        memory = InteractionMemory(store, clock=MovableClock())

        memory.record_nowait(Feature.CHAT, "hello", "hi there")

        assert memory.count() == 1
        store.close()
