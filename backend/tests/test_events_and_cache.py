import threading
import time
from datetime import datetime
from decimal import Decimal

from accountbook.utils.category_cache import CategoryCache, CategorySnapshot
from accountbook.utils.events import EventPublisher, ExpenseCreated, ExpenseUpdated


def _event(**overrides):
    fields = dict(expense_uuid="e-1", family_uuid="f-1", user_uuid="u-1", amount=Decimal("10.00"),
                  date=datetime(2025, 3, 1))
    fields.update(overrides)
    return ExpenseCreated(**fields)


def _snapshot(uuid, family_uuid="f-1"):
    now = datetime(2025, 1, 1)
    return CategorySnapshot(uuid=uuid, family_uuid=family_uuid, name=uuid, color="#000000", icon=None,
                            exclude_from_budget=False, created_at=now, updated_at=now)


def test_publisher_runs_handlers_off_thread():
    publisher = EventPublisher()
    seen = []
    caller = threading.get_ident()

    def handler(event):
        time.sleep(0.05)
        seen.append((event.expense_uuid, threading.get_ident() != caller))

    publisher.subscribe(ExpenseCreated, handler)
    assert publisher.publish(_event()) == 1
    assert publisher.drain(timeout=5) is True
    assert seen == [("e-1", True)]


def test_publisher_dispatches_by_event_type():
    publisher = EventPublisher()
    created, updated = [], []
    publisher.subscribe(ExpenseCreated, created.append)
    publisher.subscribe(ExpenseUpdated, updated.append)

    publisher.publish(_event())
    publisher.publish(ExpenseUpdated(expense_uuid="e-1", family_uuid="f-1", user_uuid="u-1",
                                     old_amount=Decimal("1"), new_amount=Decimal("2"), date=datetime(2025, 3, 1)))
    assert publisher.publish("not an event") == 0
    publisher.drain()
    assert len(created) == 1
    assert len(updated) == 1


def test_failing_handler_is_isolated(caplog):
    publisher = EventPublisher()
    seen = []

    def broken(event):
        raise RuntimeError("handler exploded")

    publisher.subscribe(ExpenseCreated, broken)
    publisher.subscribe(ExpenseCreated, seen.append)
    assert publisher.publish(_event()) == 2
    assert publisher.drain() is True
    assert len(seen) == 1
    assert any(rec.exc_info and "handler exploded" in str(rec.exc_info[1]) for rec in caplog.records
               if rec.name == "accountbook.events")


def test_drain_times_out():
    publisher = EventPublisher()
    release = threading.Event()
    publisher.subscribe(ExpenseCreated, lambda event: release.wait(5))
    publisher.publish(_event())
    assert publisher.drain(timeout=0.05) is False
    release.set()
    assert publisher.drain(timeout=5) is True


def test_cache_hits_misses_and_eviction():
    cache = CategoryCache(max_size=10, ttl_seconds=60)
    assert cache.get("f-1") is None
    stored = cache.put("f-1", [_snapshot("a"), _snapshot("b")])
    assert isinstance(stored, tuple)
    assert [c.uuid for c in cache.get("f-1")] == ["a", "b"]
    assert cache.stats() == {"hits": 1, "misses": 1, "size": 1}

    cache.evict("f-1")
    cache.evict("unknown")
    assert cache.get("f-1") is None
    assert cache.stats()["size"] == 0

    cache.put("f-2", [])
    cache.clear()
    assert cache.stats() == {"hits": 0, "misses": 0, "size": 0}


def test_cache_is_bounded():
    cache = CategoryCache(max_size=2, ttl_seconds=60)
    for family in ("f-1", "f-2", "f-3"):
        cache.put(family, [_snapshot("x", family)])
    assert cache.stats()["size"] == 2


def test_cache_entries_expire():
    cache = CategoryCache(max_size=10, ttl_seconds=0.05)
    cache.put("f-1", [_snapshot("a")])
    time.sleep(0.1)
    assert cache.get("f-1") is None
