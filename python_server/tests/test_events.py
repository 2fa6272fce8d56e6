"""Tests for the event bus and the lookup cache."""

from conftest import FakeClock
from polis.util.cache import TTLCache
from polis.util.events import EventBus, MovementFailed, MovementProcessed


def _processed(movement_id: str = "m1") -> MovementProcessed:
    return MovementProcessed(world_id="w1", movement_id=movement_id,
                             movement_type="attack", outcome="returning")


class TestEventBus:
    def test_emit_triggers_handler(self):
        bus = EventBus()
        received = []
        bus.on(MovementProcessed, lambda e: received.append(e.movement_id))
        bus.emit(_processed("m42"))
        assert received == ["m42"]

    def test_no_cross_event(self):
        bus = EventBus()
        received = []
        bus.on(MovementProcessed, lambda e: received.append("processed"))
        bus.emit(MovementFailed(world_id="w1", movement_id="m1", error="boom"))
        assert received == []

    def test_multiple_handlers(self):
        bus = EventBus()
        a, b = [], []
        bus.on(MovementProcessed, lambda e: a.append(1))
        bus.on(MovementProcessed, lambda e: b.append(2))
        bus.emit(_processed())
        assert a == [1] and b == [2]

    def test_off_removes_handler(self):
        bus = EventBus()
        received = []
        handler = lambda e: received.append(1)
        bus.on(MovementProcessed, handler)
        bus.off(MovementProcessed, handler)
        bus.emit(_processed())
        assert received == []

    def test_clear(self):
        bus = EventBus()
        bus.on(MovementProcessed, lambda e: None)
        bus.clear()
        # Should not raise
        bus.emit(_processed())


class TestTTLCache:
    def test_expires_after_ttl(self):
        clock = FakeClock(0.0)
        cache = TTLCache(10.0, clock=clock)
        cache.set("k", 1)
        clock.advance(9.9)
        assert cache.get("k") == 1
        clock.advance(0.1)
        assert cache.get("k") is None
        assert len(cache) == 0

    async def test_get_or_load_caches_none(self):
        cache = TTLCache(10.0, clock=FakeClock(0.0))
        calls = []

        async def loader():
            calls.append(1)
            return None

        assert await cache.get_or_load("alliance", loader) is None
        assert await cache.get_or_load("alliance", loader) is None
        assert calls == [1]

    async def test_reload_after_invalidate(self):
        cache = TTLCache(10.0, clock=FakeClock(0.0))
        values = iter(["a", "b"])

        async def loader():
            return next(values)

        assert await cache.get_or_load("k", loader) == "a"
        cache.invalidate("k")
        assert await cache.get_or_load("k", loader) == "b"

    def test_clear(self):
        cache = TTLCache(10.0, clock=FakeClock(0.0))
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0
