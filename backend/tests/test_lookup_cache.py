from backend.app.lookup_cache import TTLCache


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.put("a", {"id": "a"})
    clock.t = 9.9
    assert cache.get("a") == {"id": "a"}
    clock.t = 10
    assert cache.get("a") is None


def test_get_or_load_loads_once_and_skips_missing():
    cache = TTLCache(60, clock=FakeClock())
    calls = []

    def load():
        calls.append(1)
        return {"id": "c1"}

    assert cache.get_or_load("c1", load) == {"id": "c1"}
    assert cache.get_or_load("c1", load) == {"id": "c1"}
    assert len(calls) == 1

    assert cache.get_or_load("missing", lambda: None) is None
    assert cache.get("missing") is None


def test_invalidate_and_eviction():
    clock = FakeClock()
    cache = TTLCache(60, clock=clock, max_entries=2)
    cache.put("a", {"id": "a"})
    clock.t = 1
    cache.put("b", {"id": "b"})
    clock.t = 2
    cache.put("c", {"id": "c"})
    assert cache.get("a") is None
    assert cache.get("b") and cache.get("c")

    cache.invalidate("b")
    assert cache.get("b") is None
