from kairos.application.analytics.cache import ResultCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_cache_hit_before_ttl():
    clock = FakeClock()
    cache = ResultCache(ttl=10, clock=clock)
    cache.put(("u1", "velocity", (12,), None), "result")

    clock.now = 9.9
    assert cache.get(("u1", "velocity", (12,), None)) == "result"


def test_cache_expires_after_ttl():
    clock = FakeClock()
    cache = ResultCache(ttl=10, clock=clock)
    cache.put("k", "v")

    clock.now = 10.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_cache_clear():
    cache = ResultCache(ttl=10)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.clear()
    assert len(cache) == 0
    assert cache.get("a") is None
