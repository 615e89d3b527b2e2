from __future__ import annotations

from roofops import cache_backend


def test_memory_cache_backend_round_trip_and_ttl():
    backend = cache_backend.MemoryCacheBackend()
    backend.set("k", "v", ttl_seconds=1)
    assert backend.get("k") == "v"
    assert backend.incr("counter", ttl_seconds=10) == 1
    assert backend.incr("counter", ttl_seconds=10) == 2
    backend.delete("k")
    assert backend.get("k") is None


def test_memory_cache_expires(monkeypatch):
    backend = cache_backend.MemoryCacheBackend()
    clock = [1000.0]
    monkeypatch.setattr(cache_backend.time, "time", lambda: clock[0])
    backend.set("k", "v", ttl_seconds=5)
    clock[0] += 10
    assert backend.get("k") is None


def test_json_helpers():
    backend = cache_backend.MemoryCacheBackend()
    backend.set_json("payload", {"a": 1, "b": [1, 2]})
    assert backend.get_json("payload") == {"a": 1, "b": [1, 2]}
    backend.set("broken", "{not json")
    assert backend.get_json("broken") is None


def test_get_cache_backend_falls_back_to_memory(monkeypatch):
    monkeypatch.setattr(cache_backend.config, "REDIS_URL", "")
    cache_backend.reset_cache_backend_for_tests()
    backend = cache_backend.get_cache_backend()
    assert backend.backend == "memory"
    assert cache_backend.get_cache_backend() is backend


def test_get_cache_backend_uses_redis_when_available(monkeypatch):
    class FakeRedisClient:
        def __init__(self):
            self.store = {}

        def ping(self):
            return True

        def get(self, key):
            return self.store.get(key)

        def set(self, key, value):
            self.store[key] = value

        def setex(self, key, ttl, value):
            self.store[key] = value

        def delete(self, key):
            self.store.pop(key, None)

        def incr(self, key):
            self.store[key] = int(self.store.get(key, 0)) + 1
            return self.store[key]

        def expire(self, key, ttl):
            return True

    fake = FakeRedisClient()
    monkeypatch.setattr(cache_backend.config, "REDIS_URL", "redis://fake:6379/0")
    monkeypatch.setattr(cache_backend.redis, "from_url", lambda *_a, **_k: fake)
    cache_backend.reset_cache_backend_for_tests()

    backend = cache_backend.get_cache_backend()
    assert backend.backend == "redis"
    backend.set_json("kpis", {"x": 1}, ttl_seconds=30)
    assert backend.get_json("kpis") == {"x": 1}
    assert backend.incr("rl") == 1


def test_get_cache_backend_falls_back_when_redis_unreachable(monkeypatch):
    import redis

    class DeadClient:
        def ping(self):
            raise redis.ConnectionError("refused")

    monkeypatch.setattr(cache_backend.config, "REDIS_URL", "redis://nowhere:6379/0")
    monkeypatch.setattr(cache_backend.redis, "from_url", lambda *_a, **_k: DeadClient())
    cache_backend.reset_cache_backend_for_tests()

    assert cache_backend.get_cache_backend().backend == "memory"


def test_tenant_key_namespaces_by_tenant():
    assert cache_backend.tenant_key("t1", "kpis", "live") == "t:t1:kpis:live"
    assert cache_backend.tenant_key("t1", "kpis", "live") != cache_backend.tenant_key("t2", "kpis", "live")
