"""
Integration tests for Redis cache operations
"""

import pytest
from app.core.redis_cache import RedisCache


@pytest.fixture
def cache(redis_client):
    """RedisCache against the test Redis database"""
    if redis_client is None:
        pytest.skip("Redis not available")

    cache = RedisCache()
    if not cache.ping():
        pytest.skip("Redis not available")
    yield cache

    for key in redis_client.keys("test_*"):
        redis_client.delete(key)


@pytest.mark.integration
class TestRedisIntegration:
    """Integration tests for RedisCache"""

    def test_set_get_dict(self, cache):
        """Test setting and getting a cached collection"""
        cache.set("test_workflows", {"data": [{"id": "wf-1", "name": "(Sync) Orders"}]}, ttl_minutes=1)

        assert cache.get("test_workflows") == {"data": [{"id": "wf-1", "name": "(Sync) Orders"}]}

    def test_ttl_applied(self, cache, redis_client):
        cache.set("test_ttl_key", {"data": []}, ttl_minutes=2)

        ttl = redis_client.ttl("test_ttl_key")
        assert 0 < ttl <= 120

    def test_set_get_int(self, cache):
        cache.set("test_counter_value", 7, ttl_minutes=1)

        assert cache.get_int("test_counter_value") == 7

    def test_delete(self, cache):
        cache.set("test_delete_key", {"a": 1}, ttl_minutes=1)
        cache.delete("test_delete_key")

        assert cache.get("test_delete_key") is None

    def test_incr_with_window(self, cache, redis_client):
        """Test that the counter window is fixed at the first increment"""
        assert cache.incr("test_rate_counter", ttl_seconds=60) == 1
        assert cache.incr("test_rate_counter", ttl_seconds=60) == 2

        ttl = redis_client.ttl("test_rate_counter")
        assert 0 < ttl <= 60

    def test_missing_key(self, cache):
        assert cache.get("test_missing_key") is None
        assert cache.get_int("test_missing_key") is None
