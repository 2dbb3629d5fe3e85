"""
Tests for the n8n response cache and RedisCache degradation
"""

import pytest
from unittest.mock import MagicMock, patch
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from app.core.cache import (
    RESOURCE_KINDS,
    _generate_cache_key,
    get_cached_resources,
    invalidate_instance_cache,
    set_cached_resources,
)
from app.core.redis_cache import RedisCache


@pytest.fixture
def mock_cache():
    """Mock Redis cache"""
    cache = MagicMock()
    cache.get.return_value = None
    cache.set.return_value = None
    cache.delete.return_value = None
    return cache


@pytest.fixture
def sample_workflows():
    return [{"id": "wf-1", "name": "(Sync) Orders", "active": True, "nodes": []}]


class TestCacheKeyGeneration:
    """Keys are scoped to one instance and one resource kind"""

    def test_cache_key_format(self):
        assert _generate_cache_key("inst-1", "workflows") == "n8n_resource:inst-1:workflows"

    def test_cache_keys_differ_per_instance_and_kind(self):
        keys = {
            _generate_cache_key(instance_id, kind)
            for instance_id in ("inst-1", "inst-2")
            for kind in RESOURCE_KINDS
        }
        assert len(keys) == 4


class TestResourceCache:
    """Test get / set / invalidate through the global cache"""

    @patch("app.core.cache.get_cache")
    def test_cache_miss_returns_none(self, mock_get_cache, mock_cache):
        mock_get_cache.return_value = mock_cache

        assert get_cached_resources("inst-1", "workflows") is None
        mock_cache.get.assert_called_once_with("n8n_resource:inst-1:workflows")

    @patch("app.core.cache.get_cache")
    def test_set_wraps_list_with_ttl(self, mock_get_cache, mock_cache, sample_workflows):
        """Test that collections are stored as {data: [...]} with the given TTL"""
        mock_get_cache.return_value = mock_cache

        set_cached_resources("inst-1", "workflows", sample_workflows, ttl_minutes=2)

        mock_cache.set.assert_called_once_with(
            "n8n_resource:inst-1:workflows", {"data": sample_workflows}, 2
        )

    @patch("app.core.cache.get_cache")
    def test_cache_hit_returns_list(self, mock_get_cache, mock_cache, sample_workflows):
        mock_cache.get.return_value = {"data": sample_workflows}
        mock_get_cache.return_value = mock_cache

        assert get_cached_resources("inst-1", "workflows") == sample_workflows

    @patch("app.core.cache.get_cache")
    def test_unexpected_payload_is_a_miss(self, mock_get_cache, mock_cache):
        mock_cache.get.return_value = {"something": "else"}
        mock_get_cache.return_value = mock_cache

        assert get_cached_resources("inst-1", "workflows") is None

    @patch("app.core.cache.get_cache")
    def test_cached_empty_list_is_a_hit(self, mock_get_cache, mock_cache):
        """Test that an instance with no credentials is not refetched every time"""
        mock_cache.get.return_value = {"data": []}
        mock_get_cache.return_value = mock_cache

        assert get_cached_resources("inst-1", "credentials") == []

    @patch("app.core.cache.get_cache")
    def test_invalidate_deletes_every_kind(self, mock_get_cache, mock_cache):
        mock_get_cache.return_value = mock_cache

        invalidate_instance_cache("inst-1")

        deleted = [call.args[0] for call in mock_cache.delete.call_args_list]
        assert deleted == ["n8n_resource:inst-1:workflows", "n8n_resource:inst-1:credentials"]


class TestRedisCacheDegradation:
    """RedisCache must never raise when Redis is down"""

    @pytest.fixture
    def unreachable(self):
        client = MagicMock()
        client.ping.side_effect = RedisConnectionError("Connection refused")
        with patch("app.core.redis_cache.redis.from_url", return_value=client):
            yield RedisCache()

    def test_get_returns_none(self, unreachable):
        assert unreachable.get("key") is None

    def test_set_and_delete_are_noops(self, unreachable):
        unreachable.set("key", {"a": 1}, ttl_minutes=1)
        unreachable.delete("key")

    def test_incr_returns_none(self, unreachable):
        assert unreachable.incr("counter", ttl_seconds=60) is None

    def test_ping_false(self, unreachable):
        assert unreachable.ping() is False

    def test_error_after_connect_resets_connection(self):
        """Test that a command failure marks the client for reconnection"""
        client = MagicMock()
        client.ping.return_value = True
        client.get.side_effect = RedisTimeoutError("Timeout reading from socket")
        with patch("app.core.redis_cache.redis.from_url", return_value=client):
            cache = RedisCache()
            assert cache.get("key") is None

        assert cache._connected is False

    def test_corrupt_value_is_deleted(self):
        client = MagicMock()
        client.ping.return_value = True
        client.get.return_value = b"not json"
        with patch("app.core.redis_cache.redis.from_url", return_value=client):
            cache = RedisCache()
            assert cache.get("key") is None

        client.delete.assert_called_once_with("key")

    def test_incr_sets_ttl_on_first_increment_only(self):
        client = MagicMock()
        client.ping.return_value = True
        client.incr.side_effect = [1, 2]
        with patch("app.core.redis_cache.redis.from_url", return_value=client):
            cache = RedisCache()
            assert cache.incr("counter", ttl_seconds=60) == 1
            assert cache.incr("counter", ttl_seconds=60) == 2

        client.expire.assert_called_once_with("counter", 60)
