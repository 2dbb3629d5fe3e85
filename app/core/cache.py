import logging
from typing import Optional, List, Dict, Any
from app.core.redis_cache import RedisCache

logger = logging.getLogger(__name__)

# Raw n8n collections cached per instance
RESOURCE_KINDS = ("workflows", "credentials")


# Global cache instance
_cache_instance: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """Get global Redis cache instance"""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = RedisCache()
    return _cache_instance


def _generate_cache_key(instance_id: str, kind: str) -> str:
    return f"n8n_resource:{instance_id}:{kind}"


def get_cached_resources(instance_id: str, kind: str) -> Optional[List[Dict[str, Any]]]:
    """Get a cached raw n8n collection (workflows or credentials)."""
    cached = get_cache().get(_generate_cache_key(instance_id, kind))
    if not isinstance(cached, dict) or not isinstance(cached.get("data"), list):
        return None
    return cached["data"]


def set_cached_resources(
    instance_id: str,
    kind: str,
    items: List[Dict[str, Any]],
    ttl_minutes: int = 2
):
    """Cache a raw n8n collection."""
    get_cache().set(_generate_cache_key(instance_id, kind), {"data": items}, ttl_minutes)


def invalidate_instance_cache(instance_id: str):
    """Drop every cached collection of an instance (refresh, update, delete)."""
    cache = get_cache()
    for kind in RESOURCE_KINDS:
        cache.delete(_generate_cache_key(instance_id, kind))
    logger.debug(f"invalidate_instance_cache: {instance_id}")
