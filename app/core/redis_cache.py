import json
import logging
from typing import Optional, Dict, Any, Union
import redis
from redis.exceptions import RedisError
from app.core.config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis-backed store for rate limit counters and cached n8n payloads.

    Every operation degrades to a no-op (or None) when Redis is unreachable,
    so callers never have to guard against the cache being down.
    """

    def __init__(self, url: Optional[str] = None):
        self._url = url or settings.redis_url
        self._client: Optional[redis.Redis] = None
        self._connected = False

    def _build_client(self) -> redis.Redis:
        client_kwargs: Dict[str, Any] = {
            'db': settings.redis_db,
            'decode_responses': False,
            'socket_connect_timeout': 2,
            'socket_timeout': 2,
            'retry_on_timeout': False,
            'health_check_interval': 0,
        }
        # An explicit password wins over one embedded in the URL
        if settings.redis_password:
            client_kwargs['password'] = settings.redis_password
        return redis.from_url(self._url, **client_kwargs)

    def _ensure_connected(self) -> Optional[redis.Redis]:
        """Return a live client, or None when Redis is unavailable"""
        if self._connected and self._client is not None:
            return self._client

        try:
            self._client = self._build_client()
            self._client.ping()
            self._connected = True
            logger.info("RedisCache: Connected")
        except (RedisError, ValueError) as e:
            message = str(e).lower()
            if 'auth' in message or 'password' in message:
                logger.error(f"RedisCache: Authentication failed - {e}. Check REDIS_PASSWORD or REDIS_URL.")
            else:
                logger.warning(f"RedisCache: Connection failed - {e}")
            self._client = None
            self._connected = False
        return self._client

    def _reset(self, op: str, key: str, error: Exception):
        logger.error(f"RedisCache: Error during {op} for key {key}: {error}")
        self._connected = False

    def get(self, key: str) -> Optional[Dict]:
        """Get a cached JSON value"""
        client = self._ensure_connected()
        if client is None:
            logger.warning(f"RedisCache: Cannot get key {key} - Redis not available")
            return None

        try:
            data = client.get(key)
        except RedisError as e:
            self._reset("get", key, e)
            return None

        if data is None:
            logger.debug(f"Cache miss: {key}")
            return None

        try:
            decoded = json.loads(data.decode('utf-8'))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"RedisCache: Failed to decode value for key {key}: {e}")
            self.delete(key)
            return None

        logger.debug(f"Cache hit: {key}")
        return decoded

    def get_int(self, key: str) -> Optional[int]:
        """Get a counter value"""
        client = self._ensure_connected()
        if client is None:
            return None

        try:
            data = client.get(key)
        except RedisError as e:
            self._reset("get_int", key, e)
            return None

        if data is None:
            return None
        try:
            return int(data.decode('utf-8'))
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"RedisCache: Failed to decode integer for key {key}: {e}")
            self.delete(key)
            return None

    def set(self, key: str, value: Union[Dict, int], ttl_minutes: int):
        """Set a value with a TTL in minutes; ints are stored raw so incr() works on them"""
        client = self._ensure_connected()
        if client is None:
            logger.warning(f"RedisCache: Cannot set key {key} - Redis not available")
            return

        if isinstance(value, int):
            serialized = str(value).encode('utf-8')
        else:
            serialized = json.dumps(value, default=str).encode('utf-8')

        try:
            client.setex(key, ttl_minutes * 60, serialized)
            logger.debug(f"Cache set: {key}, TTL: {ttl_minutes} minutes")
        except RedisError as e:
            self._reset("set", key, e)

    def delete(self, key: str):
        client = self._ensure_connected()
        if client is None:
            logger.warning(f"RedisCache: Cannot delete key {key} - Redis not available")
            return

        try:
            client.delete(key)
            logger.debug(f"Cache deleted: {key}")
        except RedisError as e:
            self._reset("delete", key, e)

    def incr(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[int]:
        """
        Atomically increment a counter.
        The TTL is applied only when the counter is created so a fixed window never slides.
        """
        client = self._ensure_connected()
        if client is None:
            return None

        try:
            new_value = client.incr(key)
            if ttl_seconds and new_value == 1:
                client.expire(key, ttl_seconds)
            return new_value
        except RedisError as e:
            self._reset("incr", key, e)
            return None

    def ping(self) -> bool:
        client = self._ensure_connected()
        if client is None:
            return False
        try:
            return bool(client.ping())
        except RedisError:
            self._connected = False
            return False
