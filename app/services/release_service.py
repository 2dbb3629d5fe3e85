import asyncio
import logging
from typing import Optional

import httpx

from app.core.cache import get_cache
from app.core.config import settings
from app.core.exceptions import N8NConnectionError, N8NResponseError, N8NTimeoutError
from app.schemas.instance import N8NRelease

logger = logging.getLogger(__name__)

RELEASE_CACHE_KEY = "n8n_release:latest"


class ReleaseService:
    """Latest published n8n version, used to flag outdated instances"""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = settings.n8n_release_url
        self.timeout = timeout or settings.n8n_request_timeout
        self._transport = transport
        self.logger = logging.getLogger(__name__)

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _fetch(self) -> N8NRelease:
        try:
            async with self._http_client() as client:
                response = await client.get(self.url, headers={"Accept": "application/json"})
        except httpx.TimeoutException as e:
            raise N8NTimeoutError(f"Request to npm registry timed out: {self.url}") from e
        except httpx.TransportError as e:
            raise N8NConnectionError(f"Cannot reach npm registry: {e}") from e

        if response.status_code >= 400:
            raise N8NResponseError("Failed to fetch latest n8n version", response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise N8NResponseError("npm registry returned a non-JSON response", response.status_code) from e

        version = data.get("version") if isinstance(data, dict) else None
        if not isinstance(version, str) or not version:
            raise N8NResponseError("npm registry response has no version", response.status_code)

        published = data.get("time")
        published_at = published.get(version) if isinstance(published, dict) else None
        return N8NRelease(version=version, published_at=published_at)

    async def get_latest_release(self) -> N8NRelease:
        """Latest n8n release, served from the cache for an hour"""
        self.logger.info("get_latest_release: Entry")

        cached = await asyncio.to_thread(get_cache().get, RELEASE_CACHE_KEY)
        if isinstance(cached, dict) and cached.get("version"):
            self.logger.info(f"get_latest_release: Cache hit - version: {cached['version']}")
            return N8NRelease.model_validate(cached)

        try:
            release = await self._fetch()
        except Exception as e:
            self.logger.error(f"get_latest_release: Failure - {e}")
            raise

        await asyncio.to_thread(
            get_cache().set, RELEASE_CACHE_KEY, release.to_dict(), settings.n8n_release_cache_ttl_minutes
        )
        self.logger.info(f"get_latest_release: Success - version: {release.version}")
        return release
