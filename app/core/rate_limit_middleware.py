from fastapi import Request, HTTPException, status, Depends
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from app.core.cache import get_cache
from app.core.config import settings
from app.core.middleware import get_current_user
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

# Request limits per client IP
DEFAULT_IP_LIMITS = {
    'per_minute': 60,
    'per_hour': 1000,
}

EXEMPT_PATHS = ['/health', '/docs', '/openapi.json', '/redoc']


def _window_start(granularity: str) -> str:
    now = datetime.now(timezone.utc)
    if granularity == 'hour':
        now = now.replace(minute=0, second=0, microsecond=0)
    else:
        now = now.replace(second=0, microsecond=0)
    return now.isoformat()


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request"""
    # Proxy/load balancer chain: first entry is the client
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window request limits per client IP, backed by Redis"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.cache = get_cache()

    async def dispatch(self, request: Request, call_next):
        if not settings.rate_limit_enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_ip = get_client_ip(request)
        remaining = self._check_ip_rate_limit(client_ip)
        if remaining is not None and remaining < 0:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Rate limit exceeded. Please try again later.",
                    "retry_after": 60
                },
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Limit": str(DEFAULT_IP_LIMITS['per_minute']),
                    "X-RateLimit-Remaining": "0",
                }
            )

        response = await call_next(request)
        if remaining is not None:
            response.headers["X-RateLimit-Limit"] = str(DEFAULT_IP_LIMITS['per_minute'])
            response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response

    def _check_ip_rate_limit(self, client_ip: str):
        """
        Count the request and return how many remain this minute.
        Negative means a limit was exceeded, None means Redis is unavailable (fail open).
        """
        minute_key = f"rate_limit:ip:{client_ip}:minute:{_window_start('minute')}"
        hour_key = f"rate_limit:ip:{client_ip}:hour:{_window_start('hour')}"

        minute_count = self.cache.incr(minute_key, ttl_seconds=60)
        hour_count = self.cache.incr(hour_key, ttl_seconds=3600)
        if minute_count is None or hour_count is None:
            return None

        if minute_count > DEFAULT_IP_LIMITS['per_minute']:
            logger.warning(f"Rate limit exceeded (per minute) - IP: {client_ip}")
            return -1
        if hour_count > DEFAULT_IP_LIMITS['per_hour']:
            logger.warning(f"Rate limit exceeded (per hour) - IP: {client_ip}")
            return -1
        return DEFAULT_IP_LIMITS['per_minute'] - minute_count


async def scan_rate_limit(
    request: Request,
    current_user: dict = Depends(get_current_user)
) -> dict:
    """
    Dependency limiting how often one user may trigger scans.
    Each scan fans out into several n8n API calls per instance.
    """
    if not settings.rate_limit_enabled:
        return current_user

    user_id = current_user['uid']
    key = f"rate_limit:scan:{user_id}:minute:{_window_start('minute')}"
    count = get_cache().incr(key, ttl_seconds=60)

    if count is not None and count > settings.scan_rate_limit_per_minute:
        logger.warning(f"Scan rate limit exceeded - user: {user_id}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Scan limit of {settings.scan_rate_limit_per_minute} per minute exceeded. Please try again later.",
            headers={"Retry-After": "60"},
        )
    return current_user
