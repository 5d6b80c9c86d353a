"""
Redis-based rate limiting for API endpoints.
Fixed window counter per view and client IP.
"""
import logging
from functools import wraps

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

_redis_client = None
_redis_checked = False


def get_redis_client():
    """Connect lazily; returns None while Redis is unreachable."""
    global _redis_client, _redis_checked
    if _redis_checked:
        return _redis_client
    _redis_checked = True
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5
        )
        client.ping()
        _redis_client = client
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.warning(f"Redis connection failed: {e}. Rate limiting will be disabled.")
        _redis_client = None
    return _redis_client


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def rate_limit(max_requests: int = None, window_seconds: int = 60):
    """
    Rate limiting decorator for DRF view methods.

    ``max_requests`` defaults to ``settings.TRANSFER_RATE_LIMIT``.

    Usage:
        @rate_limit(30, 60)
        def post(self, request):
            ...
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(self, request, *args, **kwargs):
            client = get_redis_client() if getattr(settings, 'RATE_LIMIT_ENABLED', True) else None
            if client is None:
                return view_func(self, request, *args, **kwargs)

            limit = max_requests or settings.TRANSFER_RATE_LIMIT
            key = f"rate_limit:{self.__class__.__name__}:{get_client_ip(request)}"
            try:
                current_count = client.incr(key)
                if current_count == 1:
                    client.expire(key, window_seconds)
                ttl = client.ttl(key)
            except redis.RedisError as e:
                logger.error(f"Redis error in rate limiting: {e}")
                return view_func(self, request, *args, **kwargs)

            if current_count > limit:
                return Response(
                    {
                        'error': 'RateLimitExceeded',
                        'detail': f'Maximum {limit} requests per {window_seconds} seconds allowed.',
                        'retry_after': ttl
                    },
                    status=status.HTTP_429_TOO_MANY_REQUESTS,
                    headers={'Retry-After': str(ttl)}
                )

            response = view_func(self, request, *args, **kwargs)
            response['X-RateLimit-Limit'] = str(limit)
            response['X-RateLimit-Remaining'] = str(max(0, limit - current_count))
            response['X-RateLimit-Reset'] = str(ttl)
            return response

        return wrapper
    return decorator
