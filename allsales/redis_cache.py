"""
Redis Cache Module for AllSales
Short-lived cache for Steam API results with graceful degradation:
when Redis is unreachable every lookup is a miss and writes are dropped.
"""

import json
import logging
from typing import Any, Dict, Optional

import redis

from allsales.constants import CATALOG_CACHE_KEY, DETAIL_CACHE_PREFIX

logger = logging.getLogger(__name__)

redis_client = None
_redis_url = None
_cache_stats = {
    "hits": 0,
    "misses": 0,
    "sets": 0,
    "deletes": 0,
}


def init_cache(redis_url: str) -> bool:
    """
    Connect the module-level client

    Returns:
        True when Redis answered a ping, False when the cache is disabled
    """
    global redis_client, _redis_url
    _redis_url = redis_url
    try:
        client = redis.from_url(redis_url, decode_responses=True)
        client.ping()
        redis_client = client
        logger.info(f"Redis cache initialized at {redis_url}")
        return True
    except redis.RedisError as e:
        logger.warning(f"Redis cache unavailable at {redis_url}: {e}. Cache will be disabled.")
        redis_client = None
        return False


def get_cache_stats() -> Dict:
    """Get cache statistics (hits, misses, sets, deletes)"""
    if redis_client:
        return {**_cache_stats}
    return {"status": "disabled"}


def reset_cache_stats() -> None:
    """Reset cache statistics"""
    for key in _cache_stats:
        _cache_stats[key] = 0


def make_cache_key(prefix: str, *args) -> str:
    """
    Generate a cache key from a prefix and positional parts

    Example:
        make_cache_key("steam:detail", 440) -> "steam:detail:440"
    """
    return ":".join([prefix] + [str(arg) for arg in args])


def cache_get(key: str) -> Optional[str]:
    """
    Get a value from cache

    Args:
        key: Cache key

    Returns:
        Cached value or None if not found
    """
    if not redis_client:
        return None
    try:
        value = redis_client.get(key)
        if value:
            _cache_stats["hits"] += 1
            logger.debug(f"Cache HIT: {key}")
            return value
        else:
            _cache_stats["misses"] += 1
            logger.debug(f"Cache MISS: {key}")
            return None
    except redis.RedisError as e:
        logger.warning(f"Cache get error for {key}: {e}")
        return None


def cache_get_json(key: str) -> Optional[Any]:
    """Get and decode a JSON value, treating undecodable entries as misses"""
    value = cache_get(key)
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning(f"Discarding undecodable cache entry {key}")
        cache_delete(key)
        return None


def cache_set(key: str, value: Any, ttl: int = 300) -> bool:
    """
    Set a value in cache with TTL

    Args:
        key: Cache key
        value: Value to cache (must be JSON-serializable)
        ttl: Time to live in seconds (default: 300 = 5 min)

    Returns:
        True if set successfully, False otherwise
    """
    if not redis_client:
        return False
    try:
        if not isinstance(value, str):
            value = json.dumps(value)
        redis_client.setex(key, ttl, value)
        _cache_stats["sets"] += 1
        logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
        return True
    except (redis.RedisError, TypeError) as e:
        logger.warning(f"Cache set error for {key}: {e}")
        return False


def cache_delete(key: str) -> bool:
    """Delete a value from cache"""
    if not redis_client:
        return False
    try:
        result = redis_client.delete(key)
        if result > 0:
            _cache_stats["deletes"] += 1
            logger.debug(f"Cache DELETE: {key}")
        return result > 0
    except redis.RedisError as e:
        logger.warning(f"Cache delete error for {key}: {e}")
        return False


def cache_delete_pattern(pattern: str) -> int:
    """
    Delete multiple keys matching a pattern

    Args:
        pattern: Redis key pattern (e.g., "steam:detail:*")

    Returns:
        Number of keys deleted
    """
    if not redis_client:
        return 0
    try:
        keys = list(redis_client.scan_iter(match=pattern))
        if keys:
            count = redis_client.delete(*keys)
            _cache_stats["deletes"] += count
            logger.info(f"Cache DELETE: {pattern} ({count} keys)")
            return count
        return 0
    except redis.RedisError as e:
        logger.warning(f"Cache delete pattern error for {pattern}: {e}")
        return 0


def invalidate_steam_cache() -> int:
    """Drop the cached app list and every cached appdetails payload"""
    count = 1 if cache_delete(CATALOG_CACHE_KEY) else 0
    count += cache_delete_pattern(f"{DETAIL_CACHE_PREFIX}:*")
    if count:
        logger.info(f"Invalidated {count} Steam cache entries")
    return count


def get_cache_info() -> Dict:
    """
    Get cache status and stats

    Returns:
        Dictionary with cache status, stats and the configured URL
    """
    if not redis_client:
        return {"status": "disabled", "error": "Redis not available"}

    return {
        "status": "enabled",
        "stats": get_cache_stats(),
        "redis_url": _redis_url,
    }
