"""
Cache-aside support for recommendation results.

Consistency model: entries are never invalidated when a user interacts with
an item. A cached list can be stale for at most its TTL (``CACHE_TTL_MEDIUM``
for personalized/hybrid, ``CACHE_TTL_SHORT`` for trending/similar users).
"""

import hashlib
import json
import logging
from typing import Any, Awaitable, Optional, Protocol

import redis.asyncio as redis

from recengine.config import (
    CACHE_KEY_PREFIX,
    CACHE_NAMESPACE_POPULAR,
    CACHE_NAMESPACE_USER_PROFILE,
    CACHE_TTL_MEDIUM,
    CACHE_TTL_SHORT,
)
from recengine.engine.errors import CacheFailure
from recengine.engine.models import RecommendationScore
from recengine.observability import metrics

logger = logging.getLogger(__name__)

# strategy -> (namespace, ttl seconds)
CACHE_POLICIES = {
    "personalized": (CACHE_NAMESPACE_USER_PROFILE, CACHE_TTL_MEDIUM),
    "hybrid": (CACHE_NAMESPACE_USER_PROFILE, CACHE_TTL_MEDIUM),
    "trending": (CACHE_NAMESPACE_POPULAR, CACHE_TTL_SHORT),
    "similar_users": (CACHE_NAMESPACE_POPULAR, CACHE_TTL_SHORT),
}


class Cache(Protocol):
    """Best-effort key/value cache. Implementations never raise."""

    async def get(self, namespace: str, key: str) -> Optional[Any]: ...

    async def set(
        self, namespace: str, key: str, value: Any, ttl_seconds: int
    ) -> None: ...


class RedisCache:
    """JSON values under ``<prefix>:<namespace>:<key>``, written with SETEX."""

    def __init__(self, redis_client: redis.Redis, prefix: str = CACHE_KEY_PREFIX):
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, namespace: str, key: str) -> str:
        return f"{self._prefix}:{namespace}:{key}"

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except Exception as e:
            raise CacheFailure(f"redis {operation} failed: {e}") from e

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        try:
            raw = await self._call("get", self._redis.get(self._key(namespace, key)))
            if raw is None:
                return None
            return json.loads(raw)
        except (CacheFailure, ValueError) as e:
            metrics.cache_errors.labels(operation="get").inc()
            logger.warning(f"Cache get skipped for {namespace}: {e}")
            return None

    async def set(self, namespace: str, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            payload = json.dumps(value)
            await self._call(
                "setex",
                self._redis.setex(self._key(namespace, key), ttl_seconds, payload),
            )
        except (CacheFailure, TypeError, ValueError) as e:
            metrics.cache_errors.labels(operation="set").inc()
            logger.warning(f"Cache set skipped for {namespace}: {e}")


class RecommendationCache:
    """Read-through wrapper keyed by strategy name and request parameters."""

    def __init__(self, cache: Cache):
        self._cache = cache

    @staticmethod
    def make_key(
        strategy: str,
        user_id: Optional[int],
        limit: int,
        exclude_authored: Optional[bool] = None,
        config: Optional[dict[str, Any]] = None,
    ) -> str:
        payload = json.dumps(
            [strategy, user_id, limit, exclude_authored, config or {}],
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    async def get(self, strategy: str, key: str) -> Optional[list[RecommendationScore]]:
        namespace, _ = CACHE_POLICIES[strategy]
        try:
            cached = await self._cache.get(namespace, key)
        except Exception as e:
            # backends are supposed to swallow their own errors
            metrics.cache_errors.labels(operation="get").inc()
            logger.warning(f"Cache backend raised on get ({strategy}): {e}")
            cached = None

        if cached is not None:
            try:
                results = [RecommendationScore.from_dict(entry) for entry in cached]
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring malformed cache entry for {strategy}: {e}")
            else:
                metrics.cache_requests.labels(strategy=strategy, result="hit").inc()
                return results

        metrics.cache_requests.labels(strategy=strategy, result="miss").inc()
        return None

    async def put(
        self, strategy: str, key: str, results: list[RecommendationScore]
    ) -> None:
        namespace, ttl = CACHE_POLICIES[strategy]
        try:
            await self._cache.set(
                namespace, key, [r.to_dict() for r in results], ttl
            )
        except Exception as e:
            metrics.cache_errors.labels(operation="set").inc()
            logger.warning(f"Cache backend raised on set ({strategy}): {e}")
