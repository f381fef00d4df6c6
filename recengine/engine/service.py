"""
Public entry point of the recommendation engine.

``RecommendationService`` wires the strategies together around an injected
``Repository`` and ``Cache``. It validates input (rejecting, not clamping,
out-of-range limits), reads and writes the cache-aside layer and owns the
fallback policy:

    personalized   -> weekly trending on any failure or for low-activity users
    similar users  -> empty list on failure
    trending       -> empty list on failure
    hybrid         -> per-branch isolation, weekly trending on total failure

Validation errors are the only exceptions callers see; cancellation is always
propagated.
"""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from recengine.config import MAX_LIMIT
from recengine.engine.cache import Cache, RecommendationCache
from recengine.engine.candidates import CandidateGenerator
from recengine.engine.collaborative import CollaborativeRecommender
from recengine.engine.diversity import DiversityFilter
from recengine.engine.errors import ValidationError
from recengine.engine.hybrid import HybridBlender
from recengine.engine.models import (
    ActivityLevel,
    RecommendationConfig,
    RecommendationScore,
    TimeRange,
)
from recengine.engine.preferences import PreferenceAnalyzer
from recengine.engine.repository import Repository
from recengine.engine.scoring import ScoringEngine
from recengine.engine.trending import TrendingRecommender
from recengine.observability import metrics

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_user_id(user_id: Any) -> int:
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
        raise ValidationError(f"Invalid user_id: {user_id!r}")
    return user_id


def validate_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}, got {limit!r}")
    return limit


def validate_time_range(time_range: Union[str, TimeRange]) -> TimeRange:
    try:
        return TimeRange(time_range)
    except ValueError:
        raise ValidationError(
            f"time_range must be one of day/week/month, got {time_range!r}"
        ) from None


def resolve_config(
    config: Optional[Union[RecommendationConfig, dict[str, Any]]],
) -> RecommendationConfig:
    """Merge caller overrides over the defaults and validate the result."""
    if config is None:
        resolved = RecommendationConfig()
    elif isinstance(config, RecommendationConfig):
        resolved = config
    else:
        try:
            resolved = replace(
                RecommendationConfig(),
                **{k: v for k, v in config.items() if v is not None},
            )
        except TypeError as e:
            raise ValidationError(f"Unknown recommendation config field: {e}") from None

    if resolved.min_score < 0:
        raise ValidationError("min_score must be >= 0")
    if not 1 <= resolved.max_candidates <= 5000:
        raise ValidationError("max_candidates must be between 1 and 5000")
    if not 0.0 <= resolved.diversity_threshold <= 1.0:
        raise ValidationError("diversity_threshold must be between 0 and 1")
    if resolved.author_diversity_limit < 1:
        raise ValidationError("author_diversity_limit must be >= 1")
    return resolved


class RecommendationService:
    def __init__(
        self,
        repository: Repository,
        cache: Cache,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._cache = RecommendationCache(cache)
        self._analyzer = PreferenceAnalyzer(repository, clock)
        self._candidates = CandidateGenerator(repository, clock)
        self._scoring = ScoringEngine(clock)
        self._collaborative = CollaborativeRecommender(repository)
        self._trending = TrendingRecommender(repository, clock)
        self._hybrid = HybridBlender(
            personalized=lambda user_id, limit: self.get_user_recommendations(
                user_id, limit
            ),
            collaborative=lambda user_id, limit: self.get_similar_user_recommendations(
                user_id, limit
            ),
            trending=lambda user_id, limit, time_range: self.get_trending_recommendations(
                user_id, limit, time_range
            ),
        )

    async def get_user_recommendations(
        self,
        user_id: int,
        limit: int = 10,
        exclude_authored: bool = True,
        config: Optional[Union[RecommendationConfig, dict[str, Any]]] = None,
        timeout: Optional[float] = None,
    ) -> list[RecommendationScore]:
        validate_user_id(user_id)
        validate_limit(limit)
        final_config = resolve_config(config)
        metrics.recommendation_requests.labels(strategy="personalized").inc()

        cache_key = RecommendationCache.make_key(
            "personalized", user_id, limit, exclude_authored, final_config.to_dict()
        )
        cached = await self._cache.get("personalized", cache_key)
        if cached is not None:
            return cached

        start = time.time()
        try:
            recommendations = await self._with_timeout(
                self._personalized(user_id, limit, exclude_authored, final_config),
                timeout,
            )
        except Exception as e:
            reason = "timeout" if isinstance(e, asyncio.TimeoutError) else "error"
            metrics.recommendation_fallback.labels(
                strategy="personalized", reason=reason
            ).inc()
            logger.error(
                f"Personalized recommendations failed for user {user_id} ({reason}): {e}"
            )
            return await self.get_trending_recommendations(
                user_id, limit, TimeRange.WEEK, timeout=timeout
            )
        finally:
            metrics.strategy_duration.labels(strategy="personalized").observe(
                time.time() - start
            )

        if recommendations is None:
            # low activity: weekly trending is the answer, cached under its own key
            return await self.get_trending_recommendations(
                user_id, limit, TimeRange.WEEK, timeout=timeout
            )

        await self._cache.put("personalized", cache_key, recommendations)
        metrics.recommendation_results.labels(strategy="personalized").observe(
            len(recommendations)
        )
        return recommendations

    async def _personalized(
        self,
        user_id: int,
        limit: int,
        exclude_authored: bool,
        config: RecommendationConfig,
    ) -> Optional[list[RecommendationScore]]:
        """Returns None when the user should get weekly trending instead."""
        profile = await self._analyzer.analyze(user_id)
        if profile.activity_level == ActivityLevel.LOW:
            metrics.recommendation_fallback.labels(
                strategy="personalized", reason="low_activity"
            ).inc()
            logger.info(f"User {user_id} has low activity, serving weekly trending")
            return None

        candidates = await self._candidates.generate(
            user_id, exclude_authored, config.max_candidates
        )
        if not candidates:
            metrics.recommendation_fallback.labels(
                strategy="personalized", reason="no_candidates"
            ).inc()
            logger.warning(f"No candidates found for user {user_id}")
            return None
        metrics.candidates_scored.observe(len(candidates))

        scored = self._scoring.score(candidates, profile)
        diverse = DiversityFilter(config.author_diversity_limit).apply(scored)
        recommendations = [rec for rec in diverse if rec.score >= config.min_score][:limit]

        if len(recommendations) < limit:
            selected = {rec.item_id for rec in recommendations}
            trending = await self.get_trending_recommendations(
                user_id, limit, TimeRange.WEEK
            )
            for rec in trending:
                if len(recommendations) >= limit:
                    break
                if rec.item_id not in selected:
                    recommendations.append(rec)
                    selected.add(rec.item_id)

        return recommendations

    async def get_similar_user_recommendations(
        self, user_id: int, limit: int = 10, timeout: Optional[float] = None
    ) -> list[RecommendationScore]:
        validate_user_id(user_id)
        validate_limit(limit)
        metrics.recommendation_requests.labels(strategy="similar_users").inc()

        cache_key = RecommendationCache.make_key("similar_users", user_id, limit)
        cached = await self._cache.get("similar_users", cache_key)
        if cached is not None:
            return cached

        start = time.time()
        try:
            recommendations = await self._with_timeout(
                self._collaborative.recommend(user_id, limit), timeout
            )
        except Exception as e:
            metrics.recommendation_fallback.labels(
                strategy="similar_users", reason="error"
            ).inc()
            logger.error(f"Similar user recommendations failed for user {user_id}: {e}")
            return []
        finally:
            metrics.strategy_duration.labels(strategy="similar_users").observe(
                time.time() - start
            )

        await self._cache.put("similar_users", cache_key, recommendations)
        metrics.recommendation_results.labels(strategy="similar_users").observe(
            len(recommendations)
        )
        return recommendations

    async def get_trending_recommendations(
        self,
        user_id: Optional[int] = None,
        limit: int = 10,
        time_range: Union[str, TimeRange] = TimeRange.WEEK,
        timeout: Optional[float] = None,
    ) -> list[RecommendationScore]:
        if user_id is not None:
            validate_user_id(user_id)
        validate_limit(limit)
        time_range = validate_time_range(time_range)
        metrics.recommendation_requests.labels(strategy="trending").inc()

        cache_key = RecommendationCache.make_key(
            "trending", user_id, limit, config={"time_range": time_range.value}
        )
        cached = await self._cache.get("trending", cache_key)
        if cached is not None:
            return cached

        start = time.time()
        try:
            recommendations = await self._with_timeout(
                self._trending.recommend(limit, time_range, user_id), timeout
            )
        except Exception as e:
            metrics.recommendation_fallback.labels(strategy="trending", reason="error").inc()
            logger.error(f"Trending recommendations ({time_range.value}) failed: {e}")
            return []
        finally:
            metrics.strategy_duration.labels(strategy="trending").observe(
                time.time() - start
            )

        await self._cache.put("trending", cache_key, recommendations)
        metrics.recommendation_results.labels(strategy="trending").observe(
            len(recommendations)
        )
        return recommendations

    async def get_hybrid_recommendations(
        self, user_id: int, limit: int = 10, timeout: Optional[float] = None
    ) -> list[RecommendationScore]:
        validate_user_id(user_id)
        validate_limit(limit)
        metrics.recommendation_requests.labels(strategy="hybrid").inc()

        cache_key = RecommendationCache.make_key("hybrid", user_id, limit)
        cached = await self._cache.get("hybrid", cache_key)
        if cached is not None:
            return cached

        start = time.time()
        outcome = await self._hybrid.recommend(user_id, limit, timeout)
        metrics.strategy_duration.labels(strategy="hybrid").observe(time.time() - start)

        if outcome.fallback_reason is None:
            await self._cache.put("hybrid", cache_key, outcome.recommendations)
        metrics.recommendation_results.labels(strategy="hybrid").observe(
            len(outcome.recommendations)
        )
        return outcome.recommendations

    @staticmethod
    async def _with_timeout(awaitable, timeout: Optional[float]):
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
