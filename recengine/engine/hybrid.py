"""
Hybrid blending of the personalized, collaborative and trending strategies.

The three strategies run concurrently and each branch is isolated: a branch
that raises contributes nothing and the others still blend. Results are merged
by item id with per-strategy weights, ranked by ``score * confidence`` and
topped up from the monthly trending list when too few survive. If anything
else goes wrong the whole call degrades to weekly trending; ``recommend``
itself never raises (cancellation aside).
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from recengine.engine.models import RecommendationScore, TimeRange, clamp_unit
from recengine.observability import metrics

logger = logging.getLogger(__name__)

PERSONALIZED_SHARE = 0.6
COLLABORATIVE_SHARE = 0.3
TRENDING_SHARE = 0.2

PERSONALIZED_SCORE_BOOST = 1.3
PERSONALIZED_CONFIDENCE_BOOST = 1.2
COLLABORATIVE_WEIGHT = 0.8
COLLABORATIVE_CONFIDENCE_BUMP = 0.2
TRENDING_WEIGHT = 0.6
TRENDING_CONFIDENCE_BUMP = 0.1
MIN_BLENDED_SCORE = 5.0
DEFAULT_CONFIDENCE = 0.5  # stands in for a zero confidence

UserStrategy = Callable[[int, int], Awaitable[list[RecommendationScore]]]
TrendingStrategy = Callable[[int, int, TimeRange], Awaitable[list[RecommendationScore]]]


@dataclass(frozen=True)
class BlendOutcome:
    recommendations: list[RecommendationScore]
    fallback_reason: Optional[str] = None  # set when weekly trending replaced the blend


def _effective_confidence(confidence: float) -> float:
    return confidence or DEFAULT_CONFIDENCE


def _blend_in(
    merged: dict[int, RecommendationScore],
    recommendations: Iterable[RecommendationScore],
    weight: float,
    confidence_bump: float,
    reason: str,
) -> None:
    for rec in recommendations:
        existing = merged.get(rec.item_id)
        if existing is not None:
            existing.score += rec.score * weight
            existing.confidence = clamp_unit(existing.confidence + confidence_bump)
            existing.reasons.append(reason)
        else:
            merged[rec.item_id] = RecommendationScore(
                item_id=rec.item_id,
                score=rec.score * weight,
                confidence=clamp_unit(_effective_confidence(rec.confidence) * weight),
                diversity=rec.diversity,
                reasons=list(rec.reasons),
            )


def merge_recommendations(
    personalized: Iterable[RecommendationScore],
    collaborative: Iterable[RecommendationScore],
    trending: Iterable[RecommendationScore],
) -> dict[int, RecommendationScore]:
    merged: dict[int, RecommendationScore] = {}
    for rec in personalized:
        merged[rec.item_id] = RecommendationScore(
            item_id=rec.item_id,
            score=rec.score * PERSONALIZED_SCORE_BOOST,
            confidence=clamp_unit(
                _effective_confidence(rec.confidence) * PERSONALIZED_CONFIDENCE_BOOST
            ),
            diversity=rec.diversity,
            reasons=[f"personalized: {', '.join(rec.reasons)}"],
        )

    _blend_in(
        merged,
        collaborative,
        COLLABORATIVE_WEIGHT,
        COLLABORATIVE_CONFIDENCE_BUMP,
        "similar users liked",
    )
    _blend_in(
        merged,
        trending,
        TRENDING_WEIGHT,
        TRENDING_CONFIDENCE_BUMP,
        "currently trending",
    )
    return merged


def rank_blended(
    merged: dict[int, RecommendationScore], limit: int
) -> list[RecommendationScore]:
    survivors = [rec for rec in merged.values() if rec.score > MIN_BLENDED_SCORE]
    survivors.sort(
        key=lambda rec: rec.score * _effective_confidence(rec.confidence), reverse=True
    )
    ranked = survivors[:limit]
    for rec in ranked:
        rec.score = round(rec.score, 1)
    return ranked


class HybridBlender:
    def __init__(
        self,
        personalized: UserStrategy,
        collaborative: UserStrategy,
        trending: TrendingStrategy,
    ):
        self._personalized = personalized
        self._collaborative = collaborative
        self._trending = trending

    async def recommend(
        self, user_id: int, limit: int, timeout: Optional[float] = None
    ) -> BlendOutcome:
        try:
            if timeout is None:
                recommendations = await self._blend(user_id, limit)
            else:
                recommendations = await asyncio.wait_for(
                    self._blend(user_id, limit), timeout
                )
            return BlendOutcome(recommendations)
        except Exception as e:
            reason = "timeout" if isinstance(e, asyncio.TimeoutError) else "error"
            metrics.recommendation_fallback.labels(strategy="hybrid", reason=reason).inc()
            logger.error(
                f"Hybrid blend failed for user {user_id} ({reason}), falling back to weekly trending: {e}"
            )

        try:
            fallback_call = self._trending(user_id, limit, TimeRange.WEEK)
            if timeout is None:
                fallback = await fallback_call
            else:
                fallback = await asyncio.wait_for(fallback_call, timeout)
        except Exception as e:
            logger.error(f"Weekly trending fallback failed for user {user_id}: {e}")
            fallback = []
        return BlendOutcome(fallback[:limit], fallback_reason=reason)

    async def _blend(self, user_id: int, limit: int) -> list[RecommendationScore]:
        branches = {
            "personalized": self._personalized(
                user_id, math.ceil(limit * PERSONALIZED_SHARE)
            ),
            "collaborative": self._collaborative(
                user_id, math.ceil(limit * COLLABORATIVE_SHARE)
            ),
            "trending": self._trending(
                user_id, math.ceil(limit * TRENDING_SHARE), TimeRange.WEEK
            ),
        }
        results = await asyncio.gather(*branches.values(), return_exceptions=True)

        lists: dict[str, list[RecommendationScore]] = {}
        for name, result in zip(branches, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                metrics.hybrid_branch_failures.labels(branch=name).inc()
                logger.warning(f"Hybrid branch {name} failed for user {user_id}: {result}")
                lists[name] = []
            else:
                lists[name] = result

        merged = merge_recommendations(
            lists["personalized"], lists["collaborative"], lists["trending"]
        )
        ranked = rank_blended(merged, limit)

        if len(ranked) < limit:
            selected = {rec.item_id for rec in ranked}
            extra = await self._trending(user_id, limit, TimeRange.MONTH)
            for rec in extra:
                if len(ranked) >= limit:
                    break
                if rec.item_id not in selected:
                    ranked.append(rec)
                    selected.add(rec.item_id)

        return ranked
