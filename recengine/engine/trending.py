import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import numpy as np

from recengine.config import TRENDING_WINDOWS
from recengine.engine.candidates import fetch_engaged_item_ids
from recengine.engine.models import (
    RecommendationScore,
    TimeRange,
    WindowedEngagement,
    clamp_unit,
)
from recengine.engine.repository import Repository, run_query

logger = logging.getLogger(__name__)

TRENDING_DIVERSITY = 0.5
FEATURED_BONUS = 20.0
DEFAULT_REASONS = {
    TimeRange.DAY: "trending today",
    TimeRange.WEEK: "trending this week",
    TimeRange.MONTH: "trending this month",
}


def trending_score(likes, views, comments, featured_bonus, age_hours, decay_hours):
    """
    (likes*5 + views*0.5 + comments*3 + featured_bonus) * exp(-age_hours/decay_hours)

    Works element-wise on numpy arrays as well as on plain numbers.
    """
    raw = (
        np.asarray(likes, dtype=np.float64) * 5
        + np.asarray(views, dtype=np.float64) * 0.5
        + np.asarray(comments, dtype=np.float64) * 3
        + np.asarray(featured_bonus, dtype=np.float64)
    )
    ages = np.maximum(np.asarray(age_hours, dtype=np.float64), 0.0)
    return raw * np.exp(-ages / decay_hours)


def _reasons(row: WindowedEngagement, time_range: TimeRange) -> list[str]:
    reasons = []
    if row.likes > 10:
        reasons.append("popular lately")
    if row.comments > 5:
        reasons.append("lively discussion")
    if row.item.featured:
        reasons.append("editor's pick")
    if row.views > 100:
        reasons.append("heavily viewed")
    return reasons or [DEFAULT_REASONS[time_range]]


class TrendingRecommender:
    """
    Time-decayed popularity over a day/week/month engagement window.

    Serves the public trending list and is the fallback for every other
    strategy. With a ``user_id`` the pool drops the user's own items and
    anything they already liked, bookmarked or commented on.
    """

    def __init__(self, repository: Repository, clock: Callable[[], datetime]):
        self._repository = repository
        self._clock = clock

    async def recommend(
        self,
        limit: int,
        time_range: TimeRange = TimeRange.WEEK,
        user_id: Optional[int] = None,
    ) -> list[RecommendationScore]:
        window_days, decay_hours = TRENDING_WINDOWS[time_range.value]
        now = self._clock()
        since = now - timedelta(days=window_days)

        excluded: set[int] = set()
        if user_id is not None:
            excluded = await fetch_engaged_item_ids(self._repository, user_id)

        engagement = await run_query(
            "get_windowed_engagement_counts",
            self._repository.get_windowed_engagement_counts(
                since, exclude_ids=sorted(excluded), exclude_author_id=user_id
            ),
            time_range=time_range.value,
        )
        if not engagement:
            return []

        rows = list(engagement.values())
        scores = trending_score(
            likes=[r.likes for r in rows],
            views=[r.views for r in rows],
            comments=[r.comments for r in rows],
            featured_bonus=[FEATURED_BONUS if r.item.featured else 0.0 for r in rows],
            age_hours=[(now - r.item.created_at).total_seconds() / 3600 for r in rows],
            decay_hours=decay_hours,
        )

        recommendations = []
        for row, raw_score in zip(rows, scores):
            score = round(float(raw_score), 1)
            if score <= 0:
                continue
            recommendations.append(
                RecommendationScore(
                    item_id=row.item.id,
                    score=score,
                    confidence=clamp_unit(score / 100),
                    diversity=TRENDING_DIVERSITY,
                    reasons=_reasons(row, time_range),
                )
            )

        recommendations.sort(key=lambda r: (-r.score, r.item_id))
        return recommendations[:limit]
