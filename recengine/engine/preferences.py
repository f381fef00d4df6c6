import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

import numpy as np

from recengine.config import (
    DECAY_DAYS,
    DEFAULT_INTERACTION_PATTERN,
    HISTORY_LIMITS,
    INTERACTION_BASE_WEIGHTS,
    RECENT_WINDOW_DAYS,
    TOP_CATEGORIES,
    TOP_TAGS,
    VIEW_HISTORY_DAYS,
)
from recengine.engine.errors import UpstreamQueryFailure
from recengine.engine.models import (
    ActivityLevel,
    HistoryEntry,
    InteractionPattern,
    InteractionType,
    PreferenceProfile,
    TimePreference,
)
from recengine.engine.repository import Repository, run_query
from recengine.observability import metrics

logger = logging.getLogger(__name__)

# processing order also decides ties between equally weighted categories/tags
HISTORY_SOURCES = (
    InteractionType.LIKE,
    InteractionType.BOOKMARK,
    InteractionType.COMMENT,
    InteractionType.VIEW,
)
EXPLICIT_SOURCES = (
    InteractionType.LIKE,
    InteractionType.BOOKMARK,
    InteractionType.COMMENT,
)

SECONDS_PER_DAY = 24 * 60 * 60


def decay_weights(base_weight: float, ages_days: np.ndarray) -> np.ndarray:
    """
    base_weight * exp(-age/30) for every age in days.
    Future timestamps (negative ages) count as age 0.
    """
    ages = np.maximum(np.asarray(ages_days, dtype=np.float64), 0.0)
    return base_weight * np.exp(-ages / DECAY_DAYS)


def low_activity_profile() -> PreferenceProfile:
    return PreferenceProfile(
        favorite_categories=(),
        favorite_tags=(),
        interaction_pattern=InteractionPattern(**DEFAULT_INTERACTION_PATTERN),
        time_preference=TimePreference.MIXED,
        activity_level=ActivityLevel.LOW,
    )


def _top_keys(scores: dict, k: int) -> tuple:
    # sorted() is stable with reverse=True, so ties keep first-seen order
    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    return tuple(key for key, _ in ranked[:k])


def build_profile(
    history: dict[InteractionType, list[HistoryEntry]], now: datetime
) -> PreferenceProfile:
    """Turn the (already bounded) interaction history into a preference profile."""
    category_scores: dict[int, float] = {}
    tag_scores: dict[str, float] = {}

    for source in HISTORY_SOURCES:
        entries = history.get(source, [])
        if not entries:
            continue

        ages = np.array(
            [(now - e.event.occurred_at).total_seconds() / SECONDS_PER_DAY for e in entries]
        )
        weights = decay_weights(INTERACTION_BASE_WEIGHTS[source.value], ages)

        for entry, weight in zip(entries, weights):
            weight = float(weight)
            if entry.category_id is not None:
                category_scores[entry.category_id] = (
                    category_scores.get(entry.category_id, 0.0) + weight
                )
            for tag in entry.tags:
                tag_scores[tag] = tag_scores.get(tag, 0.0) + weight

    counts = {source: len(history.get(source, [])) for source in HISTORY_SOURCES}
    total = sum(counts.values())

    if total > 0:
        pattern = InteractionPattern(
            likes_weight=counts[InteractionType.LIKE] / total,
            views_weight=counts[InteractionType.VIEW] / total,
            bookmarks_weight=counts[InteractionType.BOOKMARK] / total,
            comments_weight=counts[InteractionType.COMMENT] / total,
        )
    else:
        pattern = InteractionPattern(**DEFAULT_INTERACTION_PATTERN)

    # share of explicit signals (like/bookmark/comment) from the last week
    recent_cutoff = now - timedelta(days=RECENT_WINDOW_DAYS)
    explicit = [e for source in EXPLICIT_SOURCES for e in history.get(source, [])]
    if explicit:
        recent_share = sum(
            1 for e in explicit if e.event.occurred_at > recent_cutoff
        ) / len(explicit)
        if recent_share > 0.7:
            time_preference = TimePreference.RECENT
        elif recent_share < 0.3:
            time_preference = TimePreference.POPULAR
        else:
            time_preference = TimePreference.MIXED
    else:
        time_preference = TimePreference.MIXED

    if total < 5:
        activity_level = ActivityLevel.LOW
    elif total < 20:
        activity_level = ActivityLevel.MEDIUM
    else:
        activity_level = ActivityLevel.HIGH

    return PreferenceProfile(
        favorite_categories=_top_keys(category_scores, TOP_CATEGORIES),
        favorite_tags=_top_keys(tag_scores, TOP_TAGS),
        interaction_pattern=pattern,
        time_preference=time_preference,
        activity_level=activity_level,
    )


class PreferenceAnalyzer:
    def __init__(self, repository: Repository, clock: Callable[[], datetime]):
        self._repository = repository
        self._clock = clock

    async def analyze(self, user_id: int) -> PreferenceProfile:
        is_active = await run_query(
            "is_user_active",
            self._repository.is_user_active(user_id),
            user_id=user_id,
        )
        if not is_active:
            logger.info(f"User {user_id} not found or inactive, using low-activity profile")
            return low_activity_profile()

        now = self._clock()
        history = await self._fetch_history(user_id, now)
        return build_profile(history, now)

    async def _fetch_source(
        self, user_id: int, source: InteractionType, now: datetime
    ) -> list[HistoryEntry]:
        since = now - timedelta(days=VIEW_HISTORY_DAYS) if source == InteractionType.VIEW else None
        return await run_query(
            "get_interaction_history",
            self._repository.get_interaction_history(
                user_id, source, limit=HISTORY_LIMITS[source.value], since=since
            ),
            user_id=user_id,
            interaction_type=source.value,
        )

    async def _fetch_history(
        self, user_id: int, now: datetime
    ) -> dict[InteractionType, list[HistoryEntry]]:
        """
        Fetch all four sources concurrently. A failed source is dropped and the
        profile is built from the rest; only a failure of every source raises.
        """
        results = await asyncio.gather(
            *(self._fetch_source(user_id, source, now) for source in HISTORY_SOURCES),
            return_exceptions=True,
        )

        history: dict[InteractionType, list[HistoryEntry]] = {}
        failures: list[Exception] = []
        for source, result in zip(HISTORY_SOURCES, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                metrics.preference_source_failures.labels(source=source.value).inc()
                logger.warning(
                    f"Dropping {source.value} history for user {user_id}: {result}"
                )
                failures.append(result)
                history[source] = []
            else:
                history[source] = result

        if len(failures) == len(HISTORY_SOURCES):
            raise UpstreamQueryFailure("get_interaction_history", failures[0])

        return history
