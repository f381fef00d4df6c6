"""
Online scoring of candidate items against a preference profile.

Each candidate gets five bounded factors (at most 100 points in total):

    category match  <= 30
    tag match       <= 25
    popularity      <= 20
    freshness       <= 15  (policy depends on the profile's time preference)
    quality         <= 10

Confidence grows with every factor that matched; diversity grows with how far
the item sits from the user's favorites. Both are clamped to [0, 1].
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from recengine.engine.models import (
    CandidateItem,
    PreferenceProfile,
    RecommendationScore,
    TimePreference,
    clamp_unit,
)

SECONDS_PER_DAY = 24 * 60 * 60
DEFAULT_REASON = "recommended for you"


@dataclass(frozen=True)
class ScoredCandidate:
    """A scored item that still remembers its author for the diversity pass."""

    author_id: Optional[int]
    recommendation: RecommendationScore

    @property
    def score(self) -> float:
        return self.recommendation.score


def category_score(category_id: Optional[int], favorites: Sequence[int]) -> float:
    if category_id is None or category_id not in favorites:
        return 0.0
    return (5 - list(favorites).index(category_id)) * 6.0


def tag_score(matching_tag_count: int) -> float:
    return float(min(matching_tag_count * 5, 25))


def popularity_score(like_count: int, view_count: int, comment_count: int) -> float:
    likes = max(0, like_count)
    views = max(0, view_count)
    comments = max(0, comment_count)
    return min((likes * 2 + views * 0.1 + comments * 3) / 10, 20.0)


def freshness_score(age_days: float, time_preference: TimePreference) -> float:
    if time_preference == TimePreference.RECENT:
        return max(15 - age_days * 0.5, 0.0)
    if time_preference == TimePreference.MIXED:
        return max(10 - age_days * 0.3, 0.0)
    # "popular" users lean towards older, proven items
    return min(age_days * 0.1, 5.0)


def quality_score(featured: bool, like_count: int) -> float:
    if featured:
        return 10.0
    if like_count > 50:
        return 7.0
    if like_count > 20:
        return 5.0
    if like_count > 10:
        return 3.0
    return 0.0


class ScoringEngine:
    def __init__(self, clock: Callable[[], datetime]):
        self._clock = clock

    def score(
        self, candidates: Sequence[CandidateItem], profile: PreferenceProfile
    ) -> list[ScoredCandidate]:
        now = self._clock()
        return [self.score_item(item, profile, now) for item in candidates]

    def score_item(
        self, item: CandidateItem, profile: PreferenceProfile, now: datetime
    ) -> ScoredCandidate:
        score = 0.0
        confidence = 0.0
        reasons: list[str] = []

        cat = category_score(item.category_id, profile.favorite_categories)
        if cat > 0:
            score += cat
            confidence += 0.3
            label = item.category_name or str(item.category_id)
            reasons.append(f"matches your favorite category: {label}")

        favorite_tags = set(profile.favorite_tags)
        matching_tags = [tag for tag in item.tags if tag in favorite_tags]
        if matching_tags:
            score += tag_score(len(matching_tags))
            confidence += min(len(matching_tags) * 0.1, 0.25)
            reasons.append(f"tagged with your interests: {', '.join(matching_tags)}")

        popularity = popularity_score(
            item.like_count, item.view_count, item.comment_count
        )
        score += popularity
        if popularity > 15:
            confidence += 0.1
            reasons.append("popular pick")

        age_days = max((now - item.created_at).total_seconds() / SECONDS_PER_DAY, 0.0)
        score += freshness_score(age_days, profile.time_preference)
        if age_days < 7:
            reasons.append("new this week")
        elif age_days < 30:
            reasons.append("added this month")

        score += quality_score(item.featured, item.like_count)
        if item.featured:
            confidence += 0.2
            reasons.append("editor's pick")
        elif item.like_count > 50:
            confidence += 0.1
            reasons.append("highly rated")

        return ScoredCandidate(
            author_id=item.author_id,
            recommendation=RecommendationScore(
                item_id=item.id,
                score=round(score, 1),
                confidence=clamp_unit(confidence),
                diversity=self.diversity(item, profile),
                reasons=reasons or [DEFAULT_REASON],
            ),
        )

    @staticmethod
    def diversity(item: CandidateItem, profile: PreferenceProfile) -> float:
        diversity = 0.5
        if (
            item.category_id is not None
            and item.category_id not in profile.favorite_categories
        ):
            diversity += 0.2

        favorite_tags = set(profile.favorite_tags)
        novel_tags = [tag for tag in item.tags if tag not in favorite_tags]
        if novel_tags:
            diversity += min(len(novel_tags) * 0.1, 0.3)

        return clamp_unit(diversity)
