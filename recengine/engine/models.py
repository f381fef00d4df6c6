"""
Data transfer objects at the Repository boundary and inside the engine.

Everything here is immutable except ``RecommendationScore``, which the hybrid
blender adjusts in place while merging.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class InteractionType(str, Enum):
    LIKE = "like"
    BOOKMARK = "bookmark"
    COMMENT = "comment"
    VIEW = "view"


class TimePreference(str, Enum):
    RECENT = "recent"
    POPULAR = "popular"
    MIXED = "mixed"


class ActivityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TimeRange(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class InteractionEvent:
    item_id: int
    user_id: int
    type: InteractionType
    occurred_at: datetime


@dataclass(frozen=True)
class HistoryEntry:
    """An interaction together with the category and tags of the item it touched."""

    event: InteractionEvent
    category_id: Optional[int] = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class CandidateItem:
    id: int
    author_id: int
    created_at: datetime
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    tags: tuple[str, ...] = ()  # tag slugs
    like_count: int = 0
    view_count: int = 0
    comment_count: int = 0
    featured: bool = False


@dataclass(frozen=True)
class ItemLike:
    item_id: int
    liker_user_id: int


@dataclass(frozen=True)
class WindowedEngagement:
    item: CandidateItem
    likes: int = 0
    views: int = 0
    comments: int = 0


@dataclass(frozen=True)
class InteractionPattern:
    likes_weight: float
    views_weight: float
    bookmarks_weight: float
    comments_weight: float


@dataclass(frozen=True)
class PreferenceProfile:
    favorite_categories: tuple[int, ...]
    favorite_tags: tuple[str, ...]
    interaction_pattern: InteractionPattern
    time_preference: TimePreference
    activity_level: ActivityLevel


@dataclass(frozen=True)
class RecommendationConfig:
    """
    Per-request tuning merged over the defaults.

    ``diversity_threshold`` is reserved: it is validated, carried in cache keys
    and echoed back to callers, but no ranking step reads it. Author diversity
    is enforced only through ``author_diversity_limit``.
    """

    min_score: float = 5.0
    max_candidates: int = 500
    diversity_threshold: float = 0.3
    author_diversity_limit: int = 2

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RecommendationScore:
    item_id: int
    score: float
    confidence: float = 0.0
    diversity: float = 0.5
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecommendationScore":
        return cls(
            item_id=int(data["item_id"]),
            score=float(data["score"]),
            confidence=float(data.get("confidence", 0.0)),
            diversity=float(data.get("diversity", 0.5)),
            reasons=list(data.get("reasons", [])),
        )


def clamp_unit(value: float) -> float:
    return max(0.0, min(value, 1.0))
