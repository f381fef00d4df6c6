"""
Shared pytest fixtures for the test suite.

Fixtures provide a fixed clock, an in-process Redis double and a small
seeded repository reused by unit and integration tests.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from unittest.mock import AsyncMock, MagicMock

from recengine.engine.cache import RedisCache
from recengine.engine.models import (
    ActivityLevel,
    CandidateItem,
    HistoryEntry,
    InteractionEvent,
    InteractionPattern,
    InteractionType,
    PreferenceProfile,
    TimePreference,
)
from recengine.engine.repository import InMemoryRepository
from recengine.engine.service import RecommendationService

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


# -----------------------------------------------------------------------------
# Redis Fixtures
# -----------------------------------------------------------------------------


class FakeRedis:
    """In-process stand-in covering the commands the cache layer uses."""

    def __init__(self):
        self._strings: dict[str, tuple[str, Optional[float]]] = {}

    async def ping(self) -> str:
        return "PONG"

    async def get(self, key: str) -> Optional[str]:
        entry = self._strings.get(key)
        if entry is None:
            return None
        value, expire_at = entry
        if expire_at is not None and expire_at <= time.time():
            self._strings.pop(key, None)
            return None
        return value

    async def setex(self, key: str, seconds: int, value: str) -> bool:
        self._strings[key] = (value, time.time() + seconds)
        return True

    async def ttl(self, key: str) -> int:
        entry = self._strings.get(key)
        if entry is None:
            return -2
        _, expire_at = entry
        return int(expire_at - time.time())

    def keys(self) -> list[str]:
        return list(self._strings)

    async def aclose(self) -> None:
        return None


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def mock_async_redis():
    """
    Async mock Redis client for integration tests with FastAPI.
    """
    redis_mock = AsyncMock()
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.setex = AsyncMock(return_value=True)
    redis_mock.aclose = AsyncMock()
    return redis_mock


# -----------------------------------------------------------------------------
# Clock / Builders
# -----------------------------------------------------------------------------


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    """Fixed clock so decay and window math is reproducible."""
    return lambda: NOW


@pytest.fixture
def make_item():
    def _make(item_id: int, author_id: int = 100, age_days: float = 3, **kwargs):
        return CandidateItem(
            id=item_id, author_id=author_id, created_at=days_ago(age_days), **kwargs
        )

    return _make


@pytest.fixture
def make_history():
    def _make(
        item_id: int,
        interaction_type: InteractionType,
        age_days: float = 1,
        category_id: Optional[int] = None,
        tags: tuple = (),
        user_id: int = 1,
    ) -> HistoryEntry:
        return HistoryEntry(
            event=InteractionEvent(
                item_id=item_id,
                user_id=user_id,
                type=interaction_type,
                occurred_at=days_ago(age_days),
            ),
            category_id=category_id,
            tags=tags,
        )

    return _make


@pytest.fixture
def make_profile():
    def _make(
        favorite_categories: tuple = (),
        favorite_tags: tuple = (),
        time_preference: TimePreference = TimePreference.MIXED,
        activity_level: ActivityLevel = ActivityLevel.MEDIUM,
    ) -> PreferenceProfile:
        return PreferenceProfile(
            favorite_categories=favorite_categories,
            favorite_tags=favorite_tags,
            interaction_pattern=InteractionPattern(0.3, 0.4, 0.2, 0.1),
            time_preference=time_preference,
            activity_level=activity_level,
        )

    return _make


@pytest.fixture
def mock_repository():
    """Async mock Repository; every query returns an empty result by default."""
    repo = MagicMock()
    repo.is_user_active = AsyncMock(return_value=True)
    repo.get_interaction_history = AsyncMock(return_value=[])
    repo.get_candidate_items = AsyncMock(return_value=[])
    repo.get_co_likers = AsyncMock(return_value=[])
    repo.get_items_liked_by = AsyncMock(return_value=[])
    repo.get_windowed_engagement_counts = AsyncMock(return_value={})
    return repo


# -----------------------------------------------------------------------------
# Seeded Repository
# -----------------------------------------------------------------------------

# id: (author, category, category name, tags, likes, views, comments, featured, age days)
SAMPLE_ITEMS = {
    101: (10, 1, "Design", ("ui", "css"), 30, 200, 5, False, 20),
    102: (10, 1, "Design", ("ui",), 12, 100, 2, False, 15),
    103: (11, 2, "Dev", ("python",), 60, 500, 10, True, 40),
    104: (11, 2, "Dev", ("python", "api"), 8, 50, 1, False, 10),
    105: (12, 1, "Design", ("css",), 4, 30, 0, False, 5),
    106: (13, 1, "Design", ("ui", "css"), 15, 80, 3, False, 2),
    107: (13, 1, "Design", ("ui",), 22, 120, 4, False, 3),
    108: (13, 1, "Design", ("css",), 9, 60, 2, False, 4),
    109: (14, 2, "Dev", ("python",), 55, 300, 8, False, 6),
    110: (15, 3, "News", ("news",), 2, 10, 0, False, 1),
    111: (1, 1, "Design", ("ui",), 40, 100, 5, True, 2),
    112: (16, 3, "News", (), 0, 0, 0, False, 60),
}

# (user, item, type, age days)
SAMPLE_INTERACTIONS = [
    # user 1: medium activity, mostly recent explicit signals
    (1, 101, InteractionType.LIKE, 1),
    (1, 102, InteractionType.LIKE, 2),
    (1, 105, InteractionType.LIKE, 3),
    (1, 104, InteractionType.BOOKMARK, 5),
    (1, 103, InteractionType.COMMENT, 10),
    (1, 101, InteractionType.VIEW, 1),
    (1, 102, InteractionType.VIEW, 1),
    (1, 106, InteractionType.VIEW, 20),
    (1, 110, InteractionType.VIEW, 2),
    # users 2 and 3 share likes with user 1
    (2, 101, InteractionType.LIKE, 1),
    (2, 102, InteractionType.LIKE, 2),
    (2, 107, InteractionType.LIKE, 3),
    (2, 109, InteractionType.LIKE, 4),
    (3, 101, InteractionType.LIKE, 2),
    (3, 107, InteractionType.LIKE, 2),
    (3, 108, InteractionType.LIKE, 2),
    (3, 111, InteractionType.LIKE, 2),
    # user 4 liked what user 1 only commented on, outside the weekly window
    (4, 103, InteractionType.LIKE, 8),
    (4, 112, InteractionType.LIKE, 8),
    # user 5: low activity
    (5, 106, InteractionType.LIKE, 1),
    (5, 107, InteractionType.LIKE, 1),
]

@pytest.fixture
def item_authors():
    return {item_id: row[0] for item_id, row in SAMPLE_ITEMS.items()}


@pytest.fixture
def populated_repository():
    repo = InMemoryRepository()
    for user_id in (1, 2, 3, 4, 5):
        repo.add_user(user_id)
    repo.add_user(9, active=False)

    for item_id, row in SAMPLE_ITEMS.items():
        author, category, name, tags, likes, views, comments, featured, age = row
        repo.add_item(
            CandidateItem(
                id=item_id,
                author_id=author,
                created_at=days_ago(age),
                category_id=category,
                category_name=name,
                tags=tags,
                like_count=likes,
                view_count=views,
                comment_count=comments,
                featured=featured,
            )
        )

    for user_id, item_id, interaction_type, age in SAMPLE_INTERACTIONS:
        repo.add_interaction(
            InteractionEvent(
                item_id=item_id,
                user_id=user_id,
                type=interaction_type,
                occurred_at=days_ago(age),
            )
        )
    return repo


@pytest.fixture
def service(populated_repository, fake_redis, clock):
    return RecommendationService(
        repository=populated_repository,
        cache=RedisCache(fake_redis),
        clock=clock,
    )
