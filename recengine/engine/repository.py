"""
Repository boundary for the recommendation engine.

The relational store lives outside this package; the engine only depends on
the ``Repository`` protocol below and on the DTOs in ``models``.
``InMemoryRepository`` implements the protocol for local runs and tests.
"""

import json
import logging
import time
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Iterable, Optional, Protocol, TypeVar

from recengine.engine.errors import UpstreamQueryFailure
from recengine.engine.models import (
    CandidateItem,
    HistoryEntry,
    InteractionEvent,
    InteractionType,
    ItemLike,
    WindowedEngagement,
)
from recengine.observability import metrics, repository_span

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Repository(Protocol):
    async def is_user_active(self, user_id: int) -> bool: ...

    async def get_interaction_history(
        self,
        user_id: int,
        interaction_type: InteractionType,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> list[HistoryEntry]: ...

    async def get_candidate_items(
        self,
        exclude_ids: Iterable[int],
        exclude_author_id: Optional[int] = None,
        max_candidates: int = 500,
    ) -> list[CandidateItem]: ...

    async def get_co_likers(
        self,
        liked_item_ids: Iterable[int],
        exclude_user_id: int,
        min_common_likes: int,
        top_n: int,
    ) -> list[int]: ...

    async def get_items_liked_by(
        self,
        user_ids: Iterable[int],
        exclude_item_ids: Iterable[int],
        exclude_author_id: Optional[int] = None,
    ) -> list[ItemLike]: ...

    async def get_windowed_engagement_counts(
        self,
        since: datetime,
        exclude_ids: Iterable[int] = (),
        exclude_author_id: Optional[int] = None,
    ) -> dict[int, WindowedEngagement]: ...


async def run_query(query: str, awaitable: Awaitable[T], **attributes: Any) -> T:
    """
    Await a repository call inside a tracing span and a latency histogram.

    Any failure other than cancellation is re-raised as ``UpstreamQueryFailure``.
    """
    start = time.time()
    try:
        with repository_span(query, **attributes) as span:
            result = await awaitable
            if hasattr(result, "__len__"):
                span.set_attribute("db.repository.results_count", len(result))
    except UpstreamQueryFailure:
        metrics.repository_errors.labels(query=query).inc()
        raise
    except Exception as e:
        metrics.repository_errors.labels(query=query).inc()
        logger.error(f"Repository query {query} failed: {e}")
        raise UpstreamQueryFailure(query, e) from e
    finally:
        metrics.repository_query_duration.labels(query=query).observe(
            time.time() - start
        )
    return result


def _parse_timestamp(value: str) -> datetime:
    # naive timestamps in snapshots are UTC
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class InMemoryRepository:
    """Dict-backed repository. Counts on items are snapshots; events drive windows."""

    def __init__(self):
        self._users: dict[int, bool] = {}
        self._items: dict[int, CandidateItem] = {}
        self._events: list[InteractionEvent] = []

    def add_user(self, user_id: int, active: bool = True) -> None:
        self._users[user_id] = active

    def add_item(self, item: CandidateItem) -> None:
        self._items[item.id] = item

    def add_interaction(self, event: InteractionEvent) -> None:
        self._events.append(event)

    @classmethod
    def from_snapshot(cls, path: Path) -> "InMemoryRepository":
        """
        Load users, items and interactions from a JSON snapshot of the form
        ``{"users": [...], "items": [...], "interactions": [...]}``.
        Timestamps are ISO-8601 strings.
        """
        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        repo = cls()
        for user in data.get("users", []):
            repo.add_user(int(user["id"]), bool(user.get("active", True)))
        for item in data.get("items", []):
            repo.add_item(
                CandidateItem(
                    id=int(item["id"]),
                    author_id=int(item["author_id"]),
                    created_at=_parse_timestamp(item["created_at"]),
                    category_id=item.get("category_id"),
                    category_name=item.get("category_name"),
                    tags=tuple(item.get("tags", [])),
                    like_count=int(item.get("like_count", 0)),
                    view_count=int(item.get("view_count", 0)),
                    comment_count=int(item.get("comment_count", 0)),
                    featured=bool(item.get("featured", False)),
                )
            )
        for event in data.get("interactions", []):
            repo.add_interaction(
                InteractionEvent(
                    item_id=int(event["item_id"]),
                    user_id=int(event["user_id"]),
                    type=InteractionType(event["type"]),
                    occurred_at=_parse_timestamp(event["occurred_at"]),
                )
            )
        logger.info(
            f"Loaded snapshot from {path}: {len(repo._users)} users, "
            f"{len(repo._items)} items, {len(repo._events)} interactions"
        )
        return repo

    async def is_user_active(self, user_id: int) -> bool:
        return self._users.get(user_id, False)

    async def get_interaction_history(
        self,
        user_id: int,
        interaction_type: InteractionType,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> list[HistoryEntry]:
        events = [
            e
            for e in self._events
            if e.user_id == user_id
            and e.type == interaction_type
            and e.item_id in self._items
            and (since is None or e.occurred_at >= since)
        ]
        # newest first
        events.sort(key=lambda e: e.occurred_at, reverse=True)
        if limit is not None:
            events = events[:limit]

        return [
            HistoryEntry(
                event=e,
                category_id=self._items[e.item_id].category_id,
                tags=self._items[e.item_id].tags,
            )
            for e in events
        ]

    async def get_candidate_items(
        self,
        exclude_ids: Iterable[int],
        exclude_author_id: Optional[int] = None,
        max_candidates: int = 500,
    ) -> list[CandidateItem]:
        excluded = set(exclude_ids)
        items = [
            item
            for item in self._items.values()
            if item.id not in excluded
            and (exclude_author_id is None or item.author_id != exclude_author_id)
        ]
        items.sort(
            key=lambda i: (i.featured, i.like_count, i.created_at), reverse=True
        )
        return items[:max_candidates]

    async def get_co_likers(
        self,
        liked_item_ids: Iterable[int],
        exclude_user_id: int,
        min_common_likes: int,
        top_n: int,
    ) -> list[int]:
        liked = set(liked_item_ids)
        pairs = {
            (e.user_id, e.item_id)
            for e in self._events
            if e.type == InteractionType.LIKE
            and e.item_id in liked
            and e.user_id != exclude_user_id
        }
        shared = Counter(user_id for user_id, _ in pairs)
        ranked = sorted(
            (
                (user_id, count)
                for user_id, count in shared.items()
                if count >= min_common_likes
            ),
            key=lambda x: (-x[1], x[0]),
        )
        return [user_id for user_id, _ in ranked[:top_n]]

    async def get_items_liked_by(
        self,
        user_ids: Iterable[int],
        exclude_item_ids: Iterable[int],
        exclude_author_id: Optional[int] = None,
    ) -> list[ItemLike]:
        users = set(user_ids)
        excluded = set(exclude_item_ids)
        return [
            ItemLike(item_id=e.item_id, liker_user_id=e.user_id)
            for e in self._events
            if e.type == InteractionType.LIKE
            and e.user_id in users
            and e.item_id in self._items
            and e.item_id not in excluded
            and (
                exclude_author_id is None
                or self._items[e.item_id].author_id != exclude_author_id
            )
        ]

    async def get_windowed_engagement_counts(
        self,
        since: datetime,
        exclude_ids: Iterable[int] = (),
        exclude_author_id: Optional[int] = None,
    ) -> dict[int, WindowedEngagement]:
        excluded = set(exclude_ids)
        counts: dict[int, Counter] = {}
        for e in self._events:
            if e.occurred_at < since or e.type == InteractionType.BOOKMARK:
                continue
            item = self._items.get(e.item_id)
            if item is None or item.id in excluded:
                continue
            if exclude_author_id is not None and item.author_id == exclude_author_id:
                continue
            counts.setdefault(item.id, Counter())[e.type] += 1

        return {
            item_id: WindowedEngagement(
                item=self._items[item_id],
                likes=c[InteractionType.LIKE],
                views=c[InteractionType.VIEW],
                comments=c[InteractionType.COMMENT],
            )
            for item_id, c in counts.items()
        }
