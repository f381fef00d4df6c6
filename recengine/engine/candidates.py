import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from recengine.config import VIEW_EXCLUSION_DAYS
from recengine.engine.models import CandidateItem, InteractionType
from recengine.engine.repository import Repository, run_query

logger = logging.getLogger(__name__)

ENGAGEMENT_TYPES = (
    InteractionType.LIKE,
    InteractionType.BOOKMARK,
    InteractionType.COMMENT,
)


async def _history_ids(
    repository: Repository,
    user_id: int,
    interaction_type: InteractionType,
    since: Optional[datetime] = None,
) -> set[int]:
    entries = await run_query(
        "get_interaction_history",
        repository.get_interaction_history(user_id, interaction_type, since=since),
        user_id=user_id,
        interaction_type=interaction_type.value,
    )
    return {entry.event.item_id for entry in entries}


async def _gather_all(*aws):
    """Like ``asyncio.gather`` but lets every query settle before re-raising the first failure."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


async def fetch_engaged_item_ids(repository: Repository, user_id: int) -> set[int]:
    """Every item the user ever liked, bookmarked or commented on."""
    id_sets = await _gather_all(
        *(_history_ids(repository, user_id, t) for t in ENGAGEMENT_TYPES)
    )
    return set().union(*id_sets)


class CandidateGenerator:
    """
    Bounded pool of items the user has not engaged with.

    Views only exclude an item for a week, so browsing something once does not
    hide it forever. The repository orders the pool by featured, likes and
    recency; that order only decides what survives the cap.
    """

    def __init__(self, repository: Repository, clock: Callable[[], datetime]):
        self._repository = repository
        self._clock = clock

    async def generate(
        self, user_id: int, exclude_authored: bool = True, max_candidates: int = 500
    ) -> list[CandidateItem]:
        view_cutoff = self._clock() - timedelta(days=VIEW_EXCLUSION_DAYS)

        # all-or-nothing: a partial exclusion set would leak already-seen items
        engaged, recently_viewed = await _gather_all(
            fetch_engaged_item_ids(self._repository, user_id),
            _history_ids(
                self._repository, user_id, InteractionType.VIEW, since=view_cutoff
            ),
        )
        excluded = engaged | recently_viewed

        candidates = await run_query(
            "get_candidate_items",
            self._repository.get_candidate_items(
                exclude_ids=sorted(excluded),
                exclude_author_id=user_id if exclude_authored else None,
                max_candidates=max_candidates,
            ),
            user_id=user_id,
            max_candidates=max_candidates,
        )
        logger.debug(
            f"User {user_id}: {len(candidates)} candidates after excluding {len(excluded)} items"
        )
        return candidates
