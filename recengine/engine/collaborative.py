import logging
import math

from recengine.config import SIMILAR_USERS_TOP_N
from recengine.engine.candidates import fetch_engaged_item_ids
from recengine.engine.models import InteractionType, RecommendationScore, clamp_unit
from recengine.engine.repository import Repository, run_query

logger = logging.getLogger(__name__)

COLLABORATIVE_DIVERSITY = 0.7
COLLABORATIVE_REASON = "liked by users similar to you"


class CollaborativeRecommender:
    """
    User-user collaborative filtering over co-likes.

    Similar users are those sharing at least 10% (minimum one) of the target
    user's liked items. Every item they liked scores 10 points per distinct
    similar liker.
    """

    def __init__(self, repository: Repository):
        self._repository = repository

    async def recommend(self, user_id: int, limit: int) -> list[RecommendationScore]:
        likes = await run_query(
            "get_interaction_history",
            self._repository.get_interaction_history(user_id, InteractionType.LIKE),
            user_id=user_id,
            interaction_type=InteractionType.LIKE.value,
        )
        liked_ids = sorted({entry.event.item_id for entry in likes})
        if not liked_ids:
            return []

        min_common_likes = max(1, math.floor(len(liked_ids) * 0.1))
        similar_users = await run_query(
            "get_co_likers",
            self._repository.get_co_likers(
                liked_ids,
                exclude_user_id=user_id,
                min_common_likes=min_common_likes,
                top_n=SIMILAR_USERS_TOP_N,
            ),
            user_id=user_id,
            min_common_likes=min_common_likes,
        )
        if not similar_users:
            logger.debug(f"No similar users for user {user_id} (min_common_likes={min_common_likes})")
            return []

        engaged = await fetch_engaged_item_ids(self._repository, user_id)
        item_likes = await run_query(
            "get_items_liked_by",
            self._repository.get_items_liked_by(
                similar_users,
                exclude_item_ids=sorted(engaged | set(liked_ids)),
                exclude_author_id=user_id,
            ),
            user_id=user_id,
            similar_users=len(similar_users),
        )

        # distinct similar likers per item, first-appearance order for ties
        likers: dict[int, set[int]] = {}
        for like in item_likes:
            likers.setdefault(like.item_id, set()).add(like.liker_user_id)

        recommendations = []
        for item_id, users in likers.items():
            score = len(users) * 10.0
            recommendations.append(
                RecommendationScore(
                    item_id=item_id,
                    score=score,
                    confidence=clamp_unit(score / 50),
                    diversity=COLLABORATIVE_DIVERSITY,
                    reasons=[COLLABORATIVE_REASON],
                )
            )

        recommendations.sort(key=lambda r: r.score, reverse=True)
        return recommendations[:limit]
