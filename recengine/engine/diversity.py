from collections import Counter
from typing import Sequence

from recengine.engine.models import RecommendationScore
from recengine.engine.scoring import ScoredCandidate


class DiversityFilter:
    """
    Greedy author cap over a score-ordered list.

    Candidates are taken in descending score order; once an author has
    ``author_diversity_limit`` accepted items, their remaining candidates are
    skipped (not pushed down). Candidates without an author are never capped.
    """

    def __init__(self, author_diversity_limit: int = 2):
        self.author_diversity_limit = author_diversity_limit

    def apply(self, scored: Sequence[ScoredCandidate]) -> list[RecommendationScore]:
        author_counts: Counter = Counter()
        accepted: list[RecommendationScore] = []

        for candidate in sorted(scored, key=lambda c: c.score, reverse=True):
            if candidate.author_id is not None:
                if author_counts[candidate.author_id] >= self.author_diversity_limit:
                    continue
                author_counts[candidate.author_id] += 1
            accepted.append(candidate.recommendation)

        return accepted
