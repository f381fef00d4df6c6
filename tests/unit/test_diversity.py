"""
Unit tests for the author cap in diversity.py.
"""

from recengine.engine.diversity import DiversityFilter
from recengine.engine.models import RecommendationScore
from recengine.engine.scoring import ScoredCandidate


def scored(item_id, author_id, score):
    return ScoredCandidate(
        author_id=author_id,
        recommendation=RecommendationScore(item_id=item_id, score=score),
    )


class TestDiversityFilter:
    """Tests for DiversityFilter.apply."""

    def test_caps_items_per_author(self):
        """
        Author X has five items and three other authors have one each; with a
        cap of two only X's two best survive, alongside all the others.
        """
        candidates = [
            scored(1, "x", 90),
            scored(2, "x", 85),
            scored(3, "x", 80),
            scored(4, "x", 75),
            scored(5, "x", 70),
            scored(6, "y", 88),
            scored(7, "z", 60),
            scored(8, "w", 50),
        ]

        result = DiversityFilter(author_diversity_limit=2).apply(candidates)

        assert [r.item_id for r in result] == [1, 6, 2, 7, 8]

    def test_skipped_items_are_not_pushed_down(self):
        candidates = [scored(1, "x", 90), scored(2, "x", 80), scored(3, "y", 10)]

        result = DiversityFilter(author_diversity_limit=1).apply(candidates)

        assert [r.item_id for r in result] == [1, 3]

    def test_sorts_unordered_input_by_score(self):
        candidates = [scored(1, "a", 10), scored(2, "b", 30), scored(3, "c", 20)]

        result = DiversityFilter().apply(candidates)

        assert [r.score for r in result] == [30, 20, 10]

    def test_items_without_author_are_never_capped(self):
        candidates = [scored(i, None, 100 - i) for i in range(5)]

        result = DiversityFilter(author_diversity_limit=1).apply(candidates)

        assert len(result) == 5

    def test_empty_input(self):
        assert DiversityFilter().apply([]) == []
