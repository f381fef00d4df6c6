"""
Integration tests for the FastAPI recommendation API.

Tests the HTTP endpoints against the seeded in-memory repository with
Redis and Kafka replaced by test doubles, verifying request validation,
response formatting and fallback behavior.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from httpx import AsyncClient, ASGITransport

from recengine.engine.cache import RedisCache
from recengine.engine.errors import ValidationError
from recengine.engine.service import RecommendationService
from recengine.serve.api import app
from recengine.stream.feedback import FeedbackPublisher


@pytest.fixture
def mock_producer():
    return MagicMock()


@pytest.fixture(autouse=True)
def setup_app(mock_async_redis, populated_repository, fake_redis, clock, mock_producer):
    """Set up app state with test doubles before each test."""
    app.state.redis_client = mock_async_redis
    app.state.recommendation_service = RecommendationService(
        populated_repository, RedisCache(fake_redis), clock
    )
    app.state.feedback_publisher = FeedbackPublisher(mock_producer, "feedback-test")
    yield


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# -----------------------------------------------------------------------------
# Health Check Tests
# -----------------------------------------------------------------------------


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    async def test_health_live_returns_ok(self, client):
        """GET /health/live should always return 200 OK."""
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_health_ready_with_redis_up(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["components"]["redis"]["status"] == "up"

    async def test_health_ready_with_redis_down(self, client, mock_async_redis):
        """GET /health/ready should return 503 when Redis is unreachable."""
        mock_async_redis.ping.side_effect = ConnectionError("Redis unavailable")

        response = await client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "error"
        assert data["components"]["redis"]["status"] == "down"


# -----------------------------------------------------------------------------
# Recommendation Endpoint Tests
# -----------------------------------------------------------------------------


class TestPersonalizedEndpoint:
    """Tests for GET /recommendations/personalized/{user_id}."""

    async def test_returns_ranked_recommendations(self, client):
        response = await client.get("/recommendations/personalized/1?limit=3")

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == 1
        assert data["strategy"] == "personalized"
        assert data["limit"] == 3
        assert [r["item_id"] for r in data["recommendations"]] == [109, 106, 107]
        assert data["meta"]["count"] == 3
        assert data["meta"]["exclude_authored"] is True

    async def test_config_overrides_are_applied(self, client):
        response = await client.get(
            "/recommendations/personalized/1",
            params={"limit": 3, "author_diversity_limit": 1, "diversity_threshold": 0.5},
        )

        assert response.status_code == 200
        data = response.json()
        assert [r["item_id"] for r in data["recommendations"]] == [109, 106, 112]
        assert data["meta"]["config"] == {
            "author_diversity_limit": 1,
            "diversity_threshold": 0.5,
        }

    @pytest.mark.parametrize("limit", [0, 101])
    async def test_limit_out_of_range_is_rejected(self, client, limit):
        response = await client.get(f"/recommendations/personalized/1?limit={limit}")

        assert response.status_code == 422

    async def test_invalid_author_diversity_limit_is_rejected(self, client):
        response = await client.get(
            "/recommendations/personalized/1?author_diversity_limit=0"
        )

        assert response.status_code == 422

    async def test_non_positive_user_id_is_rejected(self, client):
        response = await client.get("/recommendations/personalized/0")

        assert response.status_code == 422

    async def test_engine_validation_error_maps_to_422(self, client):
        service = AsyncMock()
        service.get_user_recommendations.side_effect = ValidationError("bad config")
        app.state.recommendation_service = service

        response = await client.get("/recommendations/personalized/1")

        assert response.status_code == 422
        assert response.json()["detail"] == "bad config"

    async def test_pipeline_failure_still_answers_with_trending(self, client):
        """Repository trouble degrades the response instead of failing it."""
        service = app.state.recommendation_service
        service._candidates.generate = AsyncMock(side_effect=RuntimeError("db down"))

        response = await client.get("/recommendations/personalized/1?limit=5")

        assert response.status_code == 200
        assert [r["item_id"] for r in response.json()["recommendations"]] == [
            107,
            106,
            108,
            109,
            110,
        ]


class TestOtherRecommendationEndpoints:
    """Tests for the similar-users, trending and hybrid endpoints."""

    async def test_similar_users(self, client):
        response = await client.get("/recommendations/similar-users/1")

        assert response.status_code == 200
        data = response.json()
        assert data["strategy"] == "similar_users"
        assert [r["item_id"] for r in data["recommendations"]] == [107, 109, 108]
        assert data["recommendations"][0]["reasons"] == ["liked by users similar to you"]

    async def test_trending_anonymous(self, client):
        response = await client.get("/recommendations/trending?limit=5")

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] is None
        assert data["meta"]["time_range"] == "week"
        assert len(data["recommendations"]) <= 5

    async def test_trending_for_user(self, client):
        response = await client.get(
            "/recommendations/trending", params={"user_id": 1, "time_range": "day"}
        )

        assert response.status_code == 200
        assert [r["item_id"] for r in response.json()["recommendations"]] == [106, 107]

    async def test_trending_invalid_time_range(self, client):
        response = await client.get("/recommendations/trending?time_range=year")

        assert response.status_code == 422

    async def test_hybrid(self, client):
        response = await client.get("/recommendations/hybrid/1?limit=5")

        assert response.status_code == 200
        data = response.json()
        assert data["strategy"] == "hybrid"
        item_ids = [r["item_id"] for r in data["recommendations"]]
        assert 0 < len(item_ids) <= 5
        assert len(item_ids) == len(set(item_ids))
        assert not set(item_ids) & {101, 102, 103, 104, 105, 111}


# -----------------------------------------------------------------------------
# Feedback Endpoint Tests
# -----------------------------------------------------------------------------


class TestFeedbackEndpoint:
    """Tests for POST /recommendations/feedback."""

    async def test_feedback_is_accepted(self, client, mock_producer):
        payload = {
            "user_id": 1,
            "item_id": 107,
            "recommendation_type": "hybrid",
            "rating": 5,
            "feedback": "great find",
        }

        response = await client.post("/recommendations/feedback", json=payload)

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "accepted"
        assert data["event"]["item_id"] == 107
        mock_producer.send.assert_called_once()
        assert mock_producer.send.call_args[0][0] == "feedback-test"

    @pytest.mark.parametrize("rating", [0, 6])
    async def test_rating_out_of_range(self, client, rating):
        payload = {
            "user_id": 1,
            "item_id": 107,
            "recommendation_type": "hybrid",
            "rating": rating,
        }

        response = await client.post("/recommendations/feedback", json=payload)

        assert response.status_code == 422

    async def test_unknown_recommendation_type(self, client):
        payload = {
            "user_id": 1,
            "item_id": 107,
            "recommendation_type": "editorial",
            "rating": 3,
        }

        response = await client.post("/recommendations/feedback", json=payload)

        assert response.status_code == 422

    async def test_without_producer_returns_503(self, client):
        app.state.feedback_publisher = FeedbackPublisher(None)
        payload = {
            "user_id": 1,
            "item_id": 107,
            "recommendation_type": "trending",
            "rating": 4,
        }

        response = await client.post("/recommendations/feedback", json=payload)

        assert response.status_code == 503

    async def test_send_failure_returns_500(self, client, mock_producer):
        mock_producer.send.side_effect = RuntimeError("buffer full")
        payload = {
            "user_id": 1,
            "item_id": 107,
            "recommendation_type": "trending",
            "rating": 4,
        }

        response = await client.post("/recommendations/feedback", json=payload)

        assert response.status_code == 500
